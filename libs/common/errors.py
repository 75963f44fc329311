"""Error taxonomy shared by the retrieval service and its collaborators.

Only ``ConfigurationError`` and ``TotalRetrievalFailure`` are meant to reach
the HTTP boundary. The remaining types are raised by collaborators and
absorbed by the stage that called them.
"""


class RetrievalError(Exception):
    """Base exception for retrieval operations."""
    pass


class ConfigurationError(RetrievalError):
    """A required index or service is not configured."""
    pass


class TransientAdapterError(RetrievalError):
    """A search adapter's collaborator failed or timed out.

    Absorbed by the adapter, which then reports an empty, failed outcome.
    """
    pass


class TotalRetrievalFailure(RetrievalError):
    """Both search adapters failed for one request."""

    def __init__(self, message: str, semantic_error: str = None, lexical_error: str = None):
        super().__init__(message)
        self.semantic_error = semantic_error
        self.lexical_error = lexical_error


class EmbeddingServiceError(TransientAdapterError):
    """The embedding collaborator failed or returned an unusable vector."""
    pass


class RerankingError(RetrievalError):
    """The relevance scoring collaborator failed."""
    pass


class QueryLogError(RetrievalError):
    """An analytics sink could not record a query event."""
    pass
