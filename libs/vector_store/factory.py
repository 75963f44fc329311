"""Index factory for creating different implementations.

Centralizes creation of concrete ``VectorIndex`` / ``FullTextIndex``
backends so callers don't depend on implementation details. New backends can
be added without changing call sites.
"""

from enum import Enum
from typing import Any, Optional

import structlog

from libs.common.errors import ConfigurationError

from .base import FullTextIndex, VectorIndex
from .opensearch import OpenSearchFullTextIndex
from .pgvector import PgFullTextIndex, PgVectorIndex

logger = structlog.get_logger("vector_store.factory")


class LexicalBackend(Enum):
    """Supported full-text backends."""
    POSTGRES = "postgres"
    OPENSEARCH = "opensearch"


def create_vector_index(config: Any, pool: Optional[Any] = None) -> VectorIndex:
    """Create the pgvector index from a ``RetrievalConfig``.

    Raises ``ConfigurationError`` when no database DSN is configured.
    """
    if not config.rag_database_dsn:
        raise ConfigurationError("RAG_DATABASE_DSN is required for the vector index")

    return PgVectorIndex(
        dsn=config.rag_database_dsn,
        vector_dimension=config.rag_vector_dimension,
        pool_size=config.rag_database_pool_size,
        command_timeout=config.rag_database_command_timeout,
        pool=pool,
    )


def create_fulltext_index(config: Any, pool: Optional[Any] = None) -> FullTextIndex:
    """Create the full-text index selected by ``RAG_LEXICAL_BACKEND``.

    Parameters
    - config: A ``RetrievalConfig``
    - pool: Optional asyncpg pool shared with the vector index
    """
    try:
        backend = LexicalBackend(config.rag_lexical_backend)
    except ValueError:
        raise ConfigurationError(f"Unsupported lexical backend: {config.rag_lexical_backend}")

    if backend == LexicalBackend.POSTGRES:
        if not config.rag_database_dsn:
            raise ConfigurationError("RAG_DATABASE_DSN is required for the postgres lexical backend")
        return PgFullTextIndex(
            dsn=config.rag_database_dsn,
            pool_size=config.rag_database_pool_size,
            command_timeout=config.rag_database_command_timeout,
            pool=pool,
        )

    hosts = config.opensearch_host_list()
    if not hosts:
        raise ConfigurationError("RAG_OPENSEARCH_HOSTS is required for the opensearch lexical backend")

    logger.info("Using OpenSearch lexical backend", hosts=hosts, index_name=config.rag_opensearch_index)
    return OpenSearchFullTextIndex(
        hosts=hosts,
        index_name=config.rag_opensearch_index,
        username=config.rag_opensearch_username,
        password=config.rag_opensearch_password,
        verify_certs=config.rag_opensearch_verify_certs,
    )
