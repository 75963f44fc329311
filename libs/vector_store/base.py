"""Base index interfaces.

Defines the read-only contracts the retrieval service depends on,
independent of the backing implementation (pgvector, PostgreSQL full-text,
OpenSearch, etc.). Index construction happens elsewhere; these classes only
query.

All methods are asynchronous to support high‑throughput services.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, NamedTuple, Optional

import numpy as np

from libs.common.errors import TransientAdapterError


class IndexHit(NamedTuple):
    """One row returned by an index.

    ``score`` is the backend's native value: cosine distance for vector
    indexes, rank for full-text indexes.
    """
    chunk_id: str
    score: float
    text: str
    metadata: Dict[str, Any]
    source_doc_id: Optional[str] = None


class VectorIndex(ABC):
    """Nearest-neighbour lookup over chunk embeddings.

    Implementations use cosine distance so that ``1 - distance`` is the
    similarity of the hit.
    """

    @abstractmethod
    async def search_similar(
        self,
        query_vector: np.ndarray,
        limit: int = 10,
        similarity_threshold: float = 0.0
    ) -> List[IndexHit]:
        """Search for similar chunks.

        Returns
        - Up to ``limit`` hits sorted by ascending distance, all with
          ``1 - distance >= similarity_threshold``
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the index is reachable."""
        pass

    async def close(self) -> None:
        """Release connections held by the index."""
        return None


class FullTextIndex(ABC):
    """Keyword lookup over chunk text."""

    @abstractmethod
    async def search_text(self, query_text: str, limit: int = 10) -> List[IndexHit]:
        """Search chunks matching the query terms.

        Returns
        - Up to ``limit`` hits sorted by descending native rank
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the index is reachable."""
        pass

    async def close(self) -> None:
        """Release connections held by the index."""
        return None


class VectorStoreError(TransientAdapterError):
    """Base exception for index operations."""
    pass


class VectorStoreConnectionError(VectorStoreError):
    """Connection error to the index backend."""
    pass


class VectorStoreQueryError(VectorStoreError):
    """Query error in the index backend."""
    pass
