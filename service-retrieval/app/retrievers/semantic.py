"""Semantic search adapter.

Embeds the query, asks the vector index for its nearest neighbours and
converts cosine distance into a similarity score in [0, 1].
"""

from typing import Any, List, Optional

import structlog

from libs.vector_store.base import VectorIndex

from ..models import RetrievalMethod, RetrievalResult
from .base import SearchAdapter
from .embedding_client import EmbeddingClient

logger = structlog.get_logger("retrieval_service.semantic")


def distance_to_similarity(distance: float) -> float:
    """Cosine distance to similarity, clamped to [0, 1]."""
    return min(1.0, max(0.0, 1.0 - float(distance)))


class SemanticSearchAdapter(SearchAdapter):
    """Nearest-neighbour retrieval over chunk embeddings."""

    name = "semantic"

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        vector_index: VectorIndex,
        similarity_threshold: float = 0.5,
        **kwargs: Any
    ):
        super().__init__(**kwargs)
        self.embedding_client = embedding_client
        self.vector_index = vector_index
        self.similarity_threshold = similarity_threshold

    async def _search(
        self,
        query: str,
        k: int,
        similarity_threshold: Optional[float] = None,
        **kwargs: Any
    ) -> List[RetrievalResult]:
        threshold = self.similarity_threshold if similarity_threshold is None else similarity_threshold

        query_vector = await self.embedding_client.embed(query)
        hits = await self.vector_index.search_similar(
            query_vector,
            limit=k,
            similarity_threshold=threshold
        )

        results = []
        seen = set()
        for hit in hits:
            similarity = distance_to_similarity(hit.score)
            if similarity < threshold or hit.chunk_id in seen:
                continue
            seen.add(hit.chunk_id)
            results.append(RetrievalResult(
                chunk_id=hit.chunk_id,
                score=similarity,
                method=RetrievalMethod.SEMANTIC,
                text=hit.text,
                metadata=dict(hit.metadata or {}),
                source_doc_id=hit.source_doc_id,
                semantic_score=similarity,
            ))

        results.sort(key=lambda r: (-r.score, r.chunk_id))

        logger.debug(
            "Semantic search completed",
            k=k,
            threshold=threshold,
            hits=len(hits),
            results_count=len(results[:k])
        )
        return results[:k]
