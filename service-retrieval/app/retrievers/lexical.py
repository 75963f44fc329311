"""Lexical search adapter.

Native full-text ranks are unbounded and backend specific, so they are
min-max scaled across the returned set.
"""

from typing import Any, List, Sequence

import structlog

from libs.vector_store.base import FullTextIndex

from ..models import RetrievalMethod, RetrievalResult
from .base import SearchAdapter

logger = structlog.get_logger("retrieval_service.lexical")


def min_max_normalize(scores: Sequence[float]) -> List[float]:
    """Scale scores to [0, 1]; an all-equal set maps to 1.0."""
    if not scores:
        return []
    low = min(scores)
    high = max(scores)
    if high <= low:
        return [1.0 for _ in scores]
    span = high - low
    return [(score - low) / span for score in scores]


class LexicalSearchAdapter(SearchAdapter):
    """Keyword retrieval over chunk text."""

    name = "lexical"

    def __init__(self, fulltext_index: FullTextIndex, **kwargs: Any):
        super().__init__(**kwargs)
        self.fulltext_index = fulltext_index

    async def _search(self, query: str, k: int, **kwargs: Any) -> List[RetrievalResult]:
        hits = await self.fulltext_index.search_text(query, limit=k)

        # first occurrence wins for repeated chunk ids
        unique_hits = []
        seen = set()
        for hit in hits:
            if hit.chunk_id in seen:
                continue
            seen.add(hit.chunk_id)
            unique_hits.append(hit)

        normalized = min_max_normalize([float(hit.score) for hit in unique_hits])

        results = [
            RetrievalResult(
                chunk_id=hit.chunk_id,
                score=score,
                method=RetrievalMethod.LEXICAL,
                text=hit.text,
                metadata=dict(hit.metadata or {}),
                source_doc_id=hit.source_doc_id,
                lexical_score=score,
            )
            for hit, score in zip(unique_hits, normalized)
        ]
        results.sort(key=lambda r: (-r.score, r.chunk_id))

        logger.debug("Lexical search completed", k=k, results_count=len(results[:k]))
        return results[:k]
