"""In-memory collaborators shared by the test suite."""

import asyncio
from typing import Dict, List, Optional, Sequence

import numpy as np

from libs.vector_store.base import FullTextIndex, IndexHit, VectorIndex

from app.analytics.query_logger import QueryEventSink, QueryLogger
from app.context.formatter import ContextFormatter
from app.hybrid.pipeline import RetrievalPipeline
from app.models import RetrievalMethod, RetrievalResult
from app.ranking.fusion import HybridMerger, WeightedScoreFusion
from app.ranking.reranker import RelevanceScorer, Reranker
from app.retrievers.lexical import LexicalSearchAdapter
from app.retrievers.semantic import SemanticSearchAdapter


def make_result(
    chunk_id: str,
    score: float,
    method: RetrievalMethod = RetrievalMethod.SEMANTIC,
    text: Optional[str] = None,
    metadata: Optional[Dict] = None,
) -> RetrievalResult:
    return RetrievalResult(
        chunk_id=chunk_id,
        score=score,
        method=method,
        text=text if text is not None else f"text of {chunk_id}",
        metadata=metadata or {},
    )


class FakeEmbeddingClient:
    """Returns a fixed vector, or raises ``error``."""

    def __init__(self, error: Optional[Exception] = None, delay: float = 0.0):
        self.error = error
        self.delay = delay
        self.calls: List[str] = []

    async def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return np.ones(3, dtype=np.float32)


class FakeVectorIndex(VectorIndex):
    """Serves hits given as ``(chunk_id, distance)`` pairs."""

    def __init__(self, hits: Sequence = (), error: Optional[Exception] = None, healthy: bool = True):
        self.hits = [
            hit if isinstance(hit, IndexHit) else IndexHit(hit[0], hit[1], f"text of {hit[0]}", {}, "doc-1")
            for hit in hits
        ]
        self.error = error
        self.healthy = healthy
        self.calls: List[Dict] = []
        self.closed = False

    async def search_similar(self, query_vector, limit=10, similarity_threshold=0.0):
        self.calls.append({"limit": limit, "similarity_threshold": similarity_threshold})
        if self.error is not None:
            raise self.error
        return self.hits[:limit]

    async def health_check(self) -> bool:
        return self.healthy

    async def close(self) -> None:
        self.closed = True


class FakeFullTextIndex(FullTextIndex):
    """Serves hits given as ``(chunk_id, rank)`` pairs."""

    def __init__(self, hits: Sequence = (), error: Optional[Exception] = None,
                 delay: float = 0.0, healthy: bool = True):
        self.hits = [
            hit if isinstance(hit, IndexHit) else IndexHit(hit[0], hit[1], f"lexical text of {hit[0]}", {}, "doc-2")
            for hit in hits
        ]
        self.error = error
        self.delay = delay
        self.healthy = healthy
        self.calls: List[Dict] = []
        self.closed = False

    async def search_text(self, query_text, limit=10):
        self.calls.append({"query_text": query_text, "limit": limit})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.hits[:limit]

    async def health_check(self) -> bool:
        return self.healthy

    async def close(self) -> None:
        self.closed = True


class FakeScorer(RelevanceScorer):
    """Scores from a mapping of text to score, or raises ``error``."""

    name = "fake"

    def __init__(self, scores: Optional[Dict[str, float]] = None, error: Optional[Exception] = None,
                 available: bool = True, raw_scores: Optional[List[float]] = None):
        self.scores = scores or {}
        self.error = error
        self._available = available
        self.raw_scores = raw_scores
        self.calls: List[List[str]] = []

    @property
    def available(self) -> bool:
        return self._available

    async def score(self, query, texts):
        self.calls.append(list(texts))
        if self.error is not None:
            raise self.error
        if self.raw_scores is not None:
            return list(self.raw_scores)
        return [self.scores.get(text, 0.0) for text in texts]


class RecordingSink(QueryEventSink):
    """Keeps every event it is given."""

    name = "recording"

    def __init__(self, error: Optional[Exception] = None, delay: float = 0.0):
        self.events = []
        self.error = error
        self.delay = delay
        self.closed = False

    async def write(self, event) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.events.append(event)

    async def close(self) -> None:
        self.closed = True


def build_pipeline(
    vector_hits: Sequence = (),
    lexical_hits: Sequence = (),
    embedding_error: Optional[Exception] = None,
    vector_error: Optional[Exception] = None,
    lexical_error: Optional[Exception] = None,
    lexical_delay: float = 0.0,
    embedding_delay: float = 0.0,
    scorer: Optional[RelevanceScorer] = None,
    sink: Optional[QueryEventSink] = None,
    request_timeout_seconds: float = 2.0,
    adapter_timeout_seconds: float = 2.0,
    similarity_threshold: float = 0.0,
    max_chars: int = 6000,
    hybrid_search_enabled: bool = True,
) -> RetrievalPipeline:
    """Wire a pipeline from in-memory collaborators."""
    return RetrievalPipeline(
        semantic_adapter=SemanticSearchAdapter(
            FakeEmbeddingClient(error=embedding_error, delay=embedding_delay),
            FakeVectorIndex(vector_hits, error=vector_error),
            similarity_threshold=similarity_threshold,
            timeout_seconds=adapter_timeout_seconds,
        ),
        lexical_adapter=LexicalSearchAdapter(
            FakeFullTextIndex(lexical_hits, error=lexical_error, delay=lexical_delay),
            timeout_seconds=adapter_timeout_seconds,
        ),
        merger=HybridMerger(WeightedScoreFusion(0.7, 0.3)),
        reranker=Reranker(scorer=scorer, enabled=scorer is not None),
        formatter=ContextFormatter(max_chars),
        query_logger=QueryLogger(sink if sink is not None else RecordingSink()),
        request_timeout_seconds=request_timeout_seconds,
        candidate_multiplier=2,
        hybrid_search_enabled=hybrid_search_enabled,
    )
