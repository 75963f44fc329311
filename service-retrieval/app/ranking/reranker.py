"""Second-pass relevance scoring over the fused shortlist.

The ``Reranker`` is best effort: whenever the scoring collaborator is
disabled, unavailable, slow or wrong, it hands back the fused order
truncated to ``top_k`` with ``reranking_used = False``.

Scorers
- ``CohereRerankScorer``: Cohere Rerank REST API (cross-encoder)
- ``TokenOverlapScorer``: local query-term coverage blended with Jaccard
"""

import asyncio
import math
import re
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence, Set

import httpx
import structlog

from libs.common.circuit_breaker import CircuitBreaker
from libs.common.errors import ConfigurationError, RerankingError

from ..models import RerankOutcome, RetrievalMethod, RetrievalResult

logger = structlog.get_logger("retrieval_service.reranker")

_TOKEN_PATTERN = re.compile(r"[a-z0-9]+")


class RelevanceScorer(ABC):
    """Scores candidate texts against a query; higher is more relevant."""

    name = "base"

    @property
    def available(self) -> bool:
        return True

    @abstractmethod
    async def score(self, query: str, texts: Sequence[str]) -> List[float]:
        """Return one score per text, in input order."""
        pass

    async def close(self) -> None:
        return None


class CohereRerankScorer(RelevanceScorer):
    """Cohere ``/v1/rerank`` client.

    Only available when an API key is configured.
    """

    name = "cohere"

    def __init__(
        self,
        api_key: Optional[str],
        http_client: httpx.AsyncClient,
        model: str = "rerank-english-v3.0",
        base_url: str = "https://api.cohere.com",
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.api_key = api_key
        self.http_client = http_client
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            name="rerank_cohere",
            expected_exception=(httpx.HTTPError, RerankingError),
        )

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    async def score(self, query: str, texts: Sequence[str]) -> List[float]:
        return await self.circuit_breaker.call(lambda: self._request_scores(query, texts))

    async def _request_scores(self, query: str, texts: Sequence[str]) -> List[float]:
        response = await self.http_client.post(
            f"{self.base_url}/v1/rerank",
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "model": self.model,
                "query": query,
                "documents": list(texts),
                "top_n": len(texts),
                "return_documents": False,
            }
        )
        if response.status_code != 200:
            raise RerankingError(f"Cohere rerank returned status {response.status_code}")

        scores: List[Optional[float]] = [None] * len(texts)
        for item in response.json().get("results", []):
            index = item.get("index")
            if not isinstance(index, int) or not 0 <= index < len(texts):
                raise RerankingError(f"Invalid index {index} in rerank results")
            scores[index] = float(item["relevance_score"])

        if any(score is None for score in scores):
            raise RerankingError("Cohere rerank did not score every document")
        return scores


def tokenize(text: str) -> Set[str]:
    return set(_TOKEN_PATTERN.findall(text.lower()))


class TokenOverlapScorer(RelevanceScorer):
    """Monotonic token-overlap heuristic used when no cross-encoder is set up.

    ``coverage_weight * |q & d| / |q| + (1 - coverage_weight) * |q & d| / |q | d|``
    """

    name = "token_overlap"

    def __init__(self, coverage_weight: float = 0.7):
        self.coverage_weight = coverage_weight

    async def score(self, query: str, texts: Sequence[str]) -> List[float]:
        query_tokens = tokenize(query)
        scores = []
        for text in texts:
            doc_tokens = tokenize(text)
            if not query_tokens or not doc_tokens:
                scores.append(0.0)
                continue
            overlap = len(query_tokens & doc_tokens)
            coverage = overlap / len(query_tokens)
            jaccard = overlap / len(query_tokens | doc_tokens)
            scores.append(self.coverage_weight * coverage + (1.0 - self.coverage_weight) * jaccard)
        return scores


class Reranker:
    """Optional reranking stage with fallback to the fused order."""

    def __init__(
        self,
        scorer: Optional[RelevanceScorer] = None,
        enabled: bool = True,
        timeout_seconds: float = 5.0,
        metrics_collector: Optional[Any] = None,
    ):
        self.scorer = scorer
        self.enabled = enabled
        self.timeout_seconds = timeout_seconds
        self.metrics_collector = metrics_collector

    @property
    def available(self) -> bool:
        return self.enabled and self.scorer is not None and self.scorer.available

    async def rerank(
        self,
        query: str,
        candidates: Sequence[RetrievalResult],
        top_k: int,
    ) -> RerankOutcome:
        """Re-score ``candidates`` and keep the best ``top_k``. Never raises."""
        if not candidates:
            return RerankOutcome(results=[], reranking_used=False)

        fallback = list(candidates[:top_k])
        if not self.available:
            self._record("skipped")
            return RerankOutcome(results=fallback, reranking_used=False)

        try:
            scores = await asyncio.wait_for(
                self.scorer.score(query, [candidate.text for candidate in candidates]),
                self.timeout_seconds
            )
            if len(scores) != len(candidates):
                raise RerankingError(
                    f"Scorer returned {len(scores)} scores for {len(candidates)} candidates"
                )
            if not all(math.isfinite(score) for score in scores):
                raise RerankingError("Scorer returned a non-finite score")
        except asyncio.TimeoutError:
            logger.warning("Reranking timed out, using fused order", scorer=self.scorer.name)
            self._record("fallback")
            return RerankOutcome(results=fallback, reranking_used=False)
        except Exception as e:
            logger.warning("Reranking failed, using fused order", scorer=self.scorer.name, error=str(e))
            self._record("fallback")
            return RerankOutcome(results=fallback, reranking_used=False)

        clamped = [min(1.0, max(0.0, float(score))) for score in scores]
        # sorted() is stable, so equal scores keep their fused order
        order = sorted(range(len(candidates)), key=lambda i: -clamped[i])
        reranked = [
            candidates[i].rescored(clamped[i], RetrievalMethod.RERANKED)
            for i in order[:top_k]
        ]

        logger.debug(
            "Reranking completed",
            scorer=self.scorer.name,
            candidates=len(candidates),
            returned=len(reranked)
        )
        self._record("used")
        return RerankOutcome(results=reranked, reranking_used=True)

    async def close(self) -> None:
        if self.scorer is not None:
            await self.scorer.close()

    def _record(self, outcome: str) -> None:
        if self.metrics_collector is not None:
            self.metrics_collector.record_rerank(outcome)


def create_reranker(
    config: Any,
    http_client: httpx.AsyncClient,
    metrics_collector: Optional[Any] = None,
) -> Reranker:
    """Create the reranker selected by ``RAG_RERANK_PROVIDER``."""
    provider = config.rag_rerank_provider.lower()
    if provider == "cohere":
        scorer: Optional[RelevanceScorer] = CohereRerankScorer(
            api_key=config.rag_cohere_api_key,
            http_client=http_client,
            model=config.rag_rerank_model,
            base_url=config.rag_cohere_base_url,
            circuit_breaker=CircuitBreaker(
                name="rerank_cohere",
                failure_threshold=config.rag_circuit_breaker_failure_threshold,
                recovery_timeout=config.rag_circuit_breaker_recovery_timeout,
                expected_exception=(httpx.HTTPError, RerankingError),
            ),
        )
        if not scorer.available:
            logger.warning("Cohere API key not configured, reranking disabled")
    elif provider == "token_overlap":
        scorer = TokenOverlapScorer()
    elif provider == "none":
        scorer = None
    else:
        raise ConfigurationError(f"Unknown rerank provider: {config.rag_rerank_provider}")

    return Reranker(
        scorer=scorer,
        enabled=config.rag_rerank_enabled,
        timeout_seconds=config.rag_rerank_timeout_seconds,
        metrics_collector=metrics_collector,
    )
