"""Retrieval pipeline: adapters -> merge -> optional rerank -> format -> log.

Both adapters run as concurrent tasks under one request deadline. Whatever
has not finished when the deadline expires is cancelled and treated as a
failed, empty adapter. Only when both adapters fail does the request fail.

With hybrid search disabled only the semantic adapter runs; its results are
used as they are, without fusion.
"""

import asyncio
import time
from typing import Any, Dict, Optional, Tuple

import structlog

from libs.common.errors import ConfigurationError, TotalRetrievalFailure
from libs.common.events import QueryEvent
from libs.common.tracing import TracingContext

from ..analytics.query_logger import QueryLogger
from ..context.formatter import ContextFormatter
from ..models import AdapterOutcome, RerankOutcome, RetrievalMethod, RetrievalResponse
from ..ranking.fusion import HybridMerger
from ..ranking.reranker import Reranker
from ..retrievers.base import SearchAdapter

logger = structlog.get_logger("retrieval_service.pipeline")


class RetrievalPipeline:
    """Runs one retrieval request through every stage.

    All collaborators are injected; the pipeline itself holds no mutable
    state and is shared across concurrent requests.
    """

    def __init__(
        self,
        semantic_adapter: SearchAdapter,
        lexical_adapter: SearchAdapter,
        merger: HybridMerger,
        reranker: Reranker,
        formatter: ContextFormatter,
        query_logger: QueryLogger,
        request_timeout_seconds: float = 8.0,
        candidate_multiplier: int = 2,
        hybrid_search_enabled: bool = True,
        metrics_collector: Optional[Any] = None,
        tracer: Optional[Any] = None,
    ):
        self.semantic_adapter = semantic_adapter
        self.lexical_adapter = lexical_adapter
        self.merger = merger
        self.reranker = reranker
        self.formatter = formatter
        self.query_logger = query_logger
        self.request_timeout_seconds = request_timeout_seconds
        self.candidate_multiplier = max(1, candidate_multiplier)
        self.hybrid_search_enabled = hybrid_search_enabled
        self.metrics_collector = metrics_collector
        self.tracer = tracer

    async def retrieve(
        self,
        query: str,
        top_k: int,
        user_id: str,
        community_id: Optional[str] = None,
        use_reranking: bool = True,
    ) -> RetrievalResponse:
        """Retrieve, rank and format context for ``query``.

        Raises
        - ``ValueError`` when ``top_k`` is not positive
        - ``ConfigurationError`` when an index or the embedding provider is
          not configured
        - ``TotalRetrievalFailure`` when both adapters failed
        """
        if top_k <= 0:
            raise ValueError("top_k must be positive")

        start_time = time.perf_counter()
        will_rerank = use_reranking and self.reranker.available
        n = top_k * 2 if will_rerank else top_k
        k = n * self.candidate_multiplier

        try:
            with TracingContext("retrieval.search", self.tracer, top_k=top_k, candidates=k):
                semantic, lexical = await self._fan_out(query, k)
        except ConfigurationError:
            self._record("config_error", start_time, will_rerank)
            raise

        if not semantic.succeeded and not lexical.succeeded:
            self._record("failure", start_time, will_rerank)
            logger.error(
                "Both search adapters failed",
                semantic_error=semantic.error,
                lexical_error=lexical.error
            )
            raise TotalRetrievalFailure(
                "Both search adapters failed",
                semantic_error=semantic.error,
                lexical_error=lexical.error,
            )

        if self.hybrid_search_enabled:
            with TracingContext("retrieval.merge", self.tracer, n=n):
                merged = self.merger.merge(semantic.results, lexical.results, n)
        else:
            merged = semantic.results[:n]

        if will_rerank:
            with TracingContext("retrieval.rerank", self.tracer, candidates=len(merged)):
                reranked = await self.reranker.rerank(query, merged, top_k)
        else:
            if self.metrics_collector is not None:
                self.metrics_collector.record_rerank("skipped")
            reranked = RerankOutcome(results=merged[:top_k], reranking_used=False)

        with TracingContext("retrieval.format", self.tracer, results=len(reranked.results)):
            context = self.formatter.format(reranked.results)

        latency_ms = (time.perf_counter() - start_time) * 1000
        if reranked.reranking_used:
            method = RetrievalMethod.RERANKED
        elif self.hybrid_search_enabled:
            method = RetrievalMethod.HYBRID
        else:
            method = RetrievalMethod.SEMANTIC

        self.query_logger.log(QueryEvent(
            user_id=user_id,
            community_id=community_id,
            query_text=query,
            result_chunk_ids=[result.chunk_id for result in reranked.results],
            scores=[result.score for result in reranked.results],
            method=method.value,
            latency_ms=latency_ms,
        ))

        self._record("success", start_time, reranked.reranking_used)
        logger.info(
            "Retrieval completed",
            top_k=top_k,
            semantic_count=len(semantic.results),
            lexical_count=len(lexical.results),
            semantic_ok=semantic.succeeded,
            lexical_ok=lexical.succeeded,
            results_count=len(reranked.results),
            reranking_used=reranked.reranking_used,
            latency_ms=round(latency_ms, 2)
        )

        return RetrievalResponse(
            results=reranked.results,
            context=context,
            latency_ms=latency_ms,
            reranking_used=reranked.reranking_used,
        )

    async def _fan_out(self, query: str, k: int) -> Tuple[AdapterOutcome, AdapterOutcome]:
        """Run both adapters concurrently under the request deadline."""
        adapters = [self.semantic_adapter]
        if self.hybrid_search_enabled:
            adapters.append(self.lexical_adapter)
        tasks: Dict[asyncio.Task, str] = {
            asyncio.create_task(adapter.run(query, k)): adapter.name for adapter in adapters
        }

        try:
            _, pending = await asyncio.wait(tasks, timeout=self.request_timeout_seconds)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        outcomes: Dict[str, AdapterOutcome] = {}
        config_error: Optional[ConfigurationError] = None
        for task, name in tasks.items():
            if task in pending or task.cancelled():
                logger.warning("Search adapter missed the request deadline", adapter=name)
                outcomes[name] = AdapterOutcome.failed(name, "deadline exceeded")
                continue

            error = task.exception()
            if isinstance(error, ConfigurationError):
                config_error = config_error or error
            elif error is not None:
                logger.warning("Search adapter raised", adapter=name, error=str(error))
                outcomes[name] = AdapterOutcome.failed(name, str(error))
            else:
                outcomes[name] = task.result()

        if config_error is not None:
            raise config_error

        lexical = outcomes.get(self.lexical_adapter.name) or AdapterOutcome.failed(
            self.lexical_adapter.name, "hybrid search disabled"
        )
        return outcomes[self.semantic_adapter.name], lexical

    def _record(self, outcome: str, start_time: float, reranked: bool) -> None:
        if self.metrics_collector is not None:
            self.metrics_collector.record_retrieval(outcome, time.perf_counter() - start_time, reranked)
