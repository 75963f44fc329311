"""Search manager: builds the retrieval pipeline and owns its resources.

Every collaborator (database pool, HTTP client, Redis client, indexes,
scorers, analytics sink) is constructed once here at start-up and passed
into the stages explicitly.

A missing setting does not stop the service from starting. The problem is
logged, ``/health`` reports it, and retrieval requests answer 503 until the
configuration is fixed.
"""

from typing import Any, Dict, Optional

import httpx
import structlog

from libs.common.config import RetrievalConfig
from libs.common.errors import ConfigurationError
from libs.common.events import create_event_publisher
from libs.vector_store.factory import create_fulltext_index, create_vector_index
from libs.vector_store.pgvector import create_shared_pool

from ..analytics.query_logger import (
    LogQueryEventSink,
    PostgresQueryLogSink,
    QueryEventSink,
    QueryLogger,
    RedisQueryEventSink,
)
from ..context.formatter import ContextFormatter
from ..models import RetrievalResponse
from ..ranking.fusion import HybridMerger, create_fusion_algorithm
from ..ranking.reranker import create_reranker
from ..retrievers.cache_manager import create_embedding_cache
from ..retrievers.embedding_client import create_embedding_client
from ..retrievers.lexical import LexicalSearchAdapter
from ..retrievers.semantic import SemanticSearchAdapter
from .pipeline import RetrievalPipeline

logger = structlog.get_logger("retrieval_service.search_manager")


class SearchManager:
    """Manages the retrieval pipeline lifecycle.

    Responsibilities
    - Keep a DB pool, HTTP client and embedding cache for dependencies
    - Wire adapters, merger, reranker, formatter and query logger
    - Report index health and release everything on shutdown
    """

    def __init__(
        self,
        config: RetrievalConfig,
        metrics_collector: Optional[Any] = None,
        tracer: Optional[Any] = None,
        pipeline: Optional[RetrievalPipeline] = None,
    ):
        """Construct a search manager.

        Parameters
        - config: ``RetrievalConfig`` with DSNs, URLs, weights and timeouts
        - metrics_collector: Shared ``MetricsCollector``
        - tracer: OpenTelemetry tracer, ``None`` when tracing is off
        - pipeline: Pre-built pipeline; skips resource construction
        """
        self.config = config
        self.metrics_collector = metrics_collector
        self.tracer = tracer
        self.pipeline = pipeline
        self.configuration_error: Optional[str] = None

        self.db_pool: Optional[Any] = None
        self.http_client: Optional[httpx.AsyncClient] = None
        self.embedding_cache: Optional[Any] = None

    async def initialize(self) -> None:
        """Initialize the search manager.

        Configuration errors are recorded rather than raised.
        """
        if self.pipeline is not None:
            return

        try:
            self.pipeline = await self._build_pipeline()
            logger.info(
                "Search manager initialized successfully",
                lexical_backend=self.config.rag_lexical_backend,
                embedding_provider=self.config.rag_embedding_provider,
                fusion_algorithm=self.config.rag_fusion_algorithm,
                reranking_available=self.pipeline.reranker.available,
                query_log_sink=self.config.rag_query_log_sink
            )
        except ConfigurationError as e:
            self.configuration_error = str(e)
            logger.error("Retrieval pipeline is not configured", error=str(e))

    async def _build_pipeline(self) -> RetrievalPipeline:
        config = self.config

        if config.rag_database_dsn:
            try:
                self.db_pool = await create_shared_pool(
                    config.rag_database_dsn,
                    pool_size=config.rag_database_pool_size,
                    command_timeout=config.rag_database_command_timeout,
                )
            except Exception as e:
                # indexes fall back to lazily created pools of their own
                logger.error("Failed to create shared database pool", error=str(e))

        self.http_client = httpx.AsyncClient(timeout=self._http_timeout())

        vector_index = create_vector_index(config, pool=self.db_pool)
        fulltext_index = create_fulltext_index(config, pool=self.db_pool)

        cache = None
        if config.rag_redis_url:
            cache = create_embedding_cache(
                config.rag_redis_url,
                embedding_cache_ttl=config.rag_embedding_cache_ttl,
                metrics_collector=self.metrics_collector,
            )
            self.embedding_cache = cache

        embedding_client = create_embedding_client(config, self.http_client, cache=cache)

        try:
            fusion_algorithm = create_fusion_algorithm(
                config.rag_fusion_algorithm,
                semantic_weight=config.rag_semantic_weight,
                lexical_weight=config.rag_lexical_weight,
                rrf_k=config.rag_rrf_k,
            )
        except ValueError as e:
            raise ConfigurationError(str(e))

        return RetrievalPipeline(
            semantic_adapter=SemanticSearchAdapter(
                embedding_client,
                vector_index,
                similarity_threshold=config.rag_similarity_threshold,
                timeout_seconds=config.rag_adapter_timeout_seconds,
                metrics_collector=self.metrics_collector,
            ),
            lexical_adapter=LexicalSearchAdapter(
                fulltext_index,
                timeout_seconds=config.rag_adapter_timeout_seconds,
                metrics_collector=self.metrics_collector,
            ),
            merger=HybridMerger(fusion_algorithm),
            reranker=create_reranker(config, self.http_client, self.metrics_collector),
            formatter=ContextFormatter(config.rag_context_max_chars),
            query_logger=QueryLogger(
                self._create_query_log_sink(),
                timeout_seconds=config.rag_query_log_timeout_seconds,
                metrics_collector=self.metrics_collector,
            ),
            request_timeout_seconds=config.rag_request_timeout_seconds,
            candidate_multiplier=config.rag_candidate_multiplier,
            hybrid_search_enabled=config.rag_hybrid_search_enabled,
            metrics_collector=self.metrics_collector,
            tracer=self.tracer,
        )

    def _http_timeout(self) -> float:
        """Timeout for embedding and rerank HTTP calls.

        Kept within the adapter and rerank timeouts so a hung collaborator
        surfaces as an HTTP error the breaker and retries can act on.
        """
        return min(
            self.config.rag_embedding_timeout_seconds,
            self.config.rag_adapter_timeout_seconds,
            self.config.rag_rerank_timeout_seconds,
        )

    def _create_query_log_sink(self) -> Optional[QueryEventSink]:
        """Create the analytics sink selected by ``RAG_QUERY_LOG_SINK``.

        A sink whose backend is not configured degrades to the log sink;
        analytics must never block retrieval.
        """
        sink = self.config.rag_query_log_sink.lower()

        if sink == "none":
            return None
        if sink == "log":
            return LogQueryEventSink()
        if sink == "postgres":
            if not self.config.rag_database_dsn:
                logger.warning("No database DSN for query log, logging queries to stdout instead")
                return LogQueryEventSink()
            return PostgresQueryLogSink(pool=self.db_pool, dsn=self.config.rag_database_dsn)
        if sink == "redis":
            if not self.config.rag_redis_url:
                logger.warning("No Redis URL for query events, logging queries to stdout instead")
                return LogQueryEventSink()
            return RedisQueryEventSink(create_event_publisher(self.config.rag_redis_url))

        raise ConfigurationError(f"Unsupported query log sink: {self.config.rag_query_log_sink}")

    async def retrieve(
        self,
        query: str,
        top_k: int,
        user_id: str,
        community_id: Optional[str] = None,
        use_reranking: bool = True,
    ) -> RetrievalResponse:
        """Run one retrieval; raises ``ConfigurationError`` when not configured."""
        if self.pipeline is None:
            raise ConfigurationError(self.configuration_error or "Retrieval pipeline is not initialized")

        return await self.pipeline.retrieve(
            query=query,
            top_k=top_k,
            user_id=user_id,
            community_id=community_id,
            use_reranking=use_reranking,
        )

    async def health_check(self) -> Dict[str, bool]:
        """Check each index; the service is usable while at least one answers."""
        if self.pipeline is None:
            return {}

        checks = {}
        vector_index = getattr(self.pipeline.semantic_adapter, "vector_index", None)
        fulltext_index = getattr(self.pipeline.lexical_adapter, "fulltext_index", None)
        for name, index in (("vector_index", vector_index), ("fulltext_index", fulltext_index)):
            if index is None:
                continue
            try:
                checks[name] = await index.health_check()
            except Exception as e:
                logger.error("Index health check failed", index=name, error=str(e))
                checks[name] = False
        return checks

    async def cleanup(self) -> None:
        """Cleanup resources.

        Pending query-log writes are drained before connections close.
        """
        try:
            if self.pipeline is not None:
                await self.pipeline.query_logger.close()
                await self.pipeline.reranker.close()

                for index in (
                    getattr(self.pipeline.semantic_adapter, "vector_index", None),
                    getattr(self.pipeline.lexical_adapter, "fulltext_index", None),
                ):
                    if index is not None:
                        await index.close()

            if self.http_client:
                await self.http_client.aclose()

            if self.embedding_cache is not None:
                await self.embedding_cache.close()

            if self.db_pool is not None:
                await self.db_pool.close()

            logger.info("Search manager cleanup completed")

        except Exception as e:
            logger.error("Search manager cleanup failed", error=str(e))
