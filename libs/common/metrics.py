"""Metrics collection for the retrieval service.

Provides a thin convenience wrapper around ``prometheus_client`` so the
service can consistently record HTTP, retrieval, adapter, reranking, query
log and cache metrics.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A single registry is kept per collector (inject one for tests)
"""

import time
from functools import wraps
from typing import Any, Callable, Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

logger = structlog.get_logger("metrics")


class MetricsCollector:
    """Centralized metrics collection for the retrieval service.

    Parameters
    - service_name: Logical name used for scoping/labels if desired
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)

    Exposes typed helpers for common events to keep label sets consistent.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.request_count = Counter(
            'http_requests_total',
            'Total HTTP requests',
            ['method', 'endpoint', 'status'],
            registry=self.registry
        )

        self.request_duration = Histogram(
            'http_request_duration_seconds',
            'HTTP request duration',
            ['method', 'endpoint'],
            registry=self.registry
        )

        self.retrieval_requests = Counter(
            'rag_retrieval_requests_total',
            'Total retrieval requests by outcome',
            ['outcome'],
            registry=self.registry
        )

        self.retrieval_duration = Histogram(
            'rag_retrieval_duration_seconds',
            'End-to-end retrieval duration',
            ['reranked'],
            registry=self.registry
        )

        self.adapter_results = Counter(
            'rag_adapter_calls_total',
            'Search adapter calls by adapter and status',
            ['adapter', 'status'],
            registry=self.registry
        )

        self.adapter_duration = Histogram(
            'rag_adapter_duration_seconds',
            'Search adapter call duration',
            ['adapter'],
            registry=self.registry
        )

        self.rerank_outcomes = Counter(
            'rag_rerank_total',
            'Reranking attempts by outcome',
            ['outcome'],
            registry=self.registry
        )

        self.query_log_writes = Counter(
            'rag_query_log_writes_total',
            'Query analytics writes by sink and status',
            ['sink', 'status'],
            registry=self.registry
        )

        self.cache_hits = Counter(
            'rag_cache_hits_total',
            'Total cache hits',
            ['cache_type'],
            registry=self.registry
        )

        self.cache_misses = Counter(
            'rag_cache_misses_total',
            'Total cache misses',
            ['cache_type'],
            registry=self.registry
        )

    def record_http_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration: float
    ) -> None:
        """Record HTTP request metrics.

        duration is expected in seconds to match Prometheus histogram units.
        """
        self.request_count.labels(method=method, endpoint=endpoint, status=status).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def record_retrieval(self, outcome: str, duration: float, reranked: bool = False) -> None:
        """Record an end-to-end retrieval (``success``, ``failure``, ``config_error``)."""
        self.retrieval_requests.labels(outcome=outcome).inc()
        self.retrieval_duration.labels(reranked=str(reranked).lower()).observe(duration)

    def record_adapter(self, adapter: str, status: str, duration: float) -> None:
        """Record one search adapter call (``ok``, ``error``, ``timeout``)."""
        self.adapter_results.labels(adapter=adapter, status=status).inc()
        self.adapter_duration.labels(adapter=adapter).observe(duration)

    def record_rerank(self, outcome: str) -> None:
        """Record a reranking outcome (``used``, ``fallback``, ``skipped``)."""
        self.rerank_outcomes.labels(outcome=outcome).inc()

    def record_query_log(self, sink: str, status: str) -> None:
        """Record a query analytics write."""
        self.query_log_writes.labels(sink=sink, status=status).inc()

    def record_cache_hit(self, cache_type: str) -> None:
        """Record cache hit."""
        self.cache_hits.labels(cache_type=cache_type).inc()

    def record_cache_miss(self, cache_type: str) -> None:
        """Record cache miss."""
        self.cache_misses.labels(cache_type=cache_type).inc()

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get or create metrics collector for a service.

    Returns a process‑wide singleton to avoid duplicate collectors/labels.
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
    return _metrics_collector


def measure_time(operation: str, **labels: Any) -> Callable:
    """Decorator to log the execution time of a coroutine function.

    Example
    >>> @measure_time("embedding.request", provider="service")
    ... async def embed(text):
    ...     ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            start_time = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
                logger.debug(
                    f"Operation {operation} completed",
                    operation=operation,
                    duration_ms=(time.perf_counter() - start_time) * 1000,
                    **labels
                )
                return result
            except Exception as e:
                logger.warning(
                    f"Operation {operation} failed",
                    operation=operation,
                    duration_ms=(time.perf_counter() - start_time) * 1000,
                    error=str(e),
                    **labels
                )
                raise
        return wrapper
    return decorator
