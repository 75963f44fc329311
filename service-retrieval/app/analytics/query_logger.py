"""Fire-and-forget query analytics.

``QueryLogger.log`` schedules the write on the running loop and returns
immediately; failures only produce a warning. Pending writes are tracked so
shutdown can drain them and so the tasks are not collected mid-flight.

Sinks
- ``postgres``: ``rag_query_log`` table
- ``redis``: ``rag_events:rag.query.logged.v1`` pub/sub channel
- ``log``: one structured log line per query
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional, Set

import asyncpg
import structlog

from libs.common.errors import QueryLogError
from libs.common.events import EventPublisher, QueryEvent

logger = structlog.get_logger("retrieval_service.query_logger")


class QueryEventSink(ABC):
    """Destination for query events."""

    name = "base"

    @abstractmethod
    async def write(self, event: QueryEvent) -> None:
        pass

    async def close(self) -> None:
        return None


class PostgresQueryLogSink(QueryEventSink):
    """Inserts one ``rag_query_log`` row per event.

    ``model_used`` records the retrieval method label, since no generative
    model is involved at this stage.
    """

    name = "postgres"

    INSERT_QUERY = """
        INSERT INTO rag_query_log (
            user_id, community_id, query_text, retrieved_chunk_ids,
            retrieval_scores, model_used, latency_ms, created_at
        )
        VALUES ($1::text::uuid, $2::text::uuid, $3, $4::text[]::uuid[], $5::float8[], $6, $7, $8)
    """

    def __init__(self, pool: Optional[Any] = None, dsn: Optional[str] = None, pool_size: int = 2):
        if pool is None and not dsn:
            raise ValueError("PostgresQueryLogSink needs a pool or a DSN")
        self.pool = pool
        self.dsn = dsn
        self.pool_size = pool_size
        self._owns_pool = pool is None

    async def _get_pool(self) -> Any:
        if self.pool is None:
            self.pool = await asyncpg.create_pool(self.dsn, min_size=1, max_size=self.pool_size)
        return self.pool

    async def write(self, event: QueryEvent) -> None:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute(
                    self.INSERT_QUERY,
                    event.user_id,
                    event.community_id,
                    event.query_text,
                    list(event.result_chunk_ids),
                    [float(score) for score in event.scores],
                    event.method,
                    int(round(event.latency_ms)),
                    datetime.fromtimestamp(event.timestamp / 1000, tz=timezone.utc),
                )
        except (asyncpg.PostgresError, OSError) as e:
            raise QueryLogError(f"rag_query_log insert failed: {e}") from e

    async def close(self) -> None:
        if self.pool is not None and self._owns_pool:
            await self.pool.close()
            self.pool = None


class RedisQueryEventSink(QueryEventSink):
    """Publishes events through the shared ``EventPublisher``."""

    name = "redis"

    def __init__(self, publisher: EventPublisher):
        self.publisher = publisher

    async def write(self, event: QueryEvent) -> None:
        await self.publisher.publish(event)

    async def close(self) -> None:
        await self.publisher.close()


class LogQueryEventSink(QueryEventSink):
    """Writes events to the structured log."""

    name = "log"

    async def write(self, event: QueryEvent) -> None:
        logger.info("RAG query logged", **event.to_dict())


class QueryLogger:
    """Best-effort, detached analytics recorder."""

    def __init__(
        self,
        sink: Optional[QueryEventSink],
        timeout_seconds: float = 5.0,
        metrics_collector: Optional[Any] = None,
    ):
        self.sink = sink
        self.timeout_seconds = timeout_seconds
        self.metrics_collector = metrics_collector
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def log(self, event: QueryEvent) -> Optional[asyncio.Task]:
        """Schedule the write and return without waiting for it.

        Must be called from a running event loop. Returns the scheduled task,
        or ``None`` when logging is disabled.
        """
        if self.sink is None:
            return None

        task = asyncio.create_task(self._write(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _write(self, event: QueryEvent) -> None:
        sink_name = self.sink.name
        try:
            await asyncio.wait_for(self.sink.write(event), self.timeout_seconds)
            status = "ok"
        except asyncio.TimeoutError:
            logger.warning("Query log write timed out", sink=sink_name, timeout_seconds=self.timeout_seconds)
            status = "timeout"
        except Exception as e:
            logger.warning("Query log write failed", sink=sink_name, error=str(e))
            status = "error"

        if self.metrics_collector is not None:
            self.metrics_collector.record_query_log(sink_name, status)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for pending writes, up to ``timeout`` seconds."""
        if not self._pending:
            return
        pending = set(self._pending)
        logger.info("Draining query log writes", pending=len(pending))
        _, not_done = await asyncio.wait(pending, timeout=timeout)
        if not_done:
            logger.warning("Query log writes still pending after drain", pending=len(not_done))

    async def close(self) -> None:
        await self.drain(timeout=self.timeout_seconds)
        if self.sink is not None:
            try:
                await self.sink.close()
            except Exception as e:
                logger.warning("Failed to close query log sink", sink=self.sink.name, error=str(e))
