"""Tests for query analytics logging."""

import pytest

from app.analytics.query_logger import (
    LogQueryEventSink,
    PostgresQueryLogSink,
    QueryLogger,
    RedisQueryEventSink,
)
from libs.common.errors import QueryLogError
from libs.common.events import QueryEvent
from libs.common.metrics import MetricsCollector
from tests.fakes import RecordingSink


def _event(**overrides):
    fields = dict(
        user_id="00000000-0000-0000-0000-000000000001",
        query_text="evacuation route",
        result_chunk_ids=["00000000-0000-0000-0000-0000000000aa"],
        scores=[0.75],
        method="hybrid",
        latency_ms=41.6,
        timestamp=1700000000000,
    )
    fields.update(overrides)
    return QueryEvent(**fields)


class FakeConnection:
    def __init__(self):
        self.executed = []

    async def execute(self, query, *args):
        self.executed.append((query, args))


class FakeAcquire:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, *exc):
        return False


class FakePool:
    def __init__(self):
        self.conn = FakeConnection()
        self.closed = False

    def acquire(self):
        return FakeAcquire(self.conn)

    async def close(self):
        self.closed = True


class FakePublisher:
    def __init__(self):
        self.published = []
        self.closed = False

    async def publish(self, event):
        self.published.append(event)

    async def close(self):
        self.closed = True


@pytest.mark.asyncio
async def test_log_returns_before_write(recording_sink):
    """``log`` schedules the write; ``drain`` waits for it."""
    query_logger = QueryLogger(recording_sink)

    task = query_logger.log(_event())

    assert task is not None
    assert recording_sink.events == []
    await query_logger.drain()
    assert len(recording_sink.events) == 1
    assert query_logger.pending_count == 0


@pytest.mark.asyncio
async def test_disabled_logger_schedules_nothing():
    assert QueryLogger(None).log(_event()) is None


@pytest.mark.asyncio
async def test_sink_failure_is_absorbed():
    metrics = MetricsCollector("test")
    query_logger = QueryLogger(RecordingSink(error=RuntimeError("db down")), metrics_collector=metrics)

    task = query_logger.log(_event())
    await task

    assert task.exception() is None
    assert 'rag_query_log_writes_total{sink="recording",status="error"} 1.0' in metrics.get_metrics()


@pytest.mark.asyncio
async def test_slow_sink_times_out():
    metrics = MetricsCollector("test")
    sink = RecordingSink(delay=1.0)
    query_logger = QueryLogger(sink, timeout_seconds=0.05, metrics_collector=metrics)

    await query_logger.log(_event())

    assert sink.events == []
    assert 'status="timeout"' in metrics.get_metrics()


@pytest.mark.asyncio
async def test_close_drains_and_closes_sink(recording_sink):
    query_logger = QueryLogger(recording_sink)
    query_logger.log(_event())

    await query_logger.close()

    assert len(recording_sink.events) == 1
    assert recording_sink.closed is True


@pytest.mark.asyncio
async def test_postgres_sink_inserts_row():
    """One ``rag_query_log`` row per event, latency rounded to whole ms."""
    pool = FakePool()
    sink = PostgresQueryLogSink(pool=pool)

    await sink.write(_event(community_id="00000000-0000-0000-0000-000000000002"))

    query, args = pool.conn.executed[0]
    assert "INSERT INTO rag_query_log" in query
    assert args[0] == "00000000-0000-0000-0000-000000000001"
    assert args[1] == "00000000-0000-0000-0000-000000000002"
    assert args[2] == "evacuation route"
    assert args[3] == ["00000000-0000-0000-0000-0000000000aa"]
    assert args[4] == [0.75]
    assert args[5] == "hybrid"
    assert args[6] == 42
    assert args[7].year == 2023

    await sink.close()
    assert pool.closed is False


def test_postgres_sink_needs_pool_or_dsn():
    with pytest.raises(ValueError):
        PostgresQueryLogSink()


@pytest.mark.asyncio
async def test_redis_sink_publishes():
    publisher = FakePublisher()
    sink = RedisQueryEventSink(publisher)

    event = _event()
    await sink.write(event)
    await sink.close()

    assert publisher.published == [event]
    assert publisher.closed is True


@pytest.mark.asyncio
async def test_log_sink_never_raises():
    await LogQueryEventSink().write(_event())


class BrokenConnection(FakeConnection):
    async def execute(self, query, *args):
        raise ConnectionResetError("server closed the connection")


@pytest.mark.asyncio
async def test_postgres_sink_wraps_connection_errors():
    pool = FakePool()
    pool.conn = BrokenConnection()

    with pytest.raises(QueryLogError):
        await PostgresQueryLogSink(pool=pool).write(_event())
