"""Tests for search manager wiring and lifecycle."""

import pytest

from app.analytics.query_logger import LogQueryEventSink, RedisQueryEventSink
from app.hybrid.search_manager import SearchManager
from libs.common.config import RetrievalConfig
from libs.common.errors import ConfigurationError
from tests.fakes import build_pipeline


@pytest.mark.asyncio
async def test_missing_dsn_is_recorded_not_raised():
    """Startup survives missing settings; retrieval then reports them."""
    manager = SearchManager(RetrievalConfig(rag_database_dsn=None))

    await manager.initialize()

    assert manager.pipeline is None
    assert "RAG_DATABASE_DSN" in manager.configuration_error
    assert await manager.health_check() == {}
    with pytest.raises(ConfigurationError):
        await manager.retrieve("query", top_k=3, user_id="user-1")

    await manager.cleanup()


@pytest.mark.asyncio
async def test_injected_pipeline_is_used():
    pipeline = build_pipeline([("A", 0.1)])
    manager = SearchManager(RetrievalConfig(), pipeline=pipeline)

    await manager.initialize()
    response = await manager.retrieve("query", top_k=1, user_id="user-1")

    assert [r.chunk_id for r in response.results] == ["A"]
    assert await manager.health_check() == {"vector_index": True, "fulltext_index": True}


@pytest.mark.asyncio
async def test_cleanup_closes_indexes(recording_sink):
    pipeline = build_pipeline([("A", 0.1)], sink=recording_sink)
    manager = SearchManager(RetrievalConfig(), pipeline=pipeline)

    await manager.retrieve("query", top_k=1, user_id="user-1")
    await manager.cleanup()

    assert len(recording_sink.events) == 1
    assert recording_sink.closed is True
    assert pipeline.semantic_adapter.vector_index.closed is True
    assert pipeline.lexical_adapter.fulltext_index.closed is True


@pytest.mark.parametrize("settings, expected", [
    ({"rag_query_log_sink": "log"}, LogQueryEventSink),
    ({"rag_query_log_sink": "postgres", "rag_database_dsn": None}, LogQueryEventSink),
    ({"rag_query_log_sink": "redis", "rag_redis_url": None}, LogQueryEventSink),
    ({"rag_query_log_sink": "redis", "rag_redis_url": "redis://localhost:6379"}, RedisQueryEventSink),
])
def test_query_log_sink_selection(settings, expected):
    """Unconfigured backends degrade to the log sink."""
    manager = SearchManager(RetrievalConfig(**settings))

    assert isinstance(manager._create_query_log_sink(), expected)


def test_query_log_sink_disabled():
    assert SearchManager(RetrievalConfig(rag_query_log_sink="none"))._create_query_log_sink() is None


def test_unknown_query_log_sink():
    with pytest.raises(ConfigurationError):
        SearchManager(RetrievalConfig(rag_query_log_sink="kafka"))._create_query_log_sink()


@pytest.mark.asyncio
async def test_http_timeout_fits_adapter_and_rerank_timeouts():
    """Collaborator HTTP calls give up before the adapter or rerank timeout cancels them."""
    config = RetrievalConfig(
        rag_database_dsn=None,
        rag_embedding_timeout_seconds=10.0,
        rag_adapter_timeout_seconds=3.0,
        rag_rerank_timeout_seconds=4.0,
    )
    manager = SearchManager(config)

    await manager.initialize()

    assert manager._http_timeout() == 3.0
    assert manager.http_client.timeout.read == 3.0
    await manager.cleanup()
