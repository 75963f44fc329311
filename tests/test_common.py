"""Tests for common utilities."""

import asyncio
import json
from datetime import timedelta

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from libs.common.auth import AuthManager, get_current_user_id
from libs.common.circuit_breaker import CircuitBreaker, CircuitBreakerError, CircuitBreakerState
from libs.common.config import BaseConfig, RetrievalConfig, get_config
from libs.common.events import EventPublisher, QueryEvent
from libs.common.logging import bind_request_context, clear_request_context, configure_logging
from libs.common.metrics import MetricsCollector, measure_time
from libs.common.retry import call_with_retry
from libs.common.tracing import TracingContext


def test_config_loading():
    """Test configuration loading."""
    config = BaseConfig()
    assert config.rag_env == "local"
    assert config.rag_log_level == "INFO"
    assert config.rag_database_dsn is None


def test_retrieval_config_defaults():
    """Test retrieval configuration defaults."""
    config = RetrievalConfig()
    assert config.rag_semantic_weight == 0.7
    assert config.rag_lexical_weight == 0.3
    assert config.rag_rrf_k == 60.0
    assert config.rag_similarity_threshold == 0.5
    assert config.rag_context_max_chars == 6000
    assert config.rag_default_top_k == 5
    assert config.rag_fusion_algorithm == "weighted"
    assert config.rag_hybrid_search_enabled is True


def test_retrieval_config_from_environment(monkeypatch):
    """Settings are read from RAG_* environment variables."""
    monkeypatch.setenv("RAG_FUSION_ALGORITHM", "rrf")
    monkeypatch.setenv("RAG_OPENSEARCH_HOSTS", "http://os-1:9200, http://os-2:9200,")

    config = get_config("retrieval")

    assert isinstance(config, RetrievalConfig)
    assert config.rag_fusion_algorithm == "rrf"
    assert config.opensearch_host_list() == ["http://os-1:9200", "http://os-2:9200"]


def test_unknown_service_config_falls_back_to_base():
    assert type(get_config("unknown")) is BaseConfig


def test_logging_configuration():
    """Test logging configuration."""
    # This should not raise an exception
    configure_logging("test-service", "INFO", "json")
    bind_request_context(request_id="abc")
    clear_request_context("request_id")


def test_metrics_collector():
    """Test metrics collector."""
    collector = MetricsCollector("test-service")
    assert collector.service_name == "test-service"

    # Test metrics recording
    collector.record_http_request("GET", "/test", 200, 0.1)
    collector.record_retrieval("success", 0.05, reranked=True)
    collector.record_adapter("lexical", "timeout", 0.2)
    collector.record_rerank("fallback")
    collector.record_query_log("postgres", "ok")

    # Test metrics retrieval
    metrics = collector.get_metrics()
    assert isinstance(metrics, str)
    assert "http_requests_total" in metrics
    assert 'rag_retrieval_requests_total{outcome="success"} 1.0' in metrics
    assert 'rag_rerank_total{outcome="fallback"} 1.0' in metrics


@pytest.mark.asyncio
async def test_measure_time_passes_result_and_errors():
    @measure_time("unit.op")
    async def ok():
        return 42

    @measure_time("unit.op")
    async def broken():
        raise RuntimeError("nope")

    assert await ok() == 42
    with pytest.raises(RuntimeError):
        await broken()


def test_query_event_serialization():
    """Query events carry their type in the payload."""
    event = QueryEvent(
        user_id="user-1",
        query_text="evacuation route",
        result_chunk_ids=["a", "b"],
        scores=[0.9, 0.5],
        method="hybrid",
        latency_ms=12.5,
        timestamp=1234567890,
    )

    payload = json.loads(event.to_json())
    assert payload["event_type"] == "rag.query.logged.v1"
    assert payload["result_chunk_ids"] == ["a", "b"]
    assert payload["community_id"] is None
    assert payload["timestamp"] == 1234567890


def test_event_publisher():
    """Test event publisher."""
    publisher = EventPublisher("redis://localhost:6379")
    assert publisher.channel_prefix == "rag_events"

    event = QueryEvent("user-1", "q", [], [], "hybrid", 1.0)
    assert publisher.channel_for(event) == "rag_events:rag.query.logged.v1"


@pytest.mark.asyncio
async def test_circuit_breaker_opens_after_failures():
    """Consecutive failures open the breaker and later calls are rejected."""
    breaker = CircuitBreaker("test", failure_threshold=2, recovery_timeout=60.0, expected_exception=ValueError)

    async def failing():
        raise ValueError("down")

    for _ in range(2):
        with pytest.raises(ValueError):
            await breaker.call(failing)

    assert breaker.state == CircuitBreakerState.OPEN
    with pytest.raises(CircuitBreakerError):
        await breaker.call(failing)


@pytest.mark.asyncio
async def test_circuit_breaker_half_open_recovers():
    breaker = CircuitBreaker("test", failure_threshold=1, recovery_timeout=0.0)

    async def failing():
        raise RuntimeError("down")

    async def working():
        return "ok"

    with pytest.raises(RuntimeError):
        await breaker.call(failing)
    assert breaker.state == CircuitBreakerState.OPEN

    assert await breaker.call(working) == "ok"
    assert breaker.state == CircuitBreakerState.CLOSED
    assert breaker.get_stats()["failure_count"] == 0


@pytest.mark.asyncio
async def test_circuit_breaker_counts_timed_out_calls():
    """A call cancelled by the caller's timeout is a failure."""
    breaker = CircuitBreaker("test", failure_threshold=2, recovery_timeout=60.0, expected_exception=ValueError)

    async def hanging():
        await asyncio.sleep(10)

    for _ in range(2):
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(breaker.call(hanging), 0.05)

    assert breaker.state == CircuitBreakerState.OPEN
    with pytest.raises(CircuitBreakerError):
        await breaker.call(hanging)


@pytest.mark.asyncio
async def test_circuit_breaker_half_open_admits_one_trial_call():
    breaker = CircuitBreaker("test", failure_threshold=1, recovery_timeout=0.0, expected_exception=ValueError)
    release = asyncio.Event()

    async def failing():
        raise ValueError("down")

    async def slow_recovery():
        await release.wait()
        return "ok"

    with pytest.raises(ValueError):
        await breaker.call(failing)

    trial = asyncio.create_task(breaker.call(slow_recovery))
    await asyncio.sleep(0)
    assert breaker.state == CircuitBreakerState.HALF_OPEN

    with pytest.raises(CircuitBreakerError):
        await breaker.call(slow_recovery)

    release.set()
    assert await trial == "ok"
    assert breaker.state == CircuitBreakerState.CLOSED
    assert await breaker.call(slow_recovery) == "ok"


@pytest.mark.asyncio
async def test_call_with_retry_retries_then_succeeds():
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("reset")
        return "done"

    result = await call_with_retry(flaky, "flaky", max_attempts=3, base_delay=0.0)

    assert result == "done"
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_call_with_retry_gives_up():
    async def always_failing():
        raise ConnectionError("reset")

    with pytest.raises(ConnectionError):
        await call_with_retry(always_failing, "failing", max_attempts=2, base_delay=0.0)


@pytest.mark.asyncio
async def test_call_with_retry_does_not_retry_open_breaker():
    attempts = []

    async def rejected():
        attempts.append(1)
        raise CircuitBreakerError("open")

    with pytest.raises(CircuitBreakerError):
        await call_with_retry(rejected, "rejected", max_attempts=3, base_delay=0.0)
    assert len(attempts) == 1


def test_tracing_context_without_configuration():
    """Spans are no-ops when tracing was never configured."""
    with TracingContext("unit.span", answer=42) as span:
        assert span is not None

    with pytest.raises(KeyError):
        with TracingContext("unit.failing"):
            raise KeyError("missing")


class TestAuth:
    """Test bearer token verification."""

    def setup_method(self):
        self.auth = AuthManager("test-secret", audience="authenticated")

    def _credentials(self, token):
        return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)

    def test_valid_token_yields_subject(self):
        token = self.auth.create_access_token({"sub": "user-1"})
        assert get_current_user_id(self._credentials(token), self.auth) == "user-1"

    def test_missing_credentials(self):
        with pytest.raises(HTTPException) as exc_info:
            get_current_user_id(None, self.auth)
        assert exc_info.value.status_code == 401

    def test_expired_token(self):
        token = self.auth.create_access_token({"sub": "user-1"}, expires_delta=timedelta(seconds=-5))
        with pytest.raises(HTTPException) as exc_info:
            self.auth.verify_token(token)
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Token has expired"

    def test_wrong_secret(self):
        token = AuthManager("other-secret", audience="authenticated").create_access_token({"sub": "user-1"})
        with pytest.raises(HTTPException) as exc_info:
            self.auth.verify_token(token)
        assert exc_info.value.status_code == 401

    def test_wrong_audience(self):
        token = AuthManager("test-secret", audience="anon").create_access_token({"sub": "user-1"})
        with pytest.raises(HTTPException):
            self.auth.verify_token(token)

    def test_token_without_subject(self):
        token = self.auth.create_access_token({"role": "authenticated"})
        with pytest.raises(HTTPException) as exc_info:
            get_current_user_id(self._credentials(token), self.auth)
        assert exc_info.value.detail == "Token has no subject"
