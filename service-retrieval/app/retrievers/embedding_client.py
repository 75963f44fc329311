"""Query embedding collaborators.

Two providers are supported:

- ``service``: the platform embedding service (``POST /api/v1/embed``)
- ``gemini``: Google Generative Language ``embedContent``

Both are guarded by a circuit breaker, retried with exponential backoff and
validated against the index dimensionality. A missing URL or API key raises
``ConfigurationError`` at call time so the API can answer 503 instead of the
service refusing to start.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
import numpy as np
import structlog

from libs.common.circuit_breaker import CircuitBreaker, CircuitBreakerError
from libs.common.errors import ConfigurationError, EmbeddingServiceError
from libs.common.metrics import measure_time
from libs.common.retry import call_with_retry

from .cache_manager import EmbeddingCache

logger = structlog.get_logger("retrieval_service.embedding")

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"


class EmbeddingClient(ABC):
    """Turns query text into a vector, with caching and fault handling."""

    provider = "base"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        model: str,
        expected_dimension: Optional[int] = None,
        cache: Optional[EmbeddingCache] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.5,
        retry_max_delay: float = 4.0,
    ):
        self.http_client = http_client
        self.model = model
        self.expected_dimension = expected_dimension
        self.cache = cache
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            name=f"embedding_{self.provider}",
            expected_exception=(httpx.HTTPError, EmbeddingServiceError),
        )
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay

    async def embed(self, text: str) -> np.ndarray:
        """Embed one query.

        Raises ``ConfigurationError`` when the provider is not configured and
        ``EmbeddingServiceError`` when the call fails.
        """
        self._check_configured()

        if self.cache is not None:
            cached = await self.cache.get_cached_query_embedding(text, self.model)
            if cached is not None:
                return self._validate(cached)

        try:
            values = await call_with_retry(
                lambda: self.circuit_breaker.call(lambda: self._request_embedding(text)),
                operation_name=f"embedding_{self.provider}_request",
                max_attempts=self.retry_attempts,
                base_delay=self.retry_base_delay,
                max_delay=self.retry_max_delay,
            )
        except (httpx.HTTPError, CircuitBreakerError) as e:
            raise EmbeddingServiceError(f"Embedding request failed: {e}") from e
        vector = self._validate(values)

        if self.cache is not None:
            await self.cache.cache_query_embedding(text, vector.tolist(), self.model)
        return vector

    def _validate(self, values: Any) -> np.ndarray:
        vector = np.asarray(values, dtype=np.float32)
        if vector.ndim != 1 or vector.size == 0:
            raise EmbeddingServiceError("Embedding provider returned an empty or malformed vector")
        if self.expected_dimension is not None and vector.shape[0] != self.expected_dimension:
            raise EmbeddingServiceError(
                f"Invalid embedding dimensions: expected {self.expected_dimension}, got {vector.shape[0]}"
            )
        return vector

    @abstractmethod
    def _check_configured(self) -> None:
        pass

    @abstractmethod
    async def _request_embedding(self, text: str) -> List[float]:
        pass


class ServiceEmbeddingClient(EmbeddingClient):
    """Client for the platform embedding service."""

    provider = "service"

    def __init__(self, base_url: Optional[str], http_client: httpx.AsyncClient, model: str = "default", **kwargs: Any):
        self.base_url = base_url.rstrip("/") if base_url else None
        super().__init__(http_client, model, **kwargs)

    def _check_configured(self) -> None:
        if not self.base_url:
            raise ConfigurationError("RAG_EMBEDDING_SERVICE_URL is not configured")

    @measure_time("embedding.request", provider="service")
    async def _request_embedding(self, text: str) -> List[float]:
        """POST to embedding service to obtain query vector."""
        response = await self.http_client.post(
            f"{self.base_url}/api/v1/embed",
            json={
                "items": [{"text": text}],
                "model": self.model
            }
        )

        if response.status_code == 200:
            data = response.json()
            vectors = data.get("vectors", [])
            if vectors:
                return vectors[0]
            raise EmbeddingServiceError("Embedding service returned no vectors")

        raise EmbeddingServiceError(f"Embedding service returned status {response.status_code}")


class GeminiEmbeddingClient(EmbeddingClient):
    """Client for Gemini ``text-embedding-004`` (768 dimensions)."""

    provider = "gemini"

    def __init__(
        self,
        api_key: Optional[str],
        http_client: httpx.AsyncClient,
        model: str = "text-embedding-004",
        base_url: str = GEMINI_BASE_URL,
        **kwargs: Any
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        super().__init__(http_client, model, **kwargs)

    def _check_configured(self) -> None:
        if not self.api_key:
            raise ConfigurationError("RAG_EMBEDDING_API_KEY is required for the gemini embedding provider")

    def _payload(self, text: str) -> Dict[str, Any]:
        return {
            "model": f"models/{self.model}",
            "content": {"parts": [{"text": text}]},
            "taskType": "RETRIEVAL_QUERY",
        }

    @measure_time("embedding.request", provider="gemini")
    async def _request_embedding(self, text: str) -> List[float]:
        response = await self.http_client.post(
            f"{self.base_url}/v1beta/models/{self.model}:embedContent",
            headers={"x-goog-api-key": self.api_key},
            json=self._payload(text),
        )

        if response.status_code != 200:
            raise EmbeddingServiceError(f"Gemini embedContent returned status {response.status_code}")

        values = response.json().get("embedding", {}).get("values")
        if not values:
            raise EmbeddingServiceError("Gemini embedContent returned no values")
        return values


def create_embedding_client(
    config: Any,
    http_client: httpx.AsyncClient,
    cache: Optional[EmbeddingCache] = None,
) -> EmbeddingClient:
    """Create the embedding client selected by ``RAG_EMBEDDING_PROVIDER``."""
    common = dict(
        expected_dimension=config.rag_vector_dimension,
        cache=cache,
        circuit_breaker=CircuitBreaker(
            name=f"embedding_{config.rag_embedding_provider}",
            failure_threshold=config.rag_circuit_breaker_failure_threshold,
            recovery_timeout=config.rag_circuit_breaker_recovery_timeout,
            expected_exception=(httpx.HTTPError, EmbeddingServiceError),
        ),
        retry_attempts=config.rag_embedding_retry_attempts,
        retry_base_delay=config.rag_embedding_retry_base_delay,
        retry_max_delay=config.rag_embedding_retry_max_delay,
    )

    provider = config.rag_embedding_provider.lower()
    if provider == "service":
        return ServiceEmbeddingClient(
            config.rag_embedding_service_url,
            http_client,
            model=config.rag_embedding_model,
            **common
        )
    if provider == "gemini":
        return GeminiEmbeddingClient(
            config.rag_embedding_api_key,
            http_client,
            model=config.rag_embedding_model,
            **common
        )
    raise ConfigurationError(f"Unsupported embedding provider: {config.rag_embedding_provider}")
