"""Configuration management for the retrieval service.

This module centralizes environment-driven configuration for the knowledge
base retrieval service. It builds on ``pydantic_settings.BaseSettings`` so
configuration can be provided via environment variables, ``.env`` files, or
defaults.

Highlights
- Strongly‑typed settings with sensible defaults
- One place to discover commonly used environment variables
- Small service‑specific subclasses to keep concerns clear

Usage
- Inject the config in your service entrypoint: ``config = RetrievalConfig()``
- Or select dynamically: ``config = get_config("retrieval")``
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class shared by every process.

    Parameters are read from the process environment using the upper‑cased
    field name (``rag_log_level`` -> ``RAG_LOG_LEVEL``). Defaults keep local
    development convenient while still being explicit.

    Notes
    - Add new shared settings here so downstream services inherit them.
    - Prefer a typed field over reading ``os.environ`` directly.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    rag_env: str = Field(default="local")

    # Database
    rag_database_dsn: Optional[str] = Field(default=None)
    rag_database_pool_size: int = Field(default=10)
    rag_database_command_timeout: int = Field(default=30)
    rag_redis_url: Optional[str] = Field(default=None)

    # Observability
    rag_tracing_enabled: bool = Field(default=False)
    rag_otel_exporter: str = Field(default="http://localhost:4318/v1/traces")
    rag_otel_service_name: str = Field(default="retrieval-service")

    # Logging
    rag_log_level: str = Field(default="INFO")
    rag_log_format: str = Field(default="json")

    # Security
    rag_jwt_secret_key: str = Field(default="dev-secret-key-change-in-production")
    rag_jwt_algorithm: str = Field(default="HS256")
    rag_jwt_audience: Optional[str] = Field(default=None)


class RetrievalConfig(BaseConfig):
    """Configuration for the retrieval service.

    Extends ``BaseConfig`` with index backends, embedding and reranking
    collaborators, fusion weights, budgets and timeouts.
    """

    rag_service_port: int = Field(default=9010)

    # Indexes
    rag_vector_dimension: int = Field(default=768)
    rag_lexical_backend: str = Field(default="postgres")
    rag_opensearch_hosts: str = Field(default="http://localhost:9200")
    rag_opensearch_index: str = Field(default="document_chunks")
    rag_opensearch_username: Optional[str] = Field(default=None)
    rag_opensearch_password: Optional[str] = Field(default=None)
    rag_opensearch_verify_certs: bool = Field(default=False)

    # Embedding collaborator
    rag_embedding_provider: str = Field(default="service")
    rag_embedding_service_url: Optional[str] = Field(default=None)
    rag_embedding_model: str = Field(default="text-embedding-004")
    rag_embedding_api_key: Optional[str] = Field(default=None)
    rag_embedding_timeout_seconds: float = Field(default=10.0)
    rag_embedding_cache_ttl: int = Field(default=3600)
    rag_embedding_retry_attempts: int = Field(default=3)
    rag_embedding_retry_base_delay: float = Field(default=0.5)
    rag_embedding_retry_max_delay: float = Field(default=4.0)
    rag_circuit_breaker_failure_threshold: int = Field(default=5)
    rag_circuit_breaker_recovery_timeout: float = Field(default=30.0)

    # Fusion
    rag_hybrid_search_enabled: bool = Field(default=True)
    rag_fusion_algorithm: str = Field(default="weighted")
    rag_semantic_weight: float = Field(default=0.7, ge=0.0)
    rag_lexical_weight: float = Field(default=0.3, ge=0.0)
    rag_rrf_k: float = Field(default=60.0, gt=0.0)
    rag_similarity_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    rag_candidate_multiplier: int = Field(default=2, ge=1)

    # Reranking
    rag_rerank_enabled: bool = Field(default=True)
    rag_rerank_provider: str = Field(default="cohere")
    rag_rerank_model: str = Field(default="rerank-english-v3.0")
    rag_cohere_api_key: Optional[str] = Field(default=None)
    rag_cohere_base_url: str = Field(default="https://api.cohere.com")
    rag_rerank_timeout_seconds: float = Field(default=5.0)

    # Context
    rag_context_max_chars: int = Field(default=6000, gt=0)

    # Request handling
    rag_default_top_k: int = Field(default=5, gt=0)
    rag_max_top_k: int = Field(default=50, gt=0)
    rag_adapter_timeout_seconds: float = Field(default=5.0, gt=0.0)
    rag_request_timeout_seconds: float = Field(default=8.0, gt=0.0)

    # Query analytics
    rag_query_log_sink: str = Field(default="postgres")
    rag_query_log_timeout_seconds: float = Field(default=5.0, gt=0.0)

    def opensearch_host_list(self) -> List[str]:
        """Split the comma separated OpenSearch host setting."""
        return [host.strip() for host in self.rag_opensearch_hosts.split(",") if host.strip()]


def get_config(service_name: str) -> BaseConfig:
    """Get configuration for a specific service.

    Parameters
    - service_name: Literal name, currently only ``retrieval``.

    Returns
    - A concrete ``BaseConfig`` subclass pre‑wired to read the right env vars.
    """
    config_map = {
        "retrieval": RetrievalConfig,
    }

    # Default to ``BaseConfig`` to avoid surprising crashes for unknown names.
    config_class = config_map.get(service_name, BaseConfig)
    return config_class()
