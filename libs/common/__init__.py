"""Common utilities shared across services.

Includes:
- ``config``: Pydantic-based service configuration from environment variables.
- ``logging``: structured logging setup with structlog.
- ``errors``: the retrieval error taxonomy.
- ``metrics``: Prometheus metrics helpers and decorators.
- ``tracing``: OpenTelemetry setup and span helpers.
- ``events``: event models and the Redis event publisher.
- ``auth``: JWT verification for API callers.
- ``circuit_breaker`` / ``retry``: fault handling for external calls.

Import pattern:
- from libs.common.config import RetrievalConfig
- from libs.common.logging import configure_logging
"""
