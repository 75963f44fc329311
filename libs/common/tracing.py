"""Distributed tracing configuration for the retrieval service.

Wraps OpenTelemetry setup for an OTLP/HTTP collector with optional
auto‑instrumentation for FastAPI and HTTPX. Also provides a scoped context
manager for manual spans around pipeline stages.

When tracing is never configured the OpenTelemetry API hands out no-op
tracers, so ``TracingContext`` is always safe to use.
"""

import os
from typing import Any, Optional

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode

logger = structlog.get_logger("tracing")


def configure_tracing(
    service_name: str,
    otlp_endpoint: str = "http://localhost:4318/v1/traces",
    app: Any = None,
) -> Optional[trace.Tracer]:
    """Configure distributed tracing for a service.

    Parameters
    - service_name: Logical service identifier used in trace resources
    - otlp_endpoint: Collector endpoint for exporting spans
    - app: FastAPI application to instrument, if any

    Returns
    - A tracer instance for ad‑hoc span creation, or ``None`` on failure
    """
    try:
        tracer_provider = TracerProvider(
            resource=Resource.create({
                "service.name": service_name,
                "service.version": "0.1.0",
                "deployment.environment": os.getenv("RAG_ENV", "local")
            })
        )
        tracer_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint))
        )
        trace.set_tracer_provider(tracer_provider)

        try:
            if app is not None:
                from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

                FastAPIInstrumentor.instrument_app(app)
            HTTPXClientInstrumentor().instrument()
        except Exception as e:
            # Partial failure is acceptable; log but continue.
            logger.warning("Failed to enable some instrumentation", error=str(e))

        logger.info(
            "Distributed tracing configured",
            service_name=service_name,
            otlp_endpoint=otlp_endpoint
        )
        return trace.get_tracer(service_name)

    except Exception as e:
        logger.error("Failed to configure tracing", error=str(e))
        return None


class TracingContext:
    """Context manager for tracing operations.

    Starts a span on entry and ensures it ends, recording success or error.
    """

    def __init__(self, operation_name: str, tracer: Optional[trace.Tracer] = None, **attributes: Any):
        self.tracer = tracer or trace.get_tracer("retrieval_service")
        self.operation_name = operation_name
        self.attributes = attributes
        self.span: Optional[trace.Span] = None

    def __enter__(self) -> trace.Span:
        self.span = self.tracer.start_span(self.operation_name)
        for key, value in self.attributes.items():
            self.span.set_attribute(key, str(value))
        return self.span

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.span is None:
            return
        if exc_type is not None:
            self.span.set_status(Status(StatusCode.ERROR, f"{exc_type.__name__}: {exc_val}"))
        else:
            self.span.set_status(Status(StatusCode.OK))
        self.span.end()
