"""Retrieval service main application."""

import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from libs.common.auth import create_auth_manager_from_config
from libs.common.config import RetrievalConfig
from libs.common.logging import bind_request_context, clear_request_context, configure_logging
from libs.common.metrics import MetricsCollector, get_metrics_collector
from libs.common.tracing import configure_tracing

from .api.routes import router as api_router
from .hybrid.search_manager import SearchManager

logger = structlog.get_logger("retrieval_service")

SERVICE_NAME = "retrieval-service"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    config: RetrievalConfig = app.state.config
    configure_logging(SERVICE_NAME, config.rag_log_level, config.rag_log_format)

    logger.info("Starting retrieval service", env=config.rag_env)

    if app.state.search_manager is None:
        app.state.search_manager = SearchManager(
            config,
            metrics_collector=app.state.metrics_collector,
            tracer=app.state.tracer,
        )
    await app.state.search_manager.initialize()

    logger.info("Retrieval service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down retrieval service")
    await app.state.search_manager.cleanup()
    logger.info("Retrieval service shutdown complete")


def create_app(
    config: Optional[RetrievalConfig] = None,
    search_manager: Optional[SearchManager] = None,
    metrics_collector: Optional[MetricsCollector] = None,
) -> FastAPI:
    """Build the FastAPI application.

    ``search_manager`` and ``metrics_collector`` are injectable so tests can
    run the HTTP layer against in-memory collaborators.
    """
    config = config or RetrievalConfig()

    app = FastAPI(
        title="Retrieval Service",
        description="Hybrid semantic and lexical retrieval for knowledge base grounding",
        version="0.1.0",
        lifespan=lifespan
    )
    app.state.config = config
    app.state.search_manager = search_manager
    app.state.metrics_collector = metrics_collector or get_metrics_collector(SERVICE_NAME)
    app.state.auth_manager = create_auth_manager_from_config(config)

    # Middleware must be added before startup, so tracing is wired here
    app.state.tracer = None
    if config.rag_tracing_enabled:
        app.state.tracer = configure_tracing(config.rag_otel_service_name, config.rag_otel_exporter, app=app)
        if app.state.tracer:
            logger.info("OpenTelemetry tracing enabled", exporter=config.rag_otel_exporter)
        else:
            logger.warning("Tracing initialization failed")

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include API routes
    app.include_router(api_router, prefix="/api/v1")

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Malformed bodies are client errors: 400 rather than FastAPI's 422."""
        errors = [
            {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
            for error in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"error": "Invalid request", "detail": errors})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None)
        )

    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        """Add processing time header to responses."""
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        return response

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Collect metrics for HTTP requests."""
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        bind_request_context(request_id=request_id)

        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as e:
            logger.error("Unhandled error", path=request.url.path, error=str(e))
            status_code = 500
            response = JSONResponse(
                status_code=500,
                content={"error": "Internal server error"}
            )
        finally:
            clear_request_context("request_id")

        duration = time.time() - start_time
        app.state.metrics_collector.record_http_request(
            method=request.method,
            endpoint=request.url.path,
            status=status_code,
            duration=duration
        )
        response.headers["X-Request-ID"] = request_id
        return response

    @app.get("/health")
    async def health_check():
        """Health check endpoint.

        Healthy while at least one index answers.
        """
        manager = app.state.search_manager
        try:
            checks = await manager.health_check() if manager is not None else {}
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "service": SERVICE_NAME, "error": str(e)}
            )

        body = {"status": "healthy", "service": SERVICE_NAME, "indexes": checks}
        configuration_error = getattr(manager, "configuration_error", None)
        if configuration_error:
            body["configuration_error"] = configuration_error

        if any(checks.values()):
            return body

        body["status"] = "unhealthy"
        return JSONResponse(status_code=503, content=body)

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        metrics_data = app.state.metrics_collector.get_metrics()
        return Response(content=metrics_data, media_type="text/plain")

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": SERVICE_NAME,
            "version": "0.1.0",
            "status": "running",
            "endpoints": {
                "health": "/health",
                "metrics": "/metrics",
                "search": "/api/v1/rag-search"
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=RetrievalConfig().rag_service_port,
        reload=True,
        log_level="info"
    )
