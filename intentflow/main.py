"""
intentflow - Event-sourced intent pipeline.

Features:
- Intents published as ``*.requested`` events
- Global validator: permission and AI policy gating
- Proposal review workflow for deferred intents
- Structured logging with correlation IDs
- Prometheus metrics
- Health checks (liveness and readiness)
"""
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from .config import Settings, get_settings
from .logging import setup_logging, get_logger
from .api.router import router as events_router
from .api.proposals_router import router as proposals_router
from .api.metrics_router import router as metrics_router
from .api.ws_router import router as ws_router
from .auth.api_key import APIKeyRegistry
from .errors import IntentflowError
from .middleware import (
    CorrelationMiddleware,
    ErrorHandlerMiddleware,
    MetricsMiddleware,
    ValidationMiddleware,
    intentflow_error_handler,
)
from .pipeline import Pipeline, build_pipeline
from .health import HealthChecker

SERVICE_NAME = "intentflow"
VERSION = "0.1.0"

logger = get_logger()


def create_app(settings: Settings | None = None, pipeline: Pipeline | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Service settings (defaults to the environment)
        pipeline: Pre-built pipeline (tests inject collaborators this way)
    """
    settings = settings or (pipeline.settings if pipeline else get_settings())
    pipeline = pipeline or build_pipeline(settings)
    health_checker = HealthChecker(pipeline.store, service_name=SERVICE_NAME, version=VERSION)

    app = FastAPI(
        title="intentflow",
        version=VERSION,
        description="Event-sourced intent pipeline with policy validation and proposal review",
    )
    app.state.pipeline = pipeline
    app.state.api_keys = APIKeyRegistry(settings.API_KEYS)

    # Added last runs first: correlation id, errors, metrics, then validation
    app.add_middleware(ValidationMiddleware, max_size=settings.MAX_EVENT_SIZE)
    app.add_middleware(MetricsMiddleware, metrics=pipeline.metrics)
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(CorrelationMiddleware)
    app.add_exception_handler(IntentflowError, intentflow_error_handler)

    app.include_router(events_router)
    app.include_router(proposals_router)
    app.include_router(metrics_router)
    app.include_router(ws_router)

    # Mount Prometheus metrics endpoint
    app.mount("/metrics", make_asgi_app(registry=pipeline.metrics.registry))

    @app.get("/health")
    async def health():
        """Liveness probe."""
        return health_checker.liveness()

    @app.get("/health/ready")
    async def health_ready():
        """
        Readiness probe.

        Returns:
            200: Service is ready to handle traffic
            503: Service is not ready
        """
        result = await health_checker.readiness()
        status_code = 200 if result["status"] == "ready" else 503
        return JSONResponse(result, status_code=status_code)

    @app.on_event("startup")
    async def startup_event():
        logger.info(
            "service_starting",
            version=VERSION,
            env=settings.ENV,
            store_adapter=type(pipeline.store.adapter).__name__,
            realtime=type(pipeline.notifier).__name__,
        )
        await pipeline.runtime.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("service_stopping")
        await pipeline.runtime.stop()
        pipeline.store.close()
        pipeline.metrics.app_up.labels(service=SERVICE_NAME, version=VERSION).set(0)

    return app


settings = get_settings()
setup_logging(json_output=settings.LOG_JSON, service_name=SERVICE_NAME)
app = create_app(settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "intentflow.main:app",
        host="0.0.0.0",
        port=settings.SERVICE_PORT,
        reload=settings.ENV == "dev",
    )
