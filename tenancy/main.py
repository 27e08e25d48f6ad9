"""
FastAPI application factory.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tenancy.config import settings
from tenancy.core.cache import cache_manager
from tenancy.core.database import db_manager
from tenancy.core.error_tracking import error_tracker
from tenancy.core.exceptions import (
    ErrorKind,
    TenancyError,
    request_validation_error_handler,
    tenancy_error_handler,
)
from tenancy.core.logging_config import get_logger, setup_logging
from tenancy.core.middleware import RequestContextMiddleware
from tenancy.core.performance import track_http_metrics
from tenancy.features.identity.registry import get_identity_gateway
from tenancy.features.subscriptions.plans import PlanCatalog

# Setup logging first
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan events."""
    logger.info(
        "application_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
        identity_provider=settings.identity_provider,
    )

    # Initialize services
    db_manager.init()
    await cache_manager.init()
    gateway = get_identity_gateway()

    async with db_manager.session() as db:
        seeded = await PlanCatalog.seed_plans(db)
    if seeded:
        logger.info("subscription_plans_seeded", count=seeded)

    # Update Prometheus app info
    from tenancy.core.metrics import app_info
    app_info.info({
        "version": settings.app_version,
        "environment": settings.environment,
        "identity_provider": gateway.name,
    })

    logger.info("application_ready")

    yield

    # Cleanup
    logger.info("application_shutting_down")
    await gateway.aclose()
    await db_manager.close()
    await cache_manager.close()
    logger.info("application_shutdown_complete")


def create_application() -> FastAPI:
    """Application factory."""

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Multi-tenant organization provisioning and subscription lifecycle",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # Middleware (order matters - last added = outermost)

    # Performance monitoring
    @app.middleware("http")
    async def performance_middleware(request: Request, call_next):
        return await track_http_metrics(request, call_next)

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    app.add_exception_handler(TenancyError, tenancy_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Global exception handler with error tracking."""

        request_id = getattr(request.state, "request_id", "unknown")

        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True,
        )

        error_tracker.capture_exception(
            exc,
            context={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
            }
        )

        # Return clean error
        if settings.is_production:
            message = "An internal error occurred. Please contact support."
        else:
            message = str(exc) or exc.__class__.__name__

        body = TenancyError(ErrorKind.INTERNAL, message).to_dict()
        body["request_id"] = request_id
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)

    # Register routers
    from tenancy.api.health_router import router as health_router
    from tenancy.api.metrics_router import router as metrics_router
    from tenancy.api.v1.router import v1_router

    # Health endpoints (no prefix)
    app.include_router(health_router)

    # Metrics endpoint
    if settings.metrics_enabled:
        app.include_router(metrics_router)

    # API routers
    app.include_router(v1_router, prefix="/api")

    # Root endpoint
    @app.get("/", tags=["Root"])
    async def root() -> dict:
        return {
            "message": f"Welcome to {settings.app_name}",
            "version": settings.app_version,
            "environment": settings.environment,
            "docs": "/docs" if settings.is_development else "Disabled in production",
            "health": "/health",
            "metrics": "/metrics" if settings.metrics_enabled else "Disabled",
        }

    logger.info("application_configured")
    return app


app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tenancy.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload and settings.is_development,
        log_level=settings.log_level.lower(),
        access_log=False,  # We handle logging ourselves
    )
