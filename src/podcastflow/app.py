"""
FastAPI application for PodcastFlow Pro
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .auth_routes import router as auth_router
from .config import config
from .email_routes import router as email_router
from .exceptions import (
    TenantAccessDenied,
    general_exception_handler,
    http_exception_handler,
    tenant_access_denied_handler,
    validation_exception_handler,
)
from .logging_config import RequestIDMiddleware, setup_logging
from .notification_routes import router as notification_router
from .services.health_check import HealthStatus, check_all
from .services.metrics import get_metrics_collector
from .tenant_routes import router as tenant_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(env=config.ENV, log_level=config.LOG_LEVEL)
    logger.info(f"PodcastFlow Pro API starting (env={config.ENV}, version={config.BUILD_VERSION})")

    scheduler_started = False
    if config.SCHEDULER_ENABLED and not config.is_test:
        from .services.scheduled_jobs import start_scheduler
        try:
            start_scheduler()
            scheduler_started = True
        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}", exc_info=True)

    yield

    if scheduler_started:
        from .services.scheduled_jobs import stop_scheduler
        stop_scheduler()

    from .db import dispose_engine
    from .tenancy import close_schema_pools
    close_schema_pools()
    dispose_engine()
    logger.info("PodcastFlow Pro API stopped")


def create_app() -> FastAPI:
    app = FastAPI(title="PodcastFlow Pro API", version=__version__, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Added last so it wraps CORS and every handler sees the request ID
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(TenantAccessDenied, tenant_access_denied_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(auth_router)
    app.include_router(tenant_router)
    app.include_router(notification_router)
    app.include_router(email_router)

    @app.get("/")
    def root():
        return {"message": "PodcastFlow Pro API", "status": "running"}

    @app.get("/health")
    def health():
        """Aggregated health; 503 only when a component is down"""
        report = check_all()
        status_code = 503 if report["status"] == HealthStatus.DOWN.value else 200
        return JSONResponse(content=report, status_code=status_code)

    @app.get("/metrics", response_class=PlainTextResponse)
    def metrics():
        return get_metrics_collector().format_prometheus()

    return app


app = create_app()
