"""
Main FastAPI application.

Payment orchestration API with:
- CORS configuration
- PaymentError to JSON error mapping
- Request ID tracking
- Structured logging
- Prometheus metrics
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import redis.asyncio as aioredis
import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from paybroker import __version__
from paybroker.config import Settings, get_settings
from paybroker.core.exceptions import PaymentError
from paybroker.core.locking import LocalReferenceLock, RedisReferenceLock, ReferenceLock
from paybroker.core.payment_service import PaymentService
from paybroker.database.connection import close_db, get_session_factory, init_db
from paybroker.database.repository import PaymentStore
from paybroker.integrations.event_bus import build_event_emitter
from paybroker.integrations.providers import build_adapters
from paybroker.monitoring.health import HealthCheck
from paybroker.monitoring.logging import setup_logging

from .routes import admin_router, monitoring_router, payment_router, webhook_router

logger = structlog.get_logger(__name__)


def build_reference_lock(
    settings: Settings, redis_client: Optional[aioredis.Redis]
) -> ReferenceLock:
    if redis_client is not None:
        return RedisReferenceLock(
            redis_client,
            timeout=settings.redis_lock_timeout,
            wait_seconds=settings.redis_lock_wait,
        )
    return LocalReferenceLock(settings.redis_lock_wait)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """
    Application lifespan manager.

    Builds the orchestrator and its collaborators on startup, closes them on
    shutdown.
    """
    settings: Settings = app.state.settings
    logger.info("application_startup", app_name=settings.app_name, env=settings.app_env)

    try:
        await init_db()
        logger.info("database_initialized")
    except Exception as e:
        logger.error("database_initialization_failed", error=str(e))
        raise

    redis_client = aioredis.from_url(settings.redis_url) if settings.redis_url else None
    session_factory = get_session_factory()
    service = PaymentService(
        store=PaymentStore(session_factory),
        adapters=build_adapters(settings),
        emitter=build_event_emitter(settings.rabbitmq_url, settings.rabbitmq_exchange),
        settings=settings,
        lock=build_reference_lock(settings, redis_client),
    )
    app.state.payment_service = service
    app.state.health_check = HealthCheck(session_factory, redis_client)

    yield

    logger.info("application_shutdown")
    await service.close()
    if redis_client is not None:
        await redis_client.aclose()
    await close_db()
    logger.info("database_connections_closed")


async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
    """
    Add request ID to all requests for tracing.

    Also adds timing information and structured logging context.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    start_time = time.time()

    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        http_method=request.method,
        path=request.url.path,
    )
    logger.info(
        "request_started",
        client_host=request.client.host if request.client else None,
    )

    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_seconds=time.time() - start_time,
        )
        return response

    except Exception as e:
        logger.error(
            "request_failed",
            error=str(e),
            duration_seconds=time.time() - start_time,
        )
        raise

    finally:
        structlog.contextvars.clear_contextvars()


async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
    log = logger.error if exc.http_status >= 500 else logger.warning
    log(
        "api_payment_error",
        error_code=exc.error_code,
        error=exc.message,
        path=request.url.path,
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled exceptions."""
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": "internal_error",
                "message": "An unexpected error occurred. Please try again later.",
            }
        },
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title="paybroker",
        description=(
            "Multi-provider payment orchestration: VNPay, MoMo, VietQR and payOS "
            "with signed notifications and at-least-once payment events."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(add_request_id_middleware)
    app.add_exception_handler(PaymentError, payment_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(payment_router)
    app.include_router(webhook_router)
    app.include_router(admin_router)
    app.include_router(monitoring_router)

    @app.get("/", tags=["root"])
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": __version__,
            "status": "operational",
            "environment": settings.app_env,
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics",
        }

    return app


def run() -> None:
    import uvicorn

    settings = get_settings()
    setup_logging(settings)
    uvicorn.run(
        "paybroker.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=settings.api_workers if not settings.debug else 1,
        log_level=settings.log_level.lower(),
    )


app = create_app()


if __name__ == "__main__":
    run()
