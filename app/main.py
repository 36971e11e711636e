"""
Main Application - FastAPI application setup.
"""

import time
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest

from app.api.routes import router
from app.config import settings
from app.db.session import close_engines, get_engine, get_session
from app.observability import get_logger, log_context, metrics, setup_logging, setup_tracing
from app.observability.tracing import instrument_fastapi, instrument_sqlalchemy
from app.services.users import UserService

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
        stripe_configured=settings.stripe_configured,
        webhook_secret_configured=bool(settings.stripe_webhook_secret),
    )

    instrument_sqlalchemy(get_engine())

    if settings.seed_users_on_startup:
        seed_path = Path(settings.users_seed_path) if settings.users_seed_path else None
        async with get_session() as session:
            await UserService(session).seed_from_file(seed_path)

    yield

    logger.info("application_shutting_down")
    await close_engines()
    logger.info("database_engines_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)

# Setup tracing
setup_tracing()
instrument_fastapi(app)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request logging middleware
@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log, time and count every request under a request id."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    endpoint = request.url.path
    method = request.method
    start_time = time.perf_counter()

    with log_context(request_id=request_id), metrics.track_http_request(endpoint, method):
        logger.info("request_started", method=method, path=endpoint)
        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.perf_counter() - start_time
            metrics.record_http_request(endpoint, method, 500, duration)
            metrics.record_error(type(e).__name__, "http_request")
            logger.error(
                "request_failed",
                method=method,
                path=endpoint,
                error=str(e),
                duration_seconds=duration,
                exc_info=True,
            )
            raise

        duration = time.perf_counter() - start_time
        metrics.record_http_request(endpoint, method, response.status_code, duration)
        logger.info(
            "request_completed",
            method=method,
            path=endpoint,
            status_code=response.status_code,
            duration_seconds=duration,
        )

    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


if settings.metrics_enabled:

    @app.get("/metrics")
    async def metrics_endpoint() -> Response:
        """
        Prometheus metrics endpoint.

        Returns metrics in Prometheus text format.
        """
        return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
