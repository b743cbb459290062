"""FastAPI application entry point for the HLS streamer.

Architecture:
    - FastAPI async web framework
    - One FFmpeg process reading FIFO inputs and writing HLS segments
    - Singleton StreamerServices holding the core services
    - Server-rendered dashboard, HLS output served from /hls

Startup:
    1. Load configuration (fatal on error)
    2. Create output directory, input channels, bind the parameter channel
    3. Queue initial content, start FFmpeg after start_delay

Shutdown:
    Ordered teardown in StreamerServices.shutdown()

Logging Strategy:
    INFO  - Application lifecycle, configuration summary
    DEBUG - Per-request details
    ERROR - Startup failures with stack traces
"""
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import metrics
from .api import health, logs, stream
from .api.errors import (
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from .config_io import load_config
from .logging_config import configure_logging
from .middleware.rate_limit import RateLimitMiddleware
from .services import container
from .services.orchestrator import StreamerServices
from .ui import views

logger = logging.getLogger(__name__)

configure_logging()

settings = load_config()

# ============================================================================
# Application Lifespan Management
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup, running, shutdown.

    Startup errors (directory creation, parameter channel bind) propagate
    and abort the server.

    Yields:
        Control to FastAPI during runtime
    """
    logger.info("=" * 80)
    logger.info("HLS streamer starting...")
    logger.info("=" * 80)

    services = StreamerServices(settings)
    try:
        await services.initialize_services()
    except Exception as e:
        logger.error(f"Startup failed: {e}", exc_info=True)
        await services.shutdown()
        raise

    container.services = services
    await services.start_stream()

    logger.info(f"Stream URL: {services.retention.get_stream_url()}")
    logger.info("API documentation: /docs and /redoc")
    logger.info("=" * 80)
    logger.info("HLS streamer ready")
    logger.info("=" * 80)

    yield

    logger.info("=" * 80)
    logger.info("HLS streamer shutting down...")
    logger.info("=" * 80)

    try:
        await services.shutdown()
    except Exception as e:
        logger.error(f"Shutdown error: {e}", exc_info=True)
    finally:
        container.services = None

    logger.info("HLS streamer shutdown complete")


# ============================================================================
# FastAPI Application
# ============================================================================

app = FastAPI(
    title="HLS Streamer",
    description=(
        "Live HLS stream with hot-swappable inputs.\n\n"
        "Features:\n"
        "- Queue new content without interrupting the stream\n"
        "- Replace overlay layers\n"
        "- Send live filter commands over ZeroMQ\n"
        "- FFmpeg process supervision with automatic restart"
    ),
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

# ============================================================================
# Exception Handlers
# ============================================================================

app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore
app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore
app.add_exception_handler(Exception, general_exception_handler)

# ============================================================================
# Middleware (reverse order execution)
# ============================================================================

app.add_middleware(RateLimitMiddleware, requests_per_second=5.0, burst=10)


@app.middleware("http")
async def response_headers(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """HLS cache/CORS headers and HTTP request metrics."""
    started = time.perf_counter()
    response = await call_next(request)
    path = request.url.path

    if path.startswith("/hls/"):
        response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
        response.headers["Access-Control-Allow-Origin"] = "*"
        endpoint = "/hls"
    else:
        endpoint = path

    metrics.track_http_request(request.method, endpoint, response.status_code)
    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint
    ).observe(time.perf_counter() - started)
    return response


# ============================================================================
# Routers
# ============================================================================

app.include_router(health.router)
app.include_router(stream.router, prefix="/api")
app.include_router(logs.router)
app.include_router(views.router)


@app.get("/metrics", include_in_schema=False)
async def prometheus_metrics() -> Response:
    body, status_code, headers = metrics.get_metrics()
    return Response(content=body, status_code=status_code, headers=headers)


# ============================================================================
# HLS Output
# ============================================================================

app.mount(
    "/hls",
    StaticFiles(directory=str(settings.hls.output_dir), check_dir=False),
    name="hls"
)

logger.info(f"HLS output: {settings.hls.output_dir} (served at /hls)")
logger.debug(f"Config: {settings.model_dump_json()}")
