"""FastAPI application entry point."""

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.logging import setup_logging
from app.core.tracing import setup_tracing
from app.core.metrics import get_content_type, get_metrics, set_app_info
from app.core.middleware import (
    MetricsMiddleware,
    CorrelationIdMiddleware,
    TracingMiddleware,
    RequestLoggingMiddleware,
)
from app.modules.transcoding.router import hls_router, router as transcoding_router

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
## Creator Media Pipeline API

Transcodes uploaded creator videos into adaptive-bitrate HLS renditions and
serves the published playlists and segments.

* **Transcoding** - Job trigger, completion callback, asset status
* **HLS** - Retrieval endpoint referenced by every published playlist
    """,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    openapi_tags=[
        {
            "name": "health",
            "description": "Health check endpoints",
        },
        {
            "name": "transcoding",
            "description": "Transcode jobs - dispatch, completion, status",
        },
        {
            "name": "hls",
            "description": "Playback retrieval of published playlists and segments",
        },
    ],
)

# Set up logging with correlation IDs
setup_logging(
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    json_format=settings.LOG_JSON,
    include_stack_trace=True,
)

# Set up distributed tracing
setup_tracing(
    service_name=settings.PROJECT_NAME,
    service_version=settings.VERSION,
    environment="development" if settings.DEBUG else "production",
    otlp_endpoint=settings.OTLP_ENDPOINT,
    enable_console_export=settings.DEBUG,
)

# Set application info for metrics
set_app_info(
    version=settings.VERSION,
    environment="development" if settings.DEBUG else "production",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Players poll the HLS endpoint constantly; only log its failures
app.add_middleware(
    RequestLoggingMiddleware,
    quiet_prefixes=(settings.HLS_ENDPOINT, "/health", "/metrics"),
)
app.add_middleware(TracingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(MetricsMiddleware)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns:
        dict: Health status with "healthy" or "unhealthy" value.
    """
    return {"status": "healthy"}


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=get_metrics(), media_type=get_content_type())


# Include routers
app.include_router(transcoding_router, prefix=settings.API_V1_PREFIX)
app.include_router(hls_router, prefix=settings.API_V1_PREFIX)
