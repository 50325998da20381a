"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from video_ingest.core.config import settings
from video_ingest.core.database import check_database, engine
from video_ingest.core.logging import setup_logging
from video_ingest.core.metrics import get_content_type, get_metrics, set_app_info
from video_ingest.core.middleware import (
    CorrelationIdMiddleware,
    MetricsMiddleware,
    RequestLoggingMiddleware,
    TracingMiddleware,
)
from video_ingest.core.tracing import setup_tracing, shutdown_tracing
from video_ingest.modules.ingestion.ffmpeg import EngineCapabilities, EngineConfig, probe_capabilities
from video_ingest.modules.video.router import router as video_router
from video_ingest.modules.video.schemas import HealthResponse

logger = logging.getLogger(__name__)

ENVIRONMENT = "development" if settings.DEBUG else "production"

setup_logging(
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    json_format=settings.LOG_JSON,
    include_stack_trace=True,
)

setup_tracing(
    service_name=settings.PROJECT_NAME,
    service_version=settings.VERSION,
    environment=ENVIRONMENT,
    enable_console_export=settings.DEBUG,
)

set_app_info(version=settings.VERSION, environment=ENVIRONMENT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.engine_capabilities = probe_capabilities(EngineConfig.from_settings())
    if not app.state.engine_capabilities.transcoding_available:
        logger.warning("H.264 transcoding unavailable, uploads will be published without HLS")
    yield
    await engine.dispose()
    shutdown_tracing()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="Video upload and ingestion API: metadata, thumbnails, HLS and catalog.",
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    openapi_tags=[
        {"name": "health", "description": "Health check endpoints"},
        {"name": "videos", "description": "Video upload and catalog lookup"},
    ],
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(TracingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(MetricsMiddleware)


@app.get("/health", tags=["health"], response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Report database reachability and engine capabilities."""
    capabilities = getattr(request.app.state, "engine_capabilities", None) or EngineCapabilities()
    database = await check_database()
    return HealthResponse(
        status="healthy" if database else "degraded",
        database=database,
        **capabilities.as_dict(),
    )


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus exposition."""
    return Response(content=get_metrics(), media_type=get_content_type())


app.include_router(video_router, prefix=settings.API_V1_PREFIX)
