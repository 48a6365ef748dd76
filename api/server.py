"""
Tubely API server.

``create_app`` builds the FastAPI application from an explicit ApiConfig.
Collaborators (video store, object storage, media tools) default to the
real implementations and can be replaced, which is how the tests run the
full request path without S3 or ffmpeg.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from prometheus_client import CONTENT_TYPE_LATEST
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

from api.audit import AuditAction, log_audit
from api.auth import authenticate_request
from api.common import (
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
    check_health,
    limiter,
    rate_limit_exceeded_handler,
)
from api.database import create_database, create_tables
from api.errors import ApiError, api_error_handler
from api.metrics import HTTP_REQUEST_DURATION_SECONDS, HTTP_REQUESTS_TOTAL, get_metrics, init_app_info
from api.object_storage import ObjectStorage, S3ObjectStorage
from api.schemas import HealthResponse, Video, VideoCreate
from api.uploads import get_owned_video, router as uploads_router, validate_video_id
from api.video_store import VideoStore
from config import (
    CORS_ALLOWED_ORIGINS,
    LOG_LEVEL,
    RATE_LIMIT_DEFAULT,
    RATE_LIMIT_ENABLED,
    RATE_LIMIT_STORAGE_URL,
    ApiConfig,
)
from media.tools import FFmpegTools, MediaTools

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"

router = APIRouter()


class MetricsMiddleware(BaseHTTPMiddleware):
    """Record request counts and durations per route template."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.monotonic()
        response = await call_next(request)
        route = request.scope.get("route")
        # Route templates keep label cardinality bounded
        endpoint = getattr(route, "path", "unmatched")
        HTTP_REQUESTS_TOTAL.labels(
            method=request.method, endpoint=endpoint, status_code=str(response.status_code)
        ).inc()
        HTTP_REQUEST_DURATION_SECONDS.labels(method=request.method, endpoint=endpoint).observe(
            time.monotonic() - start_time
        )
        return response


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed requests as 400 with the first problem found."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        detail = f"{location}: {first.get('msg', 'invalid value')}" if location else first.get("msg", "Invalid request")
    else:
        detail = "Invalid request"
    return JSONResponse(status_code=400, content={"detail": detail})


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Health check endpoint for monitoring and load balancers.

    Returns 503 if the database or the assets directory is unusable.
    """
    cfg: ApiConfig = request.app.state.config
    result = await check_health(request.app.state.store.database, cfg.assets_root, cfg.storage_check_timeout)
    return JSONResponse(
        status_code=result["status_code"],
        content=HealthResponse(
            status="healthy" if result["healthy"] else "unhealthy",
            checks=result["checks"],
        ).model_dump(),
    )


@router.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=get_metrics(), media_type=CONTENT_TYPE_LATEST)


@router.post("/api/videos", response_model=Video, status_code=201)
@limiter.limit(RATE_LIMIT_DEFAULT)
async def create_video(request: Request, data: VideoCreate) -> Video:
    """Create a draft video record owned by the caller."""
    cfg: ApiConfig = request.app.state.config
    store: VideoStore = request.app.state.store
    user_id = authenticate_request(request, cfg)

    video = await store.create(user_id, data.title, data.description)

    log_audit(
        AuditAction.VIDEO_CREATE,
        request,
        user_id=user_id,
        resource_id=video.id,
        details={"title": video.title},
    )
    return video


@router.get("/api/videos", response_model=List[Video])
@limiter.limit(RATE_LIMIT_DEFAULT)
async def list_videos(request: Request) -> List[Video]:
    """List the caller's videos, newest first."""
    cfg: ApiConfig = request.app.state.config
    user_id = authenticate_request(request, cfg)
    return await request.app.state.store.list_for_user(user_id)


@router.get("/api/videos/{video_id}", response_model=Video)
@limiter.limit(RATE_LIMIT_DEFAULT)
async def get_video(request: Request, video_id: str) -> Video:
    cfg: ApiConfig = request.app.state.config
    video_id = validate_video_id(video_id)
    user_id = authenticate_request(request, cfg)
    return await get_owned_video(request.app.state.store, video_id, user_id)


def create_app(
    cfg: Optional[ApiConfig] = None,
    store: Optional[VideoStore] = None,
    storage: Optional[ObjectStorage] = None,
    media_tools: Optional[MediaTools] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        cfg: Configuration; read from the environment when omitted
        store: Video store; defaults to one over cfg.database_url
        storage: Object storage; defaults to the configured S3 bucket
        media_tools: Probe/transcode implementation; defaults to ffprobe/ffmpeg
    """
    cfg = cfg or ApiConfig.from_env()
    if store is None:
        store = VideoStore(create_database(cfg.database_url))
    if storage is None:
        storage = S3ObjectStorage(
            cfg.s3_bucket,
            cfg.s3_region,
            endpoint_url=cfg.s3_endpoint_url,
            timeout=cfg.storage_upload_timeout,
        )
    if media_tools is None:
        media_tools = FFmpegTools(
            ffprobe_path=cfg.ffprobe_path,
            ffmpeg_path=cfg.ffmpeg_path,
            probe_timeout=cfg.probe_timeout,
            transcode_timeout=cfg.transcode_timeout,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application startup and shutdown."""
        if RATE_LIMIT_ENABLED and RATE_LIMIT_STORAGE_URL == "memory://":
            logger.warning(
                "Rate limiting is using in-memory storage. "
                "For deployments with multiple instances, configure Redis: "
                "TUBELY_RATE_LIMIT_STORAGE_URL=redis://localhost:6379"
            )
        for problem in cfg.check():
            logger.warning(problem)

        create_tables(cfg.database_url)
        await store.database.connect()
        init_app_info(APP_VERSION)
        logger.info(f"Tubely API ready, assets in {cfg.assets_root}")
        yield
        await store.database.disconnect()

    app = FastAPI(title="Tubely", description="Video upload API", lifespan=lifespan)

    app.state.config = cfg
    app.state.store = store
    app.state.storage = storage
    app.state.media_tools = media_tools

    # Register rate limiter with the app
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.add_middleware(MetricsMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # If CORS_ALLOWED_ORIGINS is empty, allow same-origin only (no CORS headers)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ALLOWED_ORIGINS if CORS_ALLOWED_ORIGINS else [],
        allow_credentials=bool(CORS_ALLOWED_ORIGINS),
        allow_methods=["GET", "HEAD", "OPTIONS", "POST"],
        allow_headers=["Authorization", "Content-Type"],
        expose_headers=["X-Request-ID"],
    )

    app.include_router(router)
    app.include_router(uploads_router)

    # Locally stored thumbnails
    cfg.assets_root.mkdir(parents=True, exist_ok=True)
    app.mount("/assets", StaticFiles(directory=str(cfg.assets_root)), name="assets")

    return app


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    settings = ApiConfig.from_env()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
