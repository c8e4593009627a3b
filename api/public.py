"""
Public HTTP API.

Caller identity arrives in the X-User-Id header from the auth gateway in
front of this service; requests without it are anonymous.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

from api.common import RequestIDMiddleware, get_real_ip, get_viewer_id, rate_limit_exceeded_handler
from api.exception_utils import register_exception_handlers
from api.metrics import (
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_TOTAL,
    get_metrics,
    init_app_info,
    record_queue_counts,
)
from api.processing import cancel_processing, get_processing_status
from api.publishing import delete_video_permanently, publish_video, restore_video, soft_delete_video
from api.schemas import ApiResponse, HealthResponse, ProcessingStatusResponse, PublishVideoRequest
from api.services import AppServices
from api.video_detail import get_video_detail
from config import (
    CORS_ALLOWED_ORIGINS,
    PUBLIC_PORT,
    RATE_LIMIT_DEFAULT,
    RATE_LIMIT_ENABLED,
    RATE_LIMIT_PUBLISH,
    RATE_LIMIT_STORAGE_URL,
    RUN_CLEANUP_SCHEDULER,
    RUN_WORKER,
    RUN_WORKER_ON_DEMAND,
    TEST_MODE,
)

logger = logging.getLogger(__name__)

# Uses in-memory storage by default, can be configured to use Redis
limiter = Limiter(
    key_func=get_real_ip,
    storage_uri=RATE_LIMIT_STORAGE_URL if RATE_LIMIT_ENABLED else None,
    enabled=RATE_LIMIT_ENABLED,
)

router = APIRouter()


def get_services(request: Request) -> AppServices:
    return request.app.state.services


def video_summary(video: Dict[str, Any]) -> Dict[str, Any]:
    """Owner-facing view of a stored video row."""
    return {
        "id": video["id"],
        "ownerId": video["owner_id"],
        "title": video["title"],
        "description": video["description"],
        "duration": video["duration"],
        "isShort": bool(video["is_short"]),
        "aspectRatio": video["aspect_ratio"],
        "videoFile": video["video_file"],
        "thumbnail": video["thumbnail"],
        "playbackUrl": video["playback_url"],
        "processingStatus": video["processing_status"],
        "processingProgress": video["processing_progress"],
        "isPublished": bool(video["is_published"]),
        "isHlsReady": bool(video["is_hls_ready"]),
        "isDeleted": bool(video["is_deleted"]),
        "deletedAt": video["deleted_at"],
        "createdAt": video["created_at"],
    }


async def start_background_services(services: AppServices) -> None:
    """In-process worker pool, nightly cleanup and queue event logging."""
    from worker.cleanup import CleanupScheduler
    from worker.supervisor import WorkerSupervisor
    from worker.video_worker import VideoProcessor, VideoWorker

    if services.queue is not None and (RUN_WORKER or RUN_WORKER_ON_DEMAND):
        queue = services.queue
        services.supervisor = WorkerSupervisor(
            lambda: VideoWorker(queue, VideoProcessor(services.store)),
            queue,
            on_demand=not RUN_WORKER,
        )
        if RUN_WORKER:
            await services.supervisor.force_start()
        else:
            logger.info("Worker pool will start on demand")

    if RUN_CLEANUP_SCHEDULER:
        services.scheduler = CleanupScheduler(services.store, services.assets)
        services.scheduler.start()

    await services.start_event_listener()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown."""
    if RATE_LIMIT_ENABLED and RATE_LIMIT_STORAGE_URL == "memory://":
        logger.warning(
            "Rate limiting is using in-memory storage. "
            "For production deployments with multiple instances, configure Redis: "
            "VIXORA_RATE_LIMIT_STORAGE_URL=redis://localhost:6379"
        )

    # Services injected by the caller (tests) are left to the caller to manage
    owns_services = getattr(app.state, "services", None) is None
    if owns_services:
        app.state.services = await AppServices.create()
        if not TEST_MODE:
            await start_background_services(app.state.services)

    init_app_info()
    yield

    if owns_services:
        await app.state.services.close()


class MetricsMiddleware(BaseHTTPMiddleware):
    """Count requests and time them per route template."""

    async def dispatch(self, request: Request, call_next):
        start = time.monotonic()
        response = await call_next(request)
        route = request.scope.get("route")
        endpoint = getattr(route, "path", "unmatched")
        HTTP_REQUESTS_TOTAL.labels(request.method, endpoint, str(response.status_code)).inc()
        HTTP_REQUEST_DURATION_SECONDS.labels(request.method, endpoint).observe(time.monotonic() - start)
        return response


@router.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint for monitoring and load balancers.

    Returns 503 when the database is unreachable. Redis and the queue are
    reported but never make the service unhealthy.
    """
    services = get_services(request)

    database_ok = True
    try:
        await services.database.fetch_val("SELECT 1")
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        database_ok = False

    redis_ok = await services.redis.health_check() if services.redis is not None else None

    queue_stats = None
    if services.queue is not None:
        try:
            queue_stats = await services.queue.get_queue_stats()
        except Exception as e:
            logger.warning(f"Queue stats unavailable: {e}")
            queue_stats = {"available": False}

    supervisor = services.supervisor
    body = HealthResponse(
        status="healthy" if database_ok else "unhealthy",
        database=database_ok,
        redis=redis_ok,
        queue=queue_stats,
        cache=services.cache.get_stats(),
        worker=supervisor.state.value if supervisor is not None else None,
    )
    return JSONResponse(status_code=200 if database_ok else 503, content=body.model_dump())


@router.get("/metrics")
async def metrics(request: Request):
    """Prometheus metrics in text format."""
    services = get_services(request)
    if services.queue is not None:
        try:
            record_queue_counts(await services.queue.get_counts())
        except Exception as e:
            logger.debug(f"Skipping queue size metrics: {e}")
    return Response(content=get_metrics(), media_type=CONTENT_TYPE_LATEST)


@router.post("/api/v1/videos", status_code=201)
@limiter.limit(RATE_LIMIT_PUBLISH)
async def create_video(request: Request, body: PublishVideoRequest):
    """Finalize a direct upload into a video and queue it for processing."""
    services = get_services(request)
    video = await publish_video(
        services.store,
        services.assets,
        services.queue,
        get_viewer_id(request),
        body,
        supervisor=services.supervisor,
    )
    return ApiResponse.of(201, video_summary(video), "Upload finalized. Processing started.")


@router.get("/api/v1/videos/{video_id}")
@limiter.limit(RATE_LIMIT_DEFAULT)
async def watch_video(request: Request, video_id: str, quality: Optional[str] = None):
    services = get_services(request)
    result = await get_video_detail(
        services.store,
        services.cache,
        video_id,
        viewer_id=get_viewer_id(request),
        quality=quality,
    )
    return ApiResponse.of(200, result["payload"], result["message"])


@router.get("/api/v1/videos/{video_id}/processing-status")
@limiter.limit(RATE_LIMIT_DEFAULT)
async def processing_status(request: Request, video_id: str):
    status = ProcessingStatusResponse(**await get_processing_status(get_services(request).store, video_id))
    return ApiResponse.of(200, status.model_dump(by_alias=True, mode="json"), "Processing status fetched successfully")


@router.patch("/api/v1/videos/{video_id}/cancel-processing")
@limiter.limit(RATE_LIMIT_DEFAULT)
async def cancel_video_processing(request: Request, video_id: str):
    services = get_services(request)
    status = ProcessingStatusResponse(
        **await cancel_processing(services.store, services.queue, video_id, get_viewer_id(request))
    )
    return ApiResponse.of(200, status.model_dump(by_alias=True, mode="json"), "Video processing cancelled")


@router.delete("/api/v1/videos/{video_id}")
@limiter.limit(RATE_LIMIT_DEFAULT)
async def delete_video(request: Request, video_id: str):
    services = get_services(request)
    video = await soft_delete_video(services.store, services.queue, video_id, get_viewer_id(request))
    return ApiResponse.of(200, video_summary(video), "Video moved to trash")


@router.patch("/api/v1/videos/{video_id}/restore")
@limiter.limit(RATE_LIMIT_DEFAULT)
async def restore_deleted_video(request: Request, video_id: str):
    services = get_services(request)
    video = await restore_video(
        services.store, services.queue, video_id, get_viewer_id(request), supervisor=services.supervisor
    )
    return ApiResponse.of(200, video_summary(video), "Video restored successfully")


@router.delete("/api/v1/videos/{video_id}/permanent")
@limiter.limit(RATE_LIMIT_DEFAULT)
async def delete_video_forever(request: Request, video_id: str):
    services = get_services(request)
    await delete_video_permanently(services.store, services.assets, services.queue, video_id, get_viewer_id(request))
    return ApiResponse.of(200, {}, "Video deleted successfully")


def create_app(services: Optional[AppServices] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        services: Pre-built services (tests). When omitted the lifespan
                  connects everything from configuration.
    """
    app = FastAPI(title="Vixora", description="Video processing and playback API", lifespan=lifespan)
    if services is not None:
        app.state.services = services

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    register_exception_handlers(app)

    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # If CORS_ALLOWED_ORIGINS is empty, allow same-origin only (no CORS headers)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ALLOWED_ORIGINS if CORS_ALLOWED_ORIGINS else [],
        allow_credentials=bool(CORS_ALLOWED_ORIGINS),
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-User-Id"],
        expose_headers=["X-Request-ID"],
    )

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=PUBLIC_PORT)
