"""
API Endpoints for the Video Feed.

Endpoints Provided:
- `GET /api/feed`: ranked feed page.
- `GET /api/videos/{token}`: public lookup by wrapper token.
- `POST /api/videos/{video_id}/view`: playback progress report.
- `POST|DELETE /api/videos/{video_id}/like`: like and unlike.
- `/api/admin/...`: upload, edit, delete, link refresh and storage account
  management. Every admin route requires `X-API-Key`.
- `GET /stream/{token}`: proxies the video file, forwarding `Range` so the
  player can seek. The upstream URL is never sent to the client.

Architectural Design:
- Thin handlers: each route parses its input, calls one `VideoService` method
  and returns the result model. Domain errors are raised as
  `VideoAPIException` subclasses and rendered by `ErrorHandlingMiddleware`.
- Dependency Injection: the service is resolved from the container on
  `app.state`, so tests can install a container of mocks.
- View tracking is best effort: a store failure is logged and reported as
  `{"tracked": false}` so a player never breaks on analytics.
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Request, Response, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from starlette.background import BackgroundTask

from core.exceptions import PersistenceError
from core.middleware import get_client_ip
from core.models import (
    FeedPage,
    LinkResolution,
    RefreshReport,
    StorageAccountSummary,
    UploadedVideo,
    VideoMetadata,
    VideoSnapshot,
    VideoUpdate,
)
from providers.stream_proxy import StreamProxy
from services.video_service import VideoService

from .dependencies import (
    get_optional_user_id,
    get_stream_proxy,
    get_user_id,
    get_video_service,
    verify_api_key,
)

logger = logging.getLogger(__name__)


router = APIRouter(prefix="/api", tags=["Videos"])
admin_router = APIRouter(
    prefix="/api/admin", tags=["Admin"], dependencies=[Depends(verify_api_key)]
)
stream_router = APIRouter(tags=["Streaming"])


# Request/Response Models
class TrackViewRequest(BaseModel):
    session_id: str
    watch_duration_seconds: float
    video_duration_seconds: Optional[float] = None


class TrackViewResponse(BaseModel):
    tracked: bool
    incremented: bool = False
    watched_percentage: float = 0.0


class StorageAccountCreate(BaseModel):
    account_name: str
    api_token: str
    storage_limit_gb: float


class StorageAccountToggle(BaseModel):
    is_active: bool


def parse_tags(raw: str) -> List[str]:
    """Comma separated form value to a clean tag list"""
    return [tag.strip() for tag in raw.split(",") if tag.strip()]


# Public endpoints
@router.get("/feed", response_model=FeedPage)
async def get_feed(
    page: int = Query(1),
    limit: int = Query(20),
    video_svc: VideoService = Depends(get_video_service),
):
    """Ranked feed page; ranking is applied within the page"""
    return await video_svc.get_feed_page(page, limit)


@router.get("/videos/{token}", response_model=VideoSnapshot)
async def get_video(token: str, video_svc: VideoService = Depends(get_video_service)):
    return await video_svc.get_video_by_wrapper_token(token)


@router.post("/videos/{video_id}/view", response_model=TrackViewResponse)
async def track_view(
    video_id: UUID,
    body: TrackViewRequest,
    request: Request,
    user_id: Optional[str] = Depends(get_optional_user_id),
    video_svc: VideoService = Depends(get_video_service),
):
    try:
        result = await video_svc.track_view(
            video_id,
            body.session_id,
            body.watch_duration_seconds,
            body.video_duration_seconds,
            user_id=user_id,
            viewer_ip=get_client_ip(request)[:45],
            user_agent=request.headers.get("user-agent", ""),
        )
    except PersistenceError as e:
        logger.warning(
            f"View tracking dropped for video {video_id}: {e.message}",
            extra={"video_id": str(video_id), "session_id": body.session_id},
        )
        return TrackViewResponse(tracked=False)

    return TrackViewResponse(
        tracked=True,
        incremented=result.incremented,
        watched_percentage=result.watched_percentage,
    )


@router.post("/videos/{video_id}/like", response_model=VideoSnapshot)
async def like_video(
    video_id: UUID,
    user_id: str = Depends(get_user_id),
    video_svc: VideoService = Depends(get_video_service),
):
    return await video_svc.like_video(video_id, user_id)


@router.delete("/videos/{video_id}/like", response_model=VideoSnapshot)
async def unlike_video(
    video_id: UUID,
    user_id: str = Depends(get_user_id),
    video_svc: VideoService = Depends(get_video_service),
):
    return await video_svc.unlike_video(video_id, user_id)


# Admin endpoints
@admin_router.post("/videos/upload", response_model=UploadedVideo, status_code=201)
async def upload_video(
    file: UploadFile = File(...),
    title: str = Form(...),
    description: str = Form(""),
    thumbnail_url: str = Form(""),
    genre: str = Form(""),
    tags: str = Form(""),
    duration_seconds: int = Form(0),
    video_svc: VideoService = Depends(get_video_service),
):
    """Store the file on the best storage account and publish it"""
    data = await file.read()
    metadata = VideoMetadata(
        title=title.strip(),
        description=description,
        thumbnail_url=thumbnail_url,
        genre=genre,
        tags=parse_tags(tags),
        duration_seconds=max(0, duration_seconds),
    )
    filename = file.filename or "upload.bin"

    logger.info(
        f"Upload request for {filename}",
        extra={"filename": filename, "size_bytes": len(data)},
    )
    return await video_svc.upload_video(data, filename, len(data), metadata)


@admin_router.patch("/videos/{video_id}", response_model=VideoSnapshot)
async def update_video(
    video_id: UUID,
    changes: VideoUpdate,
    video_svc: VideoService = Depends(get_video_service),
):
    return await video_svc.update_video(video_id, changes)


@admin_router.delete("/videos/{video_id}", status_code=204)
async def delete_video(video_id: UUID, video_svc: VideoService = Depends(get_video_service)):
    await video_svc.delete_video(video_id)
    return Response(status_code=204)


@admin_router.post("/videos/{video_id}/refresh-link", response_model=LinkResolution)
async def refresh_video_link(
    video_id: UUID, video_svc: VideoService = Depends(get_video_service)
):
    return await video_svc.refresh_video_link(video_id)


@admin_router.post("/jobs/refresh-links", response_model=RefreshReport)
async def run_link_refresh(video_svc: VideoService = Depends(get_video_service)):
    """Run a link refresh sweep now; skipped if one is already running"""
    return await video_svc.run_link_refresh_sweep()


@admin_router.get("/storage-accounts", response_model=List[StorageAccountSummary])
async def list_storage_accounts(video_svc: VideoService = Depends(get_video_service)):
    return await video_svc.list_storage_accounts()


@admin_router.post("/storage-accounts", response_model=StorageAccountSummary, status_code=201)
async def create_storage_account(
    body: StorageAccountCreate, video_svc: VideoService = Depends(get_video_service)
):
    """Add an account to the upload pool; it starts active and empty"""
    return await video_svc.register_storage_account(
        body.account_name, body.api_token, body.storage_limit_gb
    )


@admin_router.post("/storage-accounts/{account_id}/toggle", response_model=StorageAccountSummary)
async def toggle_storage_account(
    account_id: UUID,
    body: StorageAccountToggle,
    video_svc: VideoService = Depends(get_video_service),
):
    return await video_svc.set_storage_account_active(account_id, body.is_active)


# Streaming
@stream_router.get("/stream/{token}")
async def stream_video(
    token: str,
    request: Request,
    video_svc: VideoService = Depends(get_video_service),
    proxy: StreamProxy = Depends(get_stream_proxy),
):
    source_url = await video_svc.get_stream_source(token)
    upstream = await proxy.open(source_url, request.headers.get("range"))
    return StreamingResponse(
        upstream.iter_chunks(),
        status_code=upstream.status,
        headers=upstream.headers,
        background=BackgroundTask(upstream.close),
    )
