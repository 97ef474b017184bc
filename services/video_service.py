"""
Video Service.

This module provides the `VideoService`, the single entry point the HTTP layer
talks to. It validates requests, delegates to the specialised services and
makes sure every write that can change a feed ranking invalidates the feed
cache.

Key Components:
- `FeedCache`: ranked, cached feed pages.
- `ViewAttributor`: turns playback progress into counted views.
- `StorageRotator`: places uploaded files on a storage account.
- `LinkRefresher`: keeps source links of stored files fresh.
- `CatalogStore`: durable videos, likes and storage accounts.

Architectural Design:
- Facade Pattern: routes call one method per operation and never reach into
  the catalog or the provider directly.
- Invalidate after commit: the feed cache is cleared only once the catalog
  write it reflects has succeeded.
"""

import logging
import re
from typing import List, Optional
from uuid import UUID

from core.exceptions import (
    AlreadyLikedError,
    NotLikedError,
    StorageAccountNotFoundError,
    ValidationError,
    VideoNotFoundError,
)
from core.logging_config import log_function_call
from core.models import (
    FeedPage,
    LinkResolution,
    RefreshReport,
    StorageAccountSummary,
    TrackViewResult,
    UploadedVideo,
    Video,
    VideoMetadata,
    VideoSnapshot,
    VideoUpdate,
    utcnow,
)
from providers.catalog_store import CatalogStore
from services.feed_cache import FeedCache
from services.link_refresher import LinkRefresher
from services.storage_rotator import StorageRotator
from services.view_attributor import ViewAttributor

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
MAX_TITLE_LENGTH = 500
MAX_DESCRIPTION_LENGTH = 10000
MAX_TAGS = 20
MAX_TAG_LENGTH = 50


def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug[:MAX_TITLE_LENGTH]


def validate_page(page: int, page_size: int) -> None:
    if page < 1:
        raise ValidationError("page", page, "must be at least 1")
    if page_size < 1 or page_size > MAX_PAGE_SIZE:
        raise ValidationError("limit", page_size, f"must be between 1 and {MAX_PAGE_SIZE}")


def validate_metadata(
    title: Optional[str], description: Optional[str], tags: Optional[List[str]], required: bool
) -> None:
    """Check admin-supplied text fields; `required` demands a title"""
    if title is not None or required:
        if not title or not title.strip():
            raise ValidationError("title", title, "is required")
        if len(title) > MAX_TITLE_LENGTH:
            raise ValidationError(
                "title", f"{title[:50]}...", f"must be at most {MAX_TITLE_LENGTH} characters"
            )

    if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            "description",
            f"{len(description)} characters",
            f"must be at most {MAX_DESCRIPTION_LENGTH} characters",
        )

    if tags is not None:
        if len(tags) > MAX_TAGS:
            raise ValidationError("tags", len(tags), f"at most {MAX_TAGS} tags are allowed")
        for tag in tags:
            if len(tag) > MAX_TAG_LENGTH:
                raise ValidationError(
                    "tags", tag, f"each tag must be at most {MAX_TAG_LENGTH} characters"
                )


class VideoService:
    """Facade over feed, view, like, upload and link operations"""

    def __init__(
        self,
        store: CatalogStore,
        feed_cache: FeedCache,
        view_attributor: ViewAttributor,
        rotator: StorageRotator,
        link_refresher: LinkRefresher,
    ):
        self.store = store
        self.feed_cache = feed_cache
        self.view_attributor = view_attributor
        self.rotator = rotator
        self.link_refresher = link_refresher

    # Feed and lookup

    @log_function_call(logger)
    async def get_feed_page(self, page: int, page_size: int) -> FeedPage:
        validate_page(page, page_size)
        return await self.feed_cache.get_feed_page(page, page_size)

    async def get_video_by_wrapper_token(self, token: str) -> VideoSnapshot:
        video = await self.store.get_video_by_wrapper_token(token)
        if video is None or not video.is_published:
            raise VideoNotFoundError(token)
        return VideoSnapshot.from_video(video)

    async def get_stream_source(self, token: str) -> str:
        """
        Upstream URL to proxy for a published video.

        A stored file whose link has lapsed gets a fresh one first. A video
        with an external link and nothing to re-resolve it from is served
        from that link as-is.
        """
        video = await self.store.get_video_by_wrapper_token(token)
        if video is None or not video.is_published:
            raise VideoNotFoundError(token)

        expires_at = video.source_url_expires_at
        if video.source_url and (expires_at is None or expires_at > utcnow()):
            return video.source_url

        if video.remote_file_id and video.storage_account_id:
            logger.info(
                f"Source link for video {video.id} lapsed, refreshing before streaming",
                extra={"video_id": str(video.id)},
            )
            resolution = await self.link_refresher.refresh_video(video.id)
            return resolution.url

        if video.source_url:
            return video.source_url
        raise VideoNotFoundError(token)

    # Engagement

    @log_function_call(logger)
    async def track_view(
        self,
        video_id: UUID,
        session_id: str,
        watch_duration_seconds: float,
        video_duration_seconds: Optional[float] = None,
        user_id: Optional[str] = None,
        viewer_ip: str = "",
        user_agent: str = "",
    ) -> TrackViewResult:
        """
        Record playback progress for a video.

        When the client does not report the video duration, the catalog's
        duration is used.
        """
        if not session_id:
            raise ValidationError("session_id", session_id, "is required")

        video = await self._require_video(video_id)
        if video_duration_seconds is None:
            video_duration_seconds = video.duration_seconds

        return await self.view_attributor.track_view(
            video_id,
            session_id,
            watch_duration_seconds,
            video_duration_seconds,
            user_id=user_id,
            viewer_ip=viewer_ip,
            user_agent=user_agent,
        )

    @log_function_call(logger)
    async def like_video(self, video_id: UUID, user_id: str) -> VideoSnapshot:
        await self._require_video(video_id)
        if not await self.store.add_like(video_id, user_id):
            raise AlreadyLikedError(str(video_id), user_id)

        await self.feed_cache.invalidate_feed()
        return VideoSnapshot.from_video(await self._require_video(video_id))

    @log_function_call(logger)
    async def unlike_video(self, video_id: UUID, user_id: str) -> VideoSnapshot:
        await self._require_video(video_id)
        if not await self.store.remove_like(video_id, user_id):
            raise NotLikedError(str(video_id), user_id)

        await self.feed_cache.invalidate_feed()
        return VideoSnapshot.from_video(await self._require_video(video_id))

    # Catalog administration

    @log_function_call(logger)
    async def create_video(self, video: Video) -> VideoSnapshot:
        validate_metadata(video.title, video.description, video.tags, required=True)
        if not video.slug:
            video.slug = slugify(video.title)

        created = await self.store.create_video(video)
        await self.feed_cache.invalidate_feed()
        logger.info(f"Created video {created.id}", extra={"video_id": str(created.id)})
        return VideoSnapshot.from_video(created)

    @log_function_call(logger)
    async def update_video(self, video_id: UUID, changes: VideoUpdate) -> VideoSnapshot:
        validate_metadata(changes.title, changes.description, changes.tags, required=False)
        video = await self._require_video(video_id)

        for field, value in changes.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(video, field, value)
        if video.is_published and video.published_at is None:
            video.published_at = utcnow()

        saved = await self.store.save_video(video)
        await self.feed_cache.invalidate_feed()
        return VideoSnapshot.from_video(saved)

    @log_function_call(logger)
    async def delete_video(self, video_id: UUID) -> None:
        if not await self.store.delete_video(video_id):
            raise VideoNotFoundError(str(video_id))
        await self.feed_cache.invalidate_feed()
        logger.info(f"Deleted video {video_id}", extra={"video_id": str(video_id)})

    # Storage

    @log_function_call(logger)
    async def upload_video(
        self,
        file_bytes: bytes,
        filename: str,
        file_size_bytes: int,
        metadata: VideoMetadata,
    ) -> UploadedVideo:
        """
        Store a file on a storage account and publish it as a new video.

        Metadata is validated before anything is sent to the provider, so a
        bad title never costs an upload.
        """
        validate_metadata(metadata.title, metadata.description, metadata.tags, required=True)
        if file_size_bytes <= 0:
            raise ValidationError("file", filename, "file is empty")

        upload = await self.rotator.upload(file_bytes, filename, file_size_bytes)
        account = await self.store.get_storage_account(upload.account_id)
        if account is None:
            raise StorageAccountNotFoundError(str(upload.account_id))
        link = await self.rotator.resolve_link(upload.remote_file_id, account.api_token)

        video = Video(
            title=metadata.title,
            slug=slugify(metadata.title),
            description=metadata.description,
            thumbnail_url=metadata.thumbnail_url,
            genre=metadata.genre,
            tags=list(metadata.tags),
            duration_seconds=metadata.duration_seconds,
            file_size_mb=file_size_bytes / (1024 * 1024),
            source_url=link.url,
            source_url_expires_at=link.expires_at,
            remote_file_id=upload.remote_file_id,
            storage_account_id=upload.account_id,
            is_published=True,
        )
        created = await self.store.create_video(video)
        await self.feed_cache.invalidate_feed()

        logger.info(
            f"Uploaded video {created.id} to account {upload.account_name}",
            extra={"video_id": str(created.id), "file_size_gb": upload.file_size_gb},
        )
        return UploadedVideo(video=VideoSnapshot.from_video(created), storage=upload)

    async def list_storage_accounts(self) -> List[StorageAccountSummary]:
        return await self.rotator.list_accounts()

    @log_function_call(logger)
    async def register_storage_account(
        self, account_name: str, api_token: str, storage_limit_gb: float
    ) -> StorageAccountSummary:
        return await self.rotator.register_account(account_name, api_token, storage_limit_gb)

    @log_function_call(logger)
    async def set_storage_account_active(
        self, account_id: UUID, is_active: bool
    ) -> StorageAccountSummary:
        return await self.rotator.set_account_active(account_id, is_active)

    @log_function_call(logger)
    async def refresh_video_link(self, video_id: UUID) -> LinkResolution:
        return await self.link_refresher.refresh_video(video_id)

    async def run_link_refresh_sweep(self) -> RefreshReport:
        return await self.link_refresher.refresh_expiring()

    async def _require_video(self, video_id: UUID) -> Video:
        video = await self.store.get_video(video_id)
        if video is None:
            raise VideoNotFoundError(str(video_id))
        return video
