"""
Link Refresher Service

Direct links handed out by the storage provider expire. The refresher sweeps
videos whose source link expires within the refresh window (or already has)
and swaps in a fresh one.

A sweep is guarded by a `JobLock`: a trigger that arrives while a sweep is
running returns a skipped report instead of waiting. One video failing to
refresh never stops the sweep; failures are counted in the report and the
video is picked up again by the next run.
"""

import logging
from datetime import timedelta
from typing import Optional
from uuid import UUID

from core.exceptions import (
    StorageAccountNotFoundError,
    VideoAPIException,
    VideoNotFoundError,
)
from core.job_lock import JobLock
from core.models import LinkResolution, RefreshReport, Video, utcnow
from providers.catalog_store import CatalogStore
from services.storage_rotator import StorageRotator

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_WINDOW = timedelta(hours=1)


class LinkRefresher:
    def __init__(
        self,
        store: CatalogStore,
        rotator: StorageRotator,
        window: timedelta = DEFAULT_REFRESH_WINDOW,
        lock: Optional[JobLock] = None,
    ):
        self.store = store
        self.rotator = rotator
        self.window = window
        self.lock = lock or JobLock("link-refresh")

    async def refresh_expiring(self) -> RefreshReport:
        """Refresh every link expiring within the window; skip if a sweep is running"""
        async with self.lock.hold() as acquired:
            if not acquired:
                logger.info("Link refresh already running, skipping this trigger")
                return RefreshReport(skipped=True)

            report = RefreshReport(started_at=utcnow())
            videos = await self.store.list_videos_with_expiring_links(self.window)
            report.checked = len(videos)

            for video in videos:
                try:
                    await self._refresh(video)
                    report.refreshed += 1
                except VideoAPIException as e:
                    report.failed += 1
                    report.failed_video_ids.append(video.id)
                    logger.warning(
                        f"Could not refresh link for video {video.id}: {e.message}",
                        extra={"error_code": e.error_code},
                    )

            report.finished_at = utcnow()
            logger.info(
                f"Link refresh finished: {report.refreshed}/{report.checked} refreshed, "
                f"{report.failed} failed"
            )
            return report

    async def refresh_video(self, video_id: UUID) -> LinkResolution:
        video = await self.store.get_video(video_id)
        if video is None:
            raise VideoNotFoundError(str(video_id))
        return await self._refresh(video)

    async def _refresh(self, video: Video) -> LinkResolution:
        if video.storage_account_id is None:
            raise StorageAccountNotFoundError("none")

        account = await self.store.get_storage_account(video.storage_account_id)
        if account is None:
            raise StorageAccountNotFoundError(str(video.storage_account_id))

        resolution = await self.rotator.resolve_link(video.remote_file_id, account.api_token)
        await self.store.update_source_url(video.id, resolution.url, resolution.expires_at)
        logger.debug(f"Refreshed link for video {video.id}, expires {resolution.expires_at}")
        return resolution
