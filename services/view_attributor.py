"""
View Attribution Service

Decides when playback progress counts as a view. A watch session counts once,
the first time its watched share reaches `VIEW_THRESHOLD_PERCENT`; later
progress reports for the same session never count again.

The session write and the counter increment are committed together by the
catalog store, and the feed is invalidated only after that commit succeeded.
"""

import logging
from typing import Optional
from uuid import UUID

from core.models import TrackViewResult, WatchSession, utcnow
from providers.catalog_store import CatalogStore
from services.feed_cache import FeedCache

logger = logging.getLogger(__name__)

VIEW_THRESHOLD_PERCENT = 30.0


def watched_percentage(watch_duration_seconds: float, video_duration_seconds: float) -> float:
    if not video_duration_seconds or video_duration_seconds <= 0:
        return 0.0
    watched = max(0.0, float(watch_duration_seconds))
    return min(100.0, watched / video_duration_seconds * 100.0)


class ViewAttributor:
    def __init__(self, store: CatalogStore, feed_cache: FeedCache):
        self.store = store
        self.feed_cache = feed_cache

    async def track_view(
        self,
        video_id: UUID,
        session_id: str,
        watch_duration_seconds: float,
        video_duration_seconds: float,
        user_id: Optional[str] = None,
        viewer_ip: str = "",
        user_agent: str = "",
    ) -> TrackViewResult:
        """
        Record playback progress for one session and count the view if the
        session just reached the threshold.

        Raises PersistenceError when the store fails; nothing is invalidated
        in that case.
        """
        percentage = watched_percentage(watch_duration_seconds, video_duration_seconds)
        is_valid = percentage >= VIEW_THRESHOLD_PERCENT

        existing = await self.store.find_watch_session(session_id, video_id)
        if existing is None:
            watch_session = WatchSession(
                session_id=session_id,
                video_id=video_id,
                user_id=user_id,
                viewer_ip=viewer_ip,
                user_agent=user_agent,
                watch_duration_seconds=int(max(0, watch_duration_seconds)),
                watched_percentage=percentage,
            )
            should_increment = is_valid
        else:
            was_valid = existing.watched_percentage >= VIEW_THRESHOLD_PERCENT
            existing.watch_duration_seconds = int(max(0, watch_duration_seconds))
            existing.watched_percentage = percentage
            existing.updated_at = utcnow()
            if user_id and not existing.user_id:
                existing.user_id = user_id
            watch_session = existing
            should_increment = not was_valid and is_valid

        await self.store.upsert_watch_session(watch_session, increment_view=should_increment)

        if should_increment:
            logger.info(
                f"View counted for video {video_id}",
                extra={"session_id": session_id, "watched_percentage": percentage},
            )
            await self.feed_cache.invalidate_feed()

        return TrackViewResult(incremented=should_increment, watched_percentage=percentage)
