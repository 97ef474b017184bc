"""
Feed scoring.

A video's feed score blends four non-negative terms:

- recency:    exp(-hours_since_publish / 168) * 100, with the age clamped to
              [0, 720] hours so decay bottoms out after 30 days
- popularity: log10(views + 1) * 20
- likes:      log10(likes + 1) * 30
- engagement: likes / views * 100, capped at 100 (0 when there are no views)

Unpublished videos and videos dated in the future count as brand new.

Ranking is applied to one fetched catalog page at a time: the catalog orders
by publish time and view count to paginate, and `rank_page` re-sorts only the
rows of that page. Videos on different pages are never compared, so this is
not a global top-K ranking.
"""

import math
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from core.models import Video, as_naive_utc, utcnow

RECENCY_DECAY_HOURS = 168.0  # 24 * 7
MAX_AGE_HOURS = 720.0  # 30 days
RECENCY_WEIGHT = 100.0
VIEW_WEIGHT = 20.0
LIKE_WEIGHT = 30.0
MAX_ENGAGEMENT = 100.0


def hours_since_publish(published_at: Optional[datetime], now: datetime) -> float:
    if published_at is None:
        return 0.0
    hours = (now - as_naive_utc(published_at)).total_seconds() / 3600.0
    if not math.isfinite(hours) or hours <= 0:
        return 0.0
    return min(hours, MAX_AGE_HOURS)


def score_counters(
    view_count: int,
    like_count: int,
    published_at: Optional[datetime],
    now: Optional[datetime] = None,
) -> float:
    """Score raw counters; never raises and never returns a negative value"""
    try:
        now = as_naive_utc(now) if now is not None else utcnow()
        views = max(0, int(view_count or 0))
        likes = max(0, int(like_count or 0))

        recency = math.exp(-hours_since_publish(published_at, now) / RECENCY_DECAY_HOURS)
        recency *= RECENCY_WEIGHT
        popularity = math.log10(views + 1) * VIEW_WEIGHT
        like_score = math.log10(likes + 1) * LIKE_WEIGHT
        engagement = min(MAX_ENGAGEMENT, likes / views * 100) if views > 0 else 0.0

        total = recency + popularity + like_score + engagement
    except (TypeError, ValueError, OverflowError):
        return 0.0

    if not math.isfinite(total):
        return 0.0
    return total


def score(video: Video, now: Optional[datetime] = None) -> float:
    """Feed score for one video"""
    return score_counters(video.view_count, video.like_count, video.published_at, now)


def rank_page(
    videos: Sequence[Video], now: Optional[datetime] = None
) -> List[Tuple[Video, float]]:
    """
    Sort one fetched page by descending score.

    `sorted` is stable, so ties keep the order the catalog returned them in.
    All videos are scored against the same `now`.
    """
    now = now if now is not None else utcnow()
    scored = [(video, score(video, now)) for video in videos]
    return sorted(scored, key=lambda pair: pair[1], reverse=True)
