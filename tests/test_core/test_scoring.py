"""
Unit tests for feed scoring and per-page ranking.
"""
import math
from datetime import datetime, timedelta, timezone

import pytest

from core.models import Video
from core.scoring import (
    MAX_AGE_HOURS,
    hours_since_publish,
    rank_page,
    score,
    score_counters,
)

NOW = datetime(2026, 1, 15, 12, 0, 0)


def make_video(hours_ago, views, likes, title="v") -> Video:
    return Video(
        title=title,
        view_count=views,
        like_count=likes,
        published_at=NOW - timedelta(hours=hours_ago) if hours_ago is not None else None,
    )


class TestScoreCounters:
    """Test the score formula."""

    def test_brand_new_video_without_activity_scores_exactly_100(self):
        assert score_counters(0, 0, NOW, NOW) == 100.0

    def test_recent_video_with_few_views(self):
        # recency 99.41 + popularity 40.09 + likes 31.24 + engagement 10
        value = score_counters(100, 10, NOW - timedelta(hours=1), NOW)
        assert 180.0 < value < 181.5

    def test_older_popular_video_outranks_newer_quiet_one(self):
        video_a = score_counters(100, 10, NOW - timedelta(hours=1), NOW)
        video_b = score_counters(1000, 500, NOW - timedelta(hours=200), NOW)
        assert 220.5 < video_b < 222.5
        assert video_b > video_a

    def test_engagement_is_capped_at_100(self):
        # More likes than views cannot push engagement past 100
        capped = score_counters(10, 50, NOW, NOW)
        expected = 100 + math.log10(11) * 20 + math.log10(51) * 30 + 100
        assert capped == pytest.approx(expected)

    def test_no_views_means_no_engagement(self):
        value = score_counters(0, 5, NOW, NOW)
        assert value == pytest.approx(100 + math.log10(6) * 30)

    def test_future_publish_date_counts_as_new(self):
        assert score_counters(0, 0, NOW + timedelta(days=2), NOW) == 100.0

    def test_unpublished_video_counts_as_new(self):
        assert score_counters(0, 0, None, NOW) == 100.0

    def test_age_is_clamped_at_thirty_days(self):
        at_limit = score_counters(0, 0, NOW - timedelta(hours=MAX_AGE_HOURS), NOW)
        far_past = score_counters(0, 0, NOW - timedelta(days=365), NOW)
        assert far_past == pytest.approx(at_limit)
        assert far_past > 0

    def test_negative_counters_are_treated_as_zero(self):
        assert score_counters(-5, -3, NOW, NOW) == 100.0

    def test_aware_datetimes_are_normalised(self):
        aware_now = NOW.replace(tzinfo=timezone.utc)
        aware_published = (NOW - timedelta(hours=1)).replace(tzinfo=timezone.utc)
        naive = score_counters(100, 10, NOW - timedelta(hours=1), NOW)
        assert score_counters(100, 10, aware_published, aware_now) == pytest.approx(naive)

    def test_garbage_input_scores_zero_instead_of_raising(self):
        assert score_counters("lots", 1, NOW, NOW) == 0.0

    @pytest.mark.parametrize(
        "views,likes,hours",
        [(0, 0, 0), (1, 0, 5), (10 ** 12, 10 ** 12, 719), (3, 3, 10000), (0, 10 ** 9, None)],
    )
    def test_score_is_finite_and_non_negative(self, views, likes, hours):
        published = NOW - timedelta(hours=hours) if hours is not None else None
        value = score_counters(views, likes, published, NOW)
        assert math.isfinite(value)
        assert value >= 0


class TestHoursSincePublish:
    def test_hours_are_measured_from_now(self):
        assert hours_since_publish(NOW - timedelta(hours=5), NOW) == pytest.approx(5.0)

    def test_missing_publish_date_is_zero(self):
        assert hours_since_publish(None, NOW) == 0.0


class TestRankPage:
    """Test ranking of one fetched page."""

    def test_sorts_by_descending_score(self):
        video_a = make_video(1, 100, 10, "a")
        video_b = make_video(200, 1000, 500, "b")

        ranked = rank_page([video_a, video_b], NOW)

        assert [video.title for video, _ in ranked] == ["b", "a"]
        assert ranked[0][1] >= ranked[1][1]

    def test_ties_keep_fetch_order(self):
        videos = [make_video(3, 10, 1, title) for title in ("first", "second", "third")]

        ranked = rank_page(videos, NOW)

        assert [video.title for video, _ in ranked] == ["first", "second", "third"]

    def test_empty_page(self):
        assert rank_page([], NOW) == []

    def test_score_of_video_matches_counters(self):
        video = make_video(10, 50, 5)
        assert score(video, NOW) == score_counters(50, 5, video.published_at, NOW)
