from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from app.application.services.analytics_service import (
    bucket_start,
    check_rate_limit,
    detail_events,
    parse_event_type,
    summarize_events,
)
from app.core.errors import BadRequestError
from app.domain.models.analytics_event import AnalyticsEvent
from conftest import FakeRedis

START = datetime(2026, 10, 5, 9, 0, tzinfo=UTC)


def _event(event: str, *, at: datetime, ip: str = "10.0.0.1", article_id: str | None = None, **payload):
    return AnalyticsEvent(
        id=uuid4(),
        tenant_id=uuid4(),
        magazine_id=uuid4(),
        issue_id=uuid4(),
        issue_slug="2026-10",
        article_id=article_id,
        event=event,
        payload={"ip": ip, **payload},
        created_at=at,
    )


def test_summarize_events_counts_sessions_and_devices():
    events = [
        _event("view", at=START, page=1, device="mobile"),
        _event("page_turn", at=START + timedelta(seconds=40), page=2, device="mobile"),
        _event("cta_click", at=START + timedelta(seconds=90), article_id="a1"),
        _event("view", at=START, ip="10.0.0.2", device="tablet"),
    ]

    summary = summarize_events(events)

    assert summary["totalViews"] == 2
    assert summary["totalPageTurns"] == 1
    assert summary["totalCtaClicks"] == 1
    assert summary["uniqueVisitors"] == 2
    assert summary["deviceBreakdown"] == {"desktop": 1, "mobile": 2, "tablet": 1}
    assert summary["topArticles"] == [{"articleId": "a1", "count": 1}]
    assert summary["averageSessionTime"] == 45
    assert summary["bounceRate"] == 50


def test_summarize_events_empty():
    summary = summarize_events([])
    assert summary["averageSessionTime"] == 0
    assert summary["bounceRate"] == 0
    assert summary["topPages"] == []


def test_week_buckets_start_on_sunday():
    # 2026-10-07 is a Wednesday.
    assert bucket_start(datetime(2026, 10, 7, 15, 30, tzinfo=UTC), "week") == datetime(2026, 10, 4, tzinfo=UTC)
    assert bucket_start(datetime(2026, 10, 4, 1, 0, tzinfo=UTC), "week") == datetime(2026, 10, 4, tzinfo=UTC)


def test_naive_timestamps_are_treated_as_utc():
    assert bucket_start(datetime(2026, 10, 7, 15, 30), "hour") == datetime(2026, 10, 7, 15, tzinfo=UTC)


def test_detail_events_fills_empty_buckets():
    events = [
        _event("view", at=START, page=3),
        _event("ad_click", at=START + timedelta(hours=2), page=3),
    ]

    detailed = detail_events(events, group_by="hour", start=START, end=START + timedelta(hours=3))

    assert [bucket["views"] for bucket in detailed["timeline"]] == [1, 0, 0, 0]
    assert [bucket["adClicks"] for bucket in detailed["timeline"]] == [0, 0, 1, 0]
    assert detailed["pagePerformance"]["Page 3"] == {"views": 1, "interactions": 1}
    assert detailed["hourlyDistribution"][9] == 1


def test_detail_events_rejects_unknown_grouping():
    with pytest.raises(BadRequestError):
        detail_events([], group_by="month", start=START, end=START)


def test_parse_event_type_rejects_unknown_event():
    with pytest.raises(BadRequestError) as exc_info:
        parse_event_type("scroll")
    assert exc_info.value.detail["message"] == "Invalid event type"


def test_ingest_rate_limit_window():
    redis = FakeRedis()
    results = [check_rate_limit(redis, key="analytics:ingest:1.2.3.4", limit=2, window_seconds=3600) for _ in range(3)]

    assert results == [True, True, False]
    assert redis.expirations["analytics:ingest:1.2.3.4"] == 3600
