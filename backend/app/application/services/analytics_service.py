import json
import logging
from collections import Counter, defaultdict
from datetime import UTC, datetime, timedelta
from uuid import UUID

from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import BadRequestError
from app.domain.models.analytics_event import AnalyticsEvent, AnalyticsEventType
from app.domain.models.issue import Issue
from app.domain.models.magazine import Magazine
from app.domain.models.tenant import Tenant
from app.infrastructure.observability.metrics import measure_redis

logger = logging.getLogger(__name__)

ANALYTICS_CACHE_TTL_SECONDS = 45
INGEST_WINDOW_SECONDS = 3600
SUMMARY_RANGES = {
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
}
DETAILED_RANGES = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
}
GROUP_BY_VALUES = {"hour", "day", "week"}
DEVICE_TYPES = ("desktop", "mobile", "tablet")
TOP_LIMIT = 10

EVENT_TOTAL_KEYS = {
    AnalyticsEventType.VIEW.value: "totalViews",
    AnalyticsEventType.PAGE_TURN.value: "totalPageTurns",
    AnalyticsEventType.CTA_CLICK.value: "totalCtaClicks",
    AnalyticsEventType.AD_CLICK.value: "totalAdClicks",
    AnalyticsEventType.SHARE.value: "totalShares",
}
EVENT_BUCKET_KEYS = {
    AnalyticsEventType.VIEW.value: "views",
    AnalyticsEventType.PAGE_TURN.value: "pageTurns",
    AnalyticsEventType.CTA_CLICK.value: "ctaClicks",
    AnalyticsEventType.AD_CLICK.value: "adClicks",
    AnalyticsEventType.SHARE.value: "shares",
}


def parse_event_type(value: str) -> AnalyticsEventType:
    try:
        return AnalyticsEventType(value)
    except ValueError as exc:
        raise BadRequestError("Invalid event type") from exc


def resolve_range(value: str, *, detailed: bool = False) -> timedelta:
    ranges = DETAILED_RANGES if detailed else SUMMARY_RANGES
    if value not in ranges:
        raise BadRequestError(f"Invalid range. Use one of: {', '.join(ranges)}")
    return ranges[value]


def check_rate_limit(redis_client: Redis | None, *, key: str, limit: int, window_seconds: int) -> bool:
    """Fixed-window counter; Redis being unavailable never blocks ingestion."""
    if redis_client is None or limit <= 0:
        return True
    try:
        with measure_redis("analytics_rate_limit"):
            current = redis_client.incr(key)
            if current == 1:
                redis_client.expire(key, window_seconds)
    except (RedisError, OSError) as exc:
        logger.warning("analytics_rate_limit_unavailable key=%s error=%s", key, exc)
        return True
    return int(current) <= limit


def record_event(
    db: Session,
    *,
    tenant: Tenant,
    magazine: Magazine,
    issue: Issue,
    event: AnalyticsEventType,
    payload: dict,
    article_id: str | None = None,
    client: dict | None = None,
) -> bool:
    """Append an analytics event; a failed write is logged and reported as ``False``."""
    enriched = {
        **(payload or {}),
        "userAgent": (client or {}).get("user_agent"),
        "referer": (client or {}).get("referer"),
        "ip": (client or {}).get("ip") or "unknown",
        "timestamp": datetime.now(UTC).isoformat(),
    }
    try:
        db.add(
            AnalyticsEvent(
                tenant_id=tenant.id,
                magazine_id=magazine.id,
                issue_id=issue.id,
                issue_slug=issue.slug,
                article_id=article_id,
                event=event.value,
                payload=enriched,
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "analytics_event_write_failed tenant_id=%s issue_id=%s event=%s",
            tenant.id,
            issue.id,
            event.value,
        )
        return False
    return True


def query_events(
    db: Session,
    *,
    tenant_id: UUID,
    start: datetime,
    end: datetime,
    magazine_id: UUID | None = None,
    issue_slug: str | None = None,
) -> list[AnalyticsEvent]:
    query = select(AnalyticsEvent).where(
        AnalyticsEvent.tenant_id == tenant_id,
        AnalyticsEvent.created_at >= start,
        AnalyticsEvent.created_at <= end,
    )
    if magazine_id is not None:
        query = query.where(AnalyticsEvent.magazine_id == magazine_id)
    if issue_slug:
        query = query.where(AnalyticsEvent.issue_slug == issue_slug)
    return list(db.execute(query.order_by(AnalyticsEvent.created_at.asc())).scalars().all())


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _device(payload: dict) -> str:
    return str(payload.get("device") or "desktop")


def summarize_events(events: list[AnalyticsEvent]) -> dict:
    totals = {key: 0 for key in EVENT_TOTAL_KEYS.values()}
    visitors: set[str] = set()
    devices = {device: 0 for device in DEVICE_TYPES}
    pages: Counter[str] = Counter()
    articles: Counter[str] = Counter()
    sessions: dict[str, dict] = {}

    for event in events:
        payload = event.payload or {}
        total_key = EVENT_TOTAL_KEYS.get(event.event)
        if total_key:
            totals[total_key] += 1
        if payload.get("ip"):
            visitors.add(str(payload["ip"]))
        device = _device(payload)
        if device in devices:
            devices[device] += 1
        if payload.get("page"):
            pages[f"Page {payload['page']}"] += 1
        if event.article_id:
            articles[event.article_id] += 1

        created_at = _as_utc(event.created_at)
        session_key = f"{payload.get('ip') or 'unknown'}_{event.issue_slug}"
        session = sessions.get(session_key)
        if session is None:
            sessions[session_key] = {"start": created_at, "end": created_at, "events": 1}
        else:
            session["start"] = min(session["start"], created_at)
            session["end"] = max(session["end"], created_at)
            session["events"] += 1

    average_session = 0
    bounce_rate = 0
    if sessions:
        total_seconds = sum((session["end"] - session["start"]).total_seconds() for session in sessions.values())
        average_session = round(total_seconds / len(sessions))
        single_event = sum(1 for session in sessions.values() if session["events"] == 1)
        bounce_rate = round(single_event / len(sessions) * 100)

    return {
        **totals,
        "uniqueVisitors": len(visitors),
        "deviceBreakdown": devices,
        "topPages": [{"page": page, "count": count} for page, count in pages.most_common(TOP_LIMIT)],
        "topArticles": [
            {"articleId": article_id, "count": count} for article_id, count in articles.most_common(TOP_LIMIT)
        ],
        "averageSessionTime": average_session,
        "bounceRate": bounce_rate,
    }


def bucket_start(moment: datetime, group_by: str) -> datetime:
    moment = _as_utc(moment)
    if group_by == "hour":
        return moment.replace(minute=0, second=0, microsecond=0)
    day_start = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    if group_by == "week":
        # Weeks start on Sunday.
        return day_start - timedelta(days=(day_start.weekday() + 1) % 7)
    return day_start


def _bucket_step(group_by: str) -> timedelta:
    if group_by == "hour":
        return timedelta(hours=1)
    if group_by == "week":
        return timedelta(days=7)
    return timedelta(days=1)


def detail_events(events: list[AnalyticsEvent], *, group_by: str, start: datetime, end: datetime) -> dict:
    if group_by not in GROUP_BY_VALUES:
        raise BadRequestError("Invalid group_by. Use one of: hour, day, week")

    buckets: dict[datetime, dict] = {}
    cursor = bucket_start(start, group_by)
    step = _bucket_step(group_by)
    while cursor <= _as_utc(end):
        buckets[cursor] = {"timestamp": cursor.isoformat(), **{key: 0 for key in EVENT_BUCKET_KEYS.values()}}
        cursor += step

    breakdown: Counter[str] = Counter()
    device_trends: Counter[str] = Counter()
    page_performance: dict[str, dict] = defaultdict(lambda: {"views": 0, "interactions": 0})
    hourly = [0] * 24

    for event in events:
        payload = event.payload or {}
        created_at = _as_utc(event.created_at)
        bucket = buckets.get(bucket_start(created_at, group_by))
        bucket_key = EVENT_BUCKET_KEYS.get(event.event)
        if bucket is not None and bucket_key:
            bucket[bucket_key] += 1
        breakdown[event.event] += 1
        device_trends[_device(payload)] += 1
        if payload.get("page"):
            page = page_performance[f"Page {payload['page']}"]
            if event.event == AnalyticsEventType.VIEW.value:
                page["views"] += 1
            else:
                page["interactions"] += 1
        hourly[created_at.hour] += 1

    return {
        "timeline": [buckets[key] for key in sorted(buckets)],
        "eventBreakdown": dict(breakdown),
        "deviceTrends": dict(device_trends),
        "pagePerformance": dict(page_performance),
        "hourlyDistribution": hourly,
    }


def _cache_key(prefix: str, *, tenant_id: UUID, parts: list[str]) -> str:
    return ":".join(["analytics", prefix, str(tenant_id), *parts])


def _cache_get(redis_client: Redis | None, key: str):
    if redis_client is None:
        return None
    try:
        cached = redis_client.get(key)
        if cached:
            return json.loads(cached)
    except (RedisError, OSError, json.JSONDecodeError):
        return None
    return None


def _cache_set(redis_client: Redis | None, key: str, payload: dict) -> None:
    if redis_client is None:
        return
    try:
        redis_client.setex(key, ANALYTICS_CACHE_TTL_SECONDS, json.dumps(payload))
    except (RedisError, OSError):
        return


def get_summary(
    db: Session,
    redis_client: Redis | None,
    *,
    tenant_id: UUID,
    range_value: str = "30d",
    magazine_id: UUID | None = None,
    issue_slug: str | None = None,
    now: datetime | None = None,
) -> dict:
    window = resolve_range(range_value)
    cache_key = _cache_key(
        "summary",
        tenant_id=tenant_id,
        parts=[range_value, str(magazine_id or "all"), issue_slug or "all"],
    )
    cached = _cache_get(redis_client, cache_key)
    if cached is not None:
        return cached

    end = now or datetime.now(UTC)
    start = end - window
    events = query_events(db, tenant_id=tenant_id, start=start, end=end, magazine_id=magazine_id, issue_slug=issue_slug)
    payload = {
        "summary": summarize_events(events),
        "range": range_value,
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "total_events": len(events),
    }
    _cache_set(redis_client, cache_key, payload)
    return payload


def get_detailed(
    db: Session,
    redis_client: Redis | None,
    *,
    tenant_id: UUID,
    range_value: str = "30d",
    group_by: str = "day",
    magazine_id: UUID | None = None,
    issue_slug: str | None = None,
    now: datetime | None = None,
) -> dict:
    window = resolve_range(range_value, detailed=True)
    if group_by not in GROUP_BY_VALUES:
        raise BadRequestError("Invalid group_by. Use one of: hour, day, week")
    cache_key = _cache_key(
        "detailed",
        tenant_id=tenant_id,
        parts=[range_value, group_by, str(magazine_id or "all"), issue_slug or "all"],
    )
    cached = _cache_get(redis_client, cache_key)
    if cached is not None:
        return cached

    end = now or datetime.now(UTC)
    start = end - window
    events = query_events(db, tenant_id=tenant_id, start=start, end=end, magazine_id=magazine_id, issue_slug=issue_slug)
    payload = {
        "detailed": detail_events(events, group_by=group_by, start=start, end=end),
        "range": range_value,
        "group_by": group_by,
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "total_events": len(events),
    }
    _cache_set(redis_client, cache_key, payload)
    return payload


def ingest_rate_limit_key(client_ip: str) -> str:
    return f"analytics:ingest:{client_ip}"


def ingest_limit() -> tuple[int, int]:
    return settings.analytics_ingest_limit_per_hour, INGEST_WINDOW_SECONDS
