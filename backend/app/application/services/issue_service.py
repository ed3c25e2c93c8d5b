from __future__ import annotations

import logging
import math
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from urllib.parse import urlencode
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.application.services.magazine_service import build_slug_base
from app.core.config import settings
from app.core.errors import InvalidInputError, NotFoundError
from app.domain.models.ad_slot import AdSlot
from app.domain.models.article import Article
from app.domain.models.issue import Issue, IssueStatus
from app.domain.models.tenant import Tenant

if TYPE_CHECKING:
    from app.application.services.content_pipeline import IssueDraft

logger = logging.getLogger(__name__)

ISSUE_PATCH_FIELDS = {"title", "cover_url", "meta"}
ARTICLE_PATCH_FIELDS = {"title", "html", "summary", "hero_url", "tags", "reading_time", "word_count"}
DEFAULT_READING_TIME = 5
DEFAULT_WORD_COUNT = 500


def build_issue_title(now: datetime | None = None) -> str:
    moment = now or datetime.now(UTC)
    return moment.strftime("%B %Y")


def build_issue_slug(now: datetime | None = None) -> str:
    moment = now or datetime.now(UTC)
    return moment.strftime("%Y-%m")


def generate_tracking_code(
    base_url: str,
    campaign: str | None = None,
    *,
    source: str = "magazinify",
    medium: str = "ad",
) -> str:
    params = {"utm_source": source, "utm_medium": medium}
    if campaign:
        params["utm_campaign"] = campaign
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{urlencode(params)}"


def public_site_url(tenant: Tenant, path: str = "") -> str:
    flags = tenant.feature_flags or {}
    if tenant.custom_domain and flags.get("customDomain"):
        base_url = f"https://{tenant.custom_domain}"
    else:
        base_url = f"https://{tenant.slug}.{settings.public_base_domain}"
    return f"{base_url}{path}"


def public_issue_url(tenant: Tenant, issue_slug: str) -> str:
    return public_site_url(tenant, f"/issues/{issue_slug}")


def public_paths(tenant: Tenant, issue_slug: str) -> list[str]:
    """Public URLs whose rendering changes when ``issue_slug`` is published."""
    return [
        public_issue_url(tenant, issue_slug),
        public_site_url(tenant, "/issues"),
        public_site_url(tenant, "/latest"),
    ]


def render_sprites(page_count: int | None = None) -> list[dict]:
    total = page_count or settings.default_page_count
    return [
        {
            "page": page,
            "url": settings.sprite_placeholder_url,
            "width": settings.sprite_width,
            "height": settings.sprite_height,
        }
        for page in range(1, total + 1)
    ]


def render_reading_html(article: Article) -> dict:
    return {
        "html": article.html or "",
        "meta": {
            "title": article.title,
            "readingTime": article.reading_time or DEFAULT_READING_TIME,
            "wordCount": article.word_count or DEFAULT_WORD_COUNT,
        },
    }


def materialize_article(draft: dict, *, position: int) -> dict:
    """Map a pipeline article onto ``Article`` column values."""
    html = draft.get("html") or draft.get("content") or ""
    title = draft.get("title") or f"Article {position}"
    return {
        "position": position,
        "slug": build_slug_base(str(draft.get("slug") or title), fallback=f"article-{position}"),
        "title": title,
        "html": html,
        "summary": draft.get("summary"),
        "hero_url": draft.get("heroUrl"),
        "tags": list(draft.get("tags") or []),
        "reading_time": int(draft.get("readingTime") or math.ceil(len(html) / 1000)),
        "word_count": int(draft.get("wordCount") or (len(html.split()) if html else 0)),
        "is_fallback": bool(draft.get("isFallback", False)),
    }


def claim_unique_slug(base: str, taken: set[str]) -> str:
    slug = base
    suffix = 2
    while slug in taken:
        slug = f"{base}-{suffix}"
        suffix += 1
    taken.add(slug)
    return slug


def get_issue(db: Session, *, magazine_id: UUID, slug: str) -> Issue:
    issue = db.execute(
        select(Issue).where(Issue.magazine_id == magazine_id, Issue.slug == slug)
    ).scalar_one_or_none()
    if issue is None:
        raise NotFoundError(f"Issue {slug} not found")
    return issue


def find_issue(db: Session, *, magazine_id: UUID, slug: str) -> Issue | None:
    return db.execute(
        select(Issue).where(Issue.magazine_id == magazine_id, Issue.slug == slug)
    ).scalar_one_or_none()


def list_issues(
    db: Session,
    *,
    magazine_id: UUID,
    statuses: list[str] | None = None,
    limit: int = 100,
) -> list[Issue]:
    query = select(Issue).where(Issue.magazine_id == magazine_id)
    if statuses:
        query = query.where(Issue.status.in_(statuses))
    query = query.order_by(Issue.created_at.desc()).limit(max(1, min(limit, 500)))
    return list(db.execute(query).scalars().all())


def list_published_issues(db: Session, *, magazine_id: UUID, limit: int = 24) -> list[Issue]:
    query = (
        select(Issue)
        .where(Issue.magazine_id == magazine_id, Issue.status == IssueStatus.PUBLISHED.value)
        .order_by(Issue.published_at.desc())
        .limit(max(1, min(limit, 100)))
    )
    return list(db.execute(query).scalars().all())


def update_issue(db: Session, *, issue: Issue, patch: dict) -> Issue:
    if "status" in patch:
        raise InvalidInputError("Issue status cannot be changed through update")
    unknown = sorted(set(patch) - ISSUE_PATCH_FIELDS)
    if unknown:
        raise InvalidInputError(f"Unsupported issue fields: {', '.join(unknown)}")

    if "title" in patch:
        title = str(patch["title"] or "").strip()
        if not title:
            raise InvalidInputError("Issue title cannot be empty")
        issue.title = title
    if "cover_url" in patch:
        issue.cover_url = patch["cover_url"]
    if "meta" in patch:
        if not isinstance(patch["meta"], dict):
            raise InvalidInputError("meta must be an object")
        issue.meta = {**(issue.meta or {}), **patch["meta"]}
    db.flush()
    return issue


def list_articles(db: Session, *, issue_id: UUID) -> list[Article]:
    return list(
        db.execute(select(Article).where(Article.issue_id == issue_id).order_by(Article.position.asc()))
        .scalars()
        .all()
    )


def get_article(db: Session, *, issue_id: UUID, article_ref: str) -> Article:
    query = select(Article).where(Article.issue_id == issue_id)
    try:
        query = query.where(Article.id == UUID(article_ref))
    except ValueError:
        query = query.where(Article.slug == article_ref)
    article = db.execute(query).scalar_one_or_none()
    if article is None:
        raise NotFoundError(f"Article {article_ref} not found")
    return article


def update_article(db: Session, *, article: Article, patch: dict) -> Article:
    for key, value in patch.items():
        if key in ARTICLE_PATCH_FIELDS:
            setattr(article, key, value)
    db.flush()
    return article


def list_ad_slots(db: Session, *, issue_id: UUID) -> list[AdSlot]:
    return list(
        db.execute(select(AdSlot).where(AdSlot.issue_id == issue_id).order_by(AdSlot.slot_key.asc()))
        .scalars()
        .all()
    )


def update_ad_slots(db: Session, *, issue: Issue, ads: list[dict]) -> list[AdSlot]:
    slots = {slot.slot_key: slot for slot in list_ad_slots(db, issue_id=issue.id)}
    updated: list[AdSlot] = []
    for ad in ads:
        slot_key = ad["slot_key"]
        slot = slots.get(slot_key)
        if slot is None:
            raise NotFoundError(f"Ad slot {slot_key} not found")
        slot.creative_url = ad.get("creative_url")
        slot.target_url = ad.get("target_url")
        slot.sponsor = ad.get("sponsor")
        tracking_code = ad.get("tracking_code")
        if not tracking_code and slot.target_url:
            tracking_code = generate_tracking_code(slot.target_url, campaign=issue.slug)
        slot.tracking_code = tracking_code
        updated.append(slot)
    db.flush()
    return updated


def write_issue_with_articles(
    db: Session,
    *,
    issue: Issue,
    draft: IssueDraft,
    ad_slot_keys: list[str],
) -> tuple[list[Article], list[AdSlot]]:
    """Replace the issue's content with ``draft`` inside the caller's transaction.

    Existing articles are dropped and ad slots are created for any missing
    blueprint slot key. On failure the session is rolled back and the error
    re-raised, so no partial issue is left behind.
    """
    try:
        db.execute(delete(Article).where(Article.issue_id == issue.id))
        articles = []
        taken_slugs: set[str] = set()
        for position, article_draft in enumerate(draft.articles, start=1):
            values = materialize_article(article_draft.to_dict(), position=position)
            values["slug"] = claim_unique_slug(values["slug"], taken_slugs)
            article = Article(tenant_id=issue.tenant_id, issue_id=issue.id, **values)
            db.add(article)
            articles.append(article)

        existing_keys = set(
            db.execute(select(AdSlot.slot_key).where(AdSlot.issue_id == issue.id)).scalars().all()
        )
        for slot_key in ad_slot_keys:
            if slot_key in existing_keys:
                continue
            db.add(AdSlot(tenant_id=issue.tenant_id, issue_id=issue.id, slot_key=slot_key))
            existing_keys.add(slot_key)

        issue.title = draft.title or issue.title
        issue.meta = {
            **(issue.meta or {}),
            "outline": draft.outline,
            "outcome": draft.outcome,
            "fallback_steps": list(draft.fallback_steps),
            "generated_at": datetime.now(UTC).isoformat(),
            "total_sections": len(draft.outline.get("sections", [])),
            "total_articles": len(articles),
        }
        db.flush()
    except Exception:
        db.rollback()
        raise

    ad_slots = list_ad_slots(db, issue_id=issue.id)
    logger.info(
        "issue_content_written issue_id=%s articles=%s ad_slots=%s outcome=%s",
        issue.id,
        len(articles),
        len(ad_slots),
        draft.outcome,
    )
    return articles, ad_slots


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def serialize_article(article: Article, *, include_html: bool = True) -> dict:
    payload = {
        "id": str(article.id),
        "position": article.position,
        "slug": article.slug,
        "title": article.title,
        "summary": article.summary,
        "hero_url": article.hero_url,
        "tags": article.tags or [],
        "reading_time": article.reading_time,
        "word_count": article.word_count,
        "is_fallback": article.is_fallback,
    }
    if include_html:
        payload["html"] = article.html
    return payload


def serialize_ad_slot(slot: AdSlot) -> dict:
    return {
        "slot_key": slot.slot_key,
        "creative_url": slot.creative_url,
        "target_url": slot.target_url,
        "sponsor": slot.sponsor,
        "tracking_code": slot.tracking_code,
    }


def serialize_issue(issue: Issue) -> dict:
    return {
        "id": str(issue.id),
        "magazine_id": str(issue.magazine_id),
        "slug": issue.slug,
        "title": issue.title,
        "status": issue.status,
        "cover_url": issue.cover_url,
        "sprites": issue.sprites or [],
        "meta": issue.meta or {},
        "scheduled_at": _iso(issue.scheduled_at),
        "published_at": _iso(issue.published_at),
        "canceled_at": _iso(issue.canceled_at),
        "last_error": issue.last_error,
        "created_at": _iso(issue.created_at),
    }
