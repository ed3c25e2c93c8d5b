import logging
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.application.services.audit_service import log_audit_event
from app.application.services.billing_service import enforce_active_billing
from app.application.services.blueprint_service import get_blueprint_or_default
from app.application.services.issue_service import public_issue_url, public_paths, render_sprites
from app.domain.issue_lifecycle import IssueEvent, apply_transition, assert_transition
from app.domain.models.issue import Issue, IssueStatus
from app.domain.models.tenant import Tenant
from app.domain.models.user import User
from app.infrastructure.observability.metrics import increment_background_counter
from app.integrations.revalidation import revalidate_paths

logger = logging.getLogger(__name__)

DUE_ISSUES_BATCH_SIZE = 500


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def publish_issue(
    db: Session,
    *,
    tenant: Tenant,
    issue: Issue,
    publish_at: datetime | None = None,
    now: datetime | None = None,
) -> dict:
    enforce_active_billing(tenant)
    moment = now or datetime.now(UTC)
    target_time = _as_utc(publish_at) if publish_at is not None else moment
    event = IssueEvent.SCHEDULE if target_time > moment else IssueEvent.PUBLISH
    assert_transition(issue.status, event)

    blueprint = get_blueprint_or_default(db, magazine_id=issue.magazine_id)
    issue.sprites = render_sprites((blueprint.get("structure") or {}).get("pages"))
    apply_transition(issue, event, at=target_time)
    log_audit_event(
        db,
        tenant_id=tenant.id,
        action=f"issue.{event.value}",
        metadata={"issue_id": str(issue.id), "issue_slug": issue.slug, "at": target_time.isoformat()},
    )
    db.commit()
    db.refresh(issue)

    if event == IssueEvent.PUBLISH:
        revalidate_paths(public_paths(tenant, issue.slug))
    logger.info(
        "issue_%s tenant_id=%s issue_id=%s at=%s",
        "published" if event == IssueEvent.PUBLISH else "scheduled",
        tenant.id,
        issue.id,
        target_time.isoformat(),
    )
    return {
        "url": public_issue_url(tenant, issue.slug),
        "status": issue.status,
        "published_at": issue.published_at.isoformat() if issue.published_at else None,
        "scheduled_at": issue.scheduled_at.isoformat() if issue.scheduled_at else None,
    }


def cancel_issue(db: Session, *, issue: Issue, actor: User) -> Issue:
    apply_transition(issue, IssueEvent.CANCEL)
    log_audit_event(
        db,
        tenant_id=issue.tenant_id,
        action="issue.canceled",
        metadata={"issue_id": str(issue.id), "issue_slug": issue.slug, "actor": actor.email},
    )
    db.commit()
    db.refresh(issue)
    logger.info("issue_canceled tenant_id=%s issue_id=%s actor_id=%s", issue.tenant_id, issue.id, actor.id)
    return issue


def publish_due_issues(db: Session, *, now: datetime | None = None) -> dict:
    """Publish every scheduled issue whose ``scheduled_at`` has passed."""
    moment = now or datetime.now(UTC)
    due_issues = (
        db.execute(
            select(Issue)
            .where(
                Issue.status == IssueStatus.SCHEDULED.value,
                Issue.scheduled_at.is_not(None),
                Issue.scheduled_at <= moment,
            )
            .order_by(Issue.scheduled_at.asc())
            .limit(DUE_ISSUES_BATCH_SIZE)
        )
        .scalars()
        .all()
    )
    increment_background_counter("scheduled_issues_checked_total", len(due_issues))

    published = 0
    failed = 0
    for issue in due_issues:
        issue_id = issue.id
        try:
            tenant = db.get(Tenant, issue.tenant_id)
            apply_transition(issue, IssueEvent.PUBLISH, at=moment)
            log_audit_event(
                db,
                tenant_id=issue.tenant_id,
                action="issue.publish",
                metadata={"issue_id": str(issue.id), "issue_slug": issue.slug, "scheduled": True},
            )
            db.commit()
        except Exception:
            db.rollback()
            failed += 1
            logger.exception("scheduled_issue_publish_failed issue_id=%s", issue_id)
            continue
        published += 1
        if tenant is not None:
            revalidate_paths(public_paths(tenant, issue.slug))

    if due_issues:
        logger.info("publish_due_issues checked=%s published=%s failed=%s", len(due_issues), published, failed)
    return {"checked": len(due_issues), "published": published, "failed": failed}
