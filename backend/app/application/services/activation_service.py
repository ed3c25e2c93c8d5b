import logging
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.application.services import generation_service
from app.application.services.audit_service import log_audit_event
from app.application.services.billing_service import check_activation_eligibility
from app.application.services.issue_service import build_issue_slug, find_issue
from app.application.services.magazine_service import list_magazines
from app.domain.issue_lifecycle import IssueEvent, apply_transition
from app.domain.models.activation_run import ActivationRun
from app.domain.models.generation_job import GenerationJobStatus
from app.domain.models.issue import IssueStatus
from app.domain.models.magazine import Magazine
from app.domain.models.tenant import BillingStatus, Tenant

logger = logging.getLogger(__name__)

ACTIVATION_ACTOR = "system:monthly-activation"


def _mark_activation_failed(db: Session, *, magazine: Magazine, issue_slug: str, error_message: str) -> None:
    issue = find_issue(db, magazine_id=magazine.id, slug=issue_slug)
    if issue is None:
        return
    if issue.status in {IssueStatus.PENDING.value, IssueStatus.RETRYING.value}:
        apply_transition(issue, IssueEvent.GENERATION_FAILED, error=error_message)
    db.commit()


def activate_magazine(
    db: Session,
    *,
    tenant: Tenant,
    magazine: Magazine,
    issue_slug: str,
    requested_by: str = ACTIVATION_ACTOR,
) -> dict:
    """Create and enqueue the pending issue for one magazine.

    Returns a detail entry whose ``result`` is ``created``, ``skipped`` or
    ``failed``.
    """
    detail = {"tenant_id": str(tenant.id), "magazine": magazine.slug, "issue_slug": issue_slug}
    if find_issue(db, magazine_id=magazine.id, slug=issue_slug) is not None:
        return {**detail, "result": "skipped", "reason": "Issue already exists"}

    eligible, reason = check_activation_eligibility(db, tenant=tenant)
    if not eligible:
        return {**detail, "result": "skipped", "reason": reason}

    try:
        issue, job = generation_service.create_pending_issue(
            db,
            tenant=tenant,
            magazine=magazine,
            issue_slug=issue_slug,
            requested_by=requested_by,
        )
        log_audit_event(
            db,
            tenant_id=tenant.id,
            action="issue.activation_created",
            metadata={"issue_id": str(issue.id), "job_id": str(job.id), "issue_slug": issue_slug},
        )
        db.commit()
        job_id = job.id
    except Exception as exc:
        db.rollback()
        logger.exception("monthly_activation_create_failed tenant_id=%s magazine_id=%s", tenant.id, magazine.id)
        return {**detail, "result": "failed", "error": str(exc)}

    try:
        generation_service.enqueue_generation_job(job_id)
    except Exception as exc:
        logger.exception("monthly_activation_enqueue_failed tenant_id=%s job_id=%s", tenant.id, job_id)
        message = f"Failed to enqueue generation: {exc}"
        job.status = GenerationJobStatus.FAILED.value
        job.error = message
        _mark_activation_failed(db, magazine=magazine, issue_slug=issue_slug, error_message=message)
        return {**detail, "result": "failed", "error": message}

    return {**detail, "result": "created", "issue_id": str(issue.id), "job_id": str(job_id)}


def activate_tenant(
    db: Session,
    *,
    tenant: Tenant,
    now: datetime | None = None,
    requested_by: str = ACTIVATION_ACTOR,
) -> list[dict]:
    issue_slug = build_issue_slug(now)
    return [
        activate_magazine(db, tenant=tenant, magazine=magazine, issue_slug=issue_slug, requested_by=requested_by)
        for magazine in list_magazines(db, tenant_id=tenant.id)
    ]


def run_monthly_activation(db: Session, *, now: datetime | None = None) -> ActivationRun:
    moment = now or datetime.now(UTC)
    month = build_issue_slug(moment)
    tenants = list(
        db.execute(
            select(Tenant)
            .where(Tenant.is_active.is_(True), Tenant.billing_status == BillingStatus.ACTIVE.value)
            .order_by(Tenant.created_at.asc())
        )
        .scalars()
        .all()
    )
    logger.info("monthly_activation_started month=%s tenants=%s", month, len(tenants))

    details: list[dict] = []
    for tenant in tenants:
        tenant_id = tenant.id
        try:
            details.extend(activate_tenant(db, tenant=tenant, now=moment))
        except Exception as exc:
            db.rollback()
            logger.exception("monthly_activation_tenant_failed tenant_id=%s", tenant_id)
            details.append({"tenant_id": str(tenant_id), "result": "failed", "error": str(exc)})

    run = ActivationRun(
        month=month,
        total_tenants=len(tenants),
        success_count=sum(1 for entry in details if entry["result"] == "created"),
        failure_count=sum(1 for entry in details if entry["result"] == "failed"),
        skipped_count=sum(1 for entry in details if entry["result"] == "skipped"),
        details=details,
    )
    db.add(run)
    db.commit()
    logger.info(
        "monthly_activation_completed month=%s success=%s failure=%s skipped=%s",
        month,
        run.success_count,
        run.failure_count,
        run.skipped_count,
    )
    return run
