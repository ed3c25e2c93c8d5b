import asyncio
import logging
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.application.services.ai_provider import get_ai_provider
from app.application.services.audit_service import log_audit_event
from app.application.services.billing_service import enforce_active_billing, enforce_issue_quota
from app.application.services.blueprint_service import get_blueprint_or_default
from app.application.services.content_pipeline import (
    OUTCOME_DEGRADED,
    OUTCOME_FAILED,
    generate_issue_draft,
    regenerate_article,
)
from app.application.services.issue_service import (
    build_issue_title,
    find_issue,
    materialize_article,
    update_article,
    write_issue_with_articles,
)
from app.core.errors import InvalidStateError, NotFoundError
from app.domain.issue_lifecycle import IssueEvent, apply_transition
from app.domain.models.article import Article
from app.domain.models.failed_job import FailedJob
from app.domain.models.generation_job import GenerationJob, GenerationJobKind, GenerationJobStatus
from app.domain.models.issue import Issue, IssueStatus
from app.domain.models.magazine import Magazine
from app.domain.models.tenant import Tenant
from app.infrastructure.observability.metrics import increment_background_counter

logger = logging.getLogger(__name__)

ACTIVE_JOB_STATUSES = {GenerationJobStatus.QUEUED.value, GenerationJobStatus.RUNNING.value}
CANCELED_REASON = "canceled"


class TransientGenerationError(Exception):
    """Raised when a failed draft should be retried by the task queue."""


def append_job_log(job: GenerationJob, message: str, *, level: str = "info") -> None:
    job.log = [
        *(job.log or []),
        {"at": datetime.now(UTC).isoformat(), "level": level, "message": message},
    ]


def set_job_status(
    job: GenerationJob,
    status: GenerationJobStatus,
    *,
    error: str | None = None,
    result: dict | None = None,
) -> None:
    job.status = status.value
    if error is not None:
        job.error = error
    if result is not None:
        job.result = result
    if status == GenerationJobStatus.RUNNING:
        job.started_at = datetime.now(UTC)
    elif status in {GenerationJobStatus.SUCCEEDED, GenerationJobStatus.DEGRADED, GenerationJobStatus.FAILED}:
        job.finished_at = datetime.now(UTC)


def create_generation_job(
    db: Session,
    *,
    issue: Issue,
    kind: GenerationJobKind,
    requested_by: str | None = None,
) -> GenerationJob:
    job = GenerationJob(
        tenant_id=issue.tenant_id,
        issue_id=issue.id,
        kind=kind.value,
        status=GenerationJobStatus.QUEUED.value,
        requested_by=requested_by,
        result={},
        log=[],
    )
    append_job_log(job, f"{kind.value} job queued for issue {issue.slug}")
    db.add(job)
    db.flush()
    return job


def enqueue_generation_job(job_id: UUID, countdown: int | None = None) -> None:
    from workers.tasks import generate_issue  # local import to avoid import cycle

    generate_issue.apply_async(kwargs={"job_id": str(job_id)}, countdown=countdown)
    logger.info("issue_generation_enqueued job_id=%s countdown=%s", job_id, countdown or 0)


def create_pending_issue(
    db: Session,
    *,
    tenant: Tenant,
    magazine: Magazine,
    issue_slug: str,
    requested_by: str | None = None,
    kind: GenerationJobKind = GenerationJobKind.GENERATE,
) -> tuple[Issue, GenerationJob]:
    if find_issue(db, magazine_id=magazine.id, slug=issue_slug) is not None:
        raise InvalidStateError(f"Issue {issue_slug} already exists")

    issue = Issue(
        tenant_id=tenant.id,
        magazine_id=magazine.id,
        slug=issue_slug,
        title=build_issue_title(),
        status=IssueStatus.PENDING.value,
        sprites=[],
        meta={},
    )
    db.add(issue)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise InvalidStateError(f"Issue {issue_slug} already exists") from exc
    job = create_generation_job(db, issue=issue, kind=kind, requested_by=requested_by)
    return issue, job


def request_issue_generation(
    db: Session,
    *,
    tenant: Tenant,
    magazine: Magazine,
    issue_slug: str,
    requested_by: str | None = None,
) -> tuple[Issue, GenerationJob]:
    enforce_active_billing(tenant)
    enforce_issue_quota(db, tenant=tenant)

    issue, job = create_pending_issue(
        db,
        tenant=tenant,
        magazine=magazine,
        issue_slug=issue_slug,
        requested_by=requested_by,
    )
    log_audit_event(
        db,
        tenant_id=tenant.id,
        action="issue.generate_requested",
        metadata={"issue_id": str(issue.id), "job_id": str(job.id), "issue_slug": issue_slug},
    )
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise InvalidStateError(f"Issue {issue_slug} already exists") from exc

    enqueue_generation_job(job.id)
    return issue, job


def request_issue_retry(db: Session, *, issue: Issue, requested_by: str | None = None) -> GenerationJob:
    apply_transition(issue, IssueEvent.RETRY)
    job = create_generation_job(db, issue=issue, kind=GenerationJobKind.RETRY, requested_by=requested_by)
    log_audit_event(
        db,
        tenant_id=issue.tenant_id,
        action="issue.retry_requested",
        metadata={"issue_id": str(issue.id), "job_id": str(job.id)},
    )
    db.commit()
    enqueue_generation_job(job.id)
    return job


def get_job(db: Session, *, tenant_id: UUID, job_id: UUID) -> GenerationJob:
    job = db.execute(
        select(GenerationJob).where(GenerationJob.id == job_id, GenerationJob.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if job is None:
        raise NotFoundError("Job not found")
    return job


def serialize_job(job: GenerationJob) -> dict:
    return {
        "id": str(job.id),
        "issue_id": str(job.issue_id),
        "kind": job.kind,
        "status": job.status,
        "attempts": job.attempts,
        "requested_by": job.requested_by,
        "result": job.result or {},
        "error": job.error,
        "log": job.log or [],
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "finished_at": job.finished_at.isoformat() if job.finished_at else None,
    }


def _record_failed_job(db: Session, *, job: GenerationJob, error_message: str) -> None:
    db.add(
        FailedJob(
            job_type="generate_issue",
            payload={
                "job_id": str(job.id),
                "issue_id": str(job.issue_id),
                "tenant_id": str(job.tenant_id),
                "kind": job.kind,
                "attempts": job.attempts,
            },
            error_message=error_message,
        )
    )


def _fail_generation(db: Session, *, job: GenerationJob, issue: Issue | None, error_message: str) -> None:
    if issue is not None and issue.status in {IssueStatus.PENDING.value, IssueStatus.RETRYING.value}:
        apply_transition(issue, IssueEvent.GENERATION_FAILED, error=error_message)
    append_job_log(job, error_message, level="error")
    set_job_status(job, GenerationJobStatus.FAILED, error=error_message)
    _record_failed_job(db, job=job, error_message=error_message)
    increment_background_counter("generation_failures_total")
    logger.error("issue_generation_failed job_id=%s issue_id=%s error=%s", job.id, job.issue_id, error_message)


def _skip_canceled(job: GenerationJob) -> None:
    append_job_log(job, "Issue was canceled; generation skipped", level="warning")
    set_job_status(job, GenerationJobStatus.FAILED, error=CANCELED_REASON)
    logger.info("issue_generation_skipped job_id=%s issue_id=%s reason=canceled", job.id, job.issue_id)


def abandon_generation_job(db: Session, *, job_id: UUID, error_message: str) -> GenerationJob | None:
    """Fail a job that never got to run, e.g. its issue lock stayed busy."""
    job = db.get(GenerationJob, job_id)
    if job is None or job.status not in ACTIVE_JOB_STATUSES:
        return job
    issue = db.get(Issue, job.issue_id)
    _fail_generation(db, job=job, issue=issue, error_message=error_message)
    db.commit()
    return job


def run_generation_job(db: Session, *, job_id: UUID, final_attempt: bool = True) -> GenerationJob | None:
    """Execute one generation job and move its issue to ``ready`` or ``error``.

    A failed draft on a non-final attempt puts the job back to ``queued`` and
    raises :class:`TransientGenerationError` so the caller can reschedule it.
    """
    job = db.get(GenerationJob, job_id)
    if job is None:
        logger.warning("issue_generation_job_missing job_id=%s", job_id)
        return None
    if job.status not in ACTIVE_JOB_STATUSES:
        logger.info("issue_generation_job_already_finished job_id=%s status=%s", job.id, job.status)
        return job

    issue = db.get(Issue, job.issue_id)
    if issue is None or issue.status == IssueStatus.CANCELED.value:
        _skip_canceled(job)
        db.commit()
        return job

    job.attempts = (job.attempts or 0) + 1
    set_job_status(job, GenerationJobStatus.RUNNING)
    append_job_log(job, f"Attempt {job.attempts} started")
    db.commit()
    increment_background_counter("issue_generations_total")

    blueprint = get_blueprint_or_default(db, magazine_id=issue.magazine_id)
    issue_slug = issue.slug
    try:
        draft = asyncio.run(generate_issue_draft(get_ai_provider(), blueprint=blueprint, issue_slug=issue_slug))
    except Exception as exc:
        logger.exception("issue_generation_pipeline_crashed job_id=%s issue_id=%s", job.id, job.issue_id)
        _fail_generation(db, job=job, issue=issue, error_message=f"Content pipeline crashed: {exc}")
        db.commit()
        return job

    db.refresh(issue)
    if issue.status == IssueStatus.CANCELED.value:
        _skip_canceled(job)
        db.commit()
        return job

    if draft.outcome == OUTCOME_FAILED:
        message = "Content generation failed: outline and articles used fallbacks"
        if not final_attempt:
            append_job_log(job, f"{message}; retry scheduled", level="warning")
            job.status = GenerationJobStatus.QUEUED.value
            db.commit()
            raise TransientGenerationError(message)
        _fail_generation(db, job=job, issue=issue, error_message=message)
        db.commit()
        return job

    try:
        articles, ad_slots = write_issue_with_articles(
            db,
            issue=issue,
            draft=draft,
            ad_slot_keys=list((blueprint.get("structure") or {}).get("adSlots") or []),
        )
        apply_transition(issue, IssueEvent.GENERATION_SUCCEEDED)
        job_status = (
            GenerationJobStatus.DEGRADED if draft.outcome == OUTCOME_DEGRADED else GenerationJobStatus.SUCCEEDED
        )
        append_job_log(
            job,
            f"Issue ready with {len(articles)} articles ({draft.outcome})",
            level="warning" if job_status == GenerationJobStatus.DEGRADED else "info",
        )
        set_job_status(
            job,
            job_status,
            result={
                "outcome": draft.outcome,
                "articles": len(articles),
                "ad_slots": len(ad_slots),
                "fallback_steps": list(draft.fallback_steps),
            },
        )
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.exception("issue_generation_write_failed job_id=%s issue_id=%s", job_id, issue.id)
        job = db.get(GenerationJob, job_id)
        issue = db.get(Issue, job.issue_id)
        _fail_generation(db, job=job, issue=issue, error_message=f"Failed to store generated issue: {exc}")
        db.commit()
        return job

    if job_status == GenerationJobStatus.DEGRADED:
        increment_background_counter("degraded_generations_total")
    logger.info(
        "issue_generation_completed job_id=%s issue_id=%s outcome=%s articles=%s",
        job.id,
        issue.id,
        draft.outcome,
        len(articles),
    )
    return job


def regenerate_issue_article(
    db: Session,
    *,
    issue: Issue,
    article: Article,
    prompt_override: str | None = None,
) -> tuple[Article, bool]:
    blueprint = get_blueprint_or_default(db, magazine_id=issue.magazine_id)
    updated, degraded = asyncio.run(
        regenerate_article(
            get_ai_provider(),
            article={"title": article.title, "html": article.html},
            prompt_override=prompt_override,
            voice=blueprint.get("voice") or {},
            niche=blueprint.get("niche") or {},
        )
    )
    fields = materialize_article({**updated, "slug": article.slug}, position=article.position)
    patch = {"title": fields["title"], "html": fields["html"]}
    optional_fields = {
        "summary": "summary",
        "tags": "tags",
        "reading_time": "readingTime",
        "word_count": "wordCount",
    }
    for key, source_key in optional_fields.items():
        if source_key in updated:
            patch[key] = fields[key]
    update_article(db, article=article, patch=patch)
    log_audit_event(
        db,
        tenant_id=issue.tenant_id,
        action="issue.article_regenerated",
        metadata={"issue_id": str(issue.id), "article_id": str(article.id), "degraded": degraded},
    )
    return article, degraded
