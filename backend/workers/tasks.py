import logging
from datetime import UTC, datetime
from uuid import UUID, uuid4

from app.application.services.activation_service import run_monthly_activation
from app.application.services.generation_service import (
    TransientGenerationError,
    abandon_generation_job,
    run_generation_job,
)
from app.application.services.publishing_service import publish_due_issues as publish_due_issues_service
from app.core.config import settings
from app.domain.models.generation_job import GenerationJob
from app.infrastructure.cache.redis_client import get_redis_client
from app.infrastructure.db.session import SessionLocal
from app.infrastructure.observability.metrics import measure_redis
from workers.celery_app import celery_app

logger = logging.getLogger(__name__)

LOCK_BUSY_RETRY_SECONDS = 30
RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


def _generation_lock_key(issue_id) -> str:
    return f"lock:generation:{issue_id}"


def _acquire_generation_lock(redis_client, *, issue_id) -> str | None:
    token = str(uuid4())
    with measure_redis("generation_lock_acquire"):
        acquired = redis_client.set(
            _generation_lock_key(issue_id),
            token,
            nx=True,
            ex=settings.generation_lock_ttl_seconds,
        )
    return token if acquired else None


def _release_generation_lock(redis_client, *, issue_id, token: str) -> None:
    try:
        with measure_redis("generation_lock_release"):
            redis_client.eval(RELEASE_LOCK_SCRIPT, 1, _generation_lock_key(issue_id), token)
    except Exception:
        logger.exception("generation_lock_release_failed issue_id=%s", issue_id)


def _lock_busy_countdown(redis_client, *, issue_id) -> int:
    with measure_redis("generation_lock_ttl"):
        remaining = redis_client.ttl(_generation_lock_key(issue_id))
    return max(LOCK_BUSY_RETRY_SECONDS, int(remaining or 0))


def retry_countdown(attempt: int) -> int:
    return min(600, 30 * (2 ** max(0, attempt - 1)))


@celery_app.task(
    bind=True,
    name="workers.tasks.generate_issue",
    max_retries=settings.generation_max_task_retries,
    acks_late=True,
)
def generate_issue(self, job_id: str) -> dict:
    job_uuid = UUID(job_id)
    attempt = self.request.retries + 1
    final_attempt = self.request.retries >= self.max_retries

    with SessionLocal() as db:
        job = db.get(GenerationJob, job_uuid)
        if job is None:
            logger.warning("generate_issue_job_missing job_id=%s", job_id)
            return {"status": "missing"}
        issue_id = job.issue_id

    redis_client = get_redis_client()
    token = _acquire_generation_lock(redis_client, issue_id=issue_id)
    if token is None:
        logger.info("generate_issue_locked job_id=%s issue_id=%s", job_id, issue_id)
        if final_attempt:
            with SessionLocal() as db:
                job = abandon_generation_job(
                    db,
                    job_id=job_uuid,
                    error_message="Issue generation lock stayed busy; retries exhausted",
                )
                return {"status": job.status if job is not None else "missing", "job_id": job_id}
        raise self.retry(countdown=_lock_busy_countdown(redis_client, issue_id=issue_id))

    try:
        with SessionLocal() as db:
            try:
                job = run_generation_job(db, job_id=job_uuid, final_attempt=final_attempt)
            except TransientGenerationError as exc:
                countdown = retry_countdown(attempt)
                logger.warning(
                    "generate_issue_retry job_id=%s attempt=%s countdown=%s error=%s",
                    job_id,
                    attempt,
                    countdown,
                    exc,
                )
                raise self.retry(exc=exc, countdown=countdown)
            return {"status": job.status if job is not None else "missing", "job_id": job_id}
    finally:
        _release_generation_lock(redis_client, issue_id=issue_id, token=token)


@celery_app.task(name="workers.tasks.publish_due_issues")
def publish_due_issues() -> dict:
    with SessionLocal() as db:
        return publish_due_issues_service(db)


@celery_app.task(name="workers.tasks.monthly_issue_activation")
def monthly_issue_activation() -> dict:
    with SessionLocal() as db:
        run = run_monthly_activation(db)
        return {
            "run_id": str(run.id),
            "month": run.month,
            "total_tenants": run.total_tenants,
            "success": run.success_count,
            "failure": run.failure_count,
            "skipped": run.skipped_count,
        }


@celery_app.task(name="workers.tasks.worker_heartbeat")
def worker_heartbeat() -> dict:
    redis_client = get_redis_client()
    now = datetime.now(UTC).isoformat()
    with measure_redis("worker_heartbeat_set"):
        redis_client.set(
            settings.worker_heartbeat_key,
            now,
            ex=max(15, settings.worker_heartbeat_ttl_seconds),
        )
    return {"heartbeat_at": now}
