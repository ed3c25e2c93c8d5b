import pytest
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from app.application.services import generation_service
from app.application.services.auth_service import AuthService
from app.application.services.generation_service import TransientGenerationError, create_pending_issue, run_generation_job
from app.application.services.magazine_service import create_magazine
from app.domain.issue_lifecycle import IssueEvent, apply_transition
from app.domain.models.failed_job import FailedJob
from app.domain.models.issue import Issue
from conftest import FakeAIProvider, FakeRedis
from workers import tasks
from workers.tasks import _acquire_generation_lock, _lock_busy_countdown, _release_generation_lock, retry_countdown


@pytest.fixture
def pending(db_session):
    tenant, _ = AuthService.signup_tenant(
        db_session,
        tenant_name="Worker Media",
        owner_email="owner@worker.test",
        owner_password="secret123",
    )
    magazine = create_magazine(db_session, tenant=tenant, title="Worker Weekly")
    issue, job = create_pending_issue(db_session, tenant=tenant, magazine=magazine, issue_slug="2026-10")
    db_session.commit()
    return issue, job


@pytest.fixture
def offline_provider(monkeypatch):
    provider = FakeAIProvider(fail=True)
    monkeypatch.setattr(generation_service, "get_ai_provider", lambda: provider)
    return provider


def test_failed_draft_is_requeued_before_final_attempt(db_session, pending, offline_provider):
    issue, job = pending

    with pytest.raises(TransientGenerationError):
        run_generation_job(db_session, job_id=job.id, final_attempt=False)

    db_session.refresh(job)
    db_session.refresh(issue)
    assert job.status == "queued"
    assert job.attempts == 1
    assert issue.status == "pending"
    assert db_session.execute(select(FailedJob)).scalars().all() == []


def test_final_failure_marks_issue_error_and_records_failed_job(db_session, pending, offline_provider, fake_redis):
    issue, job = pending

    result = run_generation_job(db_session, job_id=job.id, final_attempt=True)

    db_session.refresh(issue)
    assert result.status == "failed"
    assert issue.status == "error"
    assert issue.last_error.startswith("Content generation failed")
    failed_jobs = db_session.execute(select(FailedJob)).scalars().all()
    assert len(failed_jobs) == 1
    assert failed_jobs[0].payload["job_id"] == str(job.id)
    assert fake_redis.store["metrics:generation_failures_total"] == "1"


def test_canceled_issue_is_skipped(db_session, pending, fake_provider):
    issue, job = pending
    apply_transition(db_session.get(Issue, issue.id), IssueEvent.CANCEL)
    db_session.commit()

    result = run_generation_job(db_session, job_id=job.id)

    assert result.status == "failed"
    assert result.error == "canceled"
    assert result.attempts == 0
    assert fake_provider.requests == []


def test_finished_job_is_not_run_twice(db_session, pending, fake_provider):
    _, job = pending

    first = run_generation_job(db_session, job_id=job.id)
    requests_after_first = len(fake_provider.requests)
    second = run_generation_job(db_session, job_id=job.id)

    assert first.status == "succeeded"
    assert second.status == "succeeded"
    assert second.attempts == 1
    assert len(fake_provider.requests) == requests_after_first


def test_generation_lock_is_exclusive_per_issue():
    redis = FakeRedis()

    token = _acquire_generation_lock(redis, issue_id="issue-1")
    assert token is not None
    assert _acquire_generation_lock(redis, issue_id="issue-1") is None

    _release_generation_lock(redis, issue_id="issue-1", token="someone-else")
    assert _acquire_generation_lock(redis, issue_id="issue-1") is None

    _release_generation_lock(redis, issue_id="issue-1", token=token)
    assert _acquire_generation_lock(redis, issue_id="issue-1") is not None


def test_retry_countdown_backs_off_and_caps():
    assert [retry_countdown(attempt) for attempt in range(1, 7)] == [30, 60, 120, 240, 480, 600]


def test_lock_busy_countdown_waits_for_lock_expiry():
    redis = FakeRedis()
    assert _lock_busy_countdown(redis, issue_id="issue-1") == 30

    redis.set("lock:generation:issue-1", "stale-token", nx=True, ex=900)
    assert _lock_busy_countdown(redis, issue_id="issue-1") == 900


def test_busy_lock_on_last_attempt_fails_job_and_issue(db_engine, db_session, pending, fake_redis, monkeypatch):
    issue, job = pending
    monkeypatch.setattr(tasks, "SessionLocal", sessionmaker(autocommit=False, autoflush=False, bind=db_engine))
    monkeypatch.setattr(tasks, "get_redis_client", lambda: fake_redis)
    fake_redis.set(f"lock:generation:{issue.id}", "stale-token", nx=True, ex=900)

    result = tasks.generate_issue.apply(args=[str(job.id)], retries=tasks.generate_issue.max_retries).get()

    assert result["status"] == "failed"
    db_session.expire_all()
    assert db_session.get(Issue, issue.id).status == "error"
    failed_jobs = db_session.execute(select(FailedJob)).scalars().all()
    assert len(failed_jobs) == 1
    assert "lock stayed busy" in failed_jobs[0].error_message
