from datetime import UTC, datetime

from sqlalchemy import select

from app.application.services import generation_service
from app.application.services.activation_service import run_monthly_activation
from app.application.services.auth_service import AuthService
from app.application.services.magazine_service import create_magazine
from app.domain.models.issue import Issue

NOW = datetime(2026, 11, 1, 0, 0, tzinfo=UTC)


def _tenant_with_magazine(db_session, name: str):
    tenant, _ = AuthService.signup_tenant(
        db_session,
        tenant_name=name,
        owner_email=f"owner@{name.lower().replace(' ', '-')}.test",
        owner_password="secret123",
    )
    create_magazine(db_session, tenant=tenant, title=f"{name} Monthly")
    db_session.commit()
    return tenant


def test_activation_creates_one_issue_per_magazine(db_session, enqueued_jobs):
    first = _tenant_with_magazine(db_session, "Alpha Media")
    _tenant_with_magazine(db_session, "Beta Media")
    inactive = _tenant_with_magazine(db_session, "Gamma Media")
    inactive.billing_status = "canceled"
    db_session.commit()

    run = run_monthly_activation(db_session, now=NOW)

    assert run.month == "2026-11"
    assert run.total_tenants == 2
    assert run.success_count == 2
    assert run.failure_count == 0
    assert len(enqueued_jobs) == 2
    issues = db_session.execute(select(Issue).where(Issue.tenant_id == first.id)).scalars().all()
    assert [issue.slug for issue in issues] == ["2026-11"]
    assert issues[0].status == "pending"


def test_second_run_skips_existing_issues(db_session, enqueued_jobs):
    _tenant_with_magazine(db_session, "Alpha Media")

    run_monthly_activation(db_session, now=NOW)
    rerun = run_monthly_activation(db_session, now=NOW)

    assert rerun.success_count == 0
    assert rerun.skipped_count == 1
    assert rerun.details[0]["reason"] == "Issue already exists"
    assert len(enqueued_jobs) == 1


def test_enqueue_failure_marks_issue_error(db_session, monkeypatch):
    tenant = _tenant_with_magazine(db_session, "Alpha Media")

    def broken_enqueue(job_id, countdown=None):
        raise ConnectionError("broker unavailable")

    monkeypatch.setattr(generation_service, "enqueue_generation_job", broken_enqueue)

    run = run_monthly_activation(db_session, now=NOW)

    issue = db_session.execute(select(Issue).where(Issue.tenant_id == tenant.id)).scalar_one()
    assert run.failure_count == 1
    assert run.details[0]["error"] == "Failed to enqueue generation: broker unavailable"
    assert issue.status == "error"
