from datetime import UTC, datetime, timedelta

import pytest

from app.application.services import publishing_service
from app.application.services.auth_service import AuthService
from app.application.services.magazine_service import create_magazine
from app.application.services.publishing_service import publish_due_issues, publish_issue
from app.core.config import settings
from app.core.errors import BillingRequiredError
from app.domain.models.issue import Issue, IssueStatus

NOW = datetime(2026, 10, 1, 8, 0, tzinfo=UTC)


@pytest.fixture
def tenant_and_magazine(db_session):
    tenant, _ = AuthService.signup_tenant(
        db_session,
        tenant_name="Schedule Media",
        owner_email="owner@schedule.test",
        owner_password="secret123",
    )
    magazine = create_magazine(db_session, tenant=tenant, title="Schedule Monthly")
    db_session.commit()
    return tenant, magazine


def _ready_issue(db_session, tenant, magazine, slug: str) -> Issue:
    issue = Issue(
        tenant_id=tenant.id,
        magazine_id=magazine.id,
        slug=slug,
        title=slug,
        status=IssueStatus.READY.value,
        sprites=[],
        meta={},
    )
    db_session.add(issue)
    db_session.commit()
    return issue


def test_future_publish_schedules_issue(db_session, tenant_and_magazine):
    tenant, magazine = tenant_and_magazine
    issue = _ready_issue(db_session, tenant, magazine, "2026-10")

    result = publish_issue(db_session, tenant=tenant, issue=issue, publish_at=NOW + timedelta(days=2), now=NOW)

    assert result["status"] == "scheduled"
    assert result["published_at"] is None
    assert len(issue.sprites) == 12


def test_due_issues_are_published(db_session, tenant_and_magazine, fake_redis):
    tenant, magazine = tenant_and_magazine
    due = _ready_issue(db_session, tenant, magazine, "2026-10")
    later = _ready_issue(db_session, tenant, magazine, "2026-11")
    publish_issue(db_session, tenant=tenant, issue=due, publish_at=NOW + timedelta(hours=1), now=NOW)
    publish_issue(db_session, tenant=tenant, issue=later, publish_at=NOW + timedelta(days=30), now=NOW)

    summary = publish_due_issues(db_session, now=NOW + timedelta(hours=2))

    db_session.refresh(due)
    db_session.refresh(later)
    assert summary == {"checked": 1, "published": 1, "failed": 0}
    assert due.status == "published"
    assert due.scheduled_at is None
    assert later.status == "scheduled"
    assert fake_redis.store["metrics:scheduled_issues_checked_total"] == "1"


def test_publishing_requires_active_billing(db_session, tenant_and_magazine):
    tenant, magazine = tenant_and_magazine
    issue = _ready_issue(db_session, tenant, magazine, "2026-10")
    tenant.billing_status = "past_due"
    db_session.commit()

    with pytest.raises(BillingRequiredError):
        publish_issue(db_session, tenant=tenant, issue=issue, now=NOW)


def test_publish_revalidates_the_served_issue_url(db_session, tenant_and_magazine, monkeypatch):
    tenant, magazine = tenant_and_magazine
    issue = _ready_issue(db_session, tenant, magazine, "2026-10")
    revalidated: list[list[str]] = []
    monkeypatch.setattr(publishing_service, "revalidate_paths", lambda paths: revalidated.append(paths))

    result = publish_issue(db_session, tenant=tenant, issue=issue, now=NOW)

    base_url = f"https://{tenant.slug}.{settings.public_base_domain}"
    assert result["url"] == f"{base_url}/issues/2026-10"
    assert revalidated == [[result["url"], f"{base_url}/issues", f"{base_url}/latest"]]
