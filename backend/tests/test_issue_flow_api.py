from uuid import UUID

from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.application.services.billing_service import apply_plan
from app.application.services.generation_service import run_generation_job
from app.domain.models.analytics_event import AnalyticsEvent
from app.domain.models.audit_log import AuditLog
from app.domain.models.tenant import Tenant

MAGAZINE = "acme-monthly"
ISSUE = "2026-10"
ISSUE_REF = {"magazine_slug": MAGAZINE, "issue_slug": ISSUE}


def _create_magazine(client: TestClient, headers: dict) -> None:
    response = client.post("/api/magazines", headers=headers, json={"title": "Acme Monthly"})
    assert response.status_code == 201, response.text
    assert response.json()["magazine"]["slug"] == MAGAZINE


def _generate(client: TestClient, headers: dict) -> dict:
    response = client.post("/api/issues/generate", headers=headers, json=ISSUE_REF)
    assert response.status_code == 202, response.text
    return response.json()


def _generate_ready_issue(client: TestClient, db_session, headers: dict) -> dict:
    _create_magazine(client, headers)
    queued = _generate(client, headers)
    job = run_generation_job(db_session, job_id=UUID(queued["job_id"]))
    assert job.status == "succeeded"
    return queued


def test_generate_queues_pending_issue(client: TestClient, owner: dict, enqueued_jobs):
    _create_magazine(client, owner["headers"])

    body = _generate(client, owner["headers"])

    assert body["ok"] is True
    assert body["status"] == "pending"
    assert enqueued_jobs == [UUID(body["job_id"])]

    job = client.get(f"/api/jobs/{body['job_id']}", headers=owner["headers"])
    assert job.status_code == 200
    assert job.json()["job"]["status"] == "queued"
    assert job.json()["job"]["kind"] == "generate"


def test_monthly_quota_blocks_second_issue(client: TestClient, owner: dict):
    _create_magazine(client, owner["headers"])
    _generate(client, owner["headers"])

    response = client.post(
        "/api/issues/generate",
        headers=owner["headers"],
        json={"magazine_slug": MAGAZINE, "issue_slug": "2026-11"},
    )

    assert response.status_code == 422
    assert response.json()["error"]["message"] == "Issues per month limit exceeded. Requested: 2, Max: 1"


def test_duplicate_issue_slug_is_rejected(client: TestClient, owner: dict, db_session):
    tenant = db_session.get(Tenant, UUID(owner["tenant_id"]))
    apply_plan(tenant, plan="pro")
    db_session.commit()
    _create_magazine(client, owner["headers"])
    _generate(client, owner["headers"])

    response = client.post("/api/issues/generate", headers=owner["headers"], json=ISSUE_REF)

    assert response.status_code == 422
    assert response.json()["error"]["message"] == f"Issue {ISSUE} already exists"


def test_pending_issue_cannot_be_published_or_retried(client: TestClient, owner: dict):
    _create_magazine(client, owner["headers"])
    _generate(client, owner["headers"])

    publish = client.post("/api/issues/publish", headers=owner["headers"], json=ISSUE_REF)
    retry = client.post("/api/issues/retry", headers=owner["headers"], json=ISSUE_REF)

    assert publish.status_code == 422
    assert publish.json()["error"]["code"] == "422_INVALID_STATE"
    assert retry.status_code == 422
    assert retry.json()["error"]["message"].startswith("Only issues in error state can be retried")


def test_generation_writes_articles_and_ad_slots(client: TestClient, owner: dict, db_session, fake_provider):
    _generate_ready_issue(client, db_session, owner["headers"])

    response = client.get(f"/api/issues/{MAGAZINE}/{ISSUE}", headers=owner["headers"])

    assert response.status_code == 200
    body = response.json()
    assert body["issue"]["status"] == "ready"
    assert body["issue"]["title"] == "October 2026"
    assert body["issue"]["meta"]["outcome"] == "success"
    assert len(body["articles"]) == 5
    assert [slot["slot_key"] for slot in body["ad_slots"]] == ["p10", "p4"]


def test_edit_regenerate_and_ads(client: TestClient, owner: dict, db_session, fake_provider):
    _generate_ready_issue(client, db_session, owner["headers"])
    detail = client.get(f"/api/issues/{MAGAZINE}/{ISSUE}", headers=owner["headers"]).json()
    article = detail["articles"][0]

    updated = client.post(
        "/api/issues/update",
        headers=owner["headers"],
        json={**ISSUE_REF, "patch": {"title": "October Special"}},
    )
    status_change = client.post(
        "/api/issues/update",
        headers=owner["headers"],
        json={**ISSUE_REF, "patch": {"status": "published"}},
    )
    regenerated = client.post(
        "/api/issues/regenerate-article",
        headers=owner["headers"],
        json={**ISSUE_REF, "article_id": article["slug"], "prompt_override": "Add examples"},
    )
    ads = client.post(
        "/api/issues/ads",
        headers=owner["headers"],
        json={**ISSUE_REF, "ads": [{"slot_key": "p4", "target_url": "https://sponsor.test", "sponsor": "Sponsor"}]},
    )

    assert updated.status_code == 200
    assert updated.json()["issue"]["title"] == "October Special"
    assert updated.json()["issue"]["status"] == "ready"
    assert status_change.status_code == 422
    assert regenerated.status_code == 200, regenerated.text
    assert regenerated.json()["degraded"] is False
    assert regenerated.json()["article"]["title"] == f"Story: {article['title']}"
    assert ads.status_code == 200
    assert ads.json()["ad_slots"][0]["tracking_code"] == (
        "https://sponsor.test?utm_source=magazinify&utm_medium=ad&utm_campaign=2026-10"
    )


def test_publish_and_read_public_issue(client: TestClient, owner: dict, db_session, fake_provider):
    _generate_ready_issue(client, db_session, owner["headers"])
    public_query = {"tenant_slug": owner["tenant_slug"], "magazine_slug": MAGAZINE, "issue_slug": ISSUE}

    hidden = client.get("/api/public/issue", params=public_query)
    assert hidden.status_code == 404

    published = client.post("/api/issues/publish", headers=owner["headers"], json=ISSUE_REF)
    assert published.status_code == 200, published.text
    assert published.json()["status"] == "published"
    assert published.json()["url"] == f"https://{owner['tenant_slug']}.magazinify.ai/issues/{ISSUE}"

    public = client.get("/api/public/issue", params=public_query)
    assert public.status_code == 200
    body = public.json()
    assert len(body["issue"]["sprites"]) == 12
    assert "html" not in body["articles"][0]

    article = client.get("/api/public/article", params={**public_query, "article_slug": body["articles"][0]["slug"]})
    assert article.status_code == 200
    assert article.json()["html"].startswith("<article>")

    latest = client.get(
        "/api/public/latest",
        params={"tenant_slug": owner["tenant_slug"], "magazine_slug": MAGAZINE},
        follow_redirects=False,
    )
    assert latest.status_code == 302
    assert latest.headers["location"] == published.json()["url"]

    archive = client.get("/api/public/archive", params={"tenant_slug": owner["tenant_slug"], "magazine_slug": MAGAZINE})
    assert [issue["slug"] for issue in archive.json()["issues"]] == [ISSUE]


def test_ingest_and_summary(client: TestClient, owner: dict, db_session, fake_provider):
    _generate_ready_issue(client, db_session, owner["headers"])
    client.post("/api/issues/publish", headers=owner["headers"], json=ISSUE_REF)
    event = {"tenant_slug": owner["tenant_slug"], "magazine_slug": MAGAZINE, "issue_slug": ISSUE}

    view = client.post("/api/analytics/ingest", json={**event, "event": "view", "payload": {"page": 1}})
    bad = client.post("/api/analytics/ingest", json={**event, "event": "scroll"})
    summary = client.get("/api/analytics/summary", headers=owner["headers"], params={"range": "7d"})

    assert view.json() == {"ok": True}
    assert bad.status_code == 400
    assert summary.status_code == 200
    assert summary.json()["summary"]["totalViews"] == 1
    assert summary.json()["summary"]["topPages"] == [{"page": "Page 1", "count": 1}]
    assert summary.json()["total_events"] == 1


def test_cancel_requires_admin(client: TestClient, owner: dict, member_headers, db_session):
    _create_magazine(client, owner["headers"])
    _generate(client, owner["headers"])

    denied = client.post("/api/issues/cancel", headers=owner["headers"], json=ISSUE_REF)
    admin = member_headers("admin@acme.test", "admin")
    canceled = client.post("/api/issues/cancel", headers=admin, json=ISSUE_REF)

    assert denied.status_code == 403
    assert canceled.status_code == 200
    assert canceled.json()["issue"]["status"] == "canceled"
    actions = db_session.execute(select(AuditLog.action).where(AuditLog.tenant_id == UUID(owner["tenant_id"]))).scalars()
    assert "issue.canceled" in set(actions)


def test_requests_need_matching_tenant_header(client: TestClient, owner: dict):
    missing = client.get("/api/magazines", headers={"Authorization": owner["headers"]["Authorization"]})
    invalid = client.get("/api/magazines", headers={**owner["headers"], "X-Tenant-ID": "not-a-uuid"})

    assert missing.status_code == 400
    assert missing.json()["error"]["message"] == "Missing X-Tenant-ID header"
    assert invalid.status_code == 400
    assert invalid.json()["error"]["code"] == "400_INVALID_TENANT_HEADER"


def test_ingest_for_unpublished_issue_is_not_found(client: TestClient, owner: dict, db_session, fake_provider):
    _generate_ready_issue(client, db_session, owner["headers"])
    event = {"tenant_slug": owner["tenant_slug"], "magazine_slug": MAGAZINE, "issue_slug": ISSUE, "event": "view"}

    ready = client.post("/api/analytics/ingest", json=event)
    missing = client.post("/api/analytics/ingest", json={**event, "issue_slug": "2026-11"})

    assert ready.status_code == 404
    assert missing.status_code == 404
    assert ready.json()["ok"] is False


def test_ingest_reports_ok_when_event_write_fails(
    client: TestClient, owner: dict, db_session, fake_provider, monkeypatch
):
    _generate_ready_issue(client, db_session, owner["headers"])
    client.post("/api/issues/publish", headers=owner["headers"], json=ISSUE_REF)
    event = {"tenant_slug": owner["tenant_slug"], "magazine_slug": MAGAZINE, "issue_slug": ISSUE, "event": "view"}

    def broken_commit():
        raise SQLAlchemyError("database unavailable")

    with monkeypatch.context() as patch:
        patch.setattr(db_session, "commit", broken_commit)
        response = client.post("/api/analytics/ingest", json=event)

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert db_session.execute(select(AnalyticsEvent)).scalars().all() == []


def test_generate_rejects_malformed_issue_slug(client: TestClient, owner: dict, enqueued_jobs):
    _create_magazine(client, owner["headers"])

    too_long = client.post(
        "/api/issues/generate",
        headers=owner["headers"],
        json={"magazine_slug": MAGAZINE, "issue_slug": "a" * 65},
    )
    spaced = client.post(
        "/api/issues/generate",
        headers=owner["headers"],
        json={"magazine_slug": MAGAZINE, "issue_slug": "October 2026"},
    )

    assert too_long.status_code == 422
    assert too_long.json()["error"]["code"] == "422_INVALID_INPUT"
    assert spaced.status_code == 422
    assert enqueued_jobs == []
