"""End-to-end smoke run against a live API and worker.

Usage: python scripts/test_publish_flow.py [API_BASE_URL]
"""

import sys
import time
import uuid
from datetime import UTC, datetime

import httpx

API_BASE_URL = "http://localhost:8000"


def api_request(
    client: httpx.Client,
    method: str,
    path: str,
    *,
    tenant_id: str | None = None,
    token: str | None = None,
    payload: dict | None = None,
    params: dict | None = None,
) -> dict:
    headers = {}
    if tenant_id:
        headers["X-Tenant-ID"] = tenant_id
    if token:
        headers["Authorization"] = f"Bearer {token}"

    response = client.request(method, path, headers=headers, json=payload, params=params)
    if response.status_code >= 400:
        raise RuntimeError(f"{method} {path} failed: {response.status_code} {response.text}")
    return response.json() if response.content else {}


def main() -> int:
    base_url = sys.argv[1].rstrip("/") if len(sys.argv) > 1 else API_BASE_URL
    suffix = str(uuid.uuid4())[:8]
    owner_email = f"owner-{suffix}@test.local"
    issue_slug = datetime.now(UTC).strftime("%Y-%m")

    with httpx.Client(base_url=base_url, timeout=30.0, follow_redirects=False) as client:
        signup = api_request(
            client,
            "POST",
            "/signup",
            payload={"tenant_name": f"Smoke Media {suffix}", "owner_email": owner_email, "owner_password": "secret123"},
        )
        tenant_id = signup["tenant"]["id"]
        tenant_slug = signup["tenant"]["slug"]
        token = signup["tokens"]["access_token"]
        print(f"[1] Signed up tenant: {tenant_id}")

        magazine = api_request(
            client,
            "POST",
            "/api/magazines",
            tenant_id=tenant_id,
            token=token,
            payload={"title": "Smoke Monthly"},
        )["magazine"]
        print(f"[2] Created magazine: {magazine['slug']}")

        issue_ref = {"magazine_slug": magazine["slug"], "issue_slug": issue_slug}
        queued = api_request(client, "POST", "/api/issues/generate", tenant_id=tenant_id, token=token, payload=issue_ref)
        print(f"[3] Generation queued: job_id={queued['job_id']}")

        deadline = time.time() + 300
        job = None
        while time.time() < deadline:
            job = api_request(client, "GET", f"/api/jobs/{queued['job_id']}", tenant_id=tenant_id, token=token)["job"]
            if job["status"] in {"succeeded", "degraded", "failed"}:
                break
            time.sleep(5)

        if job is None or job["status"] not in {"succeeded", "degraded"}:
            raise RuntimeError(f"Generation did not finish successfully: {job}")
        print(f"[4] Generation finished: status={job['status']} result={job['result']}")

        published = api_request(client, "POST", "/api/issues/publish", tenant_id=tenant_id, token=token, payload=issue_ref)
        print(f"[5] Published issue: {published['url']}")

        public = api_request(
            client,
            "GET",
            "/api/public/issue",
            params={"tenant_slug": tenant_slug, **issue_ref},
        )
        api_request(
            client,
            "POST",
            "/api/analytics/ingest",
            payload={"tenant_slug": tenant_slug, **issue_ref, "event": "view", "payload": {"page": 1}},
        )
        print(f"[6] Public issue has {len(public['articles'])} articles; recorded one view")

    print("Flow completed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
