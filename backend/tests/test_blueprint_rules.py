from fastapi.testclient import TestClient


def _create_magazine(client: TestClient, headers: dict) -> str:
    response = client.post("/api/magazines", headers=headers, json={"title": "Acme Monthly"})
    assert response.status_code == 201, response.text
    return response.json()["magazine"]["slug"]


def _save(client: TestClient, headers: dict, magazine_slug: str, structure: dict):
    return client.post(
        "/api/blueprints/save",
        headers=headers,
        json={"magazine_slug": magazine_slug, "structure": structure},
    )


def test_new_magazine_gets_default_blueprint(client: TestClient, owner: dict):
    magazine_slug = _create_magazine(client, owner["headers"])

    response = client.get("/api/blueprints", headers=owner["headers"], params={"magazine_slug": magazine_slug})

    assert response.status_code == 200
    blueprint = response.json()["blueprint"]
    assert blueprint["structure"]["pages"] == 12
    assert blueprint["structure"]["adSlots"] == ["p4", "p10"]
    assert blueprint["is_default"] is False


def test_minimum_page_count(client: TestClient, owner: dict):
    magazine_slug = _create_magazine(client, owner["headers"])

    response = _save(client, owner["headers"], magazine_slug, {"pages": 6, "sections": ["cover", "closing"]})

    assert response.status_code == 422
    assert response.json()["error"]["message"] == "Minimum page count is 8"


def test_plan_page_limit(client: TestClient, owner: dict):
    magazine_slug = _create_magazine(client, owner["headers"])

    response = _save(client, owner["headers"], magazine_slug, {"pages": 20, "sections": ["cover", "closing"]})

    assert response.status_code == 422
    body = response.json()
    assert body["ok"] is False
    assert body["error"]["code"] == "422_PLAN_LIMIT"
    assert body["error"]["message"] == "Pages limit exceeded. Requested: 20, Max: 12"


def test_cover_section_is_required(client: TestClient, owner: dict):
    magazine_slug = _create_magazine(client, owner["headers"])

    response = _save(client, owner["headers"], magazine_slug, {"pages": 10, "sections": ["feature", "closing"]})

    assert response.status_code == 422
    assert response.json()["error"]["message"] == "Blueprint must include a cover section"


def test_missing_structure_is_bad_request(client: TestClient, owner: dict):
    magazine_slug = _create_magazine(client, owner["headers"])

    response = client.post("/api/blueprints/save", headers=owner["headers"], json={"magazine_slug": magazine_slug})

    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Missing required field: structure"


def test_valid_blueprint_is_saved(client: TestClient, owner: dict):
    magazine_slug = _create_magazine(client, owner["headers"])

    response = _save(
        client,
        owner["headers"],
        magazine_slug,
        {"pages": 10, "sections": ["cover", "feature", "closing"], "adSlots": ["p5"]},
    )

    assert response.status_code == 200, response.text
    blueprint = response.json()["blueprint"]
    assert blueprint["structure"] == {"pages": 10, "sections": ["cover", "feature", "closing"], "adSlots": ["p5"]}
    assert blueprint["cadence"] == "monthly"


def test_viewer_cannot_save_blueprint(client: TestClient, owner: dict, member_headers):
    magazine_slug = _create_magazine(client, owner["headers"])
    viewer = member_headers("viewer@acme.test", "viewer")

    response = _save(client, viewer, magazine_slug, {"pages": 10, "sections": ["cover", "closing"]})

    assert response.status_code == 403
