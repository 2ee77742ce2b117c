"""HTTP tests for the FastAPI app."""

import pytest
from fastapi.testclient import TestClient

from conftest import ScriptedEndpoint, rate_limited
from api.main import app, get_object_store, get_orchestrator


@pytest.fixture
def client(make_orchestrator, image_endpoint, video_endpoint, text_endpoint, object_store):
    orchestrator = make_orchestrator(image_endpoint, video_endpoint, text_endpoint)
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_object_store] = lambda: object_store
    # No `with` block: the lifespan would mount the real output directory
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_generate_returns_assets_with_urls(client):
    response = client.post(
        "/generate",
        json={
            "prompt": "Diwali Sale",
            "user_id": "shop-42",
            "platforms": ["instagram"],
            "business_type": "Retail",
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "complete"
    assert body["errors"] == []
    assert len(body["images"]) == 3
    for image in body["images"]:
        assert image["url"].startswith("http://testserver/output/users/shop-42/")
        assert "_thumb" in image["thumbnailUrl"]
    video = body["videos"][0]
    assert video["url"].startswith(f"http://testserver/output/{video['storageKey']}?expires=")
    assert len(body["captions"]["instagram"]) >= 3
    assert "#DiwaliSale" in body["hashtags"]["instagram"]["tags"]


def test_partial_result_is_still_200(make_orchestrator, image_endpoint, text_endpoint, object_store):
    orchestrator = make_orchestrator(image_endpoint, ScriptedEndpoint(default=rate_limited()), text_endpoint)
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_object_store] = lambda: object_store
    try:
        response = TestClient(app).post(
            "/generate",
            json={"prompt": "Diwali Sale", "user_id": "shop-42", "platforms": ["instagram"]},
        )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "partial"
    assert body["videos"] == []
    assert body["errors"][0]["component"] == "video"
    assert body["errors"][0]["errorCode"] == "SERVICE_ERROR"


def test_short_prompt_is_400(client):
    response = client.post(
        "/generate",
        json={"prompt": "ab", "user_id": "shop-42", "platforms": ["instagram"]},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["retryable"] is False


def test_unknown_platform_is_400(client):
    response = client.post(
        "/generate",
        json={"prompt": "Diwali Sale", "user_id": "shop-42", "platforms": ["myspace"]},
    )

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_malformed_body_is_400(client):
    response = client.post("/generate", json={"prompt": "Diwali Sale"})

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["details"]["errors"]
