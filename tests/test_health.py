from __future__ import annotations

import asyncio

import pytest

pytest.importorskip("httpx")

from fastapi.testclient import TestClient

from handscore import db
from handscore.main import app
from handscore.pipeline.evaluation import build_evaluation_pipeline, get_evaluation_pipeline
from handscore.settings import settings


@pytest.mark.parametrize(
    ("api_key", "expected_openai_configured"),
    [("test-key", True), ("   ", False)],
)
def test_health_returns_openai_configuration_status(
    database, monkeypatch, api_key: str, expected_openai_configured: bool
) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", api_key)

    with TestClient(app) as client:
        response = client.get("/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is True
    assert payload["openai_configured"] is expected_openai_configured


def test_health_deep_returns_storage_and_db_diagnostics(database, monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("OPENAI_MOCK", "1")
    monkeypatch.setattr(settings, "ocr_providers", "stub")

    with TestClient(app) as client:
        response = client.get("/health/deep")

    assert response.status_code == 200
    payload = response.json()
    assert payload["storage_writable"] is True
    assert payload["db_ok"] is True
    assert payload["storage_backend"] == "local"
    assert payload["data_dir"] == str(settings.data_path)
    assert payload["ocr_providers"] == ["stub"]
    assert payload["ok"] is True
    assert not list((settings.data_path / "objects").rglob("check-*"))


def test_questions_require_api_key_when_configured(database, monkeypatch) -> None:
    monkeypatch.setenv("BACKEND_API_KEY", "test-api-key")

    with TestClient(app) as client:
        unauthorized = client.get("/questions")
        authorized = client.get("/questions", headers={"X-API-Key": "test-api-key"})
        health = client.get("/health")

    assert unauthorized.status_code == 401
    assert authorized.status_code == 200
    assert health.status_code == 200


def test_preflight_bypasses_auth(database, monkeypatch) -> None:
    monkeypatch.setenv("BACKEND_API_KEY", "test-api-key")

    with TestClient(app) as client:
        preflight = client.options(
            "/evaluations",
            headers={
                "Origin": "https://frontend.example",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "x-api-key,content-type",
            },
        )
        unauthorized_post = client.post("/questions", json={"title": "t", "content": "c", "subject": "s"})

    assert preflight.status_code in (200, 204)
    assert "access-control-allow-origin" in preflight.headers
    assert unauthorized_post.status_code == 401


class ReadOnlyStorage:
    name = "readonly"

    async def put_bytes(self, key, data, content_type):
        raise OSError("read-only file system")

    async def delete(self, key):
        return None

    async def url_for(self, key, expires_seconds=3600):
        return key


def test_health_deep_reports_unwritable_storage(database, monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_MOCK", "1")
    monkeypatch.setattr(settings, "ocr_providers", "stub")
    pipeline = build_evaluation_pipeline()
    pipeline.storage = ReadOnlyStorage()
    app.dependency_overrides[get_evaluation_pipeline] = lambda: pipeline

    try:
        with TestClient(app) as client:
            payload = client.get("/health/deep").json()
    finally:
        app.dependency_overrides.clear()

    assert payload["storage_writable"] is False
    assert payload["db_ok"] is True
    assert payload["ok"] is False


def test_health_deep_queries_the_database_in_a_worker_thread(database, monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_MOCK", "1")
    monkeypatch.setattr(settings, "ocr_providers", "stub")
    opened_on_loop: list[bool] = []
    open_session = db.open_session

    def tracking_open_session():
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            opened_on_loop.append(False)
        else:
            opened_on_loop.append(True)
        return open_session()

    monkeypatch.setattr(db, "open_session", tracking_open_session)

    with TestClient(app) as client:
        payload = client.get("/health/deep").json()

    assert payload["db_ok"] is True
    assert payload["ocr_providers"] == ["stub"]
    assert opened_on_loop
    assert not any(opened_on_loop)
