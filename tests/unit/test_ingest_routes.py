"""
Tests for the visitor ingest HTTP routes.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from app.auth.verify import auth_dependency
from app.config import settings
from app.features.visitor_ingest.api.router import get_import_service, get_sync_service
from app.features.visitor_ingest.domain.models import SyncResult
from app.features.visitor_ingest.errors import (
    ImportJobNotFound,
    ImportValidationError,
    InvalidImportTransition,
    UpstreamApiError,
)
from app.main import app

IMPORT_PATH = "/admin/audiences/import-from-url"
URL = "https://api.audiencelab.io/segments/seg-1"


@pytest.fixture
def import_service():
    service = AsyncMock()
    service.init.return_value = {"audience_id": "manual_1", "total_pages": 12, "records_fetched": 100}
    service.reimport_init.return_value = {
        "audience_id": "manual_1",
        "total_pages": 3,
        "records_fetched": 10,
    }
    service.chunk.return_value = {
        "pages_fetched": 10,
        "chunk_records": 1000,
        "total_inserted": 1100,
        "page_start": 2,
        "page_end": 11,
        "failed_pages": [],
        "pages_remaining": [12],
    }
    service.finalize.return_value = {
        "audience": {"id": "manual_1", "name": "List", "total_records": 1180}
    }
    return service


@pytest.fixture
def sync_service():
    return AsyncMock()


@pytest.fixture
def client(apply_auth_override, import_service, sync_service):
    apply_auth_override(app)
    app.dependency_overrides[get_import_service] = lambda: import_service
    app.dependency_overrides[get_sync_service] = lambda: sync_service
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_init_phase(client, import_service):
    response = client.post(IMPORT_PATH, json={"url": URL, "name": "List"})

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "step": "init",
        "audience_id": "manual_1",
        "total_pages": 12,
        "records_fetched": 100,
    }
    import_service.init.assert_awaited_once_with(
        URL, "List", request_id=None, admin_user_id="admin-123"
    )


def test_chunk_phase(client, import_service):
    response = client.post(
        IMPORT_PATH,
        json={"url": URL, "audience_id": "manual_1", "page_start": 2, "page_end": 11},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["step"] == "chunk"
    assert body["pages_fetched"] == 10
    assert body["chunk_records"] == 1000
    assert body["total_inserted"] == 1100
    assert body["pages_remaining"] == [12]
    import_service.chunk.assert_awaited_once_with(URL, "manual_1", 2, 11)


def test_finalize_phase(client, import_service):
    response = client.post(IMPORT_PATH, json={"audience_id": "manual_1", "finalize": True})

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "step": "finalize",
        "audience": {"id": "manual_1", "name": "List", "total_records": 1180},
    }
    import_service.finalize.assert_awaited_once()


def test_reimport_phase(client, import_service):
    response = client.post(
        IMPORT_PATH,
        json={"url": URL, "name": "List", "audience_id": "manual_1", "reimport": True},
    )

    assert response.status_code == 200
    assert response.json()["step"] == "reimport"
    import_service.reimport_init.assert_awaited_once_with(URL, "List", "manual_1")


def test_chunk_needs_both_page_bounds(client, import_service):
    response = client.post(IMPORT_PATH, json={"audience_id": "manual_1", "page_start": 2})

    assert response.status_code == 400
    import_service.chunk.assert_not_awaited()


@pytest.mark.parametrize(
    "error,status_code",
    [
        (ImportValidationError("Invalid URL format"), 400),
        (ImportJobNotFound("Import job manual_1 not found"), 404),
        (InvalidImportTransition("Import manual_1 is finalized"), 409),
    ],
)
def test_ingest_errors_render_as_error_body(client, import_service, error, status_code):
    import_service.chunk.side_effect = error

    response = client.post(
        IMPORT_PATH,
        json={"url": URL, "audience_id": "manual_1", "page_start": 2, "page_end": 3},
    )

    assert response.status_code == status_code
    assert response.json() == {"error": error.message}


def test_upstream_error_includes_status_and_snippet(client, import_service):
    import_service.init.side_effect = UpstreamApiError(
        "API returned 403: forbidden", upstream_status=403, body_snippet="forbidden"
    )

    response = client.post(IMPORT_PATH, json={"url": URL, "name": "List"})

    assert response.status_code == 502
    assert response.json() == {
        "error": "API returned 403: forbidden",
        "upstream_status": 403,
        "body_snippet": "forbidden",
    }


def test_malformed_body_is_a_400(client):
    response = client.post(
        IMPORT_PATH,
        json={"audience_id": "manual_1", "page_start": "two", "page_end": 3},
    )

    assert response.status_code == 400
    assert "page_start" in response.json()["error"]


def test_clear_contacts(client, import_service):
    import_service.clear_contacts.return_value = {"audience_id": "manual_1", "deleted": 42}

    response = client.post("/admin/audiences/clear-contacts", json={"audience_id": "manual_1"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "audience_id": "manual_1", "deleted": 42}


def test_status_route(client, import_service):
    import_service.get_status.return_value = {"audience_id": "manual_1", "pages_remaining": [5]}

    response = client.get("/admin/audiences/manual_1/status")

    assert response.status_code == 200
    assert response.json()["pages_remaining"] == [5]
    import_service.get_status.assert_awaited_once_with("manual_1")


def test_pixel_sync_route(client, sync_service):
    sync_service.sync_pixel_by_id.return_value = SyncResult(
        pixel_id="px-1", total_fetched=5, total_upserted=3, unique_visitors=3, inserted=2, updated=1
    )

    response = client.post("/pixels/px-1/sync-visitors")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["total_upserted"] == 3


def test_admin_routes_require_admin_role(import_service):
    app.dependency_overrides[auth_dependency] = lambda: {"sub": "user-1", "app_metadata": {}}
    app.dependency_overrides[get_import_service] = lambda: import_service
    try:
        response = TestClient(app).post(IMPORT_PATH, json={"url": URL, "name": "List"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 403
    assert response.json() == {"error": "Admin access required"}
    import_service.init.assert_not_awaited()


def test_admin_routes_require_token():
    response = TestClient(app).post(IMPORT_PATH, json={"url": URL, "name": "List"})

    assert response.status_code in (401, 403)
    assert "error" in response.json()


def test_cron_requires_shared_secret(client, sync_service, monkeypatch):
    monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")

    denied = client.get("/cron/fetch-visitors", headers={"Authorization": "Bearer wrong"})
    missing = client.get("/cron/fetch-visitors")

    assert denied.status_code == 401
    assert missing.status_code == 401
    sync_service.sync_all_active.assert_not_awaited()


def test_cron_syncs_all_active_pixels(client, sync_service, monkeypatch):
    monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")
    sync_service.sync_all_active.return_value = [
        SyncResult(pixel_id="px-1", total_upserted=4),
        SyncResult(pixel_id="px-2", error="timed out after 240.0s"),
    ]

    response = client.get("/cron/fetch-visitors", headers={"Authorization": "Bearer s3cret"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["processed"] == 2
    assert body["succeeded"] == 1
    assert body["failed"] == 1
    assert body["results"][1]["error"] == "timed out after 240.0s"


def test_cron_with_no_configured_pixels(client, sync_service, monkeypatch):
    monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")
    sync_service.sync_all_active.return_value = []

    response = client.get("/cron/fetch-visitors", headers={"Authorization": "Bearer s3cret"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "No pixels with API URLs configured"
    assert body["results"] == []
