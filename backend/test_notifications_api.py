"""
Tests for the notifications HTTP routes in server.py

Runs the FastAPI app in test mode: in-memory store and fake transports.
"""

import pytest
from fastapi.testclient import TestClient

from common.errors import StoreError
from notifications.models import Device

USER = {"X-User-Id": "user-1"}
TOKEN = "ExponentPushToken[aaaaaaaaaaaaaaaaaaaaaa]"


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("PUSH_MODE", "test")
    from server import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def service(client):
    service = client.app.state.service
    service.store.add_device(Device(user_id="user-1", token=TOKEN))
    return service


def test_scheduler_started_with_app(client):
    service = client.app.state.service
    assert service.scheduler.started is True


def test_user_header_required(client):
    response = client.get("/api/notifications")
    assert response.status_code == 422


def test_send_test_and_list(client, service):
    response = client.post("/api/notifications/test", headers=USER)
    assert response.status_code == 200
    body = response.json()
    assert body["type"] == "generic"
    assert body["status"] == "sent"

    listed = client.get("/api/notifications", headers=USER).json()
    assert listed["count"] == 1
    assert listed["notifications"][0]["id"] == body["id"]

    # Other users see nothing
    other = client.get("/api/notifications", headers={"X-User-Id": "user-2"}).json()
    assert other["count"] == 0


def test_read_flow(client, service):
    first = client.post("/api/notifications/test", headers=USER).json()
    client.post("/api/notifications/test", headers=USER)

    assert client.get("/api/notifications/unread-count", headers=USER).json() == {"count": 2}

    read = client.put(f"/api/notifications/{first['id']}/read", headers=USER)
    assert read.status_code == 200
    assert read.json()["status"] == "read"
    assert client.get("/api/notifications/unread-count", headers=USER).json() == {"count": 1}

    all_read = client.put("/api/notifications/read-all", headers=USER).json()
    assert all_read == {"success": True, "updated": 1}
    assert client.get("/api/notifications/unread-count", headers=USER).json() == {"count": 0}


def test_mark_read_missing(client):
    response = client.put("/api/notifications/999/read", headers=USER)
    assert response.status_code == 404


def test_mark_read_failed_notification_conflicts(client):
    # No devices registered: the test notification fails
    failed = client.post("/api/notifications/test", headers=USER).json()
    assert failed["status"] == "failed"

    response = client.put(f"/api/notifications/{failed['id']}/read", headers=USER)
    assert response.status_code == 409


def test_settings(client):
    assert client.get("/api/notifications/settings", headers=USER).json()["lowStockAlerts"] is None

    updated = client.put(
        "/api/notifications/settings", headers=USER, json={"lowStockAlerts": False}
    ).json()
    assert updated["lowStockAlerts"] is False

    updated = client.put(
        "/api/notifications/settings", headers=USER, json={"expiryAlerts": True}
    ).json()
    assert updated["lowStockAlerts"] is False
    assert updated["expiryAlerts"] is True


def test_unregister_device(client, service):
    response = client.delete(f"/api/notifications/devices/{TOKEN}", headers=USER)
    assert response.status_code == 200
    assert response.json() == {"success": True, "deactivated": True}
    assert service.store.device(TOKEN).is_active is False

    failed = client.post("/api/notifications/test", headers=USER).json()
    assert failed["status"] == "failed"


def test_unregister_other_users_device_is_ignored(client, service):
    response = client.delete(
        f"/api/notifications/devices/{TOKEN}", headers={"X-User-Id": "user-2"}
    )
    assert response.status_code == 200
    assert response.json() == {"success": True, "deactivated": False}
    assert service.store.device(TOKEN).is_active is True

    delivered = client.post("/api/notifications/test", headers=USER).json()
    assert delivered["status"] == "sent"


class TestStoreUnavailable:
    CASES = [
        ("GET", "/api/notifications", "list_for_user", None),
        ("GET", "/api/notifications/unread-count", "unread_count", None),
        ("PUT", "/api/notifications/read-all", "mark_all_read", None),
        ("GET", "/api/notifications/settings", "get_settings", None),
        ("PUT", "/api/notifications/settings", "update_settings", {"lowStockAlerts": False}),
        ("POST", "/api/notifications/test", "send_test", None),
        ("PUT", "/api/notifications/1/read", "mark_read", None),
    ]

    @pytest.mark.parametrize("method,path,operation,body", CASES)
    def test_store_error_maps_to_503(self, client, monkeypatch, method, path, operation, body):
        async def broken(*args, **kwargs):
            raise StoreError(f"{operation} failed: store unavailable")

        monkeypatch.setattr(client.app.state.service.engine, operation, broken)
        response = client.request(method, path, headers=USER, json=body)

        assert response.status_code == 503
        assert response.json() == {"detail": "Notification store unavailable"}

    def test_unregister_store_error_maps_to_503(self, client, service):
        service.store.fail_device_writes = True

        response = client.delete(f"/api/notifications/devices/{TOKEN}", headers=USER)

        assert response.status_code == 503
