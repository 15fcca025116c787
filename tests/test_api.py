"""HTTP API tests: routes, access gate and error mapping."""

from __future__ import annotations

import importlib

import pytest

pytest.importorskip("fastapi")
pytest.importorskip("httpx")

from fastapi.testclient import TestClient

from luma.configs.base import AuthConfig
from luma.exceptions import StoreUnavailable
from luma.service import SettingsService

api_app_module = importlib.import_module("luma.api.app")

API_KEY = "test-key"
HEADERS = {"X-API-KEY": API_KEY}


@pytest.fixture
def service(tmp_path):
    svc = SettingsService.from_path(str(tmp_path / "api.db"), auth=AuthConfig(api_key=API_KEY))
    yield svc
    svc.close()


@pytest.fixture
def client(service):
    api_app_module._service = service
    with TestClient(api_app_module.app) as test_client:
        yield test_client
    api_app_module._service = None


class TestAccessGate:
    def test_health_needs_no_key(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_missing_key_is_rejected(self, client, service):
        resp = client.post("/settings", json={"user_id": "u1", "theme_mode": "Dark"})
        assert resp.status_code == 401
        assert resp.json() == {"error": "unauthorized"}
        assert service.get_settings("u1")["theme_mode"] == "System"

    def test_wrong_key_is_rejected(self, client):
        resp = client.get("/settings", params={"user_id": "u1"}, headers={"X-API-KEY": "nope"})
        assert resp.status_code == 401

    def test_metrics_are_gated(self, client):
        assert client.get("/metrics").status_code == 401
        assert client.get("/metrics", headers=HEADERS).status_code == 200
        assert "uptime_seconds" in client.get("/metrics/json", headers=HEADERS).json()


class TestSettingsRoutes:
    def test_get_settings_defaults(self, client):
        resp = client.get("/settings", params={"user_id": "u1"}, headers=HEADERS)
        assert resp.status_code == 200
        body = resp.json()
        assert body["user_id"] == "u1"
        assert body["theme_mode"] == "System"
        assert body["dark_mode"] is False

    def test_get_settings_requires_user_id(self, client):
        resp = client.get("/settings", headers=HEADERS)
        assert resp.status_code == 400
        assert resp.json() == {"error": "user_id required"}

    def test_post_settings_inline(self, client):
        resp = client.post(
            "/settings",
            json={"user_id": "u1", "theme_mode": "Dark", "language": "French"},
            headers=HEADERS,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        assert body["settings"]["theme_mode"] == "Dark"
        assert body["settings"]["dark_mode"] is True
        assert body["settings"]["language"] == "French"

    def test_post_settings_nested(self, client):
        resp = client.post(
            "/settings",
            json={"user_id": "u1", "settings": {"biometric_lock": True}},
            headers=HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json()["settings"]["biometric_lock"] is True

    def test_post_settings_invalid_value(self, client):
        resp = client.post(
            "/settings",
            json={"user_id": "u1", "theme_mode": "Neon"},
            headers=HEADERS,
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "invalid_field_value"
        assert body["field"] == "theme_mode"

    @pytest.mark.parametrize("payload", [{"theme_mode": "Dark"}, {"user_id": "", "theme_mode": "Dark"}])
    def test_post_settings_requires_user_id(self, client, payload):
        resp = client.post("/settings", json=payload, headers=HEADERS)
        assert resp.status_code == 400
        assert resp.json() == {"error": "user_id required"}

    def test_profile_and_notifications(self, client):
        client.post(
            "/profile",
            json={"user_id": "u1", "name": "Ada", "avatar_url": "", "language": "Hindi"},
            headers=HEADERS,
        )
        client.post(
            "/notifications",
            json={"user_id": "u1", "update_notifications": False},
            headers=HEADERS,
        )
        body = client.get("/settings", params={"user_id": "u1"}, headers=HEADERS).json()
        assert body["name"] == "Ada"
        assert body["language"] == "English"
        assert body["update_notifications"] is False

    def test_theme_route(self, client):
        resp = client.post("/theme", json={"user_id": "u1", "theme_mode": "Light"}, headers=HEADERS)
        assert resp.json() == {"ok": True}
        body = client.get("/settings", params={"user_id": "u1"}, headers=HEADERS).json()
        assert body["theme_mode"] == "Light"
        assert body["dark_mode"] is False

    def test_theme_route_requires_theme_mode(self, client):
        resp = client.post("/theme", json={"user_id": "u1"}, headers=HEADERS)
        assert resp.status_code == 400
        assert resp.json()["error"] == "theme_mode required"

    def test_biometric_route(self, client):
        resp = client.post("/security/biometric", json={"user_id": "u1", "enabled": True}, headers=HEADERS)
        assert resp.status_code == 200
        body = client.get("/settings", params={"user_id": "u1"}, headers=HEADERS).json()
        assert body["biometric_lock"] is True

    def test_biometric_route_rejects_non_bool(self, client):
        resp = client.post("/security/biometric", json={"user_id": "u1", "enabled": "yes"}, headers=HEADERS)
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_field_value"


class TestHistoryRoutes:
    def test_append_and_read(self, client):
        first = client.post("/history", json={"user_id": "u1", "role": "user", "message": "hi"}, headers=HEADERS)
        second = client.post(
            "/history", json={"user_id": "u1", "role": "assistant", "message": ""}, headers=HEADERS
        )
        assert first.status_code == 200
        assert second.json()["id"] > first.json()["id"]

        entries = client.get("/history", params={"user_id": "u1"}, headers=HEADERS).json()
        assert [(e["role"], e["message"]) for e in entries] == [("user", "hi"), ("assistant", "")]

    def test_append_rejects_bad_role(self, client):
        resp = client.post("/history", json={"user_id": "u1", "role": "system", "message": "x"}, headers=HEADERS)
        assert resp.status_code == 400
        assert resp.json()["field"] == "role"

    def test_append_requires_message(self, client):
        resp = client.post("/history", json={"user_id": "u1", "role": "user"}, headers=HEADERS)
        assert resp.status_code == 400
        assert resp.json()["error"] == "message required"

    def test_clear(self, client):
        client.post("/history", json={"user_id": "u1", "role": "user", "message": "x"}, headers=HEADERS)
        resp = client.post("/history/clear", json={"user_id": "u1"}, headers=HEADERS)
        assert resp.json() == {"ok": True, "removed": 1}
        assert client.get("/history", params={"user_id": "u1"}, headers=HEADERS).json() == []

    def test_read_requires_user_id(self, client):
        resp = client.get("/history", params={"user_id": " "}, headers=HEADERS)
        assert resp.status_code == 400


class TestExchangeRoutes:
    def test_export_then_import_replace(self, client):
        client.post("/theme", json={"user_id": "src", "theme_mode": "Dark"}, headers=HEADERS)
        client.post("/history", json={"user_id": "src", "role": "user", "message": "m"}, headers=HEADERS)
        snapshot = client.get("/history/export", params={"user_id": "src"}, headers=HEADERS).json()
        assert set(snapshot) == {"exported_at", "settings", "chat_history"}

        client.post("/history", json={"user_id": "dst", "role": "user", "message": "old"}, headers=HEADERS)
        resp = client.post(
            "/history/import",
            params={"replace": "true"},
            json={"user_id": "dst", **snapshot},
            headers=HEADERS,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        assert body["cleared"] == 1
        assert body["imported"] == 1

        entries = client.get("/history", params={"user_id": "dst"}, headers=HEADERS).json()
        assert [e["message"] for e in entries] == ["m"]
        settings = client.get("/settings", params={"user_id": "dst"}, headers=HEADERS).json()
        assert settings["theme_mode"] == "Dark"

    @pytest.mark.parametrize("flag, cleared", [("1", 1), ("false", 0), (None, 0)])
    def test_replace_flag_parsing(self, client, flag, cleared):
        client.post("/history", json={"user_id": "u1", "role": "user", "message": "old"}, headers=HEADERS)
        params = {"replace": flag} if flag is not None else {}
        resp = client.post(
            "/history/import",
            params=params,
            json={"user_id": "u1", "chat_history": [{"role": "user", "message": "new"}]},
            headers=HEADERS,
        )
        assert resp.json()["cleared"] == cleared

    def test_import_malformed_section(self, client):
        resp = client.post(
            "/history/import",
            json={"user_id": "u1", "chat_history": "nope"},
            headers=HEADERS,
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "malformed_snapshot"

    def test_export_requires_user_id(self, client):
        resp = client.get("/history/export", headers=HEADERS)
        assert resp.status_code == 400


class TestStoreUnavailable:
    def test_closed_store_maps_to_503(self, client, service):
        closed = SettingsService.from_path(":memory:", auth=AuthConfig(api_key=API_KEY))
        closed.close()
        api_app_module._service = closed

        resp = client.get("/settings", params={"user_id": "u1"}, headers=HEADERS)
        assert resp.status_code == 503
        assert resp.json()["error"] == "store_unavailable"
        assert client.get("/health").status_code == 503


def test_unopenable_store_at_startup_maps_to_503(monkeypatch):
    def unavailable():
        raise StoreUnavailable("Could not open database")

    monkeypatch.setattr(api_app_module, "_service", None)
    monkeypatch.setattr(api_app_module, "SettingsService", unavailable)
    with TestClient(api_app_module.app) as test_client:
        resp = test_client.get("/settings", params={"user_id": "u1"}, headers=HEADERS)
        health = test_client.get("/health")

    assert resp.status_code == 503
    assert resp.json()["error"] == "store_unavailable"
    assert health.status_code == 503
