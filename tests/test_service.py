"""Tests for the SettingsService boundary operations."""

import logging

import pytest

from luma.configs.base import StoreConfig
from luma.exceptions import InvalidFieldValue, StoreUnavailable
from luma.observability import metrics
from luma.service import SettingsService


@pytest.fixture
def service(tmp_path):
    svc = SettingsService.from_path(str(tmp_path / "service.db"))
    yield svc
    svc.close()


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


class TestSettings:
    def test_get_settings_for_unseen_user(self, service):
        view = service.get_settings("first-visit")
        assert view["user_id"] == "first-visit"
        assert view["name"] == "User Name"
        assert view["email"] == "user@example.com"
        assert view["avatar_url"] == ""
        assert view["theme_mode"] == "System"
        assert view["app_version"] == "1.0.0"

    def test_upsert_settings_returns_merged_view(self, service):
        view = service.upsert_settings("u1", {"language": "Spanish"})
        assert view["language"] == "Spanish"
        assert service.get_settings("u1") == view

    def test_upsert_profile_ignores_settings_keys(self, service):
        service.upsert_profile("u1", {"name": "Ada", "theme_mode": "Dark"})
        view = service.get_settings("u1")
        assert view["name"] == "Ada"
        assert view["theme_mode"] == "System"

    def test_upsert_notifications_ignores_other_keys(self, service):
        service.upsert_notifications(
            "u1", {"chat_notifications": False, "reminder_notifications": True, "name": "X"}
        )
        view = service.get_settings("u1")
        assert view["chat_notifications"] is False
        assert view["reminder_notifications"] is True
        assert view["notifications_enabled"] is True
        assert view["name"] == "User Name"

    def test_set_theme(self, service):
        view = service.set_theme("u1", "Dark")
        assert (view["theme_mode"], view["dark_mode"]) == ("Dark", True)

    def test_set_theme_rejects_unknown_mode(self, service):
        with pytest.raises(InvalidFieldValue) as excinfo:
            service.set_theme("u1", "Sepia")
        assert excinfo.value.field == "theme_mode"

    def test_set_biometric_lock(self, service):
        assert service.set_biometric_lock("u1", True)["biometric_lock"] is True
        assert service.set_biometric_lock("u1", False)["biometric_lock"] is False

    @pytest.mark.parametrize("enabled", ["true", 1, None])
    def test_set_biometric_lock_requires_bool(self, service, enabled):
        with pytest.raises(InvalidFieldValue):
            service.set_biometric_lock("u1", enabled)

    def test_user_id_required(self, service):
        with pytest.raises(InvalidFieldValue):
            service.get_settings("")


class TestHistory:
    def test_append_clear_read(self, service):
        service.append_history("u1", "user", "hi")
        service.append_history("u1", "assistant", "hello")
        assert [e["message"] for e in service.read_history("u1")] == ["hi", "hello"]
        assert service.clear_history("u1") == 2
        assert service.read_history("u1") == []


class TestHealthAndMetrics:
    def test_health(self, service):
        result = service.health()
        assert result["status"] == "ok"
        assert result["time"]

    def test_health_reports_unavailable_store(self):
        svc = SettingsService.from_path(":memory:")
        svc.close()
        with pytest.raises(StoreUnavailable):
            svc.health()

    def test_operations_are_measured(self, service):
        service.set_theme("u1", "Light")
        service.append_history("u1", "user", "x")
        with pytest.raises(InvalidFieldValue):
            service.set_theme("u1", "Neon")

        summary = metrics.get_summary()
        assert summary["operations"]["set_theme"]["count"] == 2
        assert summary["operations"]["set_theme"]["errors"] == 1
        assert summary["store"]["settings_merged"] == 1
        assert summary["store"]["history_appended"] == 1

    def test_import_counters(self, service):
        service.import_data("u1", {"chat_history": [{"role": "user"}, {"role": "bot"}]})
        store = metrics.get_summary()["store"]
        assert store["snapshots_imported"] == 1
        assert store["import_items_skipped"] == 1

    def test_import_logged_once_with_skip_context(self, service, caplog):
        with caplog.at_level(logging.INFO, logger="luma"):
            service.import_data("u1", {"chat_history": [{"role": "user"}, {"role": "bot"}]})

        infos = [r for r in caplog.records if r.levelno == logging.INFO and "mport" in r.getMessage()]
        assert len(infos) == 1
        assert infos[0].structured_data["imported"] == 1

        skips = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(skips) == 1
        assert skips[0].structured_data["user_id"] == "u1"
        assert skips[0].structured_data["index"] == 1

    def test_counters_skip_rolled_back_work(self, service, monkeypatch):
        def failing_clear(user_id):
            raise StoreUnavailable("disk went away")

        monkeypatch.setattr(service.ledger, "clear", failing_clear)
        with pytest.raises(StoreUnavailable):
            service.import_data("u1", {"settings": {"language": "French"}, "chat_history": []}, replace=True)

        store = metrics.get_summary()["store"]
        assert store["settings_merged"] == 0
        assert store["snapshots_imported"] == 0
        assert service.get_settings("u1")["language"] == "English"

    def test_prometheus_output(self, service):
        service.get_settings("u1")
        text = metrics.get_prometheus_metrics()
        assert 'luma_operation_count{operation="get_settings"} 1' in text
        assert "luma_settings_merged_total 0" in text


class TestConstruction:
    def test_in_memory_service(self):
        svc = SettingsService.from_path(":memory:")
        assert svc.db.in_memory
        svc.set_theme("u1", "Dark")
        assert svc.get_settings("u1")["dark_mode"] is True
        svc.close()

    def test_repr(self, service):
        assert "SettingsService" in repr(service)

    def test_data_survives_reopen(self, tmp_path):
        path = str(tmp_path / "persist.db")
        svc = SettingsService.from_path(path)
        svc.upsert_settings("u1", {"language": "German"})
        svc.append_history("u1", "user", "remember me")
        svc.close()

        reopened = SettingsService.from_path(path)
        assert reopened.get_settings("u1")["language"] == "German"
        assert [e["message"] for e in reopened.read_history("u1")] == ["remember me"]
        reopened.close()

    def test_reads_env_config(self, tmp_path, monkeypatch):
        path = str(tmp_path / "env.db")
        monkeypatch.setenv("LUMA_DB_PATH", path)
        svc = SettingsService()
        assert svc.config.store == StoreConfig(path=path)
        assert svc.db.db_path == path
        svc.close()
