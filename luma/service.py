"""Boundary operations of the luma settings service.

:class:`SettingsService` wires the record store to the merge engine, the
history ledger and the snapshot exchanger, and exposes the operations the
HTTP layer and the CLI call.

Usage:
    from luma import SettingsService

    service = SettingsService.from_path("/tmp/luma.db")
    service.set_theme("u1", "Dark")
    service.append_history("u1", "user", "hi")
    snapshot = service.export_data("u1")
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from luma.configs.base import LumaConfig, StoreConfig
from luma.core.exchange import SnapshotExchanger
from luma.core.fields import NOTIFICATION_FIELDS, PROFILE_FIELDS, pick, require_user_id
from luma.core.ledger import HistoryLedger
from luma.core.merge import MergeEngine
from luma.db.sqlite import SQLiteManager, _utcnow_iso
from luma.exceptions import InvalidFieldValue
from luma.observability import logger as structured_logger, metrics


class SettingsService:
    def __init__(self, config: Optional[LumaConfig] = None, db: Optional[SQLiteManager] = None):
        self.config = config or LumaConfig.from_env()
        self.db = db or SQLiteManager(
            self.config.store.path,
            busy_timeout_ms=self.config.store.busy_timeout_ms,
        )
        self.merge = MergeEngine(self.db)
        self.ledger = HistoryLedger(self.db)
        self.exchanger = SnapshotExchanger(self.db, self.merge, self.ledger)

    @classmethod
    def from_path(cls, path: str, **config_overrides: Any) -> "SettingsService":
        config = LumaConfig(store=StoreConfig(path=path), **config_overrides)
        return cls(config=config)

    def close(self) -> None:
        self.db.close()

    def __repr__(self) -> str:
        return f"SettingsService(db={self.db!r})"

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_settings(self, user_id: str) -> Dict[str, Any]:
        """Profile + settings view; unseen users get the defaults."""
        with metrics.measure("get_settings"):
            user_id = require_user_id(user_id)
            with self.db.ensured_read(user_id):
                return self.db.get_user_settings(user_id)

    def upsert_settings(self, user_id: str, partial: Mapping[str, Any]) -> Dict[str, Any]:
        with metrics.measure("upsert_settings"):
            return self.merge.apply_partial(user_id, partial)

    def upsert_profile(self, user_id: str, partial: Mapping[str, Any]) -> Dict[str, Any]:
        with metrics.measure("upsert_profile"):
            return self.merge.apply_partial(user_id, pick(partial, PROFILE_FIELDS))

    def upsert_notifications(self, user_id: str, partial: Mapping[str, Any]) -> Dict[str, Any]:
        with metrics.measure("upsert_notifications"):
            return self.merge.apply_partial(user_id, pick(partial, NOTIFICATION_FIELDS))

    def set_theme(self, user_id: str, theme_mode: str) -> Dict[str, Any]:
        with metrics.measure("set_theme"):
            return self.merge.apply_partial(user_id, {"theme_mode": theme_mode})

    def set_biometric_lock(self, user_id: str, enabled: bool) -> Dict[str, Any]:
        with metrics.measure("set_biometric_lock"):
            if not isinstance(enabled, bool):
                raise InvalidFieldValue("enabled must be a boolean", field="enabled")
            return self.merge.apply_partial(user_id, {"biometric_lock": enabled})

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def append_history(self, user_id: str, role: str, message: str) -> int:
        with metrics.measure("append_history"):
            return self.ledger.append(user_id, role, message)

    def clear_history(self, user_id: str) -> int:
        with metrics.measure("clear_history"):
            return self.ledger.clear(user_id)

    def read_history(self, user_id: str) -> List[Dict[str, Any]]:
        with metrics.measure("read_history"):
            return self.ledger.read_all(user_id)

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export_data(self, user_id: str) -> Dict[str, Any]:
        with metrics.measure("export_data"):
            return self.exchanger.export(user_id)

    def import_data(self, user_id: str, snapshot: Mapping[str, Any], replace: bool = False) -> Dict[str, Any]:
        with metrics.measure("import_data"):
            report = self.exchanger.import_snapshot(user_id, snapshot, replace=replace)
        structured_logger.info("Snapshot imported", user_id=user_id, replace=replace, **report)
        return report

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    def health(self) -> Dict[str, str]:
        """Raises StoreUnavailable when the store cannot be reached."""
        self.db.ping()
        return {"status": "ok", "time": _utcnow_iso()}
