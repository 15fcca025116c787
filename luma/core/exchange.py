"""Full-user snapshot export and merge-or-replace import."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple

from luma.core.fields import parse_patch, require_user_id
from luma.core.ledger import HistoryLedger, validate_entry
from luma.core.merge import MergeEngine, _parse_iso
from luma.db.sqlite import SQLiteManager, _utcnow_iso
from luma.exceptions import InvalidFieldValue, MalformedSnapshot
from luma.observability import logger as structured_logger, metrics

HistoryItem = Tuple[str, str, Optional[str]]


def _history_view(entry: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "role": entry["role"],
        "message": entry["message"],
        "created_at": entry["created_at"],
    }


def _coerce_history_item(item: Any) -> HistoryItem:
    """Turn one imported history item into (role, message, created_at).

    A missing role means ``"user"`` and a missing message means ``""``.
    Raises InvalidFieldValue for anything else that does not fit.
    """
    if not isinstance(item, Mapping):
        raise InvalidFieldValue(f"history item must be an object, got {type(item).__name__}")
    role = item.get("role", "user")
    message = item.get("message", "")
    created_at = item.get("created_at")
    validate_entry(role, message, created_at)
    if created_at is not None and _parse_iso(created_at) is None:
        raise InvalidFieldValue(f"unparseable created_at {created_at!r}", field="created_at")
    return role, message, created_at


class SnapshotExchanger:
    """Composes and decomposes ``{exported_at, settings, chat_history}`` snapshots."""

    def __init__(self, db: SQLiteManager, merge: MergeEngine, ledger: HistoryLedger):
        self.db = db
        self.merge = merge
        self.ledger = ledger

    def export(self, user_id: str) -> Dict[str, Any]:
        user_id = require_user_id(user_id)
        with self.db.ensured_read(user_id):
            settings = self.db.get_user_settings(user_id)
            history = self.db.get_history(user_id)
        metrics.incr("snapshots_exported")
        return {
            "exported_at": _utcnow_iso(),
            "settings": settings,
            "chat_history": [_history_view(entry) for entry in history],
        }

    def import_snapshot(
        self,
        user_id: str,
        snapshot: Mapping[str, Any],
        replace: bool = False,
    ) -> Dict[str, Any]:
        """Apply a snapshot to ``user_id`` inside one transaction.

        ``settings`` merges field-wise. ``chat_history`` is appended in the
        given order, after clearing existing history when ``replace`` is set.
        Malformed history items are skipped with a warning; a malformed
        section raises :class:`MalformedSnapshot` and nothing is written.

        Returns a report ``{settings_applied, cleared, imported, skipped}``.
        """
        user_id = require_user_id(user_id)
        if not isinstance(snapshot, Mapping):
            raise MalformedSnapshot(f"snapshot must be an object, got {type(snapshot).__name__}")

        patch = None
        if "settings" in snapshot:
            settings = snapshot["settings"]
            if not isinstance(settings, Mapping):
                raise MalformedSnapshot("settings section must be an object")
            try:
                patch = parse_patch(settings)
            except InvalidFieldValue as exc:
                raise MalformedSnapshot(f"settings section: {exc.detail}") from exc

        items: Optional[List[HistoryItem]] = None
        skipped = 0
        if "chat_history" in snapshot:
            raw_items = snapshot["chat_history"]
            if not isinstance(raw_items, list):
                raise MalformedSnapshot("chat_history section must be a list")
            items = []
            log = structured_logger.with_context(user_id=user_id)
            for index, raw in enumerate(raw_items):
                try:
                    items.append(_coerce_history_item(raw))
                except InvalidFieldValue as exc:
                    skipped += 1
                    log.warning("Skipping malformed history item", index=index, reason=exc.detail)

        cleared = 0
        with self.db.transaction(user_id):
            self.db.ensure_user(user_id)
            if patch is not None:
                self.merge.apply_partial(user_id, patch)
            if items is not None:
                if replace:
                    cleared = self.ledger.clear(user_id)
                for role, message, created_at in items:
                    self.ledger.append(user_id, role, message, created_at)

        metrics.incr("snapshots_imported")
        metrics.incr("import_items_skipped", skipped)
        report = {
            "settings_applied": patch is not None,
            "cleared": cleared,
            "imported": len(items or []),
            "skipped": skipped,
        }
        return report
