"""Append-only chat transcript per user."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from luma.core.fields import ROLES, require_user_id
from luma.db.sqlite import SQLiteManager
from luma.exceptions import InvalidFieldValue
from luma.observability import metrics

logger = logging.getLogger(__name__)


def validate_entry(role: Any, message: Any, created_at: Any = None) -> None:
    if role not in ROLES:
        raise InvalidFieldValue(f"role must be one of {list(ROLES)}, got {role!r}", field="role")
    if not isinstance(message, str):
        raise InvalidFieldValue("message must be a string", field="message")
    if created_at is not None and not isinstance(created_at, str):
        raise InvalidFieldValue("created_at must be an ISO timestamp string", field="created_at")


class HistoryLedger:
    """Ordered history entries keyed by (user_id, id).

    Ids come from SQLite ``AUTOINCREMENT`` and are never reused, even after
    :meth:`clear`.
    """

    def __init__(self, db: SQLiteManager):
        self.db = db

    def append(self, user_id: str, role: str, message: str, created_at: Optional[str] = None) -> int:
        """Store one message and return its sequence id.

        Empty messages are kept as-is. ``created_at`` defaults to now.
        """
        user_id = require_user_id(user_id)
        validate_entry(role, message, created_at)
        with self.db.transaction(user_id):
            self.db.ensure_user(user_id)
            entry_id = self.db.add_history(user_id, role, message, created_at)
            self.db.after_commit(lambda: metrics.incr("history_appended"))
        return entry_id

    def clear(self, user_id: str) -> int:
        user_id = require_user_id(user_id)
        with self.db.transaction(user_id):
            self.db.ensure_user(user_id)
            removed = self.db.delete_history(user_id)
            self.db.after_commit(lambda: metrics.incr("history_cleared"))
        logger.info("Cleared %d history entries for user %s", removed, user_id)
        return removed

    def read_all(self, user_id: str) -> List[Dict[str, Any]]:
        user_id = require_user_id(user_id)
        with self.db.ensured_read(user_id):
            return self.db.get_history(user_id)
