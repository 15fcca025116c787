"""Field-wise merge of partial settings payloads into the stored record."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional

from luma.core.fields import parse_patch, require_user_id
from luma.db.sqlite import SQLiteManager, _utcnow
from luma.observability import metrics

logger = logging.getLogger(__name__)


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def next_timestamp(previous: Optional[str]) -> str:
    """Current UTC time, nudged forward so it is strictly after ``previous``."""
    now = _utcnow()
    prev = _parse_iso(previous)
    if prev is not None and now <= prev:
        now = prev + timedelta(microseconds=1)
    return now.isoformat()


class MergeEngine:
    """Applies partial field-sets to a user's profile and settings.

    Present fields overwrite, absent fields keep their stored value. Writing
    ``theme_mode`` also rewrites ``dark_mode``; writing ``dark_mode`` alone
    leaves ``theme_mode`` as it was, so the two can disagree until the caller
    sets a theme.
    """

    def __init__(self, db: SQLiteManager):
        self.db = db

    def apply_partial(self, user_id: str, partial: Mapping[str, Any]) -> Dict[str, Any]:
        user_id = require_user_id(user_id)
        # Validate everything up front so a bad field never reaches the store.
        patch = parse_patch(partial)
        settings_updates = patch.settings_updates()
        profile_updates = patch.profile_updates()

        with self.db.transaction(user_id):
            self.db.ensure_user(user_id)
            current = self.db.get_user_settings(user_id) or {}
            settings_updates["updated_at"] = next_timestamp(current.get("updated_at"))
            self.db.update_settings(user_id, settings_updates)
            if profile_updates:
                self.db.update_profile(user_id, profile_updates)
            merged = self.db.get_user_settings(user_id)
            self.db.after_commit(lambda: metrics.incr("settings_merged"))

        logger.debug(
            "Merged fields %s for user %s",
            sorted(set(settings_updates) | set(profile_updates)),
            user_id,
        )
        return merged
