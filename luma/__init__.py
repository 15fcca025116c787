"""luma package exports.

luma: per-user settings and chat-history persistence
- Partial, field-wise settings updates with lazily created defaults
- Append-only chat transcript per user
- Full snapshot export and merge-or-replace import

Quick Start:
    from luma import SettingsService

    service = SettingsService.from_path("luma_settings.db")
    service.upsert_settings("u1", {"theme_mode": "Dark"})
    snapshot = service.export_data("u1")
"""

from luma.configs.base import LumaConfig
from luma.exceptions import (
    InvalidFieldValue,
    LumaError,
    MalformedSnapshot,
    NotAuthorized,
    StoreUnavailable,
)
from luma.service import SettingsService

__version__ = "1.0.0"
__all__ = [
    "SettingsService",
    "LumaConfig",
    "LumaError",
    "NotAuthorized",
    "InvalidFieldValue",
    "MalformedSnapshot",
    "StoreUnavailable",
]
