from luma.core.fields import (
    LANGUAGES,
    NOTIFICATION_FIELDS,
    PROFILE_FIELDS,
    ROLES,
    SETTINGS_FIELDS,
    THEME_MODES,
    SettingsPatch,
    parse_patch,
)
from luma.core.locks import KeyedLocks

__all__ = [
    "LANGUAGES",
    "NOTIFICATION_FIELDS",
    "PROFILE_FIELDS",
    "ROLES",
    "SETTINGS_FIELDS",
    "THEME_MODES",
    "SettingsPatch",
    "parse_patch",
    "KeyedLocks",
]
