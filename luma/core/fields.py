"""Typed partial field-sets for the merge engine.

A partial is parsed into a pydantic model whose ``model_fields_set`` records
exactly which keys the caller supplied. Absent keys are never written, and no
value (empty string, ``False``) doubles as an "unset" marker.
"""

from __future__ import annotations

from typing import Any, Dict, Literal, Mapping, Optional, get_args

from pydantic import BaseModel, ConfigDict, StrictBool, StrictStr, ValidationError

from luma.exceptions import InvalidFieldValue

ThemeMode = Literal["System", "Light", "Dark"]
Language = Literal["English", "Spanish", "French", "Hindi", "German"]

THEME_MODES = get_args(ThemeMode)
LANGUAGES = get_args(Language)
ROLES = ("user", "assistant")

PROFILE_FIELDS = ("name", "email", "avatar_url")
NOTIFICATION_FIELDS = (
    "notifications_enabled",
    "chat_notifications",
    "update_notifications",
    "reminder_notifications",
)
SETTINGS_FIELDS = (
    "theme_mode",
    "dark_mode",
    *NOTIFICATION_FIELDS,
    "language",
    "biometric_lock",
    "app_version",
)

DEFAULT_PROFILE: Dict[str, Any] = {
    "name": "User Name",
    "email": "user@example.com",
    "avatar_url": "",
}

DEFAULT_SETTINGS: Dict[str, Any] = {
    "theme_mode": "System",
    "dark_mode": False,
    "notifications_enabled": True,
    "chat_notifications": True,
    "update_notifications": True,
    "reminder_notifications": False,
    "language": "English",
    "biometric_lock": False,
    "app_version": "1.0.0",
}


class SettingsPatch(BaseModel):
    """Recognized settings and profile fields, each either unset or set."""

    model_config = ConfigDict(extra="ignore")

    theme_mode: Optional[ThemeMode] = None
    dark_mode: Optional[StrictBool] = None
    notifications_enabled: Optional[StrictBool] = None
    chat_notifications: Optional[StrictBool] = None
    update_notifications: Optional[StrictBool] = None
    reminder_notifications: Optional[StrictBool] = None
    language: Optional[Language] = None
    biometric_lock: Optional[StrictBool] = None
    app_version: Optional[StrictStr] = None
    name: Optional[StrictStr] = None
    email: Optional[StrictStr] = None
    avatar_url: Optional[StrictStr] = None

    def set_fields(self) -> Dict[str, Any]:
        """Only the fields the caller supplied."""
        values = self.model_dump(include=self.model_fields_set)
        for key, value in values.items():
            if value is None:
                raise InvalidFieldValue(f"{key} must not be null", field=key)
        return values

    def settings_updates(self) -> Dict[str, Any]:
        updates = {k: v for k, v in self.set_fields().items() if k in SETTINGS_FIELDS}
        if "theme_mode" in updates:
            updates["dark_mode"] = updates["theme_mode"] == "Dark"
        return updates

    def profile_updates(self) -> Dict[str, Any]:
        return {k: v for k, v in self.set_fields().items() if k in PROFILE_FIELDS}


def parse_patch(partial: Mapping[str, Any]) -> SettingsPatch:
    """Validate a raw mapping into a :class:`SettingsPatch`.

    Raises:
        InvalidFieldValue: if ``partial`` is not a mapping or a recognized
            field has the wrong type or an out-of-enum value.
    """
    if isinstance(partial, SettingsPatch):
        return partial
    if not isinstance(partial, Mapping):
        raise InvalidFieldValue(f"Expected an object of fields, got {type(partial).__name__}")
    try:
        patch = SettingsPatch.model_validate(dict(partial))
    except ValidationError as exc:
        first = exc.errors()[0]
        loc = first.get("loc") or ()
        field = str(loc[0]) if loc else None
        raise InvalidFieldValue(f"{field}: {first.get('msg')}", field=field) from exc
    patch.set_fields()
    return patch


def pick(partial: Mapping[str, Any], keys) -> Dict[str, Any]:
    """Subset of ``partial`` restricted to ``keys`` (absent keys stay absent)."""
    if not isinstance(partial, Mapping):
        raise InvalidFieldValue(f"Expected an object of fields, got {type(partial).__name__}")
    return {k: partial[k] for k in keys if k in partial}


def require_user_id(user_id: Any) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidFieldValue("user_id required", field="user_id")
    return user_id
