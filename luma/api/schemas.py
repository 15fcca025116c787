"""Pydantic request schemas for the luma HTTP API.

Bodies only pin down ``user_id`` and the keys a route requires. Field values
are passed through untyped so the core reports type and enum problems with
its own error codes.
"""

from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field


class UserScopedRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    user_id: str = Field(..., min_length=1, description="User identifier")

    def extra_fields(self) -> Dict[str, Any]:
        """Every body key except ``user_id``."""
        return dict(self.model_extra or {})


class SettingsRequest(UserScopedRequest):
    """Settings either inline or nested under ``settings``."""

    def partial(self) -> Dict[str, Any]:
        fields = self.extra_fields()
        nested = fields.get("settings")
        if isinstance(nested, dict):
            return {k: v for k, v in nested.items() if k != "user_id"}
        return fields


class ThemeRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    theme_mode: Any = Field(..., description="System | Light | Dark")


class BiometricRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    enabled: Any = Field(..., description="Enable or disable biometric lock")


class HistoryAppendRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    role: Any = Field(..., description="user | assistant")
    message: Any = Field(..., description="Message text, may be empty")


class UserRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


class ImportRequest(UserScopedRequest):
    """Snapshot sections (``settings``, ``chat_history``) ride alongside ``user_id``."""

    def snapshot(self) -> Dict[str, Any]:
        return self.extra_fields()
