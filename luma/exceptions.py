"""Error taxonomy for the luma settings core.

Every error the core raises derives from :class:`LumaError` and carries a
stable ``code`` token that the HTTP layer puts on the wire unchanged.
"""

from __future__ import annotations

from typing import Optional


class LumaError(Exception):
    """Base class for all luma errors."""

    code = "luma_error"
    status_code = 500

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.code)
        self.detail = detail or self.code

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.detail}


class NotAuthorized(LumaError):
    """Shared-secret gate rejected the caller."""

    code = "unauthorized"
    status_code = 401


class InvalidFieldValue(LumaError):
    """A recognized field carried a value of the wrong type or outside its enum."""

    code = "invalid_field_value"
    status_code = 400

    def __init__(self, detail: str = "", field: Optional[str] = None):
        super().__init__(detail)
        self.field = field

    def to_dict(self) -> dict:
        payload = super().to_dict()
        if self.field:
            payload["field"] = self.field
        return payload


class MalformedSnapshot(LumaError):
    """An imported snapshot does not have the expected structure."""

    code = "malformed_snapshot"
    status_code = 400


class StoreUnavailable(LumaError):
    """The record store could not open or commit a transaction."""

    code = "store_unavailable"
    status_code = 503
