"""Shared-secret access gate for the luma HTTP API."""

from __future__ import annotations

import secrets
from typing import Optional

from fastapi import Request

from luma.configs.base import AuthConfig
from luma.exceptions import NotAuthorized


OPEN_PATHS = frozenset({"/health"})


def is_open_path(path: str) -> bool:
    return path.rstrip("/") in OPEN_PATHS or path in OPEN_PATHS


def get_api_key_from_request(request: Request, header: str) -> Optional[str]:
    value = (request.headers.get(header) or "").strip()
    return value or None


def check_api_key(provided: Optional[str], expected: str) -> None:
    if not provided or not secrets.compare_digest(provided.encode(), expected.encode()):
        raise NotAuthorized("Missing or invalid API key")


def authorize_request(request: Request, auth: AuthConfig) -> None:
    """Raise NotAuthorized unless the request is open or carries the shared secret."""
    if is_open_path(request.url.path):
        return
    check_api_key(get_api_key_from_request(request, auth.header), auth.api_key)
