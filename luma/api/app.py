"""Luma REST API application.

Routes and body shapes follow the settings server the mobile client talks to:

    GET  /health                  liveness probe (no API key)
    GET  /settings?user_id=       profile + settings view
    POST /settings                partial settings update
    POST /profile                 name / email / avatar_url
    POST /notifications           the four notification toggles
    POST /theme                   theme_mode (derives dark_mode)
    POST /security/biometric      biometric lock on/off
    POST /history                 append one chat message
    GET  /history?user_id=        ordered chat history
    POST /history/clear           clear chat history
    GET  /history/export?user_id= full snapshot
    POST /history/import          merge (default) or ?replace=true

Every route except /health requires the shared secret in ``X-API-KEY``.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from luma import __version__
from luma.api.auth import authorize_request
from luma.api.schemas import (
    BiometricRequest,
    HistoryAppendRequest,
    ImportRequest,
    SettingsRequest,
    ThemeRequest,
    UserRequest,
    UserScopedRequest,
)
from luma.configs.base import ServerConfig
from luma.exceptions import LumaError, NotAuthorized
from luma.observability import add_metrics_routes, logger as structured_logger
from luma.service import SettingsService

logger = logging.getLogger(__name__)


app = FastAPI(
    title="Luma Settings API",
    description="Per-user settings and chat history persistence",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

_service: Optional[SettingsService] = None
_service_lock = threading.Lock()


def get_service() -> SettingsService:
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                service = SettingsService()
                if service.config.auth.uses_default_key:
                    logger.warning("LUMA_API_KEY is not set; using the built-in default key")
                _service = service
    return _service


def _error(status_code: int, error: str, detail: Optional[str] = None) -> JSONResponse:
    content: Dict[str, Any] = {"error": error}
    if detail:
        content["detail"] = detail
    return JSONResponse(status_code=status_code, content=content)


def _parse_replace(raw: Optional[str]) -> bool:
    return (raw or "").strip().lower() in {"1", "true"}


def _log_failure(request: Request, exc: LumaError) -> None:
    if exc.status_code >= 500:
        structured_logger.error(
            "Request failed",
            method=request.method,
            path=request.url.path,
            error=exc.code,
            detail=exc.detail,
        )


# ---------------------------------------------------------------------------
# Access gate + error mapping
# ---------------------------------------------------------------------------

@app.middleware("http")
async def access_gate(request: Request, call_next):
    try:
        authorize_request(request, get_service().config.auth)
    except NotAuthorized:
        return _error(401, "unauthorized")
    except LumaError as exc:
        _log_failure(request, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
    return await call_next(request)


_cors_origins = ServerConfig().cors_origins
if _cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

add_metrics_routes(app)


@app.exception_handler(LumaError)
async def luma_error_handler(request: Request, exc: LumaError):
    _log_failure(request, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if any("user_id" in (err.get("loc") or ()) for err in errors):
        return _error(400, "user_id required")
    missing = [str(err["loc"][-1]) for err in errors if err.get("type") == "missing" and err.get("loc")]
    if missing:
        return _error(400, f"{', '.join(missing)} required")
    return _error(400, "invalid request", detail=str(errors[0].get("msg")) if errors else None)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.get("/health")
def health():
    return get_service().health()


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@app.get("/settings")
def get_settings(user_id: str = Query(default="", description="User identifier")):
    if not user_id.strip():
        return _error(400, "user_id required")
    return get_service().get_settings(user_id)


@app.post("/settings")
def upsert_settings(request: SettingsRequest):
    settings = get_service().upsert_settings(request.user_id, request.partial())
    return {"ok": True, "settings": settings}


@app.post("/profile")
def upsert_profile(request: UserScopedRequest):
    get_service().upsert_profile(request.user_id, request.extra_fields())
    return {"ok": True}


@app.post("/notifications")
def upsert_notifications(request: UserScopedRequest):
    get_service().upsert_notifications(request.user_id, request.extra_fields())
    return {"ok": True}


@app.post("/theme")
def set_theme(request: ThemeRequest):
    get_service().set_theme(request.user_id, request.theme_mode)
    return {"ok": True}


@app.post("/security/biometric")
def set_biometric_lock(request: BiometricRequest):
    get_service().set_biometric_lock(request.user_id, request.enabled)
    return {"ok": True}


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

@app.post("/history")
def append_history(request: HistoryAppendRequest):
    entry_id = get_service().append_history(request.user_id, request.role, request.message)
    return {"ok": True, "id": entry_id}


@app.get("/history", response_model=List[Dict[str, Any]])
def read_history(user_id: str = Query(default="", description="User identifier")):
    if not user_id.strip():
        return _error(400, "user_id required")
    return get_service().read_history(user_id)


@app.post("/history/clear")
def clear_history(request: UserRequest):
    removed = get_service().clear_history(request.user_id)
    return {"ok": True, "removed": removed}


@app.get("/history/export")
def export_data(user_id: str = Query(default="", description="User identifier")):
    if not user_id.strip():
        return _error(400, "user_id required")
    return get_service().export_data(user_id)


@app.post("/history/import")
def import_data(request: ImportRequest, replace: Optional[str] = Query(default=None)):
    report = get_service().import_data(
        request.user_id,
        request.snapshot(),
        replace=_parse_replace(replace),
    )
    return {"ok": True, **report}


def run():
    """Run the API server (console entry point ``luma-api``)."""
    import argparse
    import uvicorn

    server = ServerConfig()
    parser = argparse.ArgumentParser(description="Luma Settings API Server")
    parser.add_argument("--host", default=server.host, help="Host to bind to")
    parser.add_argument("--port", type=int, default=server.port, help="Port to listen on")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    args = parser.parse_args()

    print(f"Starting Luma settings server on http://{args.host}:{args.port}")
    uvicorn.run(
        "luma.api.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
    )


if __name__ == "__main__":
    run()
