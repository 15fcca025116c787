import os
from typing import List

from pydantic import BaseModel, Field, field_validator


DEFAULT_API_KEY = "secret-api-key"


def _default_db_path() -> str:
    data_dir = os.environ.get("LUMA_DATA_DIR") or os.path.join(os.path.expanduser("~"), ".luma")
    return os.path.join(data_dir, "luma_settings.db")


def _env_list(name: str) -> List[str]:
    raw = os.environ.get(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


class StoreConfig(BaseModel):
    path: str = Field(default_factory=lambda: os.environ.get("LUMA_DB_PATH") or _default_db_path())
    busy_timeout_ms: int = Field(default_factory=lambda: int(os.environ.get("LUMA_BUSY_TIMEOUT_MS", "5000")))

    @field_validator("path")
    @classmethod
    def _valid_path(cls, v: str) -> str:
        v = str(v).strip()
        if not v:
            raise ValueError("Store path must not be empty")
        return v

    @field_validator("busy_timeout_ms")
    @classmethod
    def _positive_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"busy_timeout_ms must be positive, got {v}")
        return v


class AuthConfig(BaseModel):
    """Single shared-secret gate configuration."""
    api_key: str = Field(default_factory=lambda: os.environ.get("LUMA_API_KEY") or DEFAULT_API_KEY)
    header: str = "X-API-KEY"

    @field_validator("api_key")
    @classmethod
    def _non_empty_key(cls, v: str) -> str:
        v = str(v).strip()
        if not v:
            raise ValueError("api_key must not be empty")
        return v

    @property
    def uses_default_key(self) -> bool:
        return self.api_key == DEFAULT_API_KEY


class ServerConfig(BaseModel):
    host: str = Field(default_factory=lambda: os.environ.get("LUMA_HOST", "127.0.0.1"))
    port: int = Field(default_factory=lambda: int(os.environ.get("LUMA_PORT", "8080")))
    cors_origins: List[str] = Field(default_factory=lambda: _env_list("LUMA_CORS_ORIGINS"))

    @field_validator("port")
    @classmethod
    def _valid_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError(f"Port out of range: {v}")
        return v


class LumaConfig(BaseModel):
    store: StoreConfig = Field(default_factory=StoreConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @classmethod
    def from_env(cls) -> "LumaConfig":
        """Build a config where every section reads its LUMA_* environment variables."""
        return cls(store=StoreConfig(), auth=AuthConfig(), server=ServerConfig())
