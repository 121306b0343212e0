"""Application configuration helpers."""

from __future__ import annotations

from functools import lru_cache
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

PROJECT_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_DB_PATH = PROJECT_ROOT / "data" / "assistant.db"

SUPPORTED_PROVIDERS = ("lmstudio", "openrouter", "nanogpt")

PROVIDER_DEFAULT_ENDPOINTS = {
    "lmstudio": "http://localhost:1234/v1",
    "openrouter": "https://openrouter.ai/api/v1",
    "nanogpt": "https://nano-gpt.com/api/v1",
}


class ProviderSettings(BaseModel):
    """Endpoint, credentials and model for one OpenAI-compatible provider."""

    model_config = ConfigDict(frozen=True)

    endpoint: str
    api_key: Optional[str] = None
    model: str = Field(..., min_length=1)


class AppConfig(BaseModel):
    """Runtime configuration loaded from environment variables."""

    model_config = ConfigDict(frozen=True)

    llm_provider: str = Field(
        default="lmstudio", description="Active chat provider (lmstudio, openrouter, nanogpt)"
    )
    lmstudio: ProviderSettings
    openrouter: ProviderSettings
    nanogpt: ProviderSettings
    reflection_model: Optional[str] = Field(
        None, description="Model used for the safety check; defaults to the chat model"
    )
    reflection_timeout_seconds: float = Field(10.0, ge=0)
    reflection_fail_closed: bool = Field(
        default=False,
        description="Require confirmation for destructive tools when the safety check fails",
    )
    llm_request_timeout_seconds: float = Field(120.0, ge=0)
    mcp_endpoint: Optional[str] = Field(None, description="Streamable HTTP URL of the tool gateway")
    mcp_api_key: Optional[str] = None
    mcp_connect_timeout_seconds: float = Field(15.0, ge=0)
    mcp_retry_after_seconds: float = Field(30.0, ge=0)
    confirmation_ttl_seconds: float = Field(
        3600.0, ge=0, description="Pending confirmation lifetime; 0 keeps entries until consumed"
    )
    database_path: Path = Field(DEFAULT_DB_PATH, description="SQLite file for conversations")
    cors_origins: tuple[str, ...] = ("http://localhost:5173",)

    @field_validator("llm_provider", mode="before")
    @classmethod
    def _normalize_provider(cls, value: Optional[str]) -> str:
        cleaned = (value or "lmstudio").strip().lower()
        if cleaned not in SUPPORTED_PROVIDERS:
            raise ValueError(
                f"LLM_PROVIDER must be one of {', '.join(SUPPORTED_PROVIDERS)}, got {value!r}"
            )
        return cleaned

    @field_validator("mcp_endpoint", "mcp_api_key", "reflection_model", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @field_validator("database_path", mode="before")
    @classmethod
    def _normalize_db_path(cls, value: str | Path | None) -> Path:
        if value is None or value == "":
            return DEFAULT_DB_PATH
        return Path(value).expanduser()

    @property
    def provider_settings(self) -> ProviderSettings:
        return getattr(self, self.llm_provider)


def _read_env(key: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(key, default)


def _read_bool(key: str, default: str) -> bool:
    return (_read_env(key, default) or default).lower() not in {"0", "false", "no", ""}


def _read_provider(name: str, default_model: str) -> ProviderSettings:
    prefix = name.upper()
    return ProviderSettings(
        endpoint=_read_env(f"{prefix}_ENDPOINT", PROVIDER_DEFAULT_ENDPOINTS[name]).rstrip("/"),
        api_key=_read_env(f"{prefix}_API_KEY"),
        model=_read_env(f"{prefix}_MODEL", default_model),
    )


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Load and cache application configuration."""
    cors = _read_env("CORS_ORIGINS", "http://localhost:5173")
    return AppConfig(
        llm_provider=_read_env("LLM_PROVIDER", "lmstudio"),
        lmstudio=_read_provider("lmstudio", "local-model"),
        openrouter=_read_provider("openrouter", "openai/gpt-4o-mini"),
        nanogpt=_read_provider("nanogpt", "gpt-4o-mini"),
        reflection_model=_read_env("REFLECTION_MODEL"),
        reflection_timeout_seconds=_read_env("REFLECTION_TIMEOUT_SECONDS", "10"),
        reflection_fail_closed=_read_bool("REFLECTION_FAIL_CLOSED", "false"),
        llm_request_timeout_seconds=_read_env("LLM_REQUEST_TIMEOUT_SECONDS", "120"),
        mcp_endpoint=_read_env("MCP_ENDPOINT"),
        mcp_api_key=_read_env("MCP_API_KEY"),
        mcp_connect_timeout_seconds=_read_env("MCP_CONNECT_TIMEOUT_SECONDS", "15"),
        mcp_retry_after_seconds=_read_env("MCP_RETRY_AFTER_SECONDS", "30"),
        confirmation_ttl_seconds=_read_env("CONFIRMATION_TTL_SECONDS", "3600"),
        database_path=_read_env("DATABASE_PATH"),
        cors_origins=tuple(origin.strip() for origin in cors.split(",") if origin.strip()),
    )


def reload_config() -> AppConfig:
    """Clear cached config (useful for tests) and reload."""
    get_config.cache_clear()
    return get_config()


__all__ = [
    "AppConfig",
    "ProviderSettings",
    "SUPPORTED_PROVIDERS",
    "get_config",
    "reload_config",
    "PROJECT_ROOT",
    "DEFAULT_DB_PATH",
]
