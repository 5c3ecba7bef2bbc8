"""Application configuration via environment variables.

Uses pydantic-settings to load from .env file and environment variables.
All config is centralized here; modules should import `get_settings()`.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ─── App ───
    environment: str = "development"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:5173"]

    # ─── Redis producer bridge ───
    redis_url: str = "redis://localhost:6379/0"
    redis_bridge_enabled: bool = True

    # ─── Credential verification ───
    jwt_secret: str  # Required, no default (fail fast if missing)
    jwt_algorithm: str = "HS256"
    jwt_identity_claim: str = "id"

    # ─── WebSocket connections ───
    ws_max_pending_messages: int = 256
    ws_idle_timeout_seconds: float = 300.0  # 0 disables the idle timeout


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings singleton.

    Uses lru_cache so Settings is only instantiated once.
    In tests, call `get_settings.cache_clear()` to reset.
    """
    return Settings()
