"""
Centralised settings loader.

Every value can be overridden through a `MEALPLAN_*` environment variable
or a local `.env` file.
"""

from __future__ import annotations
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ------------------------------------------------------------------ #
#  Master settings model
# ------------------------------------------------------------------ #
class _Settings(BaseSettings):
    # ─── runtime ────────────────────────────────────────────────────
    env_name: str = "local"
    log_level: str = "INFO"

    # ─── remote meal-plan API ───────────────────────────────────────
    api_base_url: str = "http://127.0.0.1:8000"
    http_timeout_s: float = Field(15.0, gt=0)

    # ─── on-device store / cache ────────────────────────────────────
    store_url: str = "sqlite+aiosqlite:///./mealplan_store.db"
    cache_ttl_hours: float = Field(24.0, gt=0)

    # ─── default identities (CLI / demo) ────────────────────────────
    client_id: str | None = None
    user_id: str | None = None
    nutritionist_id: str | None = None

    # allow other teammates’ env-vars without crashing
    model_config = SettingsConfigDict(
        env_prefix="MEALPLAN_",
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    @property
    def cache_ttl_ms(self) -> int:
        return int(self.cache_ttl_hours * 3600 * 1000)


# ------------------------------------------------------------------ #
#  Cached singleton accessor
# ------------------------------------------------------------------ #
@lru_cache
def _cached() -> _Settings:  # pragma: no cover
    return _Settings()  # type: ignore[call-arg]


settings: _Settings = _cached()
