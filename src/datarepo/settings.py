"""
datarepo.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for the persistence layer.
- Hide connection credentials from repr/logging.
- Offer a cached settings instance for the demo entrypoint and callers.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Single settings object shared by the engine, executor and logging setup.
    Every field can be overridden with a `DATAREPO_`-prefixed env var.
    """

    model_config = SettingsConfigDict(env_prefix="DATAREPO_", case_sensitive=False)

    # Environment controls toggle behavior like auto-creating tables.
    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "datarepo"
    log_level: str = "INFO"

    # Persistence; URLs may embed passwords, so keep them out of repr.
    database_url: str = Field(default="sqlite+aiosqlite:///./datarepo.db", repr=False)
    echo_sql: bool = False

    # Upper bound on how long a pessimistic-lock query may wait for row locks.
    lock_timeout_seconds: float = Field(default=5.0, gt=0)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for every unit of work.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Tests construct `Settings(...)` directly instead of going through the cache.
