# graphmode/config.py
"""Settings loaded from ``GRAPHMODE_*`` environment variables (or ``.env``)."""
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="GRAPHMODE_", env_file=".env", extra="ignore")

    # ── Storage ────────────────────────────────────────────────
    db_path: str = "graph-mode.db"

    # ── Engine ─────────────────────────────────────────────────
    max_steps: int = Field(default=100, ge=1)
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0)

    # ── Logging ────────────────────────────────────────────────
    log_format: str = "text"  # text | json
    log_level: str = "INFO"

    # ── Server ─────────────────────────────────────────────────
    host: str = "localhost"
    port: int = 3000
    # finished runs beyond this are dropped from memory and served from the store
    max_tracked_runs: int = Field(default=1000, ge=1)
