"""DAO Policy — Application configuration via environment variables."""

from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class PolicySettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "DAO_POLICY_",
        "extra": "ignore",
    }

    # ── Default Policy ─────────────────────────────────────────
    default_bounty_bond: int = 10**24  # 1 NEAR in yocto
    default_forgiveness_period_ns: int = 86_400 * 10**9  # 1 day

    # ── Engine ─────────────────────────────────────────────────
    pattern_cache_size: int = 256

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> str:
        level = str(value).strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {value!r}")
        return level


settings = PolicySettings()
