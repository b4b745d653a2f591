"""
Central configuration for shieldpool.

Typed settings read from `SHIELDPOOL_*` environment variables (and an
optional `.env` file) with pydantic-settings.

Usage:

    from shieldpool.config import get_settings

    settings = get_settings()
    client = PrivacyClient.from_settings(keys, payer=payer, settings=settings)
"""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SHIELDPOOL_",
        env_file=".env",
        extra="ignore",
    )

    rpc_url: str = Field(
        default="https://api.devnet.solana.com",
        description="Solana RPC endpoint.",
    )
    program_id: Optional[str] = Field(
        default=None,
        description="Shielded pool program id (defaults to the built-in one).",
    )
    prover_url: Optional[str] = Field(
        default=None,
        description="Proof service URL. Unset means the local development prover.",
    )
    relayer_endpoints: str = Field(
        default="",
        description="Comma-separated relayer base URLs.",
    )

    tree_height: int = Field(default=20, ge=1, le=32)
    root_history_size: int = Field(default=32, ge=1)
    consolidate_max_inputs: int = Field(default=8, ge=2)
    max_stale_root_retries: int = Field(default=3, ge=0)

    proof_timeout_seconds: float = Field(default=120.0, gt=0)
    proof_max_attempts: int = Field(default=3, ge=1)
    proof_backoff_seconds: float = Field(default=1.0, ge=0)

    relay_timeout_seconds: float = Field(default=60.0, gt=0)
    relayer_failure_threshold: int = Field(default=3, ge=1)

    confirm_poll_interval_seconds: float = Field(default=0.5, gt=0)
    confirm_timeout_seconds: float = Field(default=60.0, gt=0)
    scan_interval_seconds: float = Field(default=30.0, gt=0)

    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def relayer_urls(self) -> list[str]:
        return [u.strip() for u in self.relayer_endpoints.split(",") if u.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Return a cached Settings instance"""
    return Settings()


def configure_logging(settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
