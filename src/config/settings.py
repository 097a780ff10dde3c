# src/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for runtime limits, storage locations, relay and
logging configuration.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Scheduler ===
    max_concurrent_workers: int = 4
    default_timeout_minutes: float = 30.0
    cancel_on_failure: bool = True
    run_id_hash_length: int = 8

    # === Retry ===
    default_max_retries: int = 2
    retry_base_delay_s: float = 1.0
    retry_backoff_factor: float = 2.0
    retry_max_delay_s: float = 60.0
    retry_jitter: bool = True

    # === Adapter ===
    default_adapter: str = "claude"
    kill_grace_period_s: float = 3.0

    # === Storage ===
    state_db_path: Path = Path(".waveflow/state.db")
    workspace_root: Path = Path(".waveflow/workspaces")
    artifact_root: Path = Path(".waveflow/artifacts")
    keep_workspaces: bool = False

    # === Relay ===
    relay_enabled: bool = True
    relay_threshold_percent: int = 80
    relay_context_window: int = 200_000
    relay_min_tokens: int = 1000
    relay_summarizer_persona: str = "summarizer"
    relay_summarizer_budget: int = 0
    relay_max_per_attempt: int = 2
    relay_timeout_minutes: float = 5.0

    # === Matrix ===
    matrix_default_policy: Literal["all_must_pass", "best_effort"] = "all_must_pass"

    # === Contracts ===
    contract_command_timeout_s: float = 300.0

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("max_concurrent_workers", "run_id_hash_length")
    @classmethod
    def validate_positive(cls, v: int) -> int:  # noqa: N805
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("default_max_retries", "relay_min_tokens", "relay_max_per_attempt")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:  # noqa: N805
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if not 1 <= self.relay_threshold_percent <= 100:
            errors.append("RELAY_THRESHOLD_PERCENT must be between 1 and 100")

        if self.relay_context_window <= 0:
            errors.append("RELAY_CONTEXT_WINDOW must be > 0")

        if self.relay_summarizer_budget < 0:
            errors.append("RELAY_SUMMARIZER_BUDGET must be >= 0")

        if self.default_timeout_minutes <= 0:
            errors.append("DEFAULT_TIMEOUT_MINUTES must be > 0")

        if self.retry_base_delay_s < 0 or self.retry_max_delay_s < 0:
            errors.append("retry delays must be >= 0")

        if self.retry_backoff_factor < 1:
            errors.append("RETRY_BACKOFF_FACTOR must be >= 1")

        if self.kill_grace_period_s < 0:
            errors.append("KILL_GRACE_PERIOD_S must be >= 0")

        if not self.relay_summarizer_persona.strip():
            errors.append("RELAY_SUMMARIZER_PERSONA must not be empty")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def default_timeout_s(self) -> float:
        return self.default_timeout_minutes * 60


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-run config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
