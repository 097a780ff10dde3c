# src/pipeline/retry.py — v1
"""Step retry policy with exponential backoff.

Whether a failure is retried is decided by the error itself
(StepExecutionError.retryable); this module only decides how many
times and how long to wait.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import TYPE_CHECKING

from waveflow.core.errors import StepExecutionError

if TYPE_CHECKING:
    from waveflow.config.settings import Settings
    from waveflow.core.models import Step


@dataclass(frozen=True)
class RetryConfig:
    """Backoff configuration shared by all steps of a run."""

    base_delay_s: float = 1.0
    backoff_factor: float = 2.0
    max_delay_s: float = 60.0
    jitter: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryConfig:
        return cls(
            base_delay_s=settings.retry_base_delay_s,
            backoff_factor=settings.retry_backoff_factor,
            max_delay_s=settings.retry_max_delay_s,
            jitter=settings.retry_jitter,
        )


def compute_delay(config: RetryConfig, attempt: int) -> float:
    """Compute delay before retry number ``attempt`` (0-based)."""
    delay = config.base_delay_s * (config.backoff_factor ** attempt)
    if config.jitter:
        delay *= 0.5 + random.random()  # noqa: S311
    return min(delay, config.max_delay_s)


def resolve_max_retries(step: Step, default: int) -> int:
    """Step handover override, then contract override, then default."""
    if step.handover.max_retries is not None:
        return step.handover.max_retries
    contract = step.handover.contract
    if contract is not None and contract.max_retries is not None:
        return contract.max_retries
    return default


def should_retry(error: BaseException, retries_done: int, max_retries: int) -> bool:
    """True when ``error`` is retryable and the budget is not exhausted."""
    if not isinstance(error, StepExecutionError):
        return False
    return error.retryable and retries_done < max_retries
