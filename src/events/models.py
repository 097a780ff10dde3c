# src/events/models.py — v1
"""Progress event shape. Rendering is left to the consumer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

EventState = Literal[
    "started",
    "pending",
    "running",
    "completed",
    "failed",
    "retrying",
    "failed_optional",
    "skipped",
    "validating",
    "contract_passed",
    "contract_failed",
    "contract_soft_failure",
    "warning",
    "relay",
    "matrix_worker",
    "matrix_conflict",
]


class ProgressEvent(BaseModel):
    """One structured progress notification."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    run_id: str
    pipeline_name: str
    step_id: str | None = None
    state: EventState
    message: str = ""
    persona: str | None = None
    tokens_used: int | None = None
    duration_ms: int | None = None
    progress: int | None = None
    total_steps: int | None = None
    completed_steps: int | None = None
    retry_count: int | None = None
    artifacts: list[str] = Field(default_factory=list)
    validation_phase: str | None = None
