# src/pipeline/execution.py — v1
"""Run-level records: PipelineExecution, PipelineStatus, run ID generation."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from waveflow.artifacts.registry import ArtifactRegistry
from waveflow.core.models import Pipeline
from waveflow.pipeline.step_state import (
    TERMINAL_STATES,
    StepRecord,
    StepState,
)

RunStatus = Literal["running", "completed", "failed"]

DEFAULT_HASH_LENGTH = 8


def generate_run_id(pipeline_name: str, hash_length: int = DEFAULT_HASH_LENGTH) -> str:
    """Generate a run_id: {pipeline_name}-{hex suffix}."""
    if hash_length <= 0:
        hash_length = DEFAULT_HASH_LENGTH
    suffix = ""
    while len(suffix) < hash_length:
        suffix += uuid.uuid4().hex
    return f"{pipeline_name}-{suffix[:hash_length]}"


class PipelineExecution(BaseModel):
    """One run of a pipeline. Mutated only by the scheduler."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    run_id: str
    pipeline: Pipeline
    input_text: str = ""
    status: RunStatus = "running"
    steps: dict[str, StepRecord] = Field(default_factory=dict)
    registry: ArtifactRegistry | None = Field(default=None, exclude=True)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None

    @classmethod
    def create(
        cls, run_id: str, pipeline: Pipeline, input_text: str = ""
    ) -> PipelineExecution:
        return cls(
            run_id=run_id,
            pipeline=pipeline,
            input_text=input_text,
            steps={s.id: StepRecord(step_id=s.id) for s in pipeline.steps},
        )

    def state_of(self, step_id: str) -> StepState:
        return self.steps[step_id].state

    def steps_in(self, *states: StepState) -> list[str]:
        return [sid for sid, rec in self.steps.items() if rec.state in states]

    @property
    def completed_count(self) -> int:
        return len(self.steps_in(*TERMINAL_STATES))

    @property
    def progress(self) -> int:
        """Percent of steps in a terminal state."""
        if not self.steps:
            return 100
        return int(self.completed_count * 100 / len(self.steps))

    @property
    def total_tokens(self) -> int:
        return sum(rec.tokens_used for rec in self.steps.values())


class PipelineStatus(BaseModel):
    """Read-only snapshot for display tooling."""

    id: str
    pipeline_name: str
    state: RunStatus
    step_states: dict[str, StepState]
    progress: int
    completed_steps: list[str] = Field(default_factory=list)
    failed_steps: list[str] = Field(default_factory=list)
    current_steps: list[str] = Field(default_factory=list)
    total_tokens: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None

    @classmethod
    def from_execution(cls, execution: PipelineExecution) -> PipelineStatus:
        return cls(
            id=execution.run_id,
            pipeline_name=execution.pipeline.name,
            state=execution.status,
            step_states={sid: rec.state for sid, rec in execution.steps.items()},
            progress=execution.progress,
            completed_steps=execution.steps_in(StepState.COMPLETED),
            failed_steps=execution.steps_in(
                StepState.FAILED, StepState.FAILED_OPTIONAL
            ),
            current_steps=execution.steps_in(StepState.RUNNING, StepState.RETRYING),
            total_tokens=execution.total_tokens,
            started_at=execution.started_at,
            completed_at=execution.completed_at,
            error_message=execution.error_message,
        )
