# src/state/models.py — v1
"""Persisted run records."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from waveflow.artifacts.models import Artifact
from waveflow.core.models import Pipeline
from waveflow.pipeline.step_state import StepRecord


class RunSummary(BaseModel):
    """One row of list_runs()."""

    run_id: str
    pipeline_name: str
    status: str
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None


class PersistedRun(RunSummary):
    """Everything needed to rebuild a PipelineExecution."""

    pipeline: Pipeline
    input_text: str = ""
    steps: dict[str, StepRecord] = Field(default_factory=dict)
    artifacts: list[Artifact] = Field(default_factory=list)
