# src/state/base_state_store.py — v1
"""Abstract persisted state store.

Implementations must serialize concurrent writes: several steps of the
same run complete and transition concurrently.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from waveflow.artifacts.models import Artifact
    from waveflow.pipeline.execution import PipelineExecution
    from waveflow.pipeline.step_state import StepRecord
    from waveflow.state.models import PersistedRun, RunSummary


class BaseStateStore(ABC):
    """Durable record of pipeline- and step-level state."""

    @abstractmethod
    async def save_pipeline_state(self, execution: PipelineExecution) -> None:
        """Upsert the run record (definition, input, status, timestamps)."""

    @abstractmethod
    async def save_step_state(self, run_id: str, record: StepRecord) -> None:
        """Upsert one step record. Must be durable when the call returns."""

    @abstractmethod
    async def register_artifact(self, run_id: str, artifact: Artifact) -> None:
        """Persist a registry entry."""

    @abstractmethod
    async def load_for_resume(self, run_id: str) -> PersistedRun:
        """Load a run with its step records and artifacts.

        Raises:
            RunNotFoundError: If the run does not exist.
        """

    @abstractmethod
    async def get_run(self, run_id: str) -> RunSummary | None:
        """Run-level record only, or None if unknown."""

    @abstractmethod
    async def list_runs(self, limit: int = 50) -> list[RunSummary]:
        """Most recent runs first."""

    @abstractmethod
    async def delete_run(self, run_id: str) -> None:
        """Remove a run and everything recorded for it."""

    def close(self) -> None:
        """Release resources. Default: nothing to do."""
