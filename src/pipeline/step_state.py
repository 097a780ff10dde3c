# src/pipeline/step_state.py — v1
"""Step state machine.

Forward-only transitions, except retrying -> running. Nothing leaves a
terminal state during a run; resume() resets non-terminal records
explicitly through StepRecord.reset_for_resume().
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel

from waveflow.core.errors import InvalidTransitionError


class StepState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"
    FAILED_OPTIONAL = "failed_optional"
    SKIPPED = "skipped"


_TRANSITIONS: dict[StepState, frozenset[StepState]] = {
    StepState.PENDING: frozenset({StepState.RUNNING, StepState.SKIPPED}),
    StepState.RUNNING: frozenset(
        {
            StepState.COMPLETED,
            StepState.FAILED,
            StepState.RETRYING,
            StepState.FAILED_OPTIONAL,
        }
    ),
    StepState.RETRYING: frozenset({StepState.RUNNING, StepState.FAILED}),
    StepState.COMPLETED: frozenset(),
    StepState.FAILED: frozenset(),
    StepState.FAILED_OPTIONAL: frozenset(),
    StepState.SKIPPED: frozenset(),
}

# States that satisfy a downstream ordering dependency.
SATISFIED_STATES = frozenset(
    {StepState.COMPLETED, StepState.SKIPPED, StepState.FAILED_OPTIONAL}
)

# States resume() keeps as-is; everything else is scheduled again.
RESUME_KEPT_STATES = SATISFIED_STATES

# Producers in these states can never deliver an artifact.
UNAVAILABLE_STATES = frozenset({StepState.SKIPPED, StepState.FAILED_OPTIONAL})

TERMINAL_STATES = frozenset(
    {
        StepState.COMPLETED,
        StepState.FAILED,
        StepState.FAILED_OPTIONAL,
        StepState.SKIPPED,
    }
)


def can_transition(current: StepState, target: StepState) -> bool:
    return target in _TRANSITIONS[current]


class StepRecord(BaseModel):
    """Runtime record of one step in one run."""

    step_id: str
    state: StepState = StepState.PENDING
    retry_count: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    workspace_path: str | None = None
    error_message: str | None = None
    tokens_used: int = 0

    def transition(self, target: StepState, error: str | None = None) -> None:
        """Move to ``target``, enforcing the allowed edges.

        Raises:
            InvalidTransitionError: If the edge is not allowed.
        """
        if not can_transition(self.state, target):
            raise InvalidTransitionError(self.step_id, self.state.value, target.value)
        now = datetime.now(timezone.utc)
        if target == StepState.RUNNING and self.started_at is None:
            self.started_at = now
        if target in TERMINAL_STATES:
            self.completed_at = now
        if error is not None:
            self.error_message = error
        elif target == StepState.COMPLETED:
            self.error_message = None
        self.state = target

    def reset_for_resume(self) -> None:
        """Return an unfinished step to pending so it is scheduled again."""
        if self.state in RESUME_KEPT_STATES:
            return
        self.state = StepState.PENDING
        self.retry_count = 0
        self.started_at = None
        self.completed_at = None
        self.workspace_path = None
