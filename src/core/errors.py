# src/core/errors.py — v1
"""Error taxonomy shared by the scheduler, step runner and collaborators.

Step-local failures derive from StepExecutionError and carry a
``retryable`` flag consumed by the retry policy. StepError is the only
failure surfaced to callers of execute()/resume().
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from waveflow.contract.models import ValidationResult


class WaveflowError(Exception):
    """Base class for all waveflow errors."""


# === DEFINITION ERRORS (load time, never retried) ===


class PipelineDefinitionError(WaveflowError):
    """Pipeline definition is inconsistent (unknown step, duplicate ID, bad config)."""


class DAGCycleError(PipelineDefinitionError):
    """Step dependency graph contains a cycle."""

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(f"Cycle detected in step dependencies: {' -> '.join(cycle)}")


# === RUNTIME BOOKKEEPING ===


class InvalidTransitionError(WaveflowError):
    """A step state transition outside the allowed edges was requested."""

    def __init__(self, step_id: str, current: str, target: str) -> None:
        self.step_id = step_id
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid transition for step '{step_id}': {current} -> {target}"
        )


class ArtifactConflictError(WaveflowError):
    """An artifact key was registered twice within a run."""


class RunNotFoundError(WaveflowError):
    """No persisted run exists for the given run ID."""


# === STEP-LOCAL FAILURES ===


class StepExecutionError(WaveflowError):
    """Failure of a single step attempt."""

    retryable: bool = True

    def __init__(self, message: str, retryable: bool | None = None) -> None:
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class MissingArtifactError(StepExecutionError):
    """Required injected artifact absent at dispatch time."""

    retryable = False

    def __init__(self, step_id: str, producer: str, artifact: str) -> None:
        self.step_id = step_id
        self.producer = producer
        self.artifact = artifact
        super().__init__(
            f"required artifact '{artifact}' from step '{producer}' not found"
        )


class ContractValidationError(StepExecutionError):
    """Step output did not satisfy its handover contract."""

    def __init__(self, result: ValidationResult, retryable: bool | None = None) -> None:
        self.result = result
        super().__init__(
            result.describe(),
            retryable=result.retryable if retryable is None else retryable,
        )


class StepTimeoutError(StepExecutionError):
    """Adapter invocation exceeded the step deadline and was killed."""

    def __init__(self, step_id: str, timeout_s: float) -> None:
        self.step_id = step_id
        self.timeout_s = timeout_s
        super().__init__(f"step '{step_id}' timed out after {timeout_s:.0f}s")


class AdapterUnavailableError(StepExecutionError):
    """Adapter binary is missing. Environment problem, never retried."""

    retryable = False


class AdapterRunError(StepExecutionError):
    """Adapter reported a transient failure (rate limit, crash)."""


class RelayError(StepExecutionError):
    """Relay could not be performed (summarizer failed, unusable checkpoint)."""


class RelayExhaustedError(RelayError):
    """Summarizer itself would exceed its token budget."""

    retryable = False


class MatrixExecutionError(StepExecutionError):
    """Matrix fan-out failed under the step's failure policy."""


# === SURFACED FAILURE ===


class StepError(WaveflowError):
    """Terminal failure of a required step, naming the step and its cause."""

    def __init__(self, step_id: str, cause: BaseException | str) -> None:
        self.step_id = step_id
        self.cause = cause
        super().__init__(f"step '{step_id}' failed: {cause}")
