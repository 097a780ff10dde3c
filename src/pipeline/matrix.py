# src/pipeline/matrix.py — v1
"""Matrix sub-executor — fan one step out over a task list.

Tasks come from an upstream artifact. Each task runs as an independent
worker invocation in its own workspace, at most ``max_concurrency`` at a
time. A failing worker never cancels its siblings. Whether partial
failure fails the step is the scheduler's policy decision.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from waveflow.contract.json_cleaner import load_lenient
from waveflow.core.errors import (
    MatrixExecutionError,
    StepExecutionError,
)
from waveflow.logging.context import worker_context

if TYPE_CHECKING:
    from waveflow.artifacts.registry import ArtifactRegistry
    from waveflow.core.models import MatrixStrategy, Step
    from waveflow.pipeline.execution import PipelineExecution
    from waveflow.pipeline.step_runner import InvocationOutcome, StepRunner

logger = logging.getLogger(__name__)

MAX_LISTED_ERRORS = 3


@dataclass
class TaskResult:
    """Outcome of one matrix worker."""

    index: int
    task: Any
    success: bool
    outcome: InvocationOutcome | None = None
    error: str | None = None

    @property
    def tokens_used(self) -> int:
        return self.outcome.tokens_used if self.outcome is not None else 0

    @property
    def modified_files(self) -> list[str]:
        return self.outcome.modified_files if self.outcome is not None else []


@dataclass
class MatrixResult:
    succeeded: list[TaskResult] = field(default_factory=list)
    failed: list[TaskResult] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def tokens_used(self) -> int:
        return sum(r.tokens_used for r in [*self.succeeded, *self.failed])

    def failure_summary(self) -> str:
        """``"2/5 workers failed: ... (and 1 more)"``."""
        errors = [f"worker {r.index}: {r.error}" for r in self.failed]
        summary = f"{len(self.failed)}/{self.total} workers failed"
        if errors:
            summary += ": " + "; ".join(errors[:MAX_LISTED_ERRORS])
        if len(errors) > MAX_LISTED_ERRORS:
            summary += f" (and {len(errors) - MAX_LISTED_ERRORS} more)"
        return summary

    def as_records(self) -> list[dict[str, Any]]:
        """JSON-serializable per-worker summary, ordered by task index."""
        records = []
        for r in sorted([*self.succeeded, *self.failed], key=lambda r: r.index):
            records.append(
                {
                    "index": r.index,
                    "task": r.task,
                    "success": r.success,
                    "error": r.error,
                    "tokens_used": r.tokens_used,
                    "outputs": sorted(r.outcome.outputs) if r.outcome else [],
                    "modified_files": r.modified_files,
                }
            )
        return records


def load_tasks(registry: ArtifactRegistry, consumer: str, strategy: MatrixStrategy) -> list[Any]:
    """Read the task list from the upstream artifact named by ``items_source``.

    Raises:
        MissingArtifactError: If the source artifact was never registered.
        MatrixExecutionError: If the artifact does not hold a list.
    """
    producer, name = strategy.source_ref
    artifact = registry.require(producer, name, consumer)

    try:
        data = load_lenient(artifact.path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise MatrixExecutionError(
            f"items source {strategy.items_source} is not valid JSON: {exc}",
            retryable=False,
        ) from exc

    if strategy.item_key:
        for part in strategy.item_key.split("."):
            if not isinstance(data, dict) or part not in data:
                raise MatrixExecutionError(
                    f"item_key '{strategy.item_key}' not found in {strategy.items_source}",
                    retryable=False,
                )
            data = data[part]

    if not isinstance(data, list):
        raise MatrixExecutionError(
            f"items source {strategy.items_source} does not contain a list "
            f"(got {type(data).__name__})",
            retryable=False,
        )
    return data


class MatrixExecutor:
    """Runs matrix workers through the shared StepRunner."""

    def __init__(self, runner: StepRunner) -> None:
        self._runner = runner

    async def execute_matrix(
        self,
        execution: PipelineExecution,
        step: Step,
        tasks: list[Any],
        max_concurrency: int | None,
    ) -> MatrixResult:
        """Run one worker per task with bounded concurrency.

        Zero tasks is an immediately successful no-op.
        """
        if not tasks:
            logger.info("Matrix step '%s' has no tasks", step.id)
            return MatrixResult()

        limit = max_concurrency if max_concurrency and max_concurrency > 0 else len(tasks)
        semaphore = asyncio.Semaphore(limit)
        logger.info(
            "Matrix step '%s': %d tasks, max %d concurrent", step.id, len(tasks), limit
        )

        async def worker(index: int, task: Any) -> TaskResult:
            async with semaphore:
                try:
                    with worker_context(index):
                        outcome = await self._runner.invoke(
                            execution, step, label=f"worker-{index}", task=task
                        )
                except StepExecutionError as exc:
                    logger.warning("Matrix worker %d of '%s' failed: %s", index, step.id, exc)
                    return TaskResult(index=index, task=task, success=False, error=str(exc))
                except Exception as exc:
                    logger.exception("Matrix worker %d of '%s' crashed", index, step.id)
                    return TaskResult(index=index, task=task, success=False, error=repr(exc))
                return TaskResult(index=index, task=task, success=True, outcome=outcome)

        results = await asyncio.gather(*(worker(i, t) for i, t in enumerate(tasks)))

        matrix = MatrixResult(
            succeeded=[r for r in results if r.success],
            failed=[r for r in results if not r.success],
        )
        matrix.conflicts = detect_file_conflicts(matrix.succeeded)
        if matrix.conflicts:
            logger.warning(
                "Matrix step '%s' workers wrote the same files: %s",
                step.id,
                "; ".join(matrix.conflicts),
            )
        logger.info(
            "Matrix step '%s' finished: %d succeeded, %d failed",
            step.id,
            len(matrix.succeeded),
            len(matrix.failed),
        )
        return matrix


def detect_file_conflicts(results: list[TaskResult]) -> list[str]:
    """``"<path> (workers: 0, 2)"`` for every file written by more than one worker."""
    writers: dict[str, list[int]] = {}
    for result in sorted(results, key=lambda r: r.index):
        for path in result.modified_files:
            writers.setdefault(path, []).append(result.index)
    return [
        f"{path} (workers: {', '.join(str(i) for i in indices)})"
        for path, indices in sorted(writers.items())
        if len(indices) > 1
    ]
