# src/pipeline/scheduler.py — v1
"""Pipeline scheduler: execute, resume and inspect runs.

Drives the step state machine over the DAG:
  - readiness-based dispatch bounded by max_concurrent_workers
  - skip propagation along artifact injection edges
  - per-step retry with exponential backoff
  - optional steps absorb their failure, required ones halt the run
  - every transition persisted before the scheduler moves on

resume() is the same scheduling loop over a pre-populated execution.
"""

from __future__ import annotations

import asyncio
import json
import logging
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping

from waveflow.artifacts.models import Artifact
from waveflow.artifacts.registry import ArtifactRegistry
from waveflow.config.settings import Settings, load_settings
from waveflow.contract.classifier import error_guidance, repair_guidance
from waveflow.contract.validator import ContractValidator
from waveflow.core.errors import (
    ContractValidationError,
    MatrixExecutionError,
    RunNotFoundError,
    StepError,
    StepExecutionError,
)
from waveflow.core.models import Persona, Pipeline, Step
from waveflow.events.emitter import BaseEventEmitter, LoggingEmitter
from waveflow.events.models import ProgressEvent
from waveflow.logging.context import set_attempt, set_run_context, set_step_context
from waveflow.pipeline.dag_builder import validate_pipeline
from waveflow.pipeline.execution import (
    PipelineExecution,
    PipelineStatus,
    generate_run_id,
)
from waveflow.pipeline.matrix import MatrixExecutor, load_tasks
from waveflow.pipeline.retry import (
    RetryConfig,
    compute_delay,
    resolve_max_retries,
    should_retry,
)
from waveflow.pipeline.step_runner import InvocationOutcome, StepRunner
from waveflow.pipeline.step_state import (
    RESUME_KEPT_STATES,
    SATISFIED_STATES,
    UNAVAILABLE_STATES,
    StepRecord,
    StepState,
)
from waveflow.relay.manager import RelayManager
from waveflow.state.sqlite_store import SqliteStateStore
from waveflow.workspace.local_workspace import LocalWorkspaceProvider

if TYPE_CHECKING:
    from waveflow.adapter.base_adapter import BaseAdapter
    from waveflow.contract.models import ValidationResult
    from waveflow.state.base_state_store import BaseStateStore
    from waveflow.state.models import PersistedRun, RunSummary
    from waveflow.workspace.base_workspace import BaseWorkspaceProvider

logger = logging.getLogger(__name__)

MATRIX_RESULTS_ARTIFACT = "matrix_results"


class PipelineScheduler:
    """Execute pipelines against an adapter.

    Args:
        adapter: Adapter used for every step and relay invocation.
        settings: Runtime settings (loaded from .env when omitted).
        store: Persisted state store (SQLite at settings.state_db_path by default).
        workspaces: Workspace provider (local directories by default).
        validator: Contract validator facade.
        emitter: Progress event sink (logging by default).
        personas: Persona definitions by name.
        relay: Relay manager; built from settings when relay is enabled.
    """

    def __init__(
        self,
        adapter: BaseAdapter,
        settings: Settings | None = None,
        store: BaseStateStore | None = None,
        workspaces: BaseWorkspaceProvider | None = None,
        validator: ContractValidator | None = None,
        emitter: BaseEventEmitter | None = None,
        personas: Mapping[str, Persona] | None = None,
        relay: RelayManager | None = None,
    ) -> None:
        self._settings = settings or load_settings()
        self._store = store or SqliteStateStore(self._settings.state_db_path)
        self._workspaces = workspaces or LocalWorkspaceProvider(
            self._settings.workspace_root
        )
        self._emitter = emitter or LoggingEmitter()
        if not self._settings.relay_enabled:
            relay = None
        elif relay is None:
            relay = RelayManager.from_settings(adapter, self._settings)
        self._relay = relay
        self._retry = RetryConfig.from_settings(self._settings)
        self._runner = StepRunner(
            adapter,
            self._workspaces,
            validator or ContractValidator(self._settings.contract_command_timeout_s),
            self._settings,
            self._emit,
            relay=relay,
            personas=personas,
        )
        self._matrix = MatrixExecutor(self._runner)

    # --- Public API ---

    async def execute(
        self, pipeline: Pipeline, input_text: str = "", run_id: str | None = None
    ) -> PipelineExecution:
        """Run ``pipeline`` from scratch.

        Raises:
            DAGCycleError: Before any step runs, if dependencies form a cycle.
            PipelineDefinitionError: On any other definition problem.
            StepError: When a required step fails terminally.
        """
        validate_pipeline(pipeline, self._summarizer_persona)
        run_id = run_id or generate_run_id(pipeline.name, self._settings.run_id_hash_length)
        execution = PipelineExecution.create(run_id, pipeline, input_text)
        execution.registry = ArtifactRegistry(run_id, self._settings.artifact_root)
        execution.started_at = datetime.now(timezone.utc)

        await self._store.save_pipeline_state(execution)
        for record in execution.steps.values():
            await self._store.save_step_state(run_id, record)

        logger.info("Starting run %s of pipeline '%s'", run_id, pipeline.name)
        return await self._run(execution)

    async def resume(self, run_id: str) -> PipelineExecution:
        """Continue a persisted run.

        Steps recorded completed, failed_optional or skipped are kept;
        all others are scheduled again.

        Raises:
            RunNotFoundError: If the run was never persisted.
            StepError: When a required step fails terminally.
        """
        persisted = await self._store.load_for_resume(run_id)
        validate_pipeline(persisted.pipeline, self._summarizer_persona)
        execution = self._rebuild(persisted)
        for record in execution.steps.values():
            record.reset_for_resume()

        kept = set(execution.steps_in(*RESUME_KEPT_STATES))
        registry = ArtifactRegistry(run_id, self._settings.artifact_root)
        registry.restore([a for a in persisted.artifacts if a.step_id in kept])
        execution.registry = registry
        execution.status = "running"
        execution.completed_at = None
        execution.error_message = None

        await self._store.save_pipeline_state(execution)
        for step_id, record in execution.steps.items():
            if step_id not in kept:
                await self._store.save_step_state(run_id, record)

        logger.info(
            "Resuming run %s: %d/%d steps already done",
            run_id,
            len(kept),
            len(execution.steps),
        )
        return await self._run(execution)

    async def get_status(self, run_id: str) -> PipelineStatus:
        """Read-only snapshot of a persisted run."""
        persisted = await self._store.load_for_resume(run_id)
        return PipelineStatus.from_execution(self._rebuild(persisted))

    async def list_runs(self, limit: int = 50) -> list[RunSummary]:
        return await self._store.list_runs(limit)

    async def clean(self, run_id: str) -> None:
        """Delete a run's persisted state, workspaces and stored artifacts."""
        if await self._store.get_run(run_id) is None:
            raise RunNotFoundError(f"run '{run_id}' not found")
        self._workspaces.clean_run(run_id)
        ArtifactRegistry(run_id, self._settings.artifact_root).remove_files()
        await self._store.delete_run(run_id)

    def close(self) -> None:
        self._store.close()

    # --- Scheduling loop ---

    async def _run(self, execution: PipelineExecution) -> PipelineExecution:
        set_run_context(execution.run_id, execution.pipeline.name)
        self._emit(execution, None, "started", f"{len(execution.steps)} steps")

        try:
            failure = await self._schedule(execution)
        except BaseException as exc:
            execution.status = "failed"
            execution.error_message = "cancelled" if isinstance(
                exc, asyncio.CancelledError
            ) else str(exc)
            execution.completed_at = datetime.now(timezone.utc)
            await self._store.save_pipeline_state(execution)
            self._emit(execution, None, "failed", execution.error_message)
            raise

        execution.completed_at = datetime.now(timezone.utc)
        if failure is not None:
            execution.status = "failed"
            execution.error_message = str(failure)
        else:
            execution.status = "completed"
        await self._store.save_pipeline_state(execution)
        self._emit(
            execution,
            None,
            execution.status,
            execution.error_message or "",
            tokens_used=execution.total_tokens,
        )

        if failure is not None:
            raise failure
        logger.info(
            "Run %s completed: %d steps, %d tokens",
            execution.run_id,
            len(execution.steps),
            execution.total_tokens,
        )
        return execution

    async def _schedule(self, execution: PipelineExecution) -> StepError | None:
        pipeline = execution.pipeline
        running: dict[asyncio.Task[StepError | None], str] = {}
        failure: StepError | None = None
        limit = self._settings.max_concurrent_workers

        try:
            while True:
                await self._propagate_skips(execution)

                if failure is None:
                    active = set(running.values())
                    for step in pipeline.steps:
                        if len(running) >= limit:
                            break
                        if step.id in active or not self._is_ready(execution, step):
                            continue
                        task = asyncio.create_task(
                            self._run_step(execution, step), name=f"step:{step.id}"
                        )
                        running[task] = step.id

                if not running:
                    break

                done, _ = await asyncio.wait(set(running), return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    running.pop(task)
                    if task.cancelled():
                        continue
                    error = task.result()
                    if error is not None and failure is None:
                        failure = error
                        logger.error("Halting run %s: %s", execution.run_id, error)
                        if self._settings.cancel_on_failure:
                            for other in running:
                                other.cancel()
        finally:
            if running:
                for task in running:
                    task.cancel()
                await asyncio.gather(*running, return_exceptions=True)

        if failure is None:
            stuck = execution.steps_in(StepState.PENDING)
            if stuck:
                failure = StepError(stuck[0], "dependencies can never be satisfied")
        return failure

    def _is_ready(self, execution: PipelineExecution, step: Step) -> bool:
        if execution.state_of(step.id) != StepState.PENDING:
            return False
        return all(execution.state_of(up) in SATISFIED_STATES for up in step.upstream)

    async def _propagate_skips(self, execution: PipelineExecution) -> None:
        """Skip pending steps whose injected data can never arrive."""
        changed = True
        while changed:
            changed = False
            for step in execution.pipeline.steps:
                if execution.state_of(step.id) != StepState.PENDING:
                    continue
                blocker = _unavailable_producer(execution, step)
                if blocker is None:
                    continue
                await self._transition(
                    execution,
                    step,
                    StepState.SKIPPED,
                    error=(
                        f"input from step '{blocker}' unavailable "
                        f"({execution.state_of(blocker).value})"
                    ),
                )
                changed = True

    # --- Step execution ---

    async def _run_step(self, execution: PipelineExecution, step: Step) -> StepError | None:
        """Drive one step to a terminal state. Returns the error to surface, if any."""
        set_step_context(step.id, step.persona)
        record = execution.steps[step.id]
        max_retries = resolve_max_retries(step, self._settings.default_max_retries)
        guidance: str | None = None

        await self._transition(execution, step, StepState.RUNNING)
        try:
            while True:
                attempt = record.retry_count + 1
                set_attempt(attempt)
                try:
                    if step.kind == "matrix":
                        tokens, artifacts = await self._run_matrix_step(execution, step)
                    else:
                        outcome = await self._runner.invoke(
                            execution, step, label=f"attempt-{attempt}", guidance=guidance
                        )
                        tokens = outcome.tokens_used
                        artifacts = await self._commit(execution, step, outcome)
                except StepExecutionError as exc:
                    error: BaseException = exc
                except Exception as exc:
                    logger.exception("Unexpected error in step '%s'", step.id)
                    error = exc
                else:
                    record.tokens_used += tokens
                    await self._transition(
                        execution,
                        step,
                        StepState.COMPLETED,
                        artifacts=[a.name for a in artifacts],
                    )
                    return None

                if should_retry(error, record.retry_count, max_retries):
                    record.retry_count += 1
                    guidance = _guidance_for(error, attempt, max_retries + 1)
                    await self._transition(
                        execution, step, StepState.RETRYING, error=str(error)
                    )
                    await asyncio.sleep(compute_delay(self._retry, record.retry_count - 1))
                    await self._transition(execution, step, StepState.RUNNING)
                    continue

                if step.optional:
                    await self._transition(
                        execution, step, StepState.FAILED_OPTIONAL, error=str(error)
                    )
                    return None
                await self._transition(execution, step, StepState.FAILED, error=str(error))
                return StepError(step.id, error)
        except asyncio.CancelledError:
            if record.state in (StepState.RUNNING, StepState.RETRYING):
                await self._transition(execution, step, StepState.FAILED, error="cancelled")
            raise

    async def _commit(
        self, execution: PipelineExecution, step: Step, outcome: InvocationOutcome
    ) -> list[Artifact]:
        """Register outputs, then release the workspace."""
        types = {a.name: a.type for a in step.output_artifacts}
        try:
            artifacts = [
                await self._register(execution, step.id, name, path, types.get(name, "file"))
                for name, path in outcome.outputs.items()
            ]
        finally:
            execution.steps[step.id].workspace_path = str(outcome.workspace_path)
            self._runner.release(outcome.workspace_path)
        return artifacts

    async def _run_matrix_step(
        self, execution: PipelineExecution, step: Step
    ) -> tuple[int, list[Artifact]]:
        if step.strategy is None or execution.registry is None:
            raise RuntimeError(f"matrix step '{step.id}' has no strategy or registry")
        tasks = load_tasks(execution.registry, step.id, step.strategy)
        policy = step.strategy.failure_policy or self._settings.matrix_default_policy
        result = await self._matrix.execute_matrix(
            execution, step, tasks, step.strategy.max_concurrency
        )
        for task_result in sorted([*result.succeeded, *result.failed], key=lambda r: r.index):
            self._emit(
                execution,
                step.id,
                "matrix_worker",
                f"worker {task_result.index} "
                + ("succeeded" if task_result.success else f"failed: {task_result.error}"),
                tokens_used=task_result.tokens_used,
            )

        try:
            if result.conflicts:
                message = "file conflicts detected: " + "; ".join(result.conflicts)
                self._emit(execution, step.id, "matrix_conflict", message)
                raise MatrixExecutionError(message)
            if result.failed and (policy == "all_must_pass" or not result.succeeded):
                raise MatrixExecutionError(result.failure_summary())
            if result.failed:
                self._emit(
                    execution,
                    step.id,
                    "warning",
                    f"best effort: {result.failure_summary()}",
                )

            types = {a.name: a.type for a in step.output_artifacts}
            artifacts: list[Artifact] = []
            for task_result in sorted(result.succeeded, key=lambda r: r.index):
                outputs = task_result.outcome.outputs if task_result.outcome else {}
                for name, path in outputs.items():
                    artifacts.append(
                        await self._register(
                            execution,
                            step.id,
                            f"{name}.{task_result.index}",
                            path,
                            types.get(name, "file"),
                        )
                    )

            with tempfile.TemporaryDirectory() as tmp:
                summary_path = Path(tmp) / f"{MATRIX_RESULTS_ARTIFACT}.json"
                summary_path.write_text(
                    json.dumps(result.as_records(), indent=2, default=str),
                    encoding="utf-8",
                )
                artifacts.append(
                    await self._register(
                        execution, step.id, MATRIX_RESULTS_ARTIFACT, summary_path, "json"
                    )
                )
        finally:
            for task_result in result.succeeded:
                if task_result.outcome is not None:
                    self._runner.release(task_result.outcome.workspace_path)

        return result.tokens_used, artifacts

    async def _register(
        self,
        execution: PipelineExecution,
        step_id: str,
        name: str,
        path: Path,
        artifact_type: str,
    ) -> Artifact:
        if execution.registry is None:
            raise RuntimeError(f"run '{execution.run_id}' has no artifact registry")
        artifact = execution.registry.register(step_id, name, path, artifact_type)
        await self._store.register_artifact(execution.run_id, artifact)
        return artifact

    # --- State & events ---

    async def _transition(
        self,
        execution: PipelineExecution,
        step: Step,
        target: StepState,
        error: str | None = None,
        artifacts: list[str] | None = None,
    ) -> None:
        record = execution.steps[step.id]
        record.transition(target, error=error)
        await self._store.save_step_state(execution.run_id, record)
        self._emit(
            execution,
            step.id,
            target.value,
            error or "",
            persona=step.persona,
            retry_count=record.retry_count,
            tokens_used=record.tokens_used,
            duration_ms=_elapsed_ms(record),
            artifacts=artifacts or [],
        )

    def _emit(
        self,
        execution: PipelineExecution,
        step_id: str | None,
        state: str,
        message: str = "",
        **fields: Any,
    ) -> None:
        event = ProgressEvent(
            run_id=execution.run_id,
            pipeline_name=execution.pipeline.name,
            step_id=step_id,
            state=state,  # type: ignore[arg-type]
            message=message,
            progress=execution.progress,
            total_steps=len(execution.steps),
            completed_steps=execution.completed_count,
            **fields,
        )
        self._emitter.emit(event)

    @property
    def _summarizer_persona(self) -> str | None:
        return self._relay.summarizer_persona if self._relay is not None else None

    def _rebuild(self, persisted: PersistedRun) -> PipelineExecution:
        steps = {
            s.id: persisted.steps.get(s.id) or StepRecord(step_id=s.id)
            for s in persisted.pipeline.steps
        }
        return PipelineExecution(
            run_id=persisted.run_id,
            pipeline=persisted.pipeline,
            input_text=persisted.input_text,
            status=persisted.status,  # type: ignore[arg-type]
            steps=steps,
            started_at=persisted.started_at,
            completed_at=persisted.completed_at,
            error_message=persisted.error_message,
        )


def _unavailable_producer(execution: PipelineExecution, step: Step) -> str | None:
    producers = [ref.step for ref in step.memory.inject_artifacts if not ref.optional]
    if step.strategy is not None:
        producers.append(step.strategy.source_ref[0])
    for producer in producers:
        if execution.state_of(producer) in UNAVAILABLE_STATES:
            return producer
    return None


def _guidance_for(error: BaseException, attempt: int, max_attempts: int) -> str:
    if isinstance(error, ContractValidationError):
        result: ValidationResult = error.result
        return repair_guidance(result, attempt, max_attempts)
    return error_guidance(str(error), attempt, max_attempts)


def _elapsed_ms(record: StepRecord) -> int | None:
    if record.started_at is None:
        return None
    end = record.completed_at or datetime.now(timezone.utc)
    return int((end - record.started_at).total_seconds() * 1000)
