# src/pipeline/step_runner.py — v1
"""Single invocation of a step: workspace, injection, adapter, relay, contract.

The runner never touches step state. It either returns an
InvocationOutcome or raises a StepExecutionError; the scheduler decides
what that means for the state machine.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Mapping

from waveflow.adapter.models import RunRequest, RunResult
from waveflow.contract.models import (
    FailureType,
    StepOutput,
    ValidationResult,
)
from waveflow.core.errors import (
    AdapterRunError,
    ContractValidationError,
    StepTimeoutError,
)
from waveflow.core.models import Persona, Step
from waveflow.pipeline.prompt import build_prompt
from waveflow.relay.checkpoint import CHECKPOINT_FILENAME
from waveflow.relay.manager import RelayContext

if TYPE_CHECKING:
    from waveflow.adapter.base_adapter import BaseAdapter
    from waveflow.config.settings import Settings
    from waveflow.contract.validator import ContractValidator
    from waveflow.pipeline.execution import PipelineExecution
    from waveflow.relay.manager import RelayManager
    from waveflow.workspace.base_workspace import BaseWorkspaceProvider

logger = logging.getLogger(__name__)

# emit(execution, step_id, state, message, **fields)
EmitFn = Callable[..., None]


@dataclass
class InvocationOutcome:
    """Successful invocation, before its artifacts are registered."""

    workspace_path: Path
    result: RunResult
    tokens_used: int
    outputs: dict[str, Path]
    validation: ValidationResult | None = None
    relays: int = 0
    duration_ms: int = 0
    modified_files: list[str] = field(default_factory=list)


class StepRunner:
    """Runs one attempt (or one matrix worker) of a step."""

    def __init__(
        self,
        adapter: BaseAdapter,
        workspaces: BaseWorkspaceProvider,
        validator: ContractValidator,
        settings: Settings,
        emit: EmitFn,
        relay: RelayManager | None = None,
        personas: Mapping[str, Persona] | None = None,
    ) -> None:
        self._adapter = adapter
        self._workspaces = workspaces
        self._validator = validator
        self._settings = settings
        self._emit = emit
        self._relay = relay
        self._personas = dict(personas or {})

    @property
    def workspaces(self) -> BaseWorkspaceProvider:
        return self._workspaces

    def persona_for(self, step: Step) -> Persona:
        persona = self._personas.get(step.persona)
        if persona is None:
            persona = Persona(name=step.persona, adapter=self._settings.default_adapter)
        return persona

    def timeout_for(self, step: Step, persona: Persona) -> float:
        minutes = step.timeout_minutes or persona.timeout_minutes
        return minutes * 60 if minutes else self._settings.default_timeout_s

    def release(self, path: Path) -> None:
        """Remove a workspace unless workspaces are kept for debugging."""
        if not self._settings.keep_workspaces:
            self._workspaces.cleanup(path)

    async def invoke(
        self,
        execution: PipelineExecution,
        step: Step,
        label: str,
        guidance: str | None = None,
        task: Any = None,
    ) -> InvocationOutcome:
        """Run the step once in a fresh workspace.

        The workspace is removed on failure. On success the caller owns it
        and must release() it after registering the outputs.

        Raises:
            StepExecutionError: Any failure of this attempt.
        """
        if execution.registry is None:
            raise RuntimeError(f"run '{execution.run_id}' has no artifact registry")
        persona = self.persona_for(step)
        start_ns = time.monotonic_ns()
        workspace = self._workspaces.create(
            execution.run_id, step.id, step.workspace.mounts, label
        )
        try:
            injected = execution.registry.inject(
                step.id, step.memory.inject_artifacts, workspace
            )
            before = snapshot_files(workspace)
            prompt_args = dict(
                step=step,
                input_text=execution.input_text,
                workspace=workspace,
                injected=injected,
                task=task,
                guidance=guidance,
            )
            result = await self._run_adapter(
                execution, step, persona, workspace, build_prompt(**prompt_args)
            )
            tokens = result.tokens_used

            relays = 0
            while self._relay is not None and relays < self._settings.relay_max_per_attempt:
                threshold, window, summarizer = self._relay_params(step, persona)
                relay_ctx = RelayContext(
                    run_id=execution.run_id,
                    step_id=step.id,
                    persona=persona.name,
                    transcript=result.stdout,
                    workspace_path=workspace,
                    context_window=window,
                    summarizer_persona=summarizer,
                )
                relay = await self._relay.maybe_relay(relay_ctx, result.tokens_used, threshold)
                if not relay.relayed:
                    break
                relays += 1
                tokens += relay.tokens_used
                self._emit(
                    execution,
                    step.id,
                    "relay",
                    f"context compacted at {result.tokens_used} tokens, resuming from checkpoint",
                    persona=persona.name,
                    tokens_used=relay.tokens_used,
                    duration_ms=relay.duration_ms,
                )
                result = await self._run_adapter(
                    execution,
                    step,
                    persona,
                    workspace,
                    build_prompt(**prompt_args, checkpoint=relay.checkpoint),
                )
                tokens += result.tokens_used

            if result.exit_code != 0:
                self._emit(
                    execution,
                    step.id,
                    "warning",
                    f"adapter exited with code {result.exit_code}, "
                    "deferring to contract validation",
                    persona=persona.name,
                )

            outputs = self._collect_outputs(step, workspace, result)
            validation = await self._validate(execution, step, workspace, result, outputs)
            modified = modified_files(workspace, before, _scratch_paths(step))
        except BaseException:
            self.release(workspace)
            raise

        return InvocationOutcome(
            workspace_path=workspace,
            result=result,
            tokens_used=tokens,
            outputs=outputs,
            validation=validation,
            relays=relays,
            duration_ms=(time.monotonic_ns() - start_ns) // 1_000_000,
            modified_files=modified,
        )

    async def _run_adapter(
        self,
        execution: PipelineExecution,
        step: Step,
        persona: Persona,
        workspace: Path,
        prompt: str,
    ) -> RunResult:
        timeout = self.timeout_for(step, persona)
        request = RunRequest(
            run_id=execution.run_id,
            step_id=step.id,
            persona=persona.name,
            adapter=persona.adapter,
            prompt=prompt,
            system_prompt=persona.system_prompt,
            workspace_path=workspace,
            env={"WAVEFLOW_RUN_ID": execution.run_id, "WAVEFLOW_STEP_ID": step.id},
            timeout_s=timeout,
            temperature=persona.temperature,
            model=persona.model,
        )
        try:
            result = await asyncio.wait_for(self._adapter.run(request), timeout)
        except asyncio.TimeoutError as exc:
            raise StepTimeoutError(step.id, timeout) from exc

        if result.failure_reason == "rate_limit":
            raise AdapterRunError(f"adapter rate limited while running step '{step.id}'")
        return result

    def _relay_params(self, step: Step, persona: Persona) -> tuple[int, int, str | None]:
        compaction = step.handover.compaction
        threshold = self._settings.relay_threshold_percent
        window = persona.context_window or self._settings.relay_context_window
        summarizer = None
        if compaction is not None:
            threshold = compaction.threshold_percent or threshold
            window = compaction.context_window or window
            summarizer = compaction.persona
        return threshold, window, summarizer

    def _collect_outputs(
        self, step: Step, workspace: Path, result: RunResult
    ) -> dict[str, Path]:
        outputs: dict[str, Path] = {}
        missing: list[str] = []
        for artifact in step.output_artifacts:
            path = workspace / artifact.path
            if artifact.source == "stdout":
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(result.stdout, encoding="utf-8")
            if path.is_file():
                outputs[artifact.name] = path
            elif artifact.required:
                missing.append(f"{artifact.name} ({artifact.path})")
        if missing:
            raise ContractValidationError(
                ValidationResult.fail(
                    "output_artifacts",
                    FailureType.MISSING_CONTENT,
                    "required output artifact(s) not produced",
                    details=missing,
                )
            )
        return outputs

    async def _validate(
        self,
        execution: PipelineExecution,
        step: Step,
        workspace: Path,
        result: RunResult,
        outputs: dict[str, Path],
    ) -> ValidationResult | None:
        contract = step.handover.contract
        if contract is None:
            return None

        self._emit(
            execution, step.id, "validating", f"checking {contract.type} contract",
            validation_phase=contract.type,
        )
        step_output = StepOutput(
            stdout=result.stdout, artifact_paths=outputs, exit_code=result.exit_code
        )
        validation = await asyncio.to_thread(
            self._validator.validate, contract, step_output, workspace
        )

        if validation.passed:
            note = " (degraded)" if validation.degraded else ""
            self._emit(
                execution, step.id, "contract_passed",
                f"{contract.type} contract passed{note}",
                validation_phase=contract.type,
            )
            return validation

        if contract.is_soft:
            self._emit(
                execution, step.id, "contract_soft_failure", validation.describe(),
                validation_phase=contract.type,
            )
            return validation

        self._emit(
            execution, step.id, "contract_failed", validation.describe(),
            validation_phase=contract.type,
        )
        raise ContractValidationError(
            validation,
            retryable=validation.retryable and contract.on_failure == "retry",
        )


def snapshot_files(root: Path) -> dict[str, tuple[int, int]]:
    """Map each file under ``root`` to its (mtime_ns, size)."""
    files: dict[str, tuple[int, int]] = {}
    for path in root.rglob("*"):
        if path.is_file():
            stat = path.stat()
            files[path.relative_to(root).as_posix()] = (stat.st_mtime_ns, stat.st_size)
    return files


def modified_files(
    root: Path, before: dict[str, tuple[int, int]], exclude: frozenset[str]
) -> list[str]:
    """Files created or changed since ``before``, minus engine-managed paths."""
    changed = []
    for rel, signature in snapshot_files(root).items():
        if before.get(rel) == signature or rel in exclude:
            continue
        if rel.startswith(".waveflow/"):
            continue
        changed.append(rel)
    return sorted(changed)


def _scratch_paths(step: Step) -> frozenset[str]:
    # declared outputs are registered per worker and the checkpoint is per attempt
    paths = {Path(a.path).as_posix() for a in step.output_artifacts}
    paths.add(CHECKPOINT_FILENAME)
    return frozenset(paths)
