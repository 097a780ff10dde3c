# tests/unit/pipeline/test_step_runner.py — v1
"""Tests for pipeline/step_runner.py — one invocation of a step."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from waveflow.adapter.models import RunRequest, RunResult
from waveflow.artifacts.registry import ArtifactRegistry
from waveflow.contract.models import FailureType
from waveflow.contract.validator import ContractValidator
from waveflow.core.errors import (
    AdapterRunError,
    ContractValidationError,
    MissingArtifactError,
    StepTimeoutError,
)
from waveflow.core.models import Persona, Pipeline, Step
from waveflow.pipeline.execution import PipelineExecution
from waveflow.pipeline.step_runner import StepRunner
from waveflow.relay.manager import RelayManager
from waveflow.workspace.local_workspace import LocalWorkspaceProvider


class _Events:
    def __init__(self) -> None:
        self.calls: list[tuple[str | None, str, str]] = []

    def __call__(self, execution, step_id, state, message="", **fields) -> None:
        self.calls.append((step_id, state, message))

    @property
    def states(self) -> list[str]:
        return [c[1] for c in self.calls]


def _execution(tmp_path: Path, *steps: Step) -> PipelineExecution:
    execution = PipelineExecution.create("run-1", Pipeline(name="p", steps=list(steps)), "goal")
    execution.registry = ArtifactRegistry("run-1", tmp_path / "artifacts")
    return execution


def _runner(tmp_path, settings, adapter, events, **kwargs) -> StepRunner:
    return StepRunner(
        adapter,
        LocalWorkspaceProvider(tmp_path / "ws"),
        ContractValidator(),
        settings,
        events,
        **kwargs,
    )


class TestInvoke:
    @pytest.mark.asyncio
    async def test_stdout_artifact_collected(self, tmp_path, settings, adapter):
        adapter.default = lambda r: RunResult(stdout="# Report\n\nbody", tokens_used=7)
        step = Step.model_validate(
            {
                "id": "report",
                "persona": "writer",
                "output_artifacts": [
                    {"name": "report", "path": "report.md", "type": "markdown", "source": "stdout"}
                ],
            }
        )
        runner = _runner(tmp_path, settings, adapter, _Events())
        outcome = await runner.invoke(_execution(tmp_path, step), step, label="attempt-1")

        assert outcome.tokens_used == 7
        assert outcome.outputs["report"].read_text() == "# Report\n\nbody"
        assert outcome.workspace_path.name == "attempt-1"
        runner.release(outcome.workspace_path)
        assert not outcome.workspace_path.exists()

    @pytest.mark.asyncio
    async def test_optional_output_may_be_absent(self, tmp_path, settings, adapter):
        step = Step.model_validate(
            {
                "id": "a",
                "persona": "dev",
                "output_artifacts": [{"name": "extra", "path": "x.txt", "required": False}],
            }
        )
        runner = _runner(tmp_path, settings, adapter, _Events())
        outcome = await runner.invoke(_execution(tmp_path, step), step, label="attempt-1")
        assert outcome.outputs == {}

    @pytest.mark.asyncio
    async def test_modified_files_recorded(self, tmp_path, settings, adapter, write):
        source = tmp_path / "project"
        source.mkdir()
        (source / "keep.py").write_text("x = 1\n")
        (source / "edit.py").write_text("y = 1\n")

        def work(request: RunRequest) -> RunResult:
            write(request, "repo/edit.py", "y = 2  # changed\n")
            write(request, "repo/new.py", "z = 3\n")
            return write(request, "notes.md", "# Notes\n")

        adapter.default = work
        step = Step.model_validate(
            {
                "id": "a",
                "persona": "dev",
                "workspace": {
                    "mounts": [{"source": str(source), "target": "repo", "mode": "readwrite"}]
                },
                "output_artifacts": [{"name": "notes", "path": "notes.md"}],
            }
        )
        runner = _runner(tmp_path, settings, adapter, _Events())
        outcome = await runner.invoke(_execution(tmp_path, step), step, label="attempt-1")
        assert outcome.modified_files == ["repo/edit.py", "repo/new.py"]

    @pytest.mark.asyncio
    async def test_missing_injection_fails_without_adapter_call(self, tmp_path, settings, adapter):
        producer = Step(id="a", persona="dev")
        consumer = Step.model_validate(
            {
                "id": "b",
                "persona": "dev",
                "memory": {"inject_artifacts": [{"step": "a", "artifact": "doc"}]},
            }
        )
        runner = _runner(tmp_path, settings, adapter, _Events())
        with pytest.raises(MissingArtifactError) as exc_info:
            await runner.invoke(_execution(tmp_path, producer, consumer), consumer, label="attempt-1")
        assert exc_info.value.retryable is False
        assert adapter.calls == []
        assert not (tmp_path / "ws" / "run-1" / "b" / "attempt-1").exists()

    @pytest.mark.asyncio
    async def test_persona_settings_reach_adapter(self, tmp_path, settings, adapter):
        personas = {
            "architect": Persona(
                name="architect",
                adapter="opencode",
                model="big",
                temperature=0.1,
                system_prompt="You design.",
                timeout_minutes=2,
            )
        }
        step = Step(id="a", persona="architect")
        runner = _runner(tmp_path, settings, adapter, _Events(), personas=personas)
        await runner.invoke(_execution(tmp_path, step), step, label="attempt-1")

        request = adapter.calls[0]
        assert request.adapter == "opencode"
        assert request.model == "big"
        assert request.system_prompt == "You design."
        assert request.timeout_s == 120

    def test_timeout_resolution(self, tmp_path, settings, adapter):
        runner = _runner(tmp_path, settings, adapter, _Events())
        persona = Persona(name="p", timeout_minutes=3)
        assert runner.timeout_for(Step(id="a", persona="p", timeout_minutes=1), persona) == 60
        assert runner.timeout_for(Step(id="a", persona="p"), persona) == 180
        assert runner.timeout_for(Step(id="a", persona="p"), Persona(name="p")) == 1800

    @pytest.mark.asyncio
    async def test_timeout_raises(self, tmp_path, settings, adapter):
        async def hang(request: RunRequest) -> RunResult:
            await asyncio.sleep(5)
            return RunResult()

        adapter.default = hang
        step = Step(id="slow", persona="dev", timeout_minutes=0.001)
        runner = _runner(tmp_path, settings, adapter, _Events())
        with pytest.raises(StepTimeoutError):
            await runner.invoke(_execution(tmp_path, step), step, label="attempt-1")

    @pytest.mark.asyncio
    async def test_rate_limit(self, tmp_path, settings, adapter):
        adapter.default = lambda r: RunResult(exit_code=1, failure_reason="rate_limit")
        step = Step(id="a", persona="dev")
        runner = _runner(tmp_path, settings, adapter, _Events())
        with pytest.raises(AdapterRunError) as exc_info:
            await runner.invoke(_execution(tmp_path, step), step, label="attempt-1")
        assert exc_info.value.retryable is True


class TestContractHandover:
    def _step(self, **contract) -> Step:
        return Step.model_validate(
            {
                "id": "spec",
                "persona": "writer",
                "output_artifacts": [{"name": "spec", "path": "spec.md", "type": "markdown"}],
                "handover": {
                    "contract": {
                        "type": "markdown_spec",
                        "required_sections": ["Goals"],
                        **contract,
                    }
                },
            }
        )

    @pytest.mark.asyncio
    async def test_pass_emits_events(self, tmp_path, settings, adapter, write):
        adapter.default = lambda r: write(r, "spec.md", "# Spec\n## Goals\nShip it.\n")
        events = _Events()
        step = self._step()
        outcome = await _runner(tmp_path, settings, adapter, events).invoke(
            _execution(tmp_path, step), step, label="attempt-1"
        )
        assert outcome.validation is not None and outcome.validation.passed
        assert events.states == ["validating", "contract_passed"]

    @pytest.mark.asyncio
    async def test_failure_raises_retryable(self, tmp_path, settings, adapter, write):
        adapter.default = lambda r: write(r, "spec.md", "# Spec\nnothing\n")
        events = _Events()
        step = self._step()
        with pytest.raises(ContractValidationError) as exc_info:
            await _runner(tmp_path, settings, adapter, events).invoke(
                _execution(tmp_path, step), step, label="attempt-1"
            )
        assert exc_info.value.retryable is True
        assert exc_info.value.result.failure_types == [FailureType.MISSING_CONTENT]
        assert events.states[-1] == "contract_failed"
        assert not (tmp_path / "ws" / "run-1" / "spec" / "attempt-1").exists()

    @pytest.mark.asyncio
    async def test_warn_mode_passes_through(self, tmp_path, settings, adapter, write):
        adapter.default = lambda r: write(r, "spec.md", "# Spec\nnothing\n")
        events = _Events()
        step = self._step(on_failure="warn")
        outcome = await _runner(tmp_path, settings, adapter, events).invoke(
            _execution(tmp_path, step), step, label="attempt-1"
        )
        assert outcome.validation is not None and not outcome.validation.passed
        assert events.states[-1] == "contract_soft_failure"


class TestRelayLoop:
    @pytest.mark.asyncio
    async def test_relay_cap_per_attempt(self, tmp_path, settings, adapter):
        adapter.handlers["dev"] = lambda r: RunResult(stdout="long transcript", tokens_used=950)
        adapter.handlers["summarizer"] = lambda r: RunResult(stdout="just a summary", tokens_used=5)
        run_settings = settings.model_copy(
            update={"relay_context_window": 1000, "relay_max_per_attempt": 2}
        )
        relay = RelayManager(adapter, min_tokens=0)
        events = _Events()
        step = Step(id="a", persona="dev")
        outcome = await _runner(tmp_path, run_settings, adapter, events, relay=relay).invoke(
            _execution(tmp_path, step), step, label="attempt-1"
        )

        assert outcome.relays == 2
        assert len(adapter.calls_for("a", persona="summarizer")) == 2
        assert len(adapter.calls_for("a", persona="dev")) == 3
        assert events.states.count("relay") == 2
        assert (outcome.workspace_path / "checkpoint.md").is_file()

    @pytest.mark.asyncio
    async def test_compaction_overrides(self, tmp_path, settings, adapter):
        adapter.handlers["dev"] = lambda r: RunResult(stdout="t", tokens_used=600)
        adapter.handlers["compactor"] = lambda r: RunResult(stdout="summary", tokens_used=5)
        relay = RelayManager(adapter, min_tokens=0)
        step = Step.model_validate(
            {
                "id": "a",
                "persona": "dev",
                "handover": {
                    "compaction": {
                        "threshold_percent": 50,
                        "context_window": 1000,
                        "persona": "compactor",
                    }
                },
            }
        )
        outcome = await _runner(tmp_path, settings, adapter, _Events(), relay=relay).invoke(
            _execution(tmp_path, step), step, label="attempt-1"
        )
        assert outcome.relays == settings.relay_max_per_attempt
        assert adapter.calls_for("a", persona="compactor")
