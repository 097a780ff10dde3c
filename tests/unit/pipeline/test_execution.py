# tests/unit/pipeline/test_execution.py — v1
"""Tests for pipeline/execution.py — run IDs, progress, status snapshot."""

from __future__ import annotations

import re

from waveflow.core.models import Pipeline, Step
from waveflow.pipeline.execution import (
    PipelineExecution,
    PipelineStatus,
    generate_run_id,
)
from waveflow.pipeline.step_state import StepState


def _execution() -> PipelineExecution:
    pipeline = Pipeline(
        name="demo",
        steps=[Step(id=s, persona="dev") for s in ("a", "b", "c", "d")],
    )
    return PipelineExecution.create("demo-1234", pipeline, "input")


class TestGenerateRunId:
    def test_format(self):
        assert re.fullmatch(r"feature-[0-9a-f]{8}", generate_run_id("feature"))

    def test_custom_length(self):
        run_id = generate_run_id("p", hash_length=40)
        assert len(run_id) == len("p-") + 40

    def test_invalid_length_falls_back(self):
        assert len(generate_run_id("p", hash_length=0)) == len("p-") + 8

    def test_unique(self):
        assert len({generate_run_id("p") for _ in range(50)}) == 50


class TestPipelineExecution:
    def test_create_all_pending(self):
        execution = _execution()
        assert execution.status == "running"
        assert execution.steps_in(StepState.PENDING) == ["a", "b", "c", "d"]
        assert execution.progress == 0

    def test_progress_counts_terminal_states(self):
        execution = _execution()
        execution.steps["a"].state = StepState.COMPLETED
        execution.steps["b"].state = StepState.SKIPPED
        execution.steps["c"].state = StepState.RUNNING
        assert execution.completed_count == 2
        assert execution.progress == 50

    def test_total_tokens(self):
        execution = _execution()
        execution.steps["a"].tokens_used = 10
        execution.steps["b"].tokens_used = 5
        assert execution.total_tokens == 15

    def test_registry_not_serialized(self):
        execution = _execution()
        assert "registry" not in execution.model_dump()


class TestPipelineStatus:
    def test_from_execution(self):
        execution = _execution()
        execution.steps["a"].state = StepState.COMPLETED
        execution.steps["b"].state = StepState.FAILED_OPTIONAL
        execution.steps["c"].state = StepState.RETRYING
        status = PipelineStatus.from_execution(execution)

        assert status.id == "demo-1234"
        assert status.pipeline_name == "demo"
        assert status.state == "running"
        assert status.completed_steps == ["a"]
        assert status.failed_steps == ["b"]
        assert status.current_steps == ["c"]
        assert status.step_states["d"] == StepState.PENDING
        assert status.progress == 50
