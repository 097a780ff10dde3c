# tests/unit/pipeline/test_step_state.py — v1
"""Tests for pipeline/step_state.py — transition table and StepRecord."""

from __future__ import annotations

import pytest

from waveflow.core.errors import InvalidTransitionError
from waveflow.pipeline.step_state import (
    SATISFIED_STATES,
    TERMINAL_STATES,
    StepRecord,
    StepState,
    can_transition,
)


class TestTransitionTable:
    @pytest.mark.parametrize(
        "current,target",
        [
            (StepState.PENDING, StepState.RUNNING),
            (StepState.PENDING, StepState.SKIPPED),
            (StepState.RUNNING, StepState.COMPLETED),
            (StepState.RUNNING, StepState.FAILED),
            (StepState.RUNNING, StepState.RETRYING),
            (StepState.RUNNING, StepState.FAILED_OPTIONAL),
            (StepState.RETRYING, StepState.RUNNING),
            (StepState.RETRYING, StepState.FAILED),
        ],
    )
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (StepState.PENDING, StepState.COMPLETED),
            (StepState.COMPLETED, StepState.RUNNING),
            (StepState.FAILED, StepState.RETRYING),
            (StepState.SKIPPED, StepState.RUNNING),
            (StepState.RETRYING, StepState.COMPLETED),
            (StepState.RETRYING, StepState.FAILED_OPTIONAL),
        ],
    )
    def test_rejected(self, current, target):
        assert not can_transition(current, target)

    def test_terminal_states_have_no_exits(self):
        for state in TERMINAL_STATES:
            assert not any(can_transition(state, t) for t in StepState)

    def test_failed_does_not_satisfy_dependents(self):
        assert StepState.FAILED not in SATISFIED_STATES
        assert StepState.FAILED_OPTIONAL in SATISFIED_STATES


class TestStepRecord:
    def test_timestamps(self):
        record = StepRecord(step_id="a")
        record.transition(StepState.RUNNING)
        assert record.started_at is not None
        assert record.completed_at is None
        record.transition(StepState.COMPLETED)
        assert record.completed_at >= record.started_at

    def test_started_at_kept_across_retries(self):
        record = StepRecord(step_id="a")
        record.transition(StepState.RUNNING)
        started = record.started_at
        record.transition(StepState.RETRYING, error="boom")
        record.transition(StepState.RUNNING)
        assert record.started_at == started
        assert record.error_message == "boom"

    def test_completion_clears_error(self):
        record = StepRecord(step_id="a")
        record.transition(StepState.RUNNING)
        record.transition(StepState.RETRYING, error="boom")
        record.transition(StepState.RUNNING)
        record.transition(StepState.COMPLETED)
        assert record.error_message is None

    def test_invalid_transition_raises(self):
        record = StepRecord(step_id="a")
        with pytest.raises(InvalidTransitionError) as exc_info:
            record.transition(StepState.COMPLETED)
        assert exc_info.value.step_id == "a"
        assert record.state == StepState.PENDING

    def test_reset_for_resume(self):
        record = StepRecord(step_id="a", state=StepState.FAILED, retry_count=2)
        record.reset_for_resume()
        assert record.state == StepState.PENDING
        assert record.retry_count == 0

    def test_reset_keeps_satisfied_states(self):
        for state in (StepState.COMPLETED, StepState.SKIPPED, StepState.FAILED_OPTIONAL):
            record = StepRecord(step_id="a", state=state, retry_count=1)
            record.reset_for_resume()
            assert record.state == state
            assert record.retry_count == 1
