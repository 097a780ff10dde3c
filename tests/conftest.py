# tests/conftest.py — v1
"""Shared test fixtures for all unit tests.

Provides settings pointing at tmp directories with zero backoff, a tmp
SQLite store, a scripted in-memory adapter and a recording event emitter.
No external tools are needed: the adapter never starts a process.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import Counter
from pathlib import Path
from typing import Any, Callable

import pytest

from waveflow.adapter.base_adapter import BaseAdapter
from waveflow.adapter.models import RunRequest, RunResult
from waveflow.config.settings import Settings
from waveflow.events.emitter import BaseEventEmitter
from waveflow.events.models import ProgressEvent
from waveflow.pipeline.scheduler import PipelineScheduler
from waveflow.state.sqlite_store import SqliteStateStore


# === FAKES ===


Handler = Callable[[RunRequest], Any]


class ScriptedAdapter(BaseAdapter):
    """In-memory adapter driven by per-persona or per-step handlers.

    A handler receives the RunRequest and returns a RunResult (or an
    awaitable of one), or raises. Lookup order: persona, then step_id,
    then ``default``. Without a handler the call returns "ok".
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.handlers: dict[str, Handler] = {}
        self.default: Handler | None = None
        self.delay = delay
        self.calls: list[RunRequest] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._in_flight_by_step: Counter[str] = Counter()
        self.max_in_flight_by_step: Counter[str] = Counter()

    async def run(self, request: RunRequest) -> RunResult:
        self.calls.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self._in_flight_by_step[request.step_id] += 1
        self.max_in_flight_by_step[request.step_id] = max(
            self.max_in_flight_by_step[request.step_id],
            self._in_flight_by_step[request.step_id],
        )
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            handler = (
                self.handlers.get(request.persona)
                or self.handlers.get(request.step_id)
                or self.default
            )
            if handler is None:
                return RunResult(stdout="ok", tokens_used=10)
            result = handler(request)
            if inspect.isawaitable(result):
                result = await result
            return result
        finally:
            self.in_flight -= 1
            self._in_flight_by_step[request.step_id] -= 1

    def calls_for(self, step_id: str, persona: str | None = None) -> list[RunRequest]:
        return [
            c
            for c in self.calls
            if c.step_id == step_id and (persona is None or c.persona == persona)
        ]


class RecordingEmitter(BaseEventEmitter):
    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    def emit(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def states(self, step_id: str | None = None) -> list[str]:
        return [e.state for e in self.events if step_id is None or e.step_id == step_id]


def write_output(
    request: RunRequest, rel_path: str, content: str, tokens: int = 10, stdout: str = "done"
) -> RunResult:
    """Write ``content`` into the request's workspace, like a CLI would."""
    path = Path(request.workspace_path) / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return RunResult(stdout=stdout, tokens_used=tokens, artifact_paths=[path])


# === FIXTURES ===


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated under tmp_path, with instant retries."""
    return Settings(
        _env_file=None,
        state_db_path=tmp_path / "state.db",
        workspace_root=tmp_path / "workspaces",
        artifact_root=tmp_path / "artifacts",
        retry_base_delay_s=0.0,
        retry_max_delay_s=0.0,
        retry_jitter=False,
    )


@pytest.fixture
def store(tmp_path: Path):
    db = SqliteStateStore(tmp_path / "store.db")
    yield db
    db.close()


@pytest.fixture
def adapter() -> ScriptedAdapter:
    return ScriptedAdapter()


@pytest.fixture
def emitter() -> RecordingEmitter:
    return RecordingEmitter()


@pytest.fixture
def write() -> Callable[..., RunResult]:
    """Expose write_output to test modules."""
    return write_output


@pytest.fixture
def make_scheduler(settings: Settings, emitter: RecordingEmitter):
    """Factory: scheduler over tmp storage, with optional settings overrides."""
    created: list[PipelineScheduler] = []

    def _make(adapter: BaseAdapter, **overrides: Any) -> PipelineScheduler:
        run_settings = settings.model_copy(update=overrides) if overrides else settings
        scheduler = PipelineScheduler(adapter, settings=run_settings, emitter=emitter)
        created.append(scheduler)
        return scheduler

    yield _make
    for scheduler in created:
        scheduler.close()
