# src/logging/context.py — v1
"""Task-local log context for runs, steps, attempts and matrix workers.

The whole context lives in one ContextVar holding a frozen LogContext.
Every setter replaces it with an updated copy, so a step task never
mutates what its parent (the scheduler loop) or a sibling task sees.
"""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from dataclasses import asdict, dataclass, replace
from typing import Any, Iterator


@dataclass(frozen=True)
class LogContext:
    run_id: str | None = None
    pipeline: str | None = None
    step_id: str | None = None
    persona: str | None = None
    attempt: int | None = None
    worker: int | None = None

    def as_dict(self) -> dict[str, Any]:
        """Non-None fields, for JSON log injection."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def markers(self) -> str:
        """Compact ``<run> [step#attempt/wN] (persona)`` prefix for text logs."""
        parts = []
        if self.run_id:
            parts.append(f"<{self.run_id}>")
        if self.step_id:
            step = self.step_id
            if self.attempt is not None:
                step += f"#{self.attempt}"
            if self.worker is not None:
                step += f"/w{self.worker}"
            parts.append(f"[{step}]")
        if self.persona:
            parts.append(f"({self.persona})")
        return " ".join(parts)


_EMPTY = LogContext()
_context: contextvars.ContextVar[LogContext] = contextvars.ContextVar(
    "waveflow_log_context", default=_EMPTY
)


def get_context() -> LogContext:
    return _context.get()


def set_run_context(run_id: str, pipeline: str) -> None:
    """Start a run: step-level fields from a previous run are dropped."""
    _context.set(LogContext(run_id=run_id, pipeline=pipeline))


def set_step_context(step_id: str, persona: str | None = None) -> None:
    """Called at the start of each step task; resets attempt and worker."""
    _context.set(
        replace(_context.get(), step_id=step_id, persona=persona, attempt=None, worker=None)
    )


def set_attempt(attempt: int) -> None:
    _context.set(replace(_context.get(), attempt=attempt))


@contextmanager
def worker_context(index: int) -> Iterator[LogContext]:
    """Tag records with a matrix worker index for the duration of the block."""
    token = _context.set(replace(_context.get(), worker=index))
    try:
        yield _context.get()
    finally:
        _context.reset(token)


def clear_context() -> None:
    _context.set(_EMPTY)
