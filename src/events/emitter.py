# src/events/emitter.py — v1
"""Progress event emitters.

Emitters must not raise into the scheduler: a broken display must never
fail a pipeline, so write errors are logged and dropped.
"""

from __future__ import annotations

import logging
import sys
import threading
from abc import ABC, abstractmethod
from typing import TextIO

from waveflow.events.models import ProgressEvent

logger = logging.getLogger(__name__)


class BaseEventEmitter(ABC):
    @abstractmethod
    def emit(self, event: ProgressEvent) -> None:
        """Publish one event."""


class NullEmitter(BaseEventEmitter):
    def emit(self, event: ProgressEvent) -> None:
        return None


class NDJSONEmitter(BaseEventEmitter):
    """Write one JSON object per line, e.g. for a TUI or an audit pipe."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stdout
        self._lock = threading.Lock()

    def emit(self, event: ProgressEvent) -> None:
        line = event.model_dump_json(exclude_none=True)
        with self._lock:
            try:
                self._stream.write(line + "\n")
                self._stream.flush()
            except (OSError, ValueError) as exc:
                logger.warning("Dropping progress event, stream unavailable: %s", exc)


class LoggingEmitter(BaseEventEmitter):
    """Mirror events into the log at INFO (WARNING for failures)."""

    _WARN_STATES = frozenset({"failed", "contract_failed", "warning", "failed_optional"})

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def emit(self, event: ProgressEvent) -> None:
        level = logging.WARNING if event.state in self._WARN_STATES else logging.INFO
        self._log.log(
            level,
            "%s %s%s",
            event.step_id or event.pipeline_name,
            event.state,
            f": {event.message}" if event.message else "",
            extra={"data": event.model_dump(mode="json", exclude_none=True)},
        )


class CompositeEmitter(BaseEventEmitter):
    def __init__(self, *emitters: BaseEventEmitter) -> None:
        self._emitters = list(emitters)

    def emit(self, event: ProgressEvent) -> None:
        for emitter in self._emitters:
            emitter.emit(event)
