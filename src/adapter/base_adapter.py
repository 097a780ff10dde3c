# src/adapter/base_adapter.py — v1
"""Abstract adapter interface.

The engine only needs one capability from an adapter: run a prompt in a
workspace and report what happened. Implementations must honour task
cancellation by terminating whatever they started.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from waveflow.adapter.models import RunRequest, RunResult


class BaseAdapter(ABC):
    """Unified interface over language-model CLIs."""

    @abstractmethod
    async def run(self, request: RunRequest) -> RunResult:
        """Execute one invocation.

        Raises:
            AdapterUnavailableError: If the underlying tool cannot be started.
        """

    @property
    def name(self) -> str:
        return type(self).__name__
