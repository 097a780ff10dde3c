# src/workspace/base_workspace.py — v1
"""Abstract workspace provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from waveflow.core.models import Mount


class BaseWorkspaceProvider(ABC):
    """Creates isolated, per-invocation execution directories."""

    @abstractmethod
    def create(
        self,
        run_id: str,
        step_id: str,
        mounts: list[Mount] | None = None,
        label: str = "attempt-1",
    ) -> Path:
        """Create a fresh, empty workspace and apply mounts."""

    @abstractmethod
    def cleanup(self, path: Path) -> None:
        """Remove a workspace created by this provider."""

    @abstractmethod
    def clean_run(self, run_id: str) -> None:
        """Remove every workspace of a run."""
