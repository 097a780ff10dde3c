# src/artifacts/models.py — v1
"""Artifact registry entries."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from pydantic import BaseModel


class Artifact(BaseModel):
    """A registered, immutable output of one step."""

    step_id: str
    name: str
    path: Path
    type: str = "file"
    size_bytes: int = 0
    created_at: datetime

    @property
    def key(self) -> tuple[str, str]:
        return (self.step_id, self.name)
