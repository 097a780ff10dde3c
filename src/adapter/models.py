# src/adapter/models.py — v1
"""Adapter request/response models."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field


class RunRequest(BaseModel):
    """Single adapter invocation. Carries no handle to earlier invocations."""

    run_id: str
    step_id: str
    persona: str
    adapter: str = "claude"
    prompt: str
    system_prompt: str = ""
    workspace_path: Path
    env: dict[str, str] = Field(default_factory=dict)
    timeout_s: float = 1800.0
    temperature: float | None = None
    model: str | None = None


class RunResult(BaseModel):
    """Raw result of one adapter invocation."""

    exit_code: int = 0
    stdout: str = ""
    artifact_paths: list[Path] = Field(default_factory=list)
    tokens_used: int = 0
    failure_reason: str | None = None
    duration_ms: int = 0


def estimate_tokens(text: str) -> int:
    """Rough token estimate (~4 chars per token) used when the CLI reports none."""
    return len(text) // 4
