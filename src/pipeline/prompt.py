# src/pipeline/prompt.py — v1
"""Prompt assembly for a single adapter invocation.

Every invocation starts from a fresh prompt: the task, the injected
artifacts, and optionally a checkpoint or repair guidance. Earlier
transcripts are never included.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from waveflow.core.models import Step
    from waveflow.relay.checkpoint import Checkpoint

INPUT_PLACEHOLDER = "{{input}}"
TASK_PLACEHOLDER = "{{task}}"


def render_task(template: str, input_text: str, task: Any = None) -> str:
    """Substitute ``{{input}}`` and, for matrix workers, ``{{task}}``."""
    text = template.replace(INPUT_PLACEHOLDER, input_text)
    if task is None:
        return text
    task_text = task if isinstance(task, str) else json.dumps(task, indent=2, default=str)
    if TASK_PLACEHOLDER in text:
        return text.replace(TASK_PLACEHOLDER, task_text)
    return f"{text}\n\n## Task\n\n{task_text}"


def build_prompt(
    step: Step,
    input_text: str,
    workspace: Path,
    injected: dict[str, Path] | None = None,
    task: Any = None,
    guidance: str | None = None,
    checkpoint: Checkpoint | None = None,
) -> str:
    parts: list[str] = []
    if checkpoint is not None:
        parts.append(checkpoint.to_prompt())

    parts.append(render_task(step.prompt, input_text, task))

    if injected:
        lines = ["## Available artifacts", ""]
        for name, path in sorted(injected.items()):
            lines.append(f"- {name}: {_relative(path, workspace)}")
        parts.append("\n".join(lines))

    file_outputs = [a for a in step.output_artifacts if a.source == "file"]
    if file_outputs:
        lines = ["## Expected outputs", ""]
        for artifact in file_outputs:
            marker = "" if artifact.required else " (optional)"
            lines.append(f"- {artifact.name}: write to {artifact.path} [{artifact.type}]{marker}")
        parts.append("\n".join(lines))

    if guidance:
        parts.append(guidance)

    return "\n\n".join(p.strip() for p in parts if p.strip()) + "\n"


def _relative(path: Path, workspace: Path) -> str:
    try:
        return str(path.relative_to(workspace))
    except ValueError:
        return str(path)
