# src/contract/base_validator.py — v1
"""Abstract contract validator.

Validators are pure with respect to pipeline state: they read the
workspace and the step output, and return a ValidationResult.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from pathlib import Path

from waveflow.contract.models import ContractSpec, StepOutput, ValidationResult


class BaseContractValidator(ABC):
    """One contract kind."""

    contract_type: str = ""

    @abstractmethod
    def validate(
        self, spec: ContractSpec, output: StepOutput, workspace: Path
    ) -> ValidationResult:
        """Check the step output against ``spec``."""


def resolve_source(
    spec: ContractSpec,
    output: StepOutput,
    workspace: Path,
    default: str | None = None,
) -> Path | None:
    """Locate the file a contract applies to.

    Order: ``spec.source`` relative to the workspace, the first declared
    output artifact, then ``default``.
    """
    if spec.source:
        source = Path(spec.source)
        return source if source.is_absolute() else workspace / source
    if output.artifact_paths:
        return next(iter(output.artifact_paths.values()))
    if default:
        return workspace / default
    return None


def read_source(path: Path | None, output: StepOutput) -> str | None:
    """File content, or stdout when no file is involved. None if missing."""
    if path is None:
        return output.stdout
    if not path.is_file():
        return None
    return path.read_text(encoding="utf-8", errors="replace")


_PLACEHOLDER_RE = re.compile(
    r"\[(?:TODO|TBD|FIXME|[Pp]laceholder)[^\]]*\]|\b(?:TODO|TBD|FIXME)\b|[Ll]orem ipsum"
)


def find_placeholders(text: str) -> list[str]:
    """Unfilled template markers left in generated content."""
    return sorted({m.group(0) for m in _PLACEHOLDER_RE.finditer(text)})
