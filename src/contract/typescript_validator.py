# src/contract/typescript_validator.py — v1
"""Compiled-type validation of TypeScript output with ``tsc``.

When tsc is not installed the check degrades to a syntax-level
inspection and the result is flagged ``degraded``.
"""

from __future__ import annotations

import functools
import logging
import re
import shutil
import subprocess
from pathlib import Path

from waveflow.contract.base_validator import BaseContractValidator, resolve_source
from waveflow.contract.models import (
    ContractSpec,
    FailureType,
    StepOutput,
    ValidationResult,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 120.0
_DECLARATION_RE = re.compile(r"\b(interface|type|class|enum|function)\s+\w+")
_PAIRS = {")": "(", "]": "[", "}": "{"}


@functools.lru_cache(maxsize=1)
def tsc_path() -> str | None:
    """Location of the tsc binary, looked up once per process."""
    return shutil.which("tsc")


class TypeScriptValidator(BaseContractValidator):
    contract_type = "typescript_interface"

    def validate(
        self, spec: ContractSpec, output: StepOutput, workspace: Path
    ) -> ValidationResult:
        source = resolve_source(spec, output, workspace)
        if source is None or not source.is_file():
            return ValidationResult.fail(
                self.contract_type,
                FailureType.MISSING_CONTENT,
                f"TypeScript source not found: {source}",
            )

        compiler = tsc_path()
        if compiler is None:
            logger.warning("tsc not available, falling back to syntax check for %s", source)
            result = _syntax_check(source.read_text(encoding="utf-8", errors="replace"))
            result.degraded = True
            result.warnings.append("tsc not found; performed syntax-only check")
            return result

        timeout = spec.timeout_s or DEFAULT_TIMEOUT_S
        try:
            proc = subprocess.run(  # noqa: S603
                [compiler, "--noEmit", "--strict", "--skipLibCheck", str(source)],
                cwd=workspace,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return ValidationResult.fail(
                self.contract_type,
                FailureType.QUALITY_GATE,
                f"tsc timed out after {timeout:.0f}s",
            )

        if proc.returncode == 0:
            return ValidationResult.ok(self.contract_type)
        diagnostics = [
            line.strip()
            for line in (proc.stdout + proc.stderr).splitlines()
            if "error TS" in line
        ]
        return ValidationResult.fail(
            self.contract_type,
            FailureType.SCHEMA_MISMATCH,
            f"tsc reported {len(diagnostics) or 1} error(s)",
            details=diagnostics[:20],
        )


def _syntax_check(text: str) -> ValidationResult:
    contract_type = TypeScriptValidator.contract_type
    if not text.strip():
        return ValidationResult.fail(
            contract_type, FailureType.MISSING_CONTENT, "TypeScript source is empty"
        )
    if not _DECLARATION_RE.search(text):
        return ValidationResult.fail(
            contract_type,
            FailureType.MISSING_CONTENT,
            "no interface, type, class, enum or function declaration found",
        )
    problem = _bracket_problem(text)
    if problem:
        return ValidationResult.fail(contract_type, FailureType.FORMAT_ERROR, problem)
    return ValidationResult.ok(contract_type)


def _bracket_problem(text: str) -> str | None:
    stack: list[str] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        for ch in line:
            if ch in "([{":
                stack.append(ch)
            elif ch in _PAIRS:
                if not stack or stack[-1] != _PAIRS[ch]:
                    return f"unbalanced '{ch}' on line {lineno}"
                stack.pop()
    if stack:
        return f"unclosed '{stack[-1]}' at end of file"
    return None
