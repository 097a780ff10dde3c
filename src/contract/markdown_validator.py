# src/contract/markdown_validator.py — v1
"""Markdown structure checks: required headings, length, placeholders."""

from __future__ import annotations

import re
from pathlib import Path

from waveflow.contract.base_validator import (
    BaseContractValidator,
    find_placeholders,
    read_source,
    resolve_source,
)
from waveflow.contract.models import (
    ContractSpec,
    FailureDetail,
    FailureType,
    StepOutput,
    ValidationResult,
)

_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s+(.+?)\s*#*\s*$", re.MULTILINE)


def extract_headings(text: str) -> list[str]:
    return [m.group(1).strip() for m in _HEADING_RE.finditer(text)]


class MarkdownSpecValidator(BaseContractValidator):
    contract_type = "markdown_spec"

    def validate(
        self, spec: ContractSpec, output: StepOutput, workspace: Path
    ) -> ValidationResult:
        source = resolve_source(spec, output, workspace)
        text = read_source(source, output)
        if text is None or not text.strip():
            return ValidationResult.fail(
                self.contract_type,
                FailureType.MISSING_CONTENT,
                f"markdown document not found or empty: {source}",
            )

        failures: list[FailureDetail] = []
        headings = {h.lower() for h in extract_headings(text)}
        missing = [s for s in spec.required_sections if s.lower() not in headings]
        if missing:
            failures.append(
                FailureDetail(
                    type=FailureType.MISSING_CONTENT,
                    message=f"missing {len(missing)} required section(s)",
                    details=[f"## {s}" for s in missing],
                )
            )

        if spec.min_length and len(text.strip()) < spec.min_length:
            failures.append(
                FailureDetail(
                    type=FailureType.QUALITY_GATE,
                    message=(
                        f"document has {len(text.strip())} characters, "
                        f"minimum is {spec.min_length}"
                    ),
                )
            )

        placeholders = find_placeholders(text)
        if placeholders:
            failures.append(
                FailureDetail(
                    type=FailureType.QUALITY_GATE,
                    message="document contains placeholder text",
                    details=placeholders,
                )
            )

        if failures:
            return ValidationResult(
                contract_type=self.contract_type, passed=False, failures=failures
            )
        return ValidationResult.ok(self.contract_type)
