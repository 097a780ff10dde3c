# src/contract/format_validator.py — v1
"""Format rules for JSON deliverables: required, non-empty fields."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from waveflow.contract.base_validator import (
    BaseContractValidator,
    find_placeholders,
    read_source,
    resolve_source,
)
from waveflow.contract.json_cleaner import load_lenient
from waveflow.contract.models import (
    ContractSpec,
    FailureDetail,
    FailureType,
    StepOutput,
    ValidationResult,
)


class FormatValidator(BaseContractValidator):
    contract_type = "format"

    def validate(
        self, spec: ContractSpec, output: StepOutput, workspace: Path
    ) -> ValidationResult:
        source = resolve_source(spec, output, workspace)
        content = read_source(source, output)
        if content is None or not content.strip():
            return ValidationResult.fail(
                self.contract_type,
                FailureType.MISSING_CONTENT,
                f"output not found or empty: {source}",
            )
        try:
            document = load_lenient(content)
        except json.JSONDecodeError as exc:
            return ValidationResult.fail(
                self.contract_type,
                FailureType.FORMAT_ERROR,
                f"output is not valid JSON: {exc}",
            )

        failures: list[FailureDetail] = []
        missing = [
            name for name in spec.required_fields if _is_empty(_lookup(document, name))
        ]
        if missing:
            failures.append(
                FailureDetail(
                    type=FailureType.MISSING_CONTENT,
                    message="required fields missing or empty",
                    details=missing,
                )
            )

        placeholders = sorted(
            {p for text in _strings(document) for p in find_placeholders(text)}
        )
        if placeholders:
            failures.append(
                FailureDetail(
                    type=FailureType.QUALITY_GATE,
                    message="output contains placeholder values",
                    details=placeholders,
                )
            )

        if failures:
            return ValidationResult(
                contract_type=self.contract_type, passed=False, failures=failures
            )
        return ValidationResult.ok(self.contract_type)


def _lookup(document: Any, dotted: str) -> Any:
    current = document
    for part in dotted.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return None
    return current


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def _strings(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, dict):
        return [s for v in value.values() for s in _strings(v)]
    if isinstance(value, list):
        return [s for v in value for s in _strings(v)]
    return []
