# src/contract/json_schema_validator.py — v1
"""Structural validation of a JSON artifact against a JSON Schema."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import jsonschema

from waveflow.contract.base_validator import (
    BaseContractValidator,
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

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = ".waveflow/artifact.json"
MAX_REPORTED_ERRORS = 10


class JsonSchemaValidator(BaseContractValidator):
    contract_type = "json_schema"

    def validate(
        self, spec: ContractSpec, output: StepOutput, workspace: Path
    ) -> ValidationResult:
        try:
            schema = _load_schema(spec, workspace)
        except (OSError, json.JSONDecodeError, ValueError) as exc:
            return ValidationResult.fail(
                self.contract_type,
                FailureType.SCHEMA_MISMATCH,
                f"cannot load schema: {exc}",
                retryable=False,
            )

        source = resolve_source(spec, output, workspace, default=DEFAULT_SOURCE)
        content = read_source(source, output)
        if content is None or not content.strip():
            return ValidationResult.fail(
                self.contract_type,
                FailureType.MISSING_CONTENT,
                f"artifact not found or empty: {source}",
            )

        try:
            document = load_lenient(content)
        except json.JSONDecodeError as exc:
            return ValidationResult.fail(
                self.contract_type,
                FailureType.FORMAT_ERROR,
                f"artifact is not valid JSON: {exc}",
            )

        try:
            validator_cls = jsonschema.validators.validator_for(schema)
            validator_cls.check_schema(schema)
            validator = validator_cls(schema)
        except jsonschema.SchemaError as exc:
            return ValidationResult.fail(
                self.contract_type,
                FailureType.SCHEMA_MISMATCH,
                f"invalid schema: {exc.message}",
                retryable=False,
            )

        errors = sorted(validator.iter_errors(document), key=lambda e: list(e.path))
        if not errors:
            return ValidationResult.ok(self.contract_type)

        details = [
            f"{'/'.join(str(p) for p in err.path) or '<root>'}: {err.message}"
            for err in errors[:MAX_REPORTED_ERRORS]
        ]
        if len(errors) > MAX_REPORTED_ERRORS:
            details.append(f"... and {len(errors) - MAX_REPORTED_ERRORS} more")
        failure_type = (
            FailureType.MISSING_CONTENT
            if all(err.validator == "required" for err in errors)
            else FailureType.SCHEMA_MISMATCH
        )
        return ValidationResult(
            contract_type=self.contract_type,
            passed=False,
            failures=[
                FailureDetail(
                    type=failure_type,
                    message=f"{len(errors)} schema violation(s)",
                    details=details,
                )
            ],
        )


def _load_schema(spec: ContractSpec, workspace: Path) -> dict[str, Any]:
    if spec.inline_schema is not None:
        if isinstance(spec.inline_schema, str):
            return json.loads(spec.inline_schema)
        return spec.inline_schema
    if spec.schema_path:
        path = Path(spec.schema_path)
        if not path.is_absolute() and (workspace / path).is_file():
            path = workspace / path
        return json.loads(path.read_text(encoding="utf-8"))
    raise ValueError("no schema or schema_path provided")
