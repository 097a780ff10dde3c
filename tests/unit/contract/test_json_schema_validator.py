# tests/unit/contract/test_json_schema_validator.py — v1
"""Tests for contract/json_schema_validator.py."""

from __future__ import annotations

import json
from pathlib import Path

from waveflow.contract.json_schema_validator import DEFAULT_SOURCE, JsonSchemaValidator
from waveflow.contract.models import ContractSpec, FailureType, StepOutput

SCHEMA = {
    "type": "object",
    "required": ["name", "tasks"],
    "properties": {
        "name": {"type": "string"},
        "tasks": {"type": "array", "items": {"type": "string"}},
    },
}


def _spec(**kwargs) -> ContractSpec:
    return ContractSpec.model_validate({"type": "json_schema", "schema": SCHEMA, **kwargs})


def _write(workspace: Path, rel: str, content: str) -> Path:
    path = workspace / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


class TestJsonSchemaValidator:
    def test_valid_document(self, tmp_path: Path):
        path = _write(tmp_path, "plan.json", json.dumps({"name": "x", "tasks": ["a"]}))
        output = StepOutput(artifact_paths={"plan": path})
        result = JsonSchemaValidator().validate(_spec(), output, tmp_path)
        assert result.passed

    def test_default_source_location(self, tmp_path: Path):
        _write(tmp_path, DEFAULT_SOURCE, '{"name": "x", "tasks": []}')
        result = JsonSchemaValidator().validate(_spec(), StepOutput(), tmp_path)
        assert result.passed

    def test_explicit_source_wins(self, tmp_path: Path):
        _write(tmp_path, "out/result.json", '{"name": "x", "tasks": []}')
        other = _write(tmp_path, "other.json", "{}")
        output = StepOutput(artifact_paths={"other": other})
        result = JsonSchemaValidator().validate(_spec(source="out/result.json"), output, tmp_path)
        assert result.passed

    def test_fenced_json_is_cleaned(self, tmp_path: Path):
        _write(tmp_path, DEFAULT_SOURCE, '```json\n{"name": "x", "tasks": ["a",],}\n```')
        result = JsonSchemaValidator().validate(_spec(), StepOutput(), tmp_path)
        assert result.passed

    def test_missing_artifact(self, tmp_path: Path):
        result = JsonSchemaValidator().validate(_spec(), StepOutput(), tmp_path)
        assert not result.passed
        assert result.failure_types == [FailureType.MISSING_CONTENT]
        assert result.retryable

    def test_unparseable(self, tmp_path: Path):
        _write(tmp_path, DEFAULT_SOURCE, "{not json")
        result = JsonSchemaValidator().validate(_spec(), StepOutput(), tmp_path)
        assert result.failure_types == [FailureType.FORMAT_ERROR]

    def test_only_required_missing(self, tmp_path: Path):
        _write(tmp_path, DEFAULT_SOURCE, '{"name": "x"}')
        result = JsonSchemaValidator().validate(_spec(), StepOutput(), tmp_path)
        assert result.failure_types == [FailureType.MISSING_CONTENT]
        assert "'tasks' is a required property" in result.failures[0].details[0]

    def test_type_violation_reports_path(self, tmp_path: Path):
        _write(tmp_path, DEFAULT_SOURCE, '{"name": "x", "tasks": [1]}')
        result = JsonSchemaValidator().validate(_spec(), StepOutput(), tmp_path)
        assert result.failure_types == [FailureType.SCHEMA_MISMATCH]
        assert result.failures[0].details[0].startswith("tasks/0:")

    def test_error_list_truncated(self, tmp_path: Path):
        _write(tmp_path, DEFAULT_SOURCE, json.dumps({"name": "x", "tasks": list(range(15))}))
        result = JsonSchemaValidator().validate(_spec(), StepOutput(), tmp_path)
        details = result.failures[0].details
        assert len(details) == 11
        assert details[-1] == "... and 5 more"

    def test_schema_from_file(self, tmp_path: Path):
        _write(tmp_path, "schemas/plan.json", json.dumps(SCHEMA))
        _write(tmp_path, DEFAULT_SOURCE, '{"name": "x", "tasks": []}')
        spec = ContractSpec(type="json_schema", schema_path="schemas/plan.json")
        assert JsonSchemaValidator().validate(spec, StepOutput(), tmp_path).passed

    def test_inline_schema_as_string(self, tmp_path: Path):
        _write(tmp_path, DEFAULT_SOURCE, '{"name": "x", "tasks": []}')
        spec = ContractSpec.model_validate({"type": "json_schema", "schema": json.dumps(SCHEMA)})
        assert JsonSchemaValidator().validate(spec, StepOutput(), tmp_path).passed

    def test_no_schema_not_retryable(self, tmp_path: Path):
        result = JsonSchemaValidator().validate(ContractSpec(type="json_schema"), StepOutput(), tmp_path)
        assert not result.passed
        assert result.retryable is False

    def test_invalid_schema_not_retryable(self, tmp_path: Path):
        _write(tmp_path, DEFAULT_SOURCE, "{}")
        spec = ContractSpec.model_validate({"type": "json_schema", "schema": {"type": 12}})
        result = JsonSchemaValidator().validate(spec, StepOutput(), tmp_path)
        assert result.retryable is False
        assert "invalid schema" in result.failures[0].message
