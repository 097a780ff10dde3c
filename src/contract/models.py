# src/contract/models.py — v1
"""Contract declarations and validation results."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ContractType = Literal[
    "json_schema", "typescript_interface", "test_suite", "markdown_spec", "format"
]


class FailureType(str, Enum):
    """Failure classes driving the repair guidance of the next attempt."""

    SCHEMA_MISMATCH = "schema_mismatch"
    FORMAT_ERROR = "format_error"
    MISSING_CONTENT = "missing_content"
    QUALITY_GATE = "quality_gate"


class ContractSpec(BaseModel):
    """Handover contract declared on a step."""

    model_config = ConfigDict(populate_by_name=True)

    type: ContractType
    source: str | None = None
    inline_schema: dict[str, Any] | str | None = Field(default=None, alias="schema")
    schema_path: str | None = None
    command: str | None = None
    dir: str | None = None
    required_sections: list[str] = Field(default_factory=list)
    required_fields: list[str] = Field(default_factory=list)
    min_length: int = 0
    must_pass: bool = True
    on_failure: Literal["retry", "fail", "warn"] = "retry"
    max_retries: int | None = None
    timeout_s: float | None = None

    @property
    def is_soft(self) -> bool:
        """Failures only produce a warning and never block the handover."""
        return not self.must_pass or self.on_failure == "warn"


class FailureDetail(BaseModel):
    """One reason a contract failed."""

    type: FailureType
    message: str
    details: list[str] = Field(default_factory=list)


class StepOutput(BaseModel):
    """What a step produced, as seen by the validators."""

    stdout: str = ""
    artifact_paths: dict[str, Path] = Field(default_factory=dict)
    exit_code: int = 0


class ValidationResult(BaseModel):
    """Outcome of validating one contract."""

    contract_type: str
    passed: bool
    failures: list[FailureDetail] = Field(default_factory=list)
    retryable: bool = True
    degraded: bool = False
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def ok(cls, contract_type: str, **kwargs: Any) -> ValidationResult:
        return cls(contract_type=contract_type, passed=True, **kwargs)

    @classmethod
    def fail(
        cls,
        contract_type: str,
        failure_type: FailureType,
        message: str,
        details: list[str] | None = None,
        retryable: bool = True,
    ) -> ValidationResult:
        return cls(
            contract_type=contract_type,
            passed=False,
            failures=[
                FailureDetail(type=failure_type, message=message, details=details or [])
            ],
            retryable=retryable,
        )

    @property
    def failure_types(self) -> list[FailureType]:
        return [f.type for f in self.failures]

    def describe(self) -> str:
        """One-line description used in error messages and events."""
        if self.passed:
            return f"contract {self.contract_type} passed"
        reasons = "; ".join(f"{f.type.value}: {f.message}" for f in self.failures)
        return f"contract validation failed [{self.contract_type}]: {reasons}"
