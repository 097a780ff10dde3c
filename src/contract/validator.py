# src/contract/validator.py — v1
"""Contract validator facade: dispatch on the declared contract kind."""

from __future__ import annotations

import logging
from pathlib import Path

from waveflow.contract.base_validator import BaseContractValidator
from waveflow.contract.format_validator import FormatValidator
from waveflow.contract.json_schema_validator import JsonSchemaValidator
from waveflow.contract.markdown_validator import MarkdownSpecValidator
from waveflow.contract.models import (
    ContractSpec,
    FailureType,
    StepOutput,
    ValidationResult,
)
from waveflow.contract.test_suite_validator import TestSuiteValidator
from waveflow.contract.typescript_validator import TypeScriptValidator

logger = logging.getLogger(__name__)


class UnsupportedContractError(ValueError):
    """Raised when registering or requesting an unknown contract kind."""


class ContractValidator:
    """Registry of validators keyed by contract type."""

    def __init__(self, command_timeout_s: float | None = None) -> None:
        test_suite = (
            TestSuiteValidator(command_timeout_s)
            if command_timeout_s
            else TestSuiteValidator()
        )
        self._validators: dict[str, BaseContractValidator] = {}
        for validator in (
            JsonSchemaValidator(),
            TypeScriptValidator(),
            test_suite,
            MarkdownSpecValidator(),
            FormatValidator(),
        ):
            self.register(validator)

    def register(self, validator: BaseContractValidator) -> None:
        if not validator.contract_type:
            raise UnsupportedContractError(
                f"{type(validator).__name__} declares no contract_type"
            )
        self._validators[validator.contract_type] = validator

    @property
    def supported_types(self) -> list[str]:
        return sorted(self._validators)

    def validate(
        self, spec: ContractSpec, output: StepOutput, workspace: Path
    ) -> ValidationResult:
        """Validate ``output`` against ``spec``.

        Unknown contract types fail without retry, since retrying cannot
        fix a definition problem.
        """
        validator = self._validators.get(spec.type)
        if validator is None:
            return ValidationResult.fail(
                spec.type,
                FailureType.SCHEMA_MISMATCH,
                f"unsupported contract type '{spec.type}'",
                retryable=False,
            )
        result = validator.validate(spec, output, workspace)
        if result.degraded:
            logger.warning(
                "Contract %s validated in degraded mode: %s",
                spec.type,
                "; ".join(result.warnings),
            )
        return result
