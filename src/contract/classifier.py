# src/contract/classifier.py — v1
"""Failure classification and repair guidance for retried steps.

The guidance text is appended to the next attempt's prompt so the
persona knows what the previous attempt got wrong.
"""

from __future__ import annotations

from waveflow.contract.models import FailureType, ValidationResult

_HINTS: dict[FailureType, str] = {
    FailureType.SCHEMA_MISMATCH: (
        "The output does not match the required schema. Check field names, "
        "types and nesting against the schema before writing the file."
    ),
    FailureType.FORMAT_ERROR: (
        "The output could not be parsed. Write plain, valid content without "
        "markdown fences, comments or trailing commas."
    ),
    FailureType.MISSING_CONTENT: (
        "Required content is missing. Make sure every required file, field "
        "and section is present and non-empty."
    ),
    FailureType.QUALITY_GATE: (
        "The output did not pass the quality gate. Replace placeholders with "
        "real content and make sure tests pass."
    ),
}


def classify_message(message: str) -> FailureType:
    """Classify a free-text failure message."""
    msg = message.lower()
    if any(k in msg for k in ("json", "parse", "decode", "syntax", "unbalanced")):
        return FailureType.FORMAT_ERROR
    if any(k in msg for k in ("missing", "not found", "empty", "required")):
        return FailureType.MISSING_CONTENT
    if any(k in msg for k in ("schema", "type", "expected", "invalid")):
        return FailureType.SCHEMA_MISMATCH
    return FailureType.QUALITY_GATE


def repair_guidance(result: ValidationResult, attempt: int, max_attempts: int) -> str:
    """Render the retry-prompt block for a failed validation."""
    lines = [
        f"## Previous attempt failed validation (attempt {attempt}/{max_attempts})",
        "",
    ]
    for failure in result.failures:
        lines.append(f"- [{failure.type.value}] {failure.message}")
        lines.extend(f"    - {detail}" for detail in failure.details)
    lines.append("")
    seen: set[FailureType] = set()
    for failure_type in result.failure_types:
        if failure_type not in seen:
            seen.add(failure_type)
            lines.append(_HINTS[failure_type])
    return "\n".join(lines).rstrip() + "\n"


def error_guidance(message: str, attempt: int, max_attempts: int) -> str:
    """Retry-prompt block for failures that did not come from a contract."""
    hint = _HINTS[classify_message(message)] if message else ""
    return (
        f"## Previous attempt failed (attempt {attempt}/{max_attempts})\n\n"
        f"- {message}\n\n{hint}".rstrip()
        + "\n"
    )
