# src/relay/checkpoint.py — v1
"""Checkpoint model and its markdown representation.

Format:

    # Checkpoint
    ## Summary
    free text
    ## Completed Actions
    - item
    ## Remaining Work
    - item
    ## Modified Files
    - path
"""

from __future__ import annotations

import re

from pydantic import BaseModel, Field

CHECKPOINT_FILENAME = "checkpoint.md"

_SECTION_RE = re.compile(r"^##\s+(.+?)\s*$", re.MULTILINE)
_LIST_ITEM_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+(.*\S)\s*$")

_SECTIONS = {
    "summary": "summary",
    "completed actions": "completed_actions",
    "completed": "completed_actions",
    "remaining work": "remaining_work",
    "remaining": "remaining_work",
    "next steps": "remaining_work",
    "modified files": "modified_files",
    "files": "modified_files",
}


class Checkpoint(BaseModel):
    """Compacted context handed to a fresh persona instance."""

    summary: str
    completed_actions: list[str] = Field(default_factory=list)
    remaining_work: list[str] = Field(default_factory=list)
    modified_files: list[str] = Field(default_factory=list)

    def to_markdown(self) -> str:
        parts = ["# Checkpoint", "", "## Summary", "", self.summary.strip(), ""]
        for title, items in (
            ("Completed Actions", self.completed_actions),
            ("Remaining Work", self.remaining_work),
            ("Modified Files", self.modified_files),
        ):
            parts.extend([f"## {title}", ""])
            parts.extend(f"- {item}" for item in items)
            if not items:
                parts.append("- none")
            parts.append("")
        return "\n".join(parts)

    def to_prompt(self) -> str:
        """Block placed in front of the task when the persona is re-invoked."""
        return (
            "=== READ CHECKPOINT FIRST ===\n"
            "Earlier work on this step was compacted into the checkpoint below. "
            "Do not redo completed actions; continue with the remaining work.\n\n"
            f"{self.to_markdown()}\n"
            "=== END CHECKPOINT ===\n"
        )

    @classmethod
    def parse(cls, text: str) -> Checkpoint:
        """Parse summarizer output. Unstructured text becomes the summary."""
        matches = list(_SECTION_RE.finditer(text))
        if not matches:
            return cls(summary=_strip_title(text).strip())

        fields: dict[str, list[str]] = {}
        for i, match in enumerate(matches):
            key = _SECTIONS.get(match.group(1).strip().lower())
            if key is None:
                continue
            end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
            body = text[match.end():end].strip()
            fields.setdefault(key, []).append(body)

        summary = "\n\n".join(fields.get("summary", [])).strip()
        if not summary:
            summary = _strip_title(text[: matches[0].start()]).strip()
        return cls(
            summary=summary,
            completed_actions=_list_items(fields.get("completed_actions", [])),
            remaining_work=_list_items(fields.get("remaining_work", [])),
            modified_files=_list_items(fields.get("modified_files", [])),
        )


def validate_checkpoint_format(text: str) -> list[str]:
    """Problems with a checkpoint document; empty list when well-formed."""
    if not text.strip():
        return ["checkpoint is empty"]
    errors: list[str] = []
    if not re.search(r"^#\s+Checkpoint\b", text, re.MULTILINE):
        errors.append("missing '# Checkpoint' header")
    headings = [m.group(1).strip().lower() for m in _SECTION_RE.finditer(text)]
    if "summary" not in headings:
        errors.append("missing '## Summary' section")
    elif not Checkpoint.parse(text).summary:
        errors.append("summary section is empty")
    return errors


def _strip_title(text: str) -> str:
    return re.sub(r"^#\s+Checkpoint\s*$", "", text, count=1, flags=re.MULTILINE)


def _list_items(bodies: list[str]) -> list[str]:
    items: list[str] = []
    for body in bodies:
        for line in body.splitlines():
            match = _LIST_ITEM_RE.match(line)
            if match and match.group(1).lower() != "none":
                items.append(match.group(1))
    return items
