# tests/unit/relay/test_checkpoint.py — v1
"""Tests for relay/checkpoint.py — checkpoint markdown codec."""

from __future__ import annotations

from waveflow.relay.checkpoint import Checkpoint, validate_checkpoint_format

SUMMARIZER_OUTPUT = """# Checkpoint

## Summary
Login form done, API wiring in progress.

## Completed Actions
- created src/login.tsx
* added validation

## Next Steps
1. wire POST /session
2) add tests

## Files
- src/login.tsx

## Mood
irrelevant
"""


class TestParse:
    def test_sections_and_aliases(self):
        checkpoint = Checkpoint.parse(SUMMARIZER_OUTPUT)
        assert checkpoint.summary == "Login form done, API wiring in progress."
        assert checkpoint.completed_actions == ["created src/login.tsx", "added validation"]
        assert checkpoint.remaining_work == ["wire POST /session", "add tests"]
        assert checkpoint.modified_files == ["src/login.tsx"]

    def test_unstructured_text_becomes_summary(self):
        checkpoint = Checkpoint.parse("Just some notes\nabout progress.")
        assert checkpoint.summary == "Just some notes\nabout progress."
        assert checkpoint.remaining_work == []

    def test_preamble_used_when_summary_missing(self):
        checkpoint = Checkpoint.parse("# Checkpoint\nHalfway there.\n## Remaining Work\n- finish\n")
        assert checkpoint.summary == "Halfway there."
        assert checkpoint.remaining_work == ["finish"]

    def test_none_items_dropped(self):
        checkpoint = Checkpoint(summary="s").to_markdown()
        assert Checkpoint.parse(checkpoint) == Checkpoint(summary="s")


class TestRender:
    def test_markdown_roundtrip(self):
        original = Checkpoint.parse(SUMMARIZER_OUTPUT)
        assert Checkpoint.parse(original.to_markdown()) == original
        assert validate_checkpoint_format(original.to_markdown()) == []

    def test_prompt_block(self):
        block = Checkpoint(summary="halfway").to_prompt()
        assert block.startswith("=== READ CHECKPOINT FIRST ===\n")
        assert "## Summary\n\nhalfway" in block
        assert block.rstrip().endswith("=== END CHECKPOINT ===")


class TestValidateFormat:
    def test_empty(self):
        assert validate_checkpoint_format("  ") == ["checkpoint is empty"]

    def test_missing_header_and_summary(self):
        assert validate_checkpoint_format("## Remaining Work\n- x\n") == [
            "missing '# Checkpoint' header",
            "missing '## Summary' section",
        ]

    def test_empty_summary(self):
        assert validate_checkpoint_format("# Checkpoint\n## Summary\n\n## Remaining Work\n- x") == [
            "summary section is empty"
        ]
