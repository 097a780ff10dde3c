# src/relay/manager.py — v1
"""Relay (compaction) manager.

When a step's token usage crosses the threshold of its context window,
a dedicated summarizer persona turns the transcript into a Checkpoint.
The step persona is then re-invoked fresh with only that checkpoint.
The summarizer is never relayed itself: over budget means failure.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from waveflow.adapter.models import RunRequest, estimate_tokens
from waveflow.core.errors import RelayError, RelayExhaustedError
from waveflow.relay.checkpoint import (
    CHECKPOINT_FILENAME,
    Checkpoint,
    validate_checkpoint_format,
)

if TYPE_CHECKING:
    from waveflow.adapter.base_adapter import BaseAdapter
    from waveflow.config.settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_PERCENT = 80
DEFAULT_CONTEXT_WINDOW = 200_000
DEFAULT_MIN_TOKENS = 1000
DEFAULT_TIMEOUT_S = 300.0
SUMMARIZER_TEMPERATURE = 0.3
MAX_SUMMARY_CHARS = 1_000_000

COMPACT_PROMPT = """\
Summarize this conversation history concisely, preserving key context and decisions.
Answer in markdown with exactly these sections:

# Checkpoint
## Summary
## Completed Actions
## Remaining Work
## Modified Files

Use bullet lists for the last three sections.

=== TRANSCRIPT ===
{transcript}
=== END TRANSCRIPT ===
"""


@dataclass
class RelayContext:
    """What the relay manager needs to know about the step being relayed."""

    run_id: str
    step_id: str
    persona: str
    transcript: str
    workspace_path: Path
    context_window: int = DEFAULT_CONTEXT_WINDOW
    summarizer_persona: str | None = None
    env: dict[str, str] = field(default_factory=dict)


@dataclass
class RelayOutcome:
    relayed: bool
    checkpoint: Checkpoint | None = None
    tokens_used: int = 0
    duration_ms: int = 0


class RelayManager:
    """Decides when to compact and runs the summarizer invocation."""

    def __init__(
        self,
        adapter: BaseAdapter,
        summarizer_persona: str = "summarizer",
        min_tokens: int = DEFAULT_MIN_TOKENS,
        summarizer_budget: int | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        adapter_name: str = "claude",
    ) -> None:
        self._adapter = adapter
        self._summarizer_persona = summarizer_persona
        self._min_tokens = min_tokens
        self._summarizer_budget = summarizer_budget
        self._timeout_s = timeout_s
        self._adapter_name = adapter_name

    @classmethod
    def from_settings(cls, adapter: BaseAdapter, settings: Settings) -> RelayManager:
        return cls(
            adapter,
            summarizer_persona=settings.relay_summarizer_persona,
            min_tokens=settings.relay_min_tokens,
            summarizer_budget=settings.relay_summarizer_budget or None,
            timeout_s=settings.relay_timeout_minutes * 60,
            adapter_name=settings.default_adapter,
        )

    @property
    def summarizer_persona(self) -> str:
        return self._summarizer_persona

    def should_relay(
        self, token_usage: int, threshold_percent: int, context_window: int
    ) -> bool:
        """True when usage reached ``threshold_percent`` of the window."""
        if context_window <= 0 or threshold_percent <= 0:
            return False
        limit = context_window * threshold_percent / 100
        return token_usage >= limit and token_usage >= self._min_tokens

    async def maybe_relay(
        self,
        ctx: RelayContext,
        token_usage: int,
        threshold_percent: int = DEFAULT_THRESHOLD_PERCENT,
    ) -> RelayOutcome:
        """Compact the step's context if the threshold is crossed.

        Performs at most one summarizer invocation per call.

        Raises:
            RelayError: Summarizer misconfigured, failed or unusable output.
            RelayExhaustedError: Summarizer input or usage over its budget.
        """
        if not self.should_relay(token_usage, threshold_percent, ctx.context_window):
            return RelayOutcome(relayed=False)

        summarizer = ctx.summarizer_persona or self._summarizer_persona
        if summarizer == ctx.persona:
            raise RelayError(
                f"persona '{ctx.persona}' cannot summarize its own context",
                retryable=False,
            )

        budget = self._summarizer_budget or ctx.context_window
        prompt = COMPACT_PROMPT.format(transcript=ctx.transcript)
        if estimate_tokens(prompt) > budget:
            raise RelayExhaustedError(
                f"transcript of step '{ctx.step_id}' (~{estimate_tokens(prompt)} tokens) "
                f"exceeds summarizer budget of {budget} tokens"
            )

        logger.info(
            "Relay triggered for step '%s': %d tokens >= %d%% of %d, summarizer '%s'",
            ctx.step_id,
            token_usage,
            threshold_percent,
            ctx.context_window,
            summarizer,
        )
        request = RunRequest(
            run_id=ctx.run_id,
            step_id=ctx.step_id,
            persona=summarizer,
            adapter=self._adapter_name,
            prompt=prompt,
            workspace_path=ctx.workspace_path,
            env=ctx.env,
            timeout_s=self._timeout_s,
            temperature=SUMMARIZER_TEMPERATURE,
        )
        start_ns = time.monotonic_ns()
        try:
            result = await asyncio.wait_for(self._adapter.run(request), self._timeout_s)
        except asyncio.TimeoutError as exc:
            raise RelayError(
                f"summarizer timed out after {self._timeout_s:.0f}s"
            ) from exc

        if result.tokens_used > budget:
            raise RelayExhaustedError(
                f"summarizer used {result.tokens_used} tokens, budget is {budget}"
            )
        output = result.stdout[:MAX_SUMMARY_CHARS].strip()
        if not output:
            raise RelayError(f"summarizer produced no checkpoint for step '{ctx.step_id}'")

        problems = validate_checkpoint_format(output)
        if problems:
            logger.warning(
                "Summarizer output for step '%s' is not a well-formed checkpoint: %s",
                ctx.step_id,
                "; ".join(problems),
            )
        checkpoint = Checkpoint.parse(output)
        if not checkpoint.summary and not checkpoint.remaining_work:
            raise RelayError(f"summarizer output for step '{ctx.step_id}' has no summary")

        (ctx.workspace_path / CHECKPOINT_FILENAME).write_text(
            checkpoint.to_markdown(), encoding="utf-8"
        )
        return RelayOutcome(
            relayed=True,
            checkpoint=checkpoint,
            tokens_used=result.tokens_used,
            duration_ms=(time.monotonic_ns() - start_ns) // 1_000_000,
        )
