# src/adapter/subprocess_adapter.py — v1
"""Adapter running an LLM CLI as a subprocess in its own process group.

On cancellation (step timeout, sibling failure, user interrupt) the whole
group receives SIGTERM, then SIGKILL once the grace period elapses.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import signal
import time
from pathlib import Path
from typing import TYPE_CHECKING

from waveflow.adapter.base_adapter import BaseAdapter
from waveflow.adapter.models import RunRequest, RunResult, estimate_tokens
from waveflow.core.errors import AdapterUnavailableError

if TYPE_CHECKING:
    from waveflow.config.settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_KILL_GRACE_S = 3.0

_RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "429", "too many requests")


class SubprocessAdapter(BaseAdapter):
    """Run a command template such as ``["claude", "-p", "{prompt}"]``.

    Placeholders: {prompt}, {system_prompt}, {persona}, {model},
    {workspace}. With ``prompt_via_stdin`` the prompt is written to stdin
    instead.
    """

    def __init__(
        self,
        command: list[str],
        prompt_via_stdin: bool = False,
        kill_grace_period_s: float = DEFAULT_KILL_GRACE_S,
        env: dict[str, str] | None = None,
    ) -> None:
        if not command:
            raise ValueError("command must not be empty")
        self._command = command
        self._prompt_via_stdin = prompt_via_stdin
        self._grace = kill_grace_period_s
        self._env = env or {}

    @classmethod
    def from_settings(
        cls, command: list[str], settings: Settings, prompt_via_stdin: bool = False
    ) -> SubprocessAdapter:
        return cls(
            command,
            prompt_via_stdin=prompt_via_stdin,
            kill_grace_period_s=settings.kill_grace_period_s,
        )

    @property
    def name(self) -> str:
        return Path(self._command[0]).name

    async def run(self, request: RunRequest) -> RunResult:
        args = self._build_args(request)
        env = {**os.environ, **self._env, **request.env}
        start_ns = time.monotonic_ns()

        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(request.workspace_path),
                env=env,
                stdin=asyncio.subprocess.PIPE
                if self._prompt_via_stdin
                else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except FileNotFoundError as exc:
            raise AdapterUnavailableError(
                f"adapter binary not found: {args[0]}"
            ) from exc

        stdin_data = request.prompt.encode() if self._prompt_via_stdin else None
        try:
            stdout_b, stderr_b = await proc.communicate(stdin_data)
        except asyncio.CancelledError:
            logger.warning(
                "Step '%s' cancelled, terminating adapter pid %d", request.step_id, proc.pid
            )
            await terminate_process_group(proc, self._grace)
            raise

        stdout = stdout_b.decode(errors="replace")
        stderr = stderr_b.decode(errors="replace")
        result = _parse_output(stdout, request.workspace_path)
        result.exit_code = proc.returncode if proc.returncode is not None else -1
        result.duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000
        if any(marker in stderr.lower() for marker in _RATE_LIMIT_MARKERS):
            result.failure_reason = "rate_limit"
        elif result.exit_code != 0 and stderr.strip():
            result.failure_reason = stderr.strip().splitlines()[-1][:500]
        return result

    def _build_args(self, request: RunRequest) -> list[str]:
        values = {
            "prompt": request.prompt,
            "system_prompt": request.system_prompt,
            "persona": request.persona,
            "model": request.model or "",
            "workspace": str(request.workspace_path),
        }
        return [part.format(**values) for part in self._command]


async def terminate_process_group(
    proc: asyncio.subprocess.Process, grace_s: float = DEFAULT_KILL_GRACE_S
) -> None:
    """SIGTERM the process group, SIGKILL it if still alive after ``grace_s``."""
    if proc.returncode is not None:
        return
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(proc.wait(), timeout=grace_s)
    except asyncio.TimeoutError:
        logger.warning("Process group %d ignored SIGTERM, killing", proc.pid)
        with contextlib.suppress(ProcessLookupError):
            os.killpg(proc.pid, signal.SIGKILL)
        await proc.wait()


def _parse_output(stdout: str, workspace: Path) -> RunResult:
    """Honour a JSON stdout with ``tokens_used``/``artifacts`` keys."""
    result = RunResult(stdout=stdout)
    data = None
    stripped = stdout.strip()
    if stripped.startswith("{"):
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError:
            data = None

    if isinstance(data, dict):
        tokens = data.get("tokens_used")
        if isinstance(tokens, int):
            result.tokens_used = tokens
        artifacts = data.get("artifacts")
        if isinstance(artifacts, list):
            result.artifact_paths.extend(
                workspace / item for item in artifacts if isinstance(item, str)
            )

    if result.tokens_used == 0:
        result.tokens_used = estimate_tokens(stdout)
    return result
