# src/state/sqlite_store.py — v1
"""SQLite-backed state store.

Uses stdlib sqlite3 in WAL mode. Every write commits before returning,
which is what makes a persisted 'completed' trustworthy after a crash.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from waveflow.artifacts.models import Artifact
from waveflow.core.errors import RunNotFoundError
from waveflow.core.models import Pipeline
from waveflow.pipeline.execution import PipelineExecution
from waveflow.pipeline.step_state import StepRecord, StepState
from waveflow.state.base_state_store import BaseStateStore
from waveflow.state.models import PersistedRun, RunSummary

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS pipeline_runs (
    run_id TEXT PRIMARY KEY,
    pipeline_name TEXT NOT NULL,
    status TEXT NOT NULL,
    definition TEXT NOT NULL,
    input_text TEXT NOT NULL DEFAULT '',
    started_at TEXT,
    completed_at TEXT,
    error_message TEXT,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS step_states (
    run_id TEXT NOT NULL,
    step_id TEXT NOT NULL,
    state TEXT NOT NULL,
    retry_count INTEGER NOT NULL DEFAULT 0,
    started_at TEXT,
    completed_at TEXT,
    workspace_path TEXT,
    error_message TEXT,
    tokens_used INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (run_id, step_id)
);
CREATE TABLE IF NOT EXISTS artifacts (
    run_id TEXT NOT NULL,
    step_id TEXT NOT NULL,
    name TEXT NOT NULL,
    path TEXT NOT NULL,
    type TEXT NOT NULL,
    size_bytes INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    PRIMARY KEY (run_id, step_id, name)
);
CREATE INDEX IF NOT EXISTS idx_pipeline_runs_started ON pipeline_runs(started_at);
"""

_SUMMARY_COLUMNS = "run_id, pipeline_name, status, started_at, completed_at, error_message"


class SqliteStateStore(BaseStateStore):
    """State store persisted in a single SQLite database file."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    async def save_pipeline_state(self, execution: PipelineExecution) -> None:
        with self._lock:
            self._conn.execute(
                """INSERT INTO pipeline_runs
                   (run_id, pipeline_name, status, definition, input_text,
                    started_at, completed_at, error_message, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                   ON CONFLICT(run_id) DO UPDATE SET
                     status = excluded.status,
                     started_at = excluded.started_at,
                     completed_at = excluded.completed_at,
                     error_message = excluded.error_message,
                     updated_at = CURRENT_TIMESTAMP""",
                (
                    execution.run_id,
                    execution.pipeline.name,
                    execution.status,
                    execution.pipeline.model_dump_json(by_alias=True),
                    execution.input_text,
                    _iso(execution.started_at),
                    _iso(execution.completed_at),
                    execution.error_message,
                ),
            )
            self._conn.commit()

    async def save_step_state(self, run_id: str, record: StepRecord) -> None:
        with self._lock:
            self._conn.execute(
                """INSERT OR REPLACE INTO step_states
                   (run_id, step_id, state, retry_count, started_at, completed_at,
                    workspace_path, error_message, tokens_used)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    run_id,
                    record.step_id,
                    record.state.value,
                    record.retry_count,
                    _iso(record.started_at),
                    _iso(record.completed_at),
                    record.workspace_path,
                    record.error_message,
                    record.tokens_used,
                ),
            )
            self._conn.commit()

    async def register_artifact(self, run_id: str, artifact: Artifact) -> None:
        with self._lock:
            self._conn.execute(
                """INSERT OR REPLACE INTO artifacts
                   (run_id, step_id, name, path, type, size_bytes, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    run_id,
                    artifact.step_id,
                    artifact.name,
                    str(artifact.path),
                    artifact.type,
                    artifact.size_bytes,
                    artifact.created_at.isoformat(),
                ),
            )
            self._conn.commit()

    async def load_for_resume(self, run_id: str) -> PersistedRun:
        with self._lock:
            row = self._conn.execute(
                """SELECT run_id, pipeline_name, status, definition, input_text,
                          started_at, completed_at, error_message
                   FROM pipeline_runs WHERE run_id = ?""",
                (run_id,),
            ).fetchone()
            if row is None:
                raise RunNotFoundError(f"run '{run_id}' not found")
            step_rows = self._conn.execute(
                """SELECT step_id, state, retry_count, started_at, completed_at,
                          workspace_path, error_message, tokens_used
                   FROM step_states WHERE run_id = ?""",
                (run_id,),
            ).fetchall()
            artifact_rows = self._conn.execute(
                """SELECT step_id, name, path, type, size_bytes, created_at
                   FROM artifacts WHERE run_id = ? ORDER BY step_id, name""",
                (run_id,),
            ).fetchall()

        pipeline = Pipeline.model_validate_json(row[3])
        steps = {
            r[0]: StepRecord(
                step_id=r[0],
                state=StepState(r[1]),
                retry_count=r[2],
                started_at=_parse(r[3]),
                completed_at=_parse(r[4]),
                workspace_path=r[5],
                error_message=r[6],
                tokens_used=r[7],
            )
            for r in step_rows
        }
        artifacts = [
            Artifact(
                step_id=r[0],
                name=r[1],
                path=Path(r[2]),
                type=r[3],
                size_bytes=r[4],
                created_at=datetime.fromisoformat(r[5]),
            )
            for r in artifact_rows
        ]
        return PersistedRun(
            run_id=row[0],
            pipeline_name=row[1],
            status=row[2],
            pipeline=pipeline,
            input_text=row[4],
            started_at=_parse(row[5]),
            completed_at=_parse(row[6]),
            error_message=row[7],
            steps=steps,
            artifacts=artifacts,
        )

    async def get_run(self, run_id: str) -> RunSummary | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_SUMMARY_COLUMNS} FROM pipeline_runs WHERE run_id = ?",  # noqa: S608
                (run_id,),
            ).fetchone()
        return _summary(row) if row is not None else None

    async def list_runs(self, limit: int = 50) -> list[RunSummary]:
        with self._lock:
            rows = self._conn.execute(
                f"""SELECT {_SUMMARY_COLUMNS} FROM pipeline_runs
                    ORDER BY started_at DESC, updated_at DESC LIMIT ?""",  # noqa: S608
                (limit,),
            ).fetchall()
        return [_summary(r) for r in rows]

    async def delete_run(self, run_id: str) -> None:
        with self._lock:
            for table in ("artifacts", "step_states", "pipeline_runs"):
                self._conn.execute(f"DELETE FROM {table} WHERE run_id = ?", (run_id,))  # noqa: S608
            self._conn.commit()
        logger.info("Deleted persisted state of run %s", run_id)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _summary(row: tuple) -> RunSummary:
    return RunSummary(
        run_id=row[0],
        pipeline_name=row[1],
        status=row[2],
        started_at=_parse(row[3]),
        completed_at=_parse(row[4]),
        error_message=row[5],
    )
