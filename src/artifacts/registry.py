# src/artifacts/registry.py — v1
"""Per-run artifact registry.

Append-only map (step_id, name) -> Artifact. Files are copied out of the
producing workspace into the registry root, so a workspace can be removed
once its step completed. Copies land via a temp file and os.replace, so
readers never observe a partially-written artifact.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path

from waveflow.artifacts.models import Artifact
from waveflow.core.errors import ArtifactConflictError, MissingArtifactError
from waveflow.core.models import ArtifactRef

logger = logging.getLogger(__name__)

INJECT_DIR = Path(".waveflow") / "artifacts"


class ArtifactRegistry:
    """Thread-safe, append-only artifact store for one run."""

    def __init__(self, run_id: str, root: Path | str) -> None:
        self._run_id = run_id
        self._root = Path(root).expanduser() / run_id
        self._entries: dict[tuple[str, str], Artifact] = {}
        self._lock = threading.Lock()

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def root(self) -> Path:
        return self._root

    def register(
        self,
        step_id: str,
        name: str,
        source_path: Path | str,
        artifact_type: str = "file",
    ) -> Artifact:
        """Copy ``source_path`` into the registry and record it.

        Raises:
            ArtifactConflictError: If (step_id, name) is already registered.
            FileNotFoundError: If the source file does not exist.
        """
        source = Path(source_path)
        if not source.is_file():
            raise FileNotFoundError(f"artifact source not found: {source}")

        with self._lock:
            if (step_id, name) in self._entries:
                raise ArtifactConflictError(
                    f"artifact '{name}' of step '{step_id}' already registered"
                )
            target = self._root / step_id / name
            _atomic_copy(source, target)
            artifact = Artifact(
                step_id=step_id,
                name=name,
                path=target,
                type=artifact_type,
                size_bytes=target.stat().st_size,
                created_at=datetime.now(timezone.utc),
            )
            self._entries[artifact.key] = artifact

        logger.debug("Registered artifact %s/%s (%d bytes)", step_id, name, artifact.size_bytes)
        return artifact

    def restore(self, artifacts: list[Artifact]) -> None:
        """Load previously persisted entries (resume). Files must still exist."""
        with self._lock:
            for artifact in artifacts:
                if not artifact.path.is_file():
                    logger.warning(
                        "Persisted artifact %s/%s missing at %s",
                        artifact.step_id,
                        artifact.name,
                        artifact.path,
                    )
                    continue
                self._entries[artifact.key] = artifact

    def get(self, step_id: str, name: str) -> Artifact | None:
        with self._lock:
            return self._entries.get((step_id, name))

    def require(self, step_id: str, name: str, consumer: str = "") -> Artifact:
        """Like get(), but a missing entry raises MissingArtifactError."""
        artifact = self.get(step_id, name)
        if artifact is None:
            raise MissingArtifactError(consumer or step_id, step_id, name)
        return artifact

    def list_artifacts(self, step_id: str | None = None) -> list[Artifact]:
        with self._lock:
            entries = list(self._entries.values())
        if step_id is not None:
            entries = [a for a in entries if a.step_id == step_id]
        return sorted(entries, key=lambda a: a.key)

    def inject(
        self, consumer: str, refs: list[ArtifactRef], workspace: Path
    ) -> dict[str, Path]:
        """Copy referenced artifacts into ``<workspace>/.waveflow/artifacts``.

        Returns:
            Mapping of injected name -> path inside the workspace.

        Raises:
            MissingArtifactError: If a non-optional reference is absent.
        """
        injected: dict[str, Path] = {}
        for ref in refs:
            artifact = self.get(ref.step, ref.artifact)
            if artifact is None:
                if ref.optional:
                    logger.info(
                        "Optional artifact %s/%s absent, not injected",
                        ref.step,
                        ref.artifact,
                    )
                    continue
                raise MissingArtifactError(consumer, ref.step, ref.artifact)
            target = workspace / INJECT_DIR / ref.target_name
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(artifact.path, target)
            injected[ref.target_name] = target
        return injected

    def remove_files(self) -> None:
        """Delete the run's stored artifact files (used by clean)."""
        with self._lock:
            self._entries.clear()
        shutil.rmtree(self._root, ignore_errors=True)


def _atomic_copy(source: Path, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.")
    os.close(fd)
    try:
        shutil.copyfile(source, tmp_name)
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
