# src/workspace/local_workspace.py — v1
"""Local-directory workspace provider.

Layout: <root>/<run_id>/<step_id>/<label>. Each invocation gets a fresh
directory; an existing directory with the same label is wiped first.
Mounts are copied in, and readonly mounts lose their write bits.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
from pathlib import Path

from waveflow.core.models import Mount
from waveflow.workspace.base_workspace import BaseWorkspaceProvider

logger = logging.getLogger(__name__)


class LocalWorkspaceProvider(BaseWorkspaceProvider):
    """Workspaces as plain directories under a root."""

    def __init__(self, root: Path | str, base_dir: Path | str | None = None) -> None:
        self._root = Path(root).expanduser()
        self._base_dir = Path(base_dir) if base_dir else Path.cwd()

    def create(
        self,
        run_id: str,
        step_id: str,
        mounts: list[Mount] | None = None,
        label: str = "attempt-1",
    ) -> Path:
        path = self._root / run_id / step_id / label
        if path.exists():
            _remove_tree(path)
        path.mkdir(parents=True)

        for mount in mounts or []:
            self._apply_mount(path, mount)

        logger.debug("Workspace created: %s", path)
        return path

    def cleanup(self, path: Path) -> None:
        if not path.exists():
            return
        _remove_tree(path)
        logger.debug("Workspace removed: %s", path)

    def clean_run(self, run_id: str) -> None:
        run_dir = self._root / run_id
        if run_dir.exists():
            _remove_tree(run_dir)
            logger.info("Removed workspaces of run %s", run_id)

    def _apply_mount(self, workspace: Path, mount: Mount) -> None:
        source = Path(mount.source).expanduser()
        if not source.is_absolute():
            source = self._base_dir / source
        if not source.exists():
            raise FileNotFoundError(f"mount source not found: {source}")

        target = workspace / mount.target.lstrip("/")
        if source.is_dir():
            shutil.copytree(source, target, symlinks=True)
        else:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)

        if mount.mode == "readonly":
            _make_readonly(target)


def _make_readonly(path: Path) -> None:
    strip = ~(stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH)
    if path.is_dir():
        for dirpath, dirnames, filenames in os.walk(path):
            for name in filenames:
                file_path = Path(dirpath) / name
                file_path.chmod(file_path.stat().st_mode & strip)
        for dirpath, dirnames, _ in os.walk(path, topdown=False):
            Path(dirpath).chmod(Path(dirpath).stat().st_mode & strip)
    else:
        path.chmod(path.stat().st_mode & strip)


def _remove_tree(path: Path) -> None:
    # readonly mounts must become writable before removal
    for dirpath, dirnames, filenames in os.walk(path):
        Path(dirpath).chmod(Path(dirpath).stat().st_mode | stat.S_IWUSR | stat.S_IXUSR)
    shutil.rmtree(path)
