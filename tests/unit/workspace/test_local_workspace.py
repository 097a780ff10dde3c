# tests/unit/workspace/test_local_workspace.py — v1
"""Tests for workspace/local_workspace.py — fresh directories and mounts."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from waveflow.core.models import Mount
from waveflow.workspace.local_workspace import LocalWorkspaceProvider


@pytest.fixture
def provider(tmp_path: Path) -> LocalWorkspaceProvider:
    return LocalWorkspaceProvider(tmp_path / "ws", base_dir=tmp_path)


class TestCreate:
    def test_layout(self, provider, tmp_path):
        path = provider.create("run-1", "plan", label="attempt-2")
        assert path == tmp_path / "ws" / "run-1" / "plan" / "attempt-2"
        assert path.is_dir()

    def test_fresh_each_time(self, provider):
        path = provider.create("run-1", "plan")
        (path / "leftover.txt").write_text("old")
        again = provider.create("run-1", "plan")
        assert again == path
        assert list(again.iterdir()) == []

    def test_distinct_labels_isolated(self, provider):
        a = provider.create("run-1", "impl", label="worker-0")
        b = provider.create("run-1", "impl", label="worker-1")
        assert a != b


class TestMounts:
    def _project(self, tmp_path: Path) -> Path:
        project = tmp_path / "project"
        (project / "pkg").mkdir(parents=True)
        (project / "pkg" / "mod.py").write_text("x = 1\n")
        return project

    def test_readonly_directory_mount(self, provider, tmp_path):
        self._project(tmp_path)
        path = provider.create(
            "run-1", "review", mounts=[Mount(source="project", target="/src", mode="readonly")]
        )
        mounted = path / "src" / "pkg" / "mod.py"
        assert mounted.read_text() == "x = 1\n"
        assert not os.access(mounted, os.W_OK) or os.geteuid() == 0
        assert not (mounted.stat().st_mode & 0o222)

    def test_readwrite_file_mount(self, provider, tmp_path):
        project = self._project(tmp_path)
        path = provider.create(
            "run-1",
            "edit",
            mounts=[Mount(source=str(project / "pkg" / "mod.py"), target="mod.py", mode="readwrite")],
        )
        (path / "mod.py").write_text("x = 2\n")
        assert (project / "pkg" / "mod.py").read_text() == "x = 1\n"

    def test_missing_source(self, provider):
        with pytest.raises(FileNotFoundError):
            provider.create("run-1", "a", mounts=[Mount(source="nope", target="x")])


class TestCleanup:
    def test_cleanup_readonly_tree(self, provider, tmp_path):
        (tmp_path / "project").mkdir()
        (tmp_path / "project" / "f.txt").write_text("x")
        path = provider.create("run-1", "a", mounts=[Mount(source="project", target="p")])
        provider.cleanup(path)
        assert not path.exists()

    def test_cleanup_missing_is_noop(self, provider, tmp_path):
        provider.cleanup(tmp_path / "never")

    def test_clean_run(self, provider, tmp_path):
        provider.create("run-1", "a")
        provider.create("run-2", "a")
        provider.clean_run("run-1")
        assert not (tmp_path / "ws" / "run-1").exists()
        assert (tmp_path / "ws" / "run-2").exists()
