"""Shared test fixtures and utilities."""

import json
import os
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from relative_deps.constants import ENV_MAX_CONCURRENCY
from relative_deps.errors import BuildStepError
from relative_deps.scheduler import TaskOutcome


def write_manifest(directory: Path, data: Dict) -> Path:
    """Write a package.json into ``directory``."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "package.json"
    path.write_text(json.dumps(data, indent=2))
    return path


def bump_mtime(path: Path, seconds: float = 10) -> None:
    """Move a file's mtime forward so mtime comparisons see it as newer."""
    stat = path.stat()
    os.utime(path, (stat.st_atime + seconds, stat.st_mtime + seconds))


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the caller's environment out of the config layer."""
    monkeypatch.delenv(ENV_MAX_CONCURRENCY, raising=False)


@pytest.fixture
def make_library(tmp_path):
    """Factory fixture creating a library with a package.json and sources."""
    def _make(
        name: str,
        version: str = "1.0.0",
        dependencies: Optional[Dict[str, str]] = None,
        files: Optional[Dict[str, str]] = None,
        path: Optional[str] = None,
        **extra,
    ) -> Path:
        lib_dir = tmp_path / (path or f"libs/{name.replace('/', '-').lstrip('@')}")
        manifest = {"name": name, "version": version, **extra}
        if dependencies:
            manifest["dependencies"] = dependencies
        write_manifest(lib_dir, manifest)
        for rel, content in (files or {"src/index.js": f"module.exports = '{name}';\n"}).items():
            file_path = lib_dir / rel
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(content)
        return lib_dir
    return _make


@pytest.fixture
def make_project(tmp_path):
    """Factory fixture creating the consuming project."""
    def _make(
        relative_dependencies: Optional[Dict[str, str]] = None,
        dependencies: Optional[Dict[str, str]] = None,
        **extra,
    ) -> Path:
        root = tmp_path / "app"
        manifest = {"name": "app", "version": "1.0.0", **extra}
        if dependencies is not None:
            manifest["dependencies"] = dependencies
        if relative_dependencies is not None:
            manifest["relativeDependencies"] = relative_dependencies
        write_manifest(root, manifest)
        return root
    return _make


class RecordingExecutor:
    """Executor double that records calls and can fail chosen names."""

    def __init__(self, fail: Optional[List[str]] = None):
        self.fail = set(fail or [])
        self.calls: List[str] = []

    def run(self, name: str, lib_dir: Path) -> None:
        self.calls.append(name)
        if name in self.fail:
            raise BuildStepError(name, "exit status 1")


@pytest.fixture
def executor():
    return RecordingExecutor()


class RecordingProgress:
    """Progress double collecting every callback."""

    def __init__(self):
        self.started: List[str] = []
        self.completed: List[TaskOutcome] = []

    def on_task_start(self, name: str, lib_dir: Path) -> None:
        self.started.append(name)

    def on_task_complete(self, outcome: TaskOutcome) -> None:
        self.completed.append(outcome)
