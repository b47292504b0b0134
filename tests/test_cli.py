"""Tests for the relative-deps CLI.

The package manager is replaced by a recording executor so the commands run
their real detection and caching logic without spawning processes.
"""

import json
from unittest.mock import Mock, patch

import pytest
from typer.testing import CliRunner

from relative_deps import cli
from relative_deps.cli import app
from relative_deps.constants import VERSION
from relative_deps.scheduler import RunResult

from conftest import RecordingExecutor


@pytest.fixture
def runner():
    """Create a CliRunner for in-process testing."""
    return CliRunner()


@pytest.fixture
def project(make_project, make_library, monkeypatch):
    """Consumer with one relative dependency, used as cwd."""
    make_library("core")
    root = make_project({"core": "../libs/core"}, dependencies={"core": "^1.0.0"})
    monkeypatch.chdir(root)
    return root


@pytest.fixture
def fake_executor(monkeypatch):
    executor = RecordingExecutor()
    monkeypatch.setattr("relative_deps.core.PackageExecutor", lambda *args, **kwargs: executor)
    return executor


class TestInstallCommand:
    """Test the default install command."""

    def test_install(self, runner, project, fake_executor):
        result = runner.invoke(app, [])

        assert result.exit_code == 0, result.output
        assert "Re-installing core... DONE" in result.output
        assert "1 re-installed" in result.output
        assert fake_executor.calls == ["core"]

    def test_second_run_unchanged(self, runner, project, fake_executor):
        runner.invoke(app, [])
        result = runner.invoke(app, [])

        assert result.exit_code == 0, result.output
        assert "0 re-installed, 1 unchanged" in result.output
        assert fake_executor.calls == ["core"]

    def test_force(self, runner, project, fake_executor):
        runner.invoke(app, [])
        result = runner.invoke(app, ["--force"])

        assert result.exit_code == 0, result.output
        assert fake_executor.calls == ["core", "core"]

    def test_failure_exit_code(self, runner, project, monkeypatch):
        failing = RecordingExecutor(fail=["core"])
        monkeypatch.setattr("relative_deps.core.PackageExecutor", lambda *args, **kwargs: failing)

        result = runner.invoke(app, [])
        assert result.exit_code == 1
        assert "Failed to process: core" in result.output

    def test_no_project(self, runner, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(
            "relative_deps.manifest.manifest_path", lambda d: tmp_path / "nowhere" / "package.json"
        )
        result = runner.invoke(app, [])
        assert result.exit_code == 1
        assert "Could not find package.json" in result.output

    def test_no_relative_dependencies(self, runner, make_project, monkeypatch):
        monkeypatch.chdir(make_project())
        result = runner.invoke(app, [])
        assert result.exit_code == 0

    @pytest.mark.parametrize("args,expected,parallel", [
        ([], None, False),
        (["--parallel"], None, True),
        (["--parallel", "-j", "3"], 3, True),
        (["--max-concurrency", "2"], 2, False),
    ])
    def test_concurrency_flags(self, runner, project, args, expected, parallel):
        install = Mock(return_value=RunResult())
        with patch.object(cli, "install_relative_deps", install):
            result = runner.invoke(app, args)

        assert result.exit_code == 0, result.output
        options = install.call_args.args[0]
        assert options.max_concurrency == expected
        assert options.parallel is parallel

    def test_rejects_zero_concurrency(self, runner, project):
        result = runner.invoke(app, ["-j", "0"])
        assert result.exit_code != 0

    def test_clean_and_verbose_passed(self, runner, project):
        install = Mock(return_value=RunResult())
        with patch.object(cli, "install_relative_deps", install):
            runner.invoke(app, ["--clean", "--verbose"])

        options = install.call_args.args[0]
        assert options.clean and options.verbose and not options.force

    def test_clean_with_invalid_name(self, runner, make_project, monkeypatch):
        """A name that cannot key a cache record is reported, not a traceback."""
        monkeypatch.chdir(make_project({".hidden": "../libs/hidden"}))
        result = runner.invoke(app, ["--clean"])

        assert result.exit_code == 1
        assert "Invalid package name" in result.output
        assert "Traceback" not in result.output

    def test_version(self, runner):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert VERSION in result.output


class TestInitCommand:
    def test_init(self, runner, make_project, monkeypatch):
        root = make_project()
        monkeypatch.chdir(root)

        result = runner.invoke(app, ["init", "--script", "postinstall"])
        assert result.exit_code == 0, result.output

        data = json.loads((root / "package.json").read_text())
        assert data["scripts"]["postinstall"] == "relative-deps"
        assert data["relativeDependencies"] == {}


class TestAddCommand:
    def test_add(self, runner, make_project, make_library, monkeypatch, fake_executor):
        make_library("core")
        root = make_project()
        monkeypatch.chdir(root)

        with patch("relative_deps.project.run_command") as run:
            result = runner.invoke(app, ["add", "--dev", "../libs/core"])

        assert result.exit_code == 0, result.output
        run.assert_called_once_with(["npm", "add", "-D", "core"], root.resolve(), False)
        data = json.loads((root / "package.json").read_text())
        assert data["relativeDependencies"] == {"core": "../libs/core"}
        assert fake_executor.calls == ["core"]

    def test_add_unknown_path(self, runner, make_project, monkeypatch):
        monkeypatch.chdir(make_project())
        result = runner.invoke(app, ["add", "../missing"])
        assert result.exit_code == 1
        assert "Failed to resolve dependency" in result.output


class TestWatchCommand:
    def test_watch_until_interrupted(self, runner, project, fake_executor):
        monitor = Mock()
        with patch.object(cli, "watch_relative_deps", return_value=monitor), \
                patch.object(cli, "_wait_for_interrupt", side_effect=KeyboardInterrupt):
            result = runner.invoke(app, ["watch"])

        assert result.exit_code == 0, result.output
        assert fake_executor.calls == ["core"]
        assert "Watching relative dependencies" in result.output
        monitor.stop.assert_called_once()

    def test_watch_nothing_to_watch(self, runner, make_project, monkeypatch):
        monkeypatch.chdir(make_project())
        result = runner.invoke(app, ["watch"])
        assert result.exit_code == 0
        assert "No 'relativeDependencies'" in result.output
