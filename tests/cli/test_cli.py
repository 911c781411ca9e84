"""Tests for the ``taskward`` CLI."""

from __future__ import annotations

import json
import sys
import types

import pytest
from typer.testing import CliRunner

from taskward import __version__
from taskward.cli.app import app
from taskward.core.scheduling import TaskDefinition, TaskRegistry, TaskSchedule, derive_lock_id
from taskward.framework.logging import configure_logging

runner = CliRunner()

MODULE = "taskward_cli_test_tasks"
QUIET = ["--log-level", "WARNING"]


def _ok(ctx):
    return "synced"


def _broken(ctx):
    raise RuntimeError("upstream unavailable")


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    # The CLI points logging at CliRunner's stderr, which is closed afterwards.
    configure_logging(level="INFO", format="console", force=True)


@pytest.fixture
def registry_module(monkeypatch):
    module = types.ModuleType(MODULE)
    module.REGISTRY = TaskRegistry(
        {
            "sync": TaskDefinition(handler=_ok, schedule=TaskSchedule(cron="*/5 * * * *"), timeout=2),
        }
    )
    module.BROKEN = {
        "broken": TaskDefinition(handler=_broken, schedule=TaskSchedule(cron="0 * * * *"), timeout=1),
    }
    module.INVALID = {
        "bad": TaskDefinition(handler=_ok, schedule=TaskSchedule(cron="nope"), timeout=1),
    }
    module.NOT_A_REGISTRY = 42
    monkeypatch.setitem(sys.modules, MODULE, module)
    return module


@pytest.fixture
def database(tmp_path):
    return f"sqlite:///{tmp_path / 'cli.db'}"


class TestBasics:
    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"taskward {__version__}" in result.stdout

    def test_lock_id(self):
        result = runner.invoke(app, ["lock-id", "ab"])

        assert result.exit_code == 0
        assert result.stdout.strip() == "3105"


class TestTasks:
    def test_list_json(self, registry_module):
        result = runner.invoke(app, [*QUIET, "tasks", "--registry", f"{MODULE}:REGISTRY", "--json"])

        assert result.exit_code == 0
        (row,) = json.loads(result.stdout)
        assert row["name"] == "sync"
        assert row["lock_id"] == derive_lock_id("sync")
        assert row["retry_policy"] == "ignore"

    def test_registry_from_env(self, registry_module, monkeypatch):
        monkeypatch.setenv("TASKWARD_REGISTRY", f"{MODULE}:REGISTRY")

        result = runner.invoke(app, ["tasks"])

        assert result.exit_code == 0
        assert "sync" in result.stdout

    def test_missing_registry(self):
        result = runner.invoke(app, ["tasks"])

        assert result.exit_code == 2

    @pytest.mark.parametrize(
        "path",
        [f"{MODULE}:MISSING", f"{MODULE}:NOT_A_REGISTRY", "no_such_module_xyz:REGISTRY", "no-colon"],
    )
    def test_bad_registry_path(self, registry_module, path):
        result = runner.invoke(app, ["tasks", "--registry", path])

        assert result.exit_code == 2

    def test_invalid_task_definition(self, registry_module):
        result = runner.invoke(app, ["tasks", "--registry", f"{MODULE}:INVALID"])

        assert result.exit_code == 1
        assert "INVALID_SCHEDULE" in result.output


class TestRunAndHistory:
    def test_run_then_list_runs(self, registry_module, database):
        result = runner.invoke(
            app, [*QUIET, "run", "--registry", f"{MODULE}:REGISTRY", "--database", database, "--json"]
        )

        assert result.exit_code == 0, result.output
        report = json.loads(result.stdout)
        assert report["completed"] == ["sync"]

        result = runner.invoke(app, [*QUIET, "runs", "sync", "--database", database, "--json"])

        assert result.exit_code == 0, result.output
        (run,) = json.loads(result.stdout)
        assert run["status"] == "COMPLETED"
        assert run["result_message"] == "synced"

    def test_run_succeeds_when_a_task_fails(self, registry_module, database):
        result = runner.invoke(
            app, [*QUIET, "run", "--registry", f"{MODULE}:BROKEN", "--database", database, "--json"]
        )

        assert result.exit_code == 0, result.output
        report = json.loads(result.stdout)
        assert report["failed"] == ["broken"]
        assert report["completed"] == []

        result = runner.invoke(app, [*QUIET, "runs", "broken", "--database", database, "--json"])

        (run,) = json.loads(result.stdout)
        assert run["status"] == "FAILED"
        assert run["error_message"] == "upstream unavailable"

    def test_runs_empty(self, database):
        result = runner.invoke(app, ["runs", "nothing", "--database", database])

        assert result.exit_code == 0
        assert "No items." in result.stdout


class TestTrigger:
    def test_trigger(self, registry_module, database):
        result = runner.invoke(app, ["trigger", "sync", "--registry", f"{MODULE}:REGISTRY", "--database", database])

        assert result.exit_code == 0, result.output
        assert "COMPLETED" in result.stdout

    def test_trigger_unknown_task(self, registry_module, database):
        result = runner.invoke(app, ["trigger", "nope", "--registry", f"{MODULE}:REGISTRY", "--database", database])

        assert result.exit_code == 1
        assert "TASK_NOT_FOUND" in result.output
