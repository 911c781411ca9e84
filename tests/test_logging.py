"""
Tests for the logging module.

Tests verify:
- Scheduler context is attached to log entries
- push_context restores the previous context
- DEBUG logs are suppressed at INFO level
"""

import json
import logging

import pytest

from taskward.framework.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_context,
    get_logger,
    is_configured,
    is_debug_enabled,
    push_context,
    set_context,
)
from taskward.framework.logging.context import add_context_processor


class TestLogContext:
    """Test LogContext dataclass."""

    def test_to_dict_excludes_none_and_default_attempt(self):
        ctx = LogContext(pass_id="abc12345", task_name=None)

        assert ctx.to_dict() == {"pass_id": "abc12345"}

    def test_to_dict_includes_retry_attempt(self):
        assert LogContext(attempt=3).to_dict() == {"attempt": 3}

    def test_merge_creates_new_context(self):
        ctx1 = LogContext(pass_id="p1")
        ctx2 = ctx1.merge(task_name="sync")

        assert ctx1.task_name is None
        assert ctx2.pass_id == "p1"
        assert ctx2.task_name == "sync"


class TestContextManagement:
    """Test context set/bind/push helpers."""

    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_set_replaces(self):
        set_context(pass_id="p1", task_name="a")
        set_context(pass_id="p2")

        assert get_context().task_name is None
        assert get_context().pass_id == "p2"

    def test_bind_merges(self):
        set_context(pass_id="p1")
        bind_context(run_id="r1")

        assert get_context().pass_id == "p1"
        assert get_context().run_id == "r1"

    def test_push_restores(self):
        set_context(pass_id="p1")
        token = push_context(task_name="sync", lock_id=42)
        bind_context(run_id="r1")

        assert get_context().lock_id == 42
        token.restore()

        assert get_context().task_name is None
        assert get_context().run_id is None
        assert get_context().pass_id == "p1"

    def test_processor_adds_context_without_overriding(self):
        set_context(pass_id="p1", task_name="sync")

        event = add_context_processor(None, "info", {"event": "x", "task_name": "explicit"})

        assert event == {"event": "x", "task_name": "explicit", "pass_id": "p1"}


class TestConfigureLogging:
    def test_level_from_argument(self):
        configure_logging(level="INFO", format="json", force=True)

        assert is_configured()
        assert not is_debug_enabled()

    def test_debug_level(self):
        configure_logging(level="DEBUG", format="console", force=True)

        assert is_debug_enabled()
        assert logging.getLogger("taskward").isEnabledFor(logging.DEBUG)

    def test_level_from_settings(self, monkeypatch):
        monkeypatch.setenv("TASKWARD_LOG_LEVEL", "warning")

        configure_logging(force=True)

        assert not logging.getLogger("taskward").isEnabledFor(logging.INFO)

    def test_threshold_lives_on_root_logger(self):
        configure_logging(level="WARNING", format="console", force=True)

        assert logging.getLogger().level == logging.WARNING
        assert logging.getLogger("taskward").level == logging.NOTSET
        assert not logging.getLogger("taskward.core.scheduling.scheduler").isEnabledFor(logging.INFO)

    def test_json_lines_carry_scheduler_context(self, capsys):
        configure_logging(level="INFO", format="json", force=True)
        set_context(pass_id="p1", task_name="sync")

        get_logger("taskward.tests").info("task_started", attempt=2)

        event = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert event["event"] == "task_started"
        assert event["level"] == "info"
        assert event["logger"] == "taskward.tests"
        assert event["pass_id"] == "p1"
        assert event["task_name"] == "sync"
        assert event["attempt"] == 2

    @pytest.fixture(autouse=True)
    def _restore_level(self):
        yield
        configure_logging(level="INFO", format="console", force=True)
