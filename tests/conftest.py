"""
Shared pytest fixtures for taskward tests.

This module provides:
- Settings / log-context isolation between tests
- A frozen-clock in-memory store
- Factories for task definitions and schedulers
"""

import os
from datetime import UTC, datetime, timedelta

import pytest

from taskward.core.config import clear_settings_cache
from taskward.core.scheduling import (
    InMemoryRunStore,
    TaskDefinition,
    TaskSchedule,
    TaskScheduler,
)
from taskward.framework.logging import clear_context

T0 = datetime(2024, 1, 1, 10, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):
    """Strip TASKWARD_* variables and reset cached settings/log context."""
    for key in list(os.environ):
        if key.startswith("TASKWARD_"):
            monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    clear_context()
    yield
    clear_settings_cache()
    clear_context()


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def store() -> InMemoryRunStore:
    """In-memory store frozen at 2024-01-01T10:00Z."""
    return InMemoryRunStore(current_time=T0)


def _ok(ctx):
    return "ok"


@pytest.fixture
def make_task():
    """Factory for TaskDefinition with hourly defaults."""

    def _make(
        handler=_ok,
        cron: str = "0 * * * *",
        *,
        timeout: int = 1,
        retry_policy: str = "ignore",
        max_retry_attempts: int | None = None,
        **schedule_kwargs,
    ) -> TaskDefinition:
        return TaskDefinition(
            handler=handler,
            schedule=TaskSchedule(cron=cron, **schedule_kwargs),
            timeout=timeout,
            retry_policy=retry_policy,
            max_retry_attempts=max_retry_attempts,
        )

    return _make


@pytest.fixture
def make_scheduler(store):
    """Factory for TaskScheduler bound to the frozen store, settings-free."""

    def _make(tasks, *, store_=None, **kwargs) -> TaskScheduler:
        kwargs.setdefault("retry_window", timedelta(minutes=60))
        kwargs.setdefault("disabled_tasks", ())
        kwargs.setdefault("instance_id", "test-instance")
        return TaskScheduler(tasks, store_ or store, **kwargs)

    return _make


class FlakyHandler:
    """Async handler that fails on the listed attempt numbers (1-based)."""

    def __init__(self, fail_on=(), message: str = "boom"):
        self.fail_on = set(fail_on)
        self.message = message
        self.calls = 0
        self.contexts = []

    async def __call__(self, ctx):
        self.calls += 1
        self.contexts.append(ctx)
        if self.calls in self.fail_on:
            raise RuntimeError(self.message)
        return f"attempt {self.calls} ok"


@pytest.fixture
def flaky():
    """Factory: ``flaky(fail_on={1, 2})`` or ``flaky(always=True)``."""

    def _make(fail_on=(), *, always: bool = False, message: str = "boom") -> FlakyHandler:
        if always:
            fail_on = range(1, 1000)
        return FlakyHandler(fail_on, message)

    return _make
