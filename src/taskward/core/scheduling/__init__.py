"""Scheduler package for taskward.

Manifesto:
    Background jobs are declared once, in code, as an immutable registry.
    Something external (cron, a Kubernetes CronJob, a systemd timer) calls
    ``TaskScheduler.run()`` every few minutes; each pass works out which
    tasks are due, runs them under a per-task advisory lock, and records
    every attempt in ``scheduled_task_runs``.

┌──────────────────────────────────────────────────────────────────────────────┐
│  TASKWARD SCHEDULER - Pass-based cron scheduling                             │
│                                                                               │
│  Quick Start:                                                                 │
│  ┌──────────────────────────────────────────────────────────────────────┐   │
│  │   from taskward.core.scheduling import (                             │   │
│  │       TaskDefinition, TaskSchedule, TaskRegistry, create_scheduler,  │   │
│  │   )                                                                  │   │
│  │                                                                      │   │
│  │   REGISTRY = TaskRegistry({                                          │   │
│  │       "purge_sessions": TaskDefinition(                              │   │
│  │           handler=purge_sessions,                                    │   │
│  │           schedule=TaskSchedule(cron="*/15 * * * *"),                │   │
│  │           timeout=5,                                                 │   │
│  │           retry_policy="retry-on-fail",                              │   │
│  │       ),                                                             │   │
│  │   })                                                                 │   │
│  │                                                                      │   │
│  │   scheduler = create_scheduler(REGISTRY)                             │   │
│  │   report = await scheduler.run()                                     │   │
│  └──────────────────────────────────────────────────────────────────────┘   │
│                                                                               │
│  Stores:                                                                      │
│  - InMemoryRunStore: single process, frozen clock for tests                 │
│  - SqlRunStore:      SQLAlchemy; pg advisory locks, lock table elsewhere    │
│                                                                               │
│  Tables:                                                                      │
│  - scheduled_task_runs:  one row per execution attempt                      │
│  - scheduled_task_locks: lock rows for databases without advisory locks     │
└──────────────────────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ Running a handler without holding its task lock
    ✅ ``TaskScheduler.run_task()`` acquires, records, executes, releases
    ❌ Cancelling a handler that overran its timeout
    ✅ The run is marked failed and the handler is left to finish

Tags:
    taskward, scheduling, cron, advisory-lock, retry

Doc-Types:
    package-overview, architecture-map, module-index
"""

from __future__ import annotations

from .context import TaskContext
from .cron import next_occurrence, validate_cron
from .lock_keys import derive_lock_id
from .memory_store import InMemoryRunStore
from .models import (
    MAX_TIMEOUT_MINUTES,
    MIN_TIMEOUT_MINUTES,
    PassReport,
    RetryPolicy,
    TaskDefinition,
    TaskHandler,
    TaskRun,
    TaskRunCreate,
    TaskRunStatus,
    TaskRunUpdate,
    TaskSchedule,
)
from .protocol import RunStore
from .registry import TaskRegistry
from .scheduler import SchedulerStats, TaskOutcome, TaskScheduler
from .sql_store import SqlRunStore

__all__ = [
    # Models
    "TaskDefinition",
    "TaskSchedule",
    "TaskRun",
    "TaskRunCreate",
    "TaskRunUpdate",
    "TaskRunStatus",
    "RetryPolicy",
    "TaskHandler",
    "PassReport",
    "MIN_TIMEOUT_MINUTES",
    "MAX_TIMEOUT_MINUTES",
    # Registry
    "TaskRegistry",
    # Handler context
    "TaskContext",
    # Stores
    "RunStore",
    "InMemoryRunStore",
    "SqlRunStore",
    # Scheduler
    "TaskScheduler",
    "TaskOutcome",
    "SchedulerStats",
    # Helpers
    "derive_lock_id",
    "next_occurrence",
    "validate_cron",
    "create_scheduler",
]


def create_scheduler(registry, store: RunStore | None = None, settings=None) -> TaskScheduler:
    """Factory function to create a scheduler wired from settings.

    Args:
        registry: ``TaskRegistry`` or mapping of task name to definition
        store: Run store (default: ``SqlRunStore`` from settings, schema created)
        settings: ``TaskwardSettings`` (default: ``get_settings()``)

    Returns:
        Configured TaskScheduler

    Example:
        >>> scheduler = create_scheduler(REGISTRY)
        >>> await scheduler.run()
    """
    from datetime import timedelta

    from taskward.core.config import get_settings

    settings = settings or get_settings()
    if store is None:
        store = SqlRunStore.from_settings(settings)
        store.create_schema()

    return TaskScheduler(
        registry,
        store,
        retry_window=timedelta(minutes=settings.retry_window_minutes),
        disabled_tasks=settings.disabled_tasks,
        instance_id=settings.instance_id,
    )
