"""RunStore protocol: persistence and locking seen by the scheduler.

The scheduler never touches a database directly.  Everything it needs,
run history, the advisory lock and the clock, goes through this protocol:

┌──────────────────────────────────────────────────────────────────────┐
│  TaskScheduler ──► RunStore                                          │
│                      ├── run records   find / create / update        │
│                      ├── advisory lock acquire (non-blocking)        │
│                      │                 release (idempotent)          │
│                      └── clock         get_current_time()            │
│                                                                      │
│  Implementations:                                                    │
│    InMemoryRunStore   single process, injectable clock (tests)       │
│    SqlRunStore        SQLAlchemy; pg advisory locks or lock table    │
└──────────────────────────────────────────────────────────────────────┘

Tags:
    taskward, scheduling, protocol, persistence, locks

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from .models import TaskRun, TaskRunCreate, TaskRunUpdate


@runtime_checkable
class RunStore(Protocol):
    """Protocol for run-record persistence plus the per-task lock.

    Lock semantics:
        ``acquire_task_lock`` returns immediately: True when acquired,
        False when held elsewhere.  It never queues or waits.
        ``release_task_lock`` is idempotent and must not disturb locks the
        caller does not hold.
    """

    async def find_running_task(self, task_name: str) -> TaskRun | None:
        """Any run of ``task_name`` with status RUNNING, else None."""
        ...

    async def create_task_run(self, data: TaskRunCreate) -> TaskRun:
        """Insert a run record and return it with its assigned id."""
        ...

    async def update_task_run(self, run_id: str, data: TaskRunUpdate) -> TaskRun:
        """Apply ``data`` to an existing run.

        Raises:
            TaskSchedulerError: RUN_RECORD_NOT_FOUND for an unknown id,
                DATABASE_ERROR for a transition out of a terminal status.
        """
        ...

    async def acquire_task_lock(self, lock_id: int) -> bool:
        ...

    async def release_task_lock(self, lock_id: int) -> None:
        ...

    async def find_retry_task_run(self, original_run_id: str) -> TaskRun | None:
        """The run whose ``retry_of_run_id`` is ``original_run_id``, if any."""
        ...

    async def get_recent_task_runs(self, task_name: str, since: datetime) -> list[TaskRun]:
        """Runs of ``task_name`` with ``started_at >= since``, newest first."""
        ...

    def get_current_time(self) -> datetime:
        """Aware UTC "now" as the store sees it."""
        ...

    async def close(self) -> None:
        """Release connections and any locks still held."""
        ...
