"""In-memory RunStore.

Suitable for single-process deployments and for tests.  The lock is an
in-process registry of held lock ids, which is a valid substitute for an
advisory lock when every scheduler pass runs in the same event loop.

The clock is injectable: pass ``current_time`` (or call ``set_time`` /
``advance``) to freeze and move time deterministically.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from taskward.core.errors import TaskSchedulerError
from taskward.framework.logging import get_logger

from .models import TaskRun, TaskRunCreate, TaskRunStatus, TaskRunUpdate, check_status_transition

logger = get_logger(__name__)


class InMemoryRunStore:
    """Dict-backed run history plus a set of held lock ids.

    Example:
        >>> store = InMemoryRunStore(current_time=datetime(2024, 1, 1, 10, tzinfo=UTC))
        >>> scheduler = TaskScheduler(registry, store)
        >>> await scheduler.run()
        >>> store.advance(minutes=30)
        >>> await scheduler.run()
    """

    def __init__(self, current_time: datetime | None = None) -> None:
        self._runs: dict[str, TaskRun] = {}
        self._locks: set[int] = set()
        self._frozen_time = current_time
        self._pending_failures: dict[str, Exception] = {}

    # === RunStore ===

    async def find_running_task(self, task_name: str) -> TaskRun | None:
        self._maybe_fail("find_running_task")
        for run in self._runs.values():
            if run.task_name == task_name and run.status == TaskRunStatus.RUNNING:
                return replace(run)
        return None

    async def create_task_run(self, data: TaskRunCreate) -> TaskRun:
        self._maybe_fail("create_task_run")
        run = TaskRun(
            id=uuid4().hex,
            task_name=data.task_name,
            status=data.status,
            started_at=data.started_at,
            advisory_lock_id=data.advisory_lock_id,
            retry_of_run_id=data.retry_of_run_id,
        )
        self._runs[run.id] = run
        return replace(run)

    async def update_task_run(self, run_id: str, data: TaskRunUpdate) -> TaskRun:
        self._maybe_fail("update_task_run")
        run = self._runs.get(run_id)
        if run is None:
            raise TaskSchedulerError.run_record_not_found(run_id)
        check_status_transition(run_id, run.status)

        updated = replace(run, **data.changes())
        self._runs[run_id] = updated
        return replace(updated)

    async def acquire_task_lock(self, lock_id: int) -> bool:
        self._maybe_fail("acquire_task_lock")
        if lock_id in self._locks:
            return False
        self._locks.add(lock_id)
        return True

    async def release_task_lock(self, lock_id: int) -> None:
        self._maybe_fail("release_task_lock")
        self._locks.discard(lock_id)

    async def find_retry_task_run(self, original_run_id: str) -> TaskRun | None:
        self._maybe_fail("find_retry_task_run")
        for run in self._runs.values():
            if run.retry_of_run_id == original_run_id:
                return replace(run)
        return None

    async def get_recent_task_runs(self, task_name: str, since: datetime) -> list[TaskRun]:
        self._maybe_fail("get_recent_task_runs")
        runs = [
            replace(run)
            for run in self._runs.values()
            if run.task_name == task_name and run.started_at >= since
        ]
        runs.sort(key=lambda r: r.started_at, reverse=True)
        return runs

    def get_current_time(self) -> datetime:
        if self._frozen_time is not None:
            return self._frozen_time
        return datetime.now(UTC)

    async def close(self) -> None:
        self._locks.clear()

    # === Clock control ===

    def set_time(self, moment: datetime) -> None:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=UTC)
        self._frozen_time = moment

    def advance(self, **delta: float) -> datetime:
        """Move the frozen clock forward, e.g. ``advance(minutes=30)``."""
        self._frozen_time = self.get_current_time() + timedelta(**delta)
        return self._frozen_time

    # === Inspection / fault injection ===

    def all_runs(self) -> list[TaskRun]:
        """All runs in creation order."""
        return [replace(run) for run in self._runs.values()]

    def runs_for_task(self, task_name: str) -> list[TaskRun]:
        return [replace(run) for run in self._runs.values() if run.task_name == task_name]

    def is_lock_held(self, lock_id: int) -> bool:
        return lock_id in self._locks

    def mark_running(self, task_name: str, lock_id: int | None = None) -> TaskRun:
        """Plant a RUNNING record (and hold its lock), as a crashed process would leave."""
        run = TaskRun(
            id=uuid4().hex,
            task_name=task_name,
            status=TaskRunStatus.RUNNING,
            started_at=self.get_current_time(),
            advisory_lock_id=lock_id,
        )
        self._runs[run.id] = run
        if lock_id is not None:
            self._locks.add(lock_id)
        return replace(run)

    def fail_next(self, operation: str, error: Exception | None = None) -> None:
        """Make the next call to ``operation`` raise a DATABASE_ERROR."""
        if not hasattr(self, operation):
            raise AttributeError(f"InMemoryRunStore has no operation {operation!r}")
        self._pending_failures[operation] = error or RuntimeError(
            f"Simulated database error for {operation}"
        )

    def reset(self) -> None:
        self._runs.clear()
        self._locks.clear()
        self._pending_failures.clear()

    def _maybe_fail(self, operation: str) -> None:
        error = self._pending_failures.pop(operation, None)
        if error is not None:
            logger.debug("simulated_store_failure", operation=operation)
            raise TaskSchedulerError.database_error(operation, error)
