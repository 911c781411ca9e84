"""Task scheduler: one pass over the registry.

Manifesto:
    A pass decides which tasks are due, runs each one at most once, and
    records the outcome.  Overlapping passes (two cron firings, two
    machines) are expected; the per-task advisory lock is what keeps a
    task from running twice.  A failing task never fails the pass.

┌──────────────────────────────────────────────────────────────────────────────┐
│  TaskScheduler.run()                                                          │
│                                                                               │
│   1. snapshot now = store.get_current_time()                                  │
│   2. for each task, in registration order: is_task_eligible_to_run()         │
│        ├── disabled?                         → skip                          │
│        ├── RUNNING record exists?            → skip                          │
│        ├── retry-on-fail and a RETRY_SCHEDULED failure in the window?        │
│        │     ├── not yet retried             → ELIGIBLE (ignores cron)       │
│        │     └── already retried             → skip                          │
│        └── cron: now >= next occurrence after last started_at → ELIGIBLE     │
│   3. for each eligible task: run_task()                                      │
│        ├── acquire_task_lock()  (non-blocking; lost race → skip)             │
│        ├── create RUNNING run (retry_of_run_id when filling a retry slot)     │
│        ├── handler raced against timeout (abandoned, not cancelled)          │
│        ├── COMPLETED | FAILED(TASK_FAILED | RETRY_SCHEDULED | RETRY_EXHAUSTED)│
│        └── release_task_lock()  (always, once acquired)                      │
└──────────────────────────────────────────────────────────────────────────────┘

Tags:
    taskward, scheduling, orchestrator, cron, retry, advisory-lock

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from taskward.core.errors import TaskErrorCode, TaskSchedulerError, get_error_code
from taskward.framework.logging import bind_context, get_logger, new_pass_id, push_context

from .context import TaskContext
from .cron import next_occurrence
from .lock_keys import derive_lock_id
from .models import (
    PassReport,
    TaskDefinition,
    TaskRun,
    TaskRunCreate,
    TaskRunStatus,
    TaskRunUpdate,
)
from .protocol import RunStore
from .registry import TaskRegistry

logger = get_logger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
RETRY_SUFFIX = " - will retry in next run"


class TaskOutcome(str, Enum):
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    SKIPPED_LOCKED = "SKIPPED_LOCKED"
    ERROR = "ERROR"  # store failed before a run record existed


@dataclass
class SchedulerStats:
    """Counters across passes of one scheduler instance."""

    pass_count: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0
    tasks_skipped: int = 0
    last_pass_at: datetime | None = None
    last_error: str | None = None


class TaskScheduler:
    """Runs one scheduling pass over an immutable task registry.

    Example:
        >>> registry = TaskRegistry({"purge_sessions": purge_sessions_task})
        >>> scheduler = TaskScheduler(registry, SqlRunStore.from_url(url))
        >>> report = await scheduler.run()
        >>> report.completed
        ['purge_sessions']
    """

    def __init__(
        self,
        registry: TaskRegistry | Mapping[str, TaskDefinition],
        store: RunStore,
        *,
        retry_window: timedelta | None = None,
        disabled_tasks: Iterable[str] | None = None,
        instance_id: str | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            registry: Tasks to schedule; a plain mapping is validated into a
                ``TaskRegistry`` (so a bad cron expression raises here)
            store: Run history, lock and clock
            retry_window: How long a RETRY_SCHEDULED failure keeps priority
                over the cron schedule (default: settings, 60 minutes)
            disabled_tasks: Operator kill-switch; always_enabled tasks ignore it
            instance_id: Identifier attached to this scheduler's log lines
        """
        if not isinstance(registry, TaskRegistry):
            registry = TaskRegistry(registry)

        if retry_window is None or disabled_tasks is None or instance_id is None:
            from taskward.core.config import get_settings

            settings = get_settings()
            if retry_window is None:
                retry_window = timedelta(minutes=settings.retry_window_minutes)
            if disabled_tasks is None:
                disabled_tasks = settings.disabled_tasks
            if instance_id is None:
                instance_id = settings.instance_id

        self.registry = registry
        self.store = store
        self.retry_window = retry_window
        self.disabled_tasks = frozenset(disabled_tasks)
        self.instance_id = instance_id

        self._stats = SchedulerStats()
        self._abandoned: set[asyncio.Future[Any]] = set()

    # === Pass ===

    async def run(self) -> PassReport:
        """Perform one full scheduling pass.

        Never raises for individual task failures; they are recorded on the
        run and logged.
        """
        pass_id = new_pass_id()
        token = push_context(pass_id=pass_id, instance_id=self.instance_id)
        try:
            report = PassReport(pass_id=pass_id, started_at=self.store.get_current_time())
            self._stats.pass_count += 1
            self._stats.last_pass_at = report.started_at

            logger.info("scheduler_pass_started", total_tasks=len(self.registry))

            report.eligible = await self.find_eligible_tasks()
            if not report.eligible:
                logger.info("no_eligible_tasks")
                return report

            logger.info("eligible_tasks_found", count=len(report.eligible), tasks=report.eligible)

            for task_name in report.eligible:
                outcome = await self.run_task(task_name)
                if outcome == TaskOutcome.COMPLETED:
                    report.completed.append(task_name)
                elif outcome == TaskOutcome.SKIPPED_LOCKED:
                    report.skipped_locked.append(task_name)
                else:
                    report.failed.append(task_name)

            logger.info(
                "scheduler_pass_completed",
                completed=len(report.completed),
                failed=len(report.failed),
                skipped_locked=len(report.skipped_locked),
            )
            return report
        finally:
            token.restore()

    async def trigger(self, task_name: str) -> TaskOutcome:
        """Run one task now, ignoring its schedule (the lock still applies).

        Raises:
            TaskSchedulerError: TASK_NOT_FOUND for an unregistered name
        """
        token = push_context(pass_id=new_pass_id(), instance_id=self.instance_id)
        try:
            logger.info("manual_trigger", task_name=task_name)
            return await self.run_task(task_name)
        finally:
            token.restore()

    # === Eligibility ===

    async def find_eligible_tasks(self) -> list[str]:
        """Names of tasks due this pass, in registration order."""
        now = self.store.get_current_time()
        eligible = []
        for task_name, task in self.registry.items():
            if await self.is_task_eligible_to_run(task_name, task, now):
                eligible.append(task_name)
        return eligible

    def is_task_enabled(self, task_name: str, task: TaskDefinition) -> bool:
        if task.schedule.enabled is False:
            return False
        if task_name in self.disabled_tasks and not task.schedule.always_enabled:
            return False
        return True

    async def is_task_eligible_to_run(
        self, task_name: str, task: TaskDefinition, now: datetime
    ) -> bool:
        if not self.is_task_enabled(task_name, task):
            logger.debug("task_disabled", task_name=task_name)
            return False

        try:
            running = await self.store.find_running_task(task_name)
            if running is not None:
                logger.info(
                    "task_already_running",
                    task_name=task_name,
                    run_id=running.id,
                    code=TaskErrorCode.TASK_ALREADY_RUNNING.value,
                )
                return False

            if task.retries_on_fail:
                failed_run = await self._get_recent_failed_run(task_name, now)
                if failed_run is not None:
                    existing_retry = await self.store.find_retry_task_run(failed_run.id)
                    if existing_retry is None:
                        logger.info("task_retry_due", task_name=task_name, retry_of=failed_run.id)
                        return True
                    logger.debug(
                        "task_retry_already_attempted",
                        task_name=task_name,
                        retry_of=failed_run.id,
                        retry_run_id=existing_retry.id,
                    )
                    return False

            return await self._is_time_for_next_run(task_name, task, now)

        except Exception as e:
            logger.warning(
                "eligibility_check_failed",
                task_name=task_name,
                error=str(e),
                code=(get_error_code(e) or TaskErrorCode.DATABASE_ERROR).value,
                exc_info=True,
            )
            return False

    async def _is_time_for_next_run(
        self, task_name: str, task: TaskDefinition, now: datetime
    ) -> bool:
        runs = await self.store.get_recent_task_runs(task_name, EPOCH)
        if not runs:
            return True

        last_run = max(runs, key=lambda r: r.started_at)
        due_at = next_occurrence(task.schedule.cron, last_run.started_at, task.schedule.timezone)
        return now >= due_at

    async def _get_recent_failed_run(self, task_name: str, now: datetime) -> TaskRun | None:
        """Latest RETRY_SCHEDULED failure started within [now - window, now]."""
        since = now - self.retry_window
        runs = await self.store.get_recent_task_runs(task_name, since)
        failed = [
            r
            for r in runs
            if r.status == TaskRunStatus.FAILED
            and r.error_code == TaskErrorCode.RETRY_SCHEDULED.value
        ]
        if not failed:
            return None
        return max(failed, key=lambda r: r.started_at)

    async def _attempt_number(self, task_name: str, retry_of: TaskRun | None) -> int:
        """1 for a scheduled run, 2 for its first retry, and so on."""
        if retry_of is None:
            return 1

        history = {r.id: r for r in await self.store.get_recent_task_runs(task_name, EPOCH)}
        attempt = 2
        seen = {retry_of.id}
        current = retry_of
        while current.retry_of_run_id and current.retry_of_run_id not in seen:
            parent = history.get(current.retry_of_run_id)
            if parent is None:
                break
            attempt += 1
            seen.add(parent.id)
            current = parent
        return attempt

    # === Execution ===

    async def run_task(self, task_name: str) -> TaskOutcome:
        """Lock, record, execute and finalise a single task.

        Raises:
            TaskSchedulerError: TASK_NOT_FOUND for an unregistered name.
            Nothing else escapes.
        """
        task = self.registry.get(task_name)
        if task is None:
            raise TaskSchedulerError.task_not_found(task_name)

        lock_id = derive_lock_id(task_name)
        token = push_context(task_name=task_name, lock_id=lock_id)
        acquired = False
        run: TaskRun | None = None
        attempt = 1

        try:
            acquired = await self.store.acquire_task_lock(lock_id)
            if not acquired:
                logger.info(
                    "task_lock_not_acquired",
                    code=TaskErrorCode.LOCK_ACQUISITION_FAILED.value,
                )
                self._stats.tasks_skipped += 1
                return TaskOutcome.SKIPPED_LOCKED

            logger.debug("task_lock_acquired")

            retry_of = await self._get_recent_failed_run(task_name, self.store.get_current_time())
            attempt = await self._attempt_number(task_name, retry_of)

            run = await self.store.create_task_run(
                TaskRunCreate(
                    task_name=task_name,
                    status=TaskRunStatus.RUNNING,
                    started_at=self.store.get_current_time(),
                    advisory_lock_id=lock_id,
                    retry_of_run_id=retry_of.id if retry_of else None,
                )
            )
            bind_context(run_id=run.id, attempt=attempt)

            ctx = TaskContext(
                task_name=task_name,
                run_id=run.id,
                timeout_minutes=task.timeout,
                attempt=attempt,
                retry_of_run_id=run.retry_of_run_id,
            )
            result_message = await self._run_with_timeout(task_name, task, ctx)
            await self._complete_run(run, result_message)

            logger.info("task_completed", result=result_message, **ctx.attributes)
            self._stats.tasks_completed += 1
            return TaskOutcome.COMPLETED

        except Exception as e:
            self._stats.tasks_failed += 1
            self._stats.last_error = str(e)
            if run is None:
                logger.error(
                    "task_not_started",
                    error=str(e),
                    code=(get_error_code(e) or TaskErrorCode.DATABASE_ERROR).value,
                    exc_info=True,
                )
                return TaskOutcome.ERROR

            try:
                await self._record_failure(run, task_name, task, e, attempt)
            except Exception:
                logger.exception("task_failure_not_recorded", error=str(e))
            return TaskOutcome.FAILED

        finally:
            if acquired:
                try:
                    await self.store.release_task_lock(lock_id)
                    logger.debug("task_lock_released")
                except Exception:
                    logger.exception("task_lock_release_failed")
            token.restore()

    async def _run_with_timeout(self, task_name: str, task: TaskDefinition, ctx: TaskContext) -> str:
        """Race the handler against ``task.timeout`` minutes.

        On timeout the handler is left running: it is not cancelled, and its
        eventual result or error is only logged.
        """
        handler = task.handler
        is_async = inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(
            getattr(handler, "__call__", None)
        )

        async def invoke() -> Any:
            if is_async:
                return await handler(ctx)
            result = await asyncio.to_thread(handler, ctx)
            if inspect.isawaitable(result):
                result = await result
            return result

        future = asyncio.ensure_future(invoke())
        done, _ = await asyncio.wait({future}, timeout=task.timeout_seconds)

        if future in done:
            result = future.result()
            if result is None:
                return ""
            return result if isinstance(result, str) else str(result)

        self._abandoned.add(future)
        future.add_done_callback(self._on_abandoned_done)
        logger.warning("task_timed_out", timeout_minutes=task.timeout)
        raise TaskSchedulerError.task_timeout(task_name, task.timeout)

    def _on_abandoned_done(self, future: asyncio.Future[Any]) -> None:
        self._abandoned.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning("abandoned_task_failed", error=str(error))
        else:
            logger.info("abandoned_task_finished", result=future.result())

    async def _complete_run(self, run: TaskRun, result_message: str) -> None:
        completed_at = self.store.get_current_time()
        await self.store.update_task_run(
            run.id,
            TaskRunUpdate(
                status=TaskRunStatus.COMPLETED,
                completed_at=completed_at,
                duration_ms=_duration_ms(run.started_at, completed_at),
                result_message=result_message,
            ),
        )

    async def _record_failure(
        self,
        run: TaskRun,
        task_name: str,
        task: TaskDefinition,
        error: Exception,
        attempt: int,
    ) -> None:
        """Classify a failed run by the task's retry policy and persist it."""
        message = str(error) or error.__class__.__name__

        if not task.retries_on_fail:
            code = TaskErrorCode.TASK_FAILED
        elif task.max_retry_attempts is not None and attempt - 1 >= task.max_retry_attempts:
            code = TaskErrorCode.RETRY_EXHAUSTED
            message = f"{message} - {TaskSchedulerError.retry_exhausted(task_name, attempt).message}"
        else:
            code = TaskErrorCode.RETRY_SCHEDULED
            message = f"{message}{RETRY_SUFFIX}"

        completed_at = self.store.get_current_time()
        await self.store.update_task_run(
            run.id,
            TaskRunUpdate(
                status=TaskRunStatus.FAILED,
                completed_at=completed_at,
                duration_ms=_duration_ms(run.started_at, completed_at),
                error_message=message,
                error_code=code.value,
            ),
        )

        cause_code = get_error_code(error)
        logger.warning(
            "task_failed",
            retry_policy=task.retry_policy.value,
            code=code.value,
            cause_code=cause_code.value if cause_code else None,
            error=str(error),
        )

    # === Stats ===

    def get_stats(self) -> SchedulerStats:
        return self._stats

    def reset_stats(self) -> None:
        self._stats = SchedulerStats()

    @property
    def abandoned_count(self) -> int:
        """Handlers that timed out and are still running in the background."""
        return len(self._abandoned)


def _duration_ms(started_at: datetime, completed_at: datetime) -> int:
    return (completed_at - started_at) // timedelta(milliseconds=1)
