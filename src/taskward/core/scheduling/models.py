"""Task and run data models.

Definitions (``TaskSchedule``, ``TaskDefinition``) are frozen: they are
registered once at process start and never change.  ``TaskRun`` is the
mutable record of one execution attempt; it only ever moves
RUNNING → COMPLETED or RUNNING → FAILED.

Tags:
    taskward, scheduling, models, dataclasses

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from taskward.core.errors import TaskErrorCode, TaskSchedulerError

if TYPE_CHECKING:
    from .context import TaskContext


MIN_TIMEOUT_MINUTES = 1
MAX_TIMEOUT_MINUTES = 9


class TaskRunStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RetryPolicy(str, Enum):
    """How a failed run is classified.

    RETRY_ON_FAIL: re-attempt on the very next pass
    IGNORE: record the failure, wait for the next cron occurrence
    """

    RETRY_ON_FAIL = "retry-on-fail"
    IGNORE = "ignore"


_RETRY_POLICY_VALUES = frozenset(p.value for p in RetryPolicy)


TaskHandler = Callable[["TaskContext"], "str | Awaitable[str]"]


@dataclass(frozen=True)
class TaskSchedule:
    """When a task is due.

    ``always_enabled`` tasks ignore the operator disable list
    (``TASKWARD_DISABLED_TASKS``); combining it with ``enabled=False`` is
    rejected by the registry.
    """

    cron: str
    timezone: str = "UTC"
    enabled: bool = True
    always_enabled: bool = False


@dataclass(frozen=True)
class TaskDefinition:
    """A registered background job.

    Example:
        >>> TaskDefinition(
        ...     handler=purge_sessions,
        ...     schedule=TaskSchedule(cron="0 * * * *"),
        ...     timeout=5,
        ...     retry_policy="retry-on-fail",
        ... )
    """

    handler: TaskHandler
    schedule: TaskSchedule
    timeout: int
    retry_policy: RetryPolicy = RetryPolicy.IGNORE
    max_retry_attempts: int | None = None
    description: str = ""

    def __post_init__(self) -> None:
        # Accept the plain string spelling used in task modules. Anything else
        # is left as-is for the registry to reject.
        if isinstance(self.retry_policy, str) and self.retry_policy in _RETRY_POLICY_VALUES:
            object.__setattr__(self, "retry_policy", RetryPolicy(self.retry_policy))

    @property
    def timeout_seconds(self) -> float:
        return self.timeout * 60.0

    @property
    def retries_on_fail(self) -> bool:
        return self.retry_policy == RetryPolicy.RETRY_ON_FAIL


@dataclass
class TaskRun:
    """One execution attempt of a task (``scheduled_task_runs`` row)."""

    id: str
    task_name: str
    status: TaskRunStatus
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None
    error_message: str | None = None
    error_code: str | None = None
    result_message: str | None = None
    advisory_lock_id: int | None = None
    retry_of_run_id: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskRunStatus.COMPLETED, TaskRunStatus.FAILED)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        for key in ("started_at", "completed_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class TaskRunCreate:
    """Input for ``RunStore.create_task_run``."""

    task_name: str
    started_at: datetime
    status: TaskRunStatus = TaskRunStatus.RUNNING
    advisory_lock_id: int | None = None
    retry_of_run_id: str | None = None


@dataclass
class TaskRunUpdate:
    """Input for ``RunStore.update_task_run``; None fields are left alone."""

    status: TaskRunStatus | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None
    error_message: str | None = None
    error_code: str | None = None
    result_message: str | None = None

    def changes(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


def check_status_transition(run_id: str, current: TaskRunStatus) -> None:
    """Runs are finalised exactly once; anything after that is a bug."""
    if current != TaskRunStatus.RUNNING:
        raise TaskSchedulerError(
            f"Run {run_id} is already {current.value} and cannot be updated",
            code=TaskErrorCode.DATABASE_ERROR,
        )


@dataclass
class PassReport:
    """Outcome of one ``TaskScheduler.run()`` pass."""

    pass_id: str
    started_at: datetime
    eligible: list[str] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped_locked: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        return data
