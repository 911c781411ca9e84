"""
Structured error types for the taskward scheduler.

Every failure the scheduler records or raises is tagged with a
``TaskErrorCode``. The code is what ends up in ``TaskRun.error_code`` and is
what the eligibility algorithm keys on: a FAILED run tagged
``RETRY_SCHEDULED`` is the only thing that makes a task eligible outside its
cron cadence.

Manifesto:
    - **Closed code set:** Callers branch on ``TaskErrorCode``, never on text
    - **Explicit retry semantics:** Only ``RETRY_SCHEDULED`` is retryable
    - **Error chaining:** Store and handler exceptions are kept as ``cause``
    - **Fail loud at startup:** Definition and schedule errors propagate

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                    TaskSchedulerError                        │
        │            (code, message, task_name, cause)                 │
        ├──────────────────────────────────────────────────────────────┤
        │                                                              │
        │  TaskTimeoutError        InvalidScheduleError                │
        │  (TASK_TIMEOUT)          (INVALID_SCHEDULE)                  │
        │                                                              │
        │  InvalidTaskDefinitionError                                  │
        │  (INVALID_TASK_DEFINITION)                                   │
        │                                                              │
        │  everything else: TaskSchedulerError(code=...)               │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> err = TaskSchedulerError.task_timeout("nightly_cleanup", 5)
    >>> err.code
    <TaskErrorCode.TASK_TIMEOUT: 'TASK_TIMEOUT'>
    >>> str(err)
    'Task nightly_cleanup timed out after 5 minutes'

    >>> should_schedule_retry(TaskSchedulerError.retry_scheduled("x", ValueError("boom")))
    True

Tags:
    error-handling, exception-hierarchy, retry-logic, taskward, scheduling

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class TaskErrorCode(str, Enum):
    """
    Closed set of error kinds used by the scheduler.

    Values are persisted verbatim in ``TaskRun.error_code``, so renaming a
    member is a data migration.

    Attributes:
        TASK_TIMEOUT: Handler did not finish within its configured timeout
        TASK_FAILED: Terminal failure of an ``ignore``-policy task
        TASK_NOT_FOUND: Name not present in the registry
        RETRY_SCHEDULED: Failure of a ``retry-on-fail`` task, retried next pass
        RETRY_EXHAUSTED: Retry chain reached ``max_retry_attempts``
        LOCK_ACQUISITION_FAILED: Another process holds the task lock
        TASK_ALREADY_RUNNING: A RUNNING record already exists for the task
        DATABASE_ERROR: The run store failed
        RUN_RECORD_NOT_FOUND: Update targeted an unknown run id
        INVALID_TASK_DEFINITION: Definition rejected at registry construction
        INVALID_SCHEDULE: Cron expression or time zone rejected
    """

    TASK_TIMEOUT = "TASK_TIMEOUT"
    TASK_FAILED = "TASK_FAILED"
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    RETRY_SCHEDULED = "RETRY_SCHEDULED"
    RETRY_EXHAUSTED = "RETRY_EXHAUSTED"
    LOCK_ACQUISITION_FAILED = "LOCK_ACQUISITION_FAILED"
    TASK_ALREADY_RUNNING = "TASK_ALREADY_RUNNING"
    DATABASE_ERROR = "DATABASE_ERROR"
    RUN_RECORD_NOT_FOUND = "RUN_RECORD_NOT_FOUND"
    INVALID_TASK_DEFINITION = "INVALID_TASK_DEFINITION"
    INVALID_SCHEDULE = "INVALID_SCHEDULE"


class TaskSchedulerError(Exception):
    """
    Base exception for all scheduler errors.

    Carries a ``TaskErrorCode``, the task it relates to (when known) and the
    underlying exception as ``cause``. Prefer the classmethod factories over
    calling the constructor so messages stay uniform across call sites.
    """

    default_code: TaskErrorCode = TaskErrorCode.TASK_FAILED

    def __init__(
        self,
        message: str,
        *,
        code: TaskErrorCode | None = None,
        task_name: str | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.task_name = task_name
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    @property
    def retryable(self) -> bool:
        """True when the scheduler will re-attempt the task next pass."""
        return self.code == TaskErrorCode.RETRY_SCHEDULED

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.task_name is not None:
            result["task_name"] = self.task_name
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, code={self.code.value})"

    # --- factories -----------------------------------------------------

    @classmethod
    def task_failed(
        cls, message: str, cause: BaseException | None = None, task_name: str | None = None
    ) -> TaskSchedulerError:
        return cls(message, code=TaskErrorCode.TASK_FAILED, task_name=task_name, cause=cause)

    @classmethod
    def task_timeout(cls, task_name: str, timeout_minutes: int) -> TaskTimeoutError:
        return TaskTimeoutError(
            f"Task {task_name} timed out after {timeout_minutes} minutes",
            task_name=task_name,
            timeout_minutes=timeout_minutes,
        )

    @classmethod
    def retry_scheduled(cls, task_name: str, cause: BaseException) -> TaskSchedulerError:
        return cls(
            f"Task {task_name} failed but will be retried in next scheduler run: {cause}",
            code=TaskErrorCode.RETRY_SCHEDULED,
            task_name=task_name,
            cause=cause,
        )

    @classmethod
    def retry_exhausted(cls, task_name: str, attempts: int) -> TaskSchedulerError:
        return cls(
            f"Task {task_name} exhausted its retries after {attempts} attempts",
            code=TaskErrorCode.RETRY_EXHAUSTED,
            task_name=task_name,
        )

    @classmethod
    def task_not_found(cls, task_name: str) -> TaskSchedulerError:
        return cls(
            f"Task not found: {task_name}",
            code=TaskErrorCode.TASK_NOT_FOUND,
            task_name=task_name,
        )

    @classmethod
    def lock_acquisition_failed(cls, task_name: str) -> TaskSchedulerError:
        return cls(
            f"Failed to acquire lock for task: {task_name}",
            code=TaskErrorCode.LOCK_ACQUISITION_FAILED,
            task_name=task_name,
        )

    @classmethod
    def task_already_running(cls, task_name: str) -> TaskSchedulerError:
        return cls(
            f"Task {task_name} is already running",
            code=TaskErrorCode.TASK_ALREADY_RUNNING,
            task_name=task_name,
        )

    @classmethod
    def database_error(cls, operation: str, cause: BaseException) -> TaskSchedulerError:
        return cls(
            f"Database error during {operation}: {cause}",
            code=TaskErrorCode.DATABASE_ERROR,
            cause=cause,
        )

    @classmethod
    def run_record_not_found(cls, run_id: str) -> TaskSchedulerError:
        return cls(
            f"Run with id {run_id} not found",
            code=TaskErrorCode.RUN_RECORD_NOT_FOUND,
        )

    @classmethod
    def invalid_schedule(
        cls, task_name: str, cron: str, cause: BaseException | None = None
    ) -> InvalidScheduleError:
        detail = f" {cause}" if cause is not None else ""
        return InvalidScheduleError(
            f'Invalid cron expression for task "{task_name}": {cron}.{detail}',
            task_name=task_name,
            cause=cause,
        )

    @classmethod
    def invalid_task_definition(cls, task_name: str, reason: str) -> InvalidTaskDefinitionError:
        return InvalidTaskDefinitionError(
            f'Invalid definition for task "{task_name}": {reason}',
            task_name=task_name,
        )


class TaskTimeoutError(TaskSchedulerError):
    """Handler outlived its timeout. The handler itself keeps running."""

    default_code = TaskErrorCode.TASK_TIMEOUT

    def __init__(self, message: str, *, timeout_minutes: int, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.timeout_minutes = timeout_minutes


class InvalidScheduleError(TaskSchedulerError):
    """Cron expression or time zone rejected at registry construction."""

    default_code = TaskErrorCode.INVALID_SCHEDULE


class InvalidTaskDefinitionError(TaskSchedulerError):
    """Task definition rejected at registry construction."""

    default_code = TaskErrorCode.INVALID_TASK_DEFINITION


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_task_scheduler_error(error: object, code: TaskErrorCode | None = None) -> bool:
    """Check whether ``error`` is a scheduler error, optionally of ``code``."""
    if not isinstance(error, TaskSchedulerError):
        return False
    if code is not None:
        return error.code == code
    return True


def get_error_code(error: object) -> TaskErrorCode | None:
    """Return the error code of a scheduler error, else None."""
    if isinstance(error, TaskSchedulerError):
        return error.code
    return None


def should_schedule_retry(error: object) -> bool:
    """True when ``error`` marks a failure the next pass should retry."""
    return is_task_scheduler_error(error, TaskErrorCode.RETRY_SCHEDULED)


__all__ = [
    "TaskErrorCode",
    "TaskSchedulerError",
    "TaskTimeoutError",
    "InvalidScheduleError",
    "InvalidTaskDefinitionError",
    "is_task_scheduler_error",
    "get_error_code",
    "should_schedule_retry",
]
