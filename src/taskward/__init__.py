"""taskward - cron-driven background tasks with advisory locks and retry.

Usage:
    from taskward import TaskDefinition, TaskSchedule, TaskRegistry, create_scheduler
"""

__version__ = "0.1.0"

from taskward.core.errors import TaskErrorCode, TaskSchedulerError
from taskward.core.scheduling import (
    InMemoryRunStore,
    PassReport,
    RetryPolicy,
    SqlRunStore,
    TaskContext,
    TaskDefinition,
    TaskRegistry,
    TaskRun,
    TaskRunStatus,
    TaskSchedule,
    TaskScheduler,
    create_scheduler,
)

__all__ = [
    "__version__",
    "TaskErrorCode",
    "TaskSchedulerError",
    "InMemoryRunStore",
    "PassReport",
    "RetryPolicy",
    "SqlRunStore",
    "TaskContext",
    "TaskDefinition",
    "TaskRegistry",
    "TaskRun",
    "TaskRunStatus",
    "TaskSchedule",
    "TaskScheduler",
    "create_scheduler",
]
