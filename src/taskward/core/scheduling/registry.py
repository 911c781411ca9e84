"""Task registry: the immutable set of tasks a scheduler knows about.

Manifesto:
    The registry is built once at process start and passed into the
    scheduler; there is no module-level registration.  Every definition is
    validated at construction, cron expressions included, so a typo in a
    schedule stops the process at startup instead of silently never firing.

Tags:
    taskward, scheduling, registry, validation

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType

from taskward.core.errors import TaskSchedulerError
from taskward.framework.logging import get_logger

from .cron import validate_cron
from .models import MAX_TIMEOUT_MINUTES, MIN_TIMEOUT_MINUTES, RetryPolicy, TaskDefinition

logger = get_logger(__name__)


class TaskRegistry(Mapping[str, TaskDefinition]):
    """Read-only, ordered mapping of task name → ``TaskDefinition``.

    Iteration follows registration order, which is the order tasks are
    evaluated and run within a pass.

    Raises:
        InvalidTaskDefinitionError: bad name, handler, timeout or policy
        InvalidScheduleError: cron expression or time zone rejected

    Example:
        >>> registry = TaskRegistry({"purge_sessions": purge_sessions_task})
        >>> list(registry)
        ['purge_sessions']
    """

    def __init__(
        self,
        tasks: Mapping[str, TaskDefinition] | Iterable[tuple[str, TaskDefinition]] = (),
    ) -> None:
        items = tasks.items() if isinstance(tasks, Mapping) else tasks
        collected: dict[str, TaskDefinition] = {}
        for name, definition in items:
            if name in collected:
                raise TaskSchedulerError.invalid_task_definition(name, "registered twice")
            _validate(name, definition)
            collected[name] = definition

        self._tasks = MappingProxyType(collected)
        logger.debug("task_registry_built", tasks=list(collected))

    def __getitem__(self, name: str) -> TaskDefinition:
        return self._tasks[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def __repr__(self) -> str:
        return f"TaskRegistry({list(self._tasks)!r})"


def _validate(name: str, task: TaskDefinition) -> None:
    if not isinstance(name, str) or not name.strip():
        raise TaskSchedulerError.invalid_task_definition(str(name), "name must be a non-empty string")
    if not isinstance(task, TaskDefinition):
        raise TaskSchedulerError.invalid_task_definition(name, "not a TaskDefinition")
    if not callable(task.handler):
        raise TaskSchedulerError.invalid_task_definition(name, "handler is not callable")

    timeout = task.timeout
    if isinstance(timeout, bool) or not isinstance(timeout, int):
        raise TaskSchedulerError.invalid_task_definition(name, "timeout must be whole minutes")
    if not MIN_TIMEOUT_MINUTES <= timeout <= MAX_TIMEOUT_MINUTES:
        raise TaskSchedulerError.invalid_task_definition(
            name,
            f"timeout must be between {MIN_TIMEOUT_MINUTES} and {MAX_TIMEOUT_MINUTES} minutes, got {timeout}",
        )

    if not isinstance(task.retry_policy, RetryPolicy):
        raise TaskSchedulerError.invalid_task_definition(name, f"unknown retry policy {task.retry_policy!r}")

    if task.max_retry_attempts is not None:
        if not task.retries_on_fail:
            raise TaskSchedulerError.invalid_task_definition(
                name, "max_retry_attempts requires retry_policy='retry-on-fail'"
            )
        if task.max_retry_attempts < 1:
            raise TaskSchedulerError.invalid_task_definition(name, "max_retry_attempts must be >= 1")

    schedule = task.schedule
    if schedule.always_enabled and not schedule.enabled:
        raise TaskSchedulerError.invalid_task_definition(
            name, "always_enabled task cannot be declared with enabled=False"
        )

    try:
        validate_cron(schedule.cron, schedule.timezone)
    except (ValueError, KeyError, TypeError) as e:
        raise TaskSchedulerError.invalid_schedule(name, schedule.cron, e) from e


__all__ = ["TaskRegistry"]
