"""Observability context handed to task handlers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from taskward.framework.logging import get_logger


@dataclass
class TaskContext:
    """What a handler gets instead of a tracing span.

    ``log`` is a structlog logger pre-bound with the task name and run id;
    ``set_attributes`` records key/values that the scheduler logs alongside
    the run outcome.

    Example:
        >>> async def purge_sessions(ctx: TaskContext) -> str:
        ...     deleted = await sessions.purge_expired()
        ...     ctx.set_attributes(deleted=deleted)
        ...     ctx.log.info("sessions_purged", deleted=deleted)
        ...     return f"Purged {deleted} sessions"
    """

    task_name: str
    run_id: str
    timeout_minutes: int
    attempt: int = 1
    retry_of_run_id: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.log = get_logger(f"taskward.tasks.{self.task_name}").bind(
            task_name=self.task_name,
            run_id=self.run_id,
        )

    def set_attributes(self, **attributes: Any) -> None:
        self.attributes.update(attributes)

    @property
    def is_retry(self) -> bool:
        return self.retry_of_run_id is not None
