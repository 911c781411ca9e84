"""
Logging context management using contextvars.

Context set here is attached to every log entry emitted while it is active,
so a handler's own log lines carry the ``task_name`` and ``run_id`` of the
run that invoked it without the handler passing them around.

contextvars are asyncio-aware: each ``asyncio.Task`` gets a copy of the
context at creation, so a handler abandoned after a timeout keeps logging
with its own run's identifiers.
"""

import uuid
from contextvars import ContextVar
from dataclasses import asdict, dataclass
from typing import Any

import structlog


def new_pass_id() -> str:
    """Generate a short pass ID (8 hex chars)."""
    return uuid.uuid4().hex[:8]


@dataclass
class LogContext:
    """
    Scheduler context attached to all log entries.

    Pass identifiers:
        pass_id: One scheduler invocation
        instance_id: Process / store owner id

    Task identifiers:
        task_name: Registered task name
        run_id: TaskRun id once the run record exists
        lock_id: Derived advisory lock id
        attempt: Position in the retry chain (default 1)
    """

    pass_id: str | None = None
    instance_id: str | None = None

    task_name: str | None = None
    run_id: str | None = None
    lock_id: int | None = None
    attempt: int = 1

    def to_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict (excludes attempt=1 default)."""
        result = {}
        for k, v in asdict(self).items():
            if v is None:
                continue
            if k == "attempt" and v == 1:
                continue
            result[k] = v
        return result

    def merge(self, **kwargs) -> "LogContext":
        """Create new context with merged values."""
        current = asdict(self)
        current.update({k: v for k, v in kwargs.items() if v is not None})
        return LogContext(**current)


_log_context: ContextVar[LogContext] = ContextVar("taskward_log_context")  # noqa: B039


def get_context() -> LogContext:
    """Get the current log context."""
    return _log_context.get(LogContext())


def set_context(
    pass_id: str | None = None,
    instance_id: str | None = None,
    task_name: str | None = None,
    run_id: str | None = None,
    lock_id: int | None = None,
    attempt: int = 1,
) -> LogContext:
    """
    Set the current log context.

    This replaces the current context. Use bind_context() to add to existing.
    """
    ctx = LogContext(
        pass_id=pass_id,
        instance_id=instance_id,
        task_name=task_name,
        run_id=run_id,
        lock_id=lock_id,
        attempt=attempt,
    )
    _log_context.set(ctx)
    return ctx


def bind_context(**kwargs) -> LogContext:
    """Merge values into the current context."""
    updated = get_context().merge(**kwargs)
    _log_context.set(updated)
    return updated


def clear_context() -> None:
    """Clear the current context (reset to empty)."""
    _log_context.set(LogContext())


class _ContextToken:
    """Token for restoring context after a scoped operation."""

    def __init__(self, token):
        self._token = token

    def restore(self):
        """Restore the previous context."""
        _log_context.reset(self._token)


def push_context(**kwargs) -> _ContextToken:
    """
    Push new context values, returning a token to restore later.

    Usage:
        token = push_context(task_name="nightly_cleanup")
        try:
            await run()
        finally:
            token.restore()
    """
    updated = get_context().merge(**kwargs)
    token = _log_context.set(updated)
    return _ContextToken(token)


def add_context_processor(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """
    Structlog processor that adds scheduler context to every log entry.

    Explicit keys on the log call win over context keys.
    """
    for key, value in get_context().to_dict().items():
        if key not in event_dict:
            event_dict[key] = value
    return event_dict


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (typically ``get_logger(__name__)``)."""
    return structlog.get_logger(name)
