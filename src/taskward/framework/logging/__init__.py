"""
taskward logging - structured, run-aware logging.

Usage:
    from taskward.framework.logging import configure_logging, get_logger, bind_context

    configure_logging()
    log = get_logger(__name__)

    bind_context(task_name="nightly_cleanup")
    log.info("task_started")   # includes task_name
"""

from taskward.framework.logging.config import configure_logging, is_configured, is_debug_enabled
from taskward.framework.logging.context import (
    LogContext,
    bind_context,
    clear_context,
    get_context,
    get_logger,
    new_pass_id,
    push_context,
    set_context,
)

__all__ = [
    "configure_logging",
    "is_configured",
    "is_debug_enabled",
    "get_logger",
    "set_context",
    "clear_context",
    "get_context",
    "bind_context",
    "push_context",
    "new_pass_id",
    "LogContext",
]
