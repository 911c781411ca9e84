"""
Logging setup for scheduler processes.

structlog renders every event; the stdlib root logger owns the level and the
stderr stream, so ``taskward.*`` loggers and library loggers (SQLAlchemy,
asyncio) share one threshold. Level and format default to
``TASKWARD_LOG_LEVEL`` / ``TASKWARD_LOG_FORMAT``.

Usage:
    configure_logging()                           # from settings
    configure_logging(level="DEBUG", format="json", force=True)
"""

import logging
import sys
from typing import Literal

import structlog
from structlog.types import Processor

from taskward.framework.logging.context import add_context_processor

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console"]

# Everything before the renderer. Scheduler context (pass_id, task_name,
# run_id, ...) is merged after the timestamp so explicit kwargs win.
_PRE_RENDER: tuple[Processor, ...] = (
    structlog.stdlib.filter_by_level,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    add_context_processor,
    structlog.processors.format_exc_info,
    structlog.processors.StackInfoRenderer(),
)

_configured = False


def _renderer(fmt: LogFormat) -> Processor:
    if fmt == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True, exception_formatter=structlog.dev.plain_traceback)


def _resolve(level: LogLevel | None, fmt: LogFormat | None) -> tuple[int, LogFormat]:
    if level is None or fmt is None:
        from taskward.core.config import get_settings

        settings = get_settings()
        level = level or settings.log_level
        fmt = fmt or settings.log_format
    return logging.getLevelName(level.upper()), fmt


def configure_logging(
    level: LogLevel | None = None,
    format: LogFormat | None = None,
    force: bool = False,
) -> None:
    """
    Point structlog and the stdlib root logger at stderr.

    The CLI calls this once per invocation with ``force=True`` so that
    ``--log-level`` wins over an earlier configuration; other callers get
    a no-op after the first call.
    """
    global _configured

    if _configured and not force:
        return

    numeric_level, fmt = _resolve(level, format)

    structlog.configure(
        processors=[*_PRE_RENDER, _renderer(fmt)],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level, force=True)

    _configured = True


def is_debug_enabled() -> bool:
    """True when ``taskward`` loggers emit DEBUG events."""
    return logging.getLogger("taskward").isEnabledFor(logging.DEBUG)


def is_configured() -> bool:
    return _configured
