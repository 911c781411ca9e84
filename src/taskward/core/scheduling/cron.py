"""Cron evaluation on top of croniter.

taskward does not parse cron itself.  This module is the thin seam between
the scheduler and croniter: time-zone handling via ``zoneinfo`` and a
uniform exception for malformed input.
"""

from __future__ import annotations

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from croniter import croniter

DEFAULT_TIMEZONE = "UTC"


def _zone(timezone: str | None) -> ZoneInfo:
    return ZoneInfo(timezone or DEFAULT_TIMEZONE)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def validate_cron(cron_expression: str, timezone: str | None = None) -> None:
    """Raise ``ValueError`` if the expression or the time zone is unusable.

    ``zoneinfo`` signals unknown zones with ``KeyError`` subclasses; those are
    re-raised as ``ValueError`` so callers handle a single type.
    """
    try:
        tz = _zone(timezone)
    except (KeyError, ValueError) as e:
        raise ValueError(f"Unknown time zone {timezone!r}") from e

    if not isinstance(cron_expression, str) or not cron_expression.strip():
        raise ValueError("Cron expression is empty")

    # Building the iterator is what makes croniter parse every field.
    croniter(cron_expression, datetime.now(tz))


def next_occurrence(
    cron_expression: str,
    after: datetime,
    timezone: str | None = None,
) -> datetime:
    """Next fire time strictly after ``after``, evaluated in ``timezone``.

    Naive ``after`` values are taken as UTC.  The result is an aware UTC
    datetime.
    """
    after_local = _as_utc(after).astimezone(_zone(timezone))
    next_run = croniter(cron_expression, after_local).get_next(datetime)
    return _as_utc(next_run)
