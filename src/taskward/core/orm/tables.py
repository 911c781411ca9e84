"""Scheduler table definitions: task runs and the fallback lock table.

Tags:
    taskward, orm, sqlalchemy, tables, scheduling

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

import datetime

from sqlalchemy import Index, Text
from sqlalchemy.orm import Mapped, mapped_column

from taskward.core.orm.base import TaskwardBase


class ScheduledTaskRunTable(TaskwardBase):
    __tablename__ = "scheduled_task_runs"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    task_name: Mapped[str] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(nullable=False)
    started_at: Mapped[datetime.datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime.datetime | None]
    duration_ms: Mapped[int | None]
    error_message: Mapped[str | None]
    error_code: Mapped[str | None]
    result_message: Mapped[str | None]
    advisory_lock_id: Mapped[int | None]
    retry_of_run_id: Mapped[str | None] = mapped_column(index=True)

    __table_args__ = (
        Index("ix_scheduled_task_runs_task_started", "task_name", "started_at"),
        Index("ix_scheduled_task_runs_task_status", "task_name", "status"),
    )


class ScheduledTaskLockTable(TaskwardBase):
    """Row-per-held-lock, used where the database has no advisory locks.

    The primary key makes acquisition an INSERT that either succeeds or
    violates uniqueness; ``locked_by`` limits release to the owner.
    Rows past ``expires_at`` belong to a crashed holder and may be taken over.
    """

    __tablename__ = "scheduled_task_locks"

    lock_id: Mapped[int] = mapped_column(primary_key=True, autoincrement=False)
    locked_by: Mapped[str] = mapped_column(nullable=False)
    locked_at: Mapped[datetime.datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime.datetime] = mapped_column(nullable=False)
