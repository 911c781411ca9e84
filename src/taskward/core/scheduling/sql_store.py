"""SQLAlchemy RunStore.

Manifesto:
    Run history lives in ``scheduled_task_runs``.  The per-task lock is a
    PostgreSQL session-level advisory lock when the engine speaks
    PostgreSQL; every other dialect gets an INSERT-or-fail row in
    ``scheduled_task_locks`` with an owner and an expiry.

┌───────────────────────────────────────────────────────────────────────┐
│  acquire_task_lock(lock_id)                                           │
│                                                                       │
│   postgresql:  conn = engine.connect()          (pinned per lock id)  │
│                SELECT pg_try_advisory_lock(id)                        │
│                  ├── true  → keep conn until release                  │
│                  └── false → close conn, return False                 │
│                                                                       │
│   others:      DELETE expired row for lock_id                         │
│                INSERT (lock_id, instance_id, now, now + ttl)          │
│                  ├── ok             → True                            │
│                  └── IntegrityError → False                           │
└───────────────────────────────────────────────────────────────────────┘

All blocking database calls run in a worker thread via
``asyncio.to_thread``; SQLAlchemy errors surface as DATABASE_ERROR.

Tags:
    taskward, scheduling, sqlalchemy, advisory-lock, persistence

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar
from uuid import uuid4

from sqlalchemy import delete, select, text
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from taskward.core.errors import TaskSchedulerError
from taskward.core.orm import (
    ScheduledTaskLockTable,
    ScheduledTaskRunTable,
    TaskwardBase,
    create_taskward_engine,
    taskward_session_factory,
)
from taskward.framework.logging import get_logger

from .models import TaskRun, TaskRunCreate, TaskRunStatus, TaskRunUpdate, check_status_transition

if TYPE_CHECKING:
    from taskward.core.config import TaskwardSettings

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_LOCK_TTL = timedelta(minutes=15)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _to_run(row: ScheduledTaskRunTable) -> TaskRun:
    return TaskRun(
        id=row.id,
        task_name=row.task_name,
        status=TaskRunStatus(row.status),
        started_at=_as_utc(row.started_at),
        completed_at=_as_utc(row.completed_at),
        duration_ms=row.duration_ms,
        error_message=row.error_message,
        error_code=row.error_code,
        result_message=row.result_message,
        advisory_lock_id=row.advisory_lock_id,
        retry_of_run_id=row.retry_of_run_id,
    )


class SqlRunStore:
    """RunStore over any SQLAlchemy engine.

    Example:
        >>> store = SqlRunStore.from_settings()
        >>> store.create_schema()
        >>> scheduler = TaskScheduler(REGISTRY, store)
        >>> await scheduler.run()
        >>> await store.close()
    """

    def __init__(
        self,
        engine: Engine,
        *,
        instance_id: str | None = None,
        clock: Callable[[], datetime] | None = None,
        lock_ttl: timedelta = DEFAULT_LOCK_TTL,
    ) -> None:
        """Initialize the store.

        Args:
            engine: SQLAlchemy engine
            instance_id: Owner written to the lock table. Auto-generated if
                not provided.
            clock: Replaces ``datetime.now(UTC)``; tests freeze time with it
            lock_ttl: How long a lock-table row protects a task before a
                crashed holder's row may be taken over. Ignored on PostgreSQL,
                where the lock dies with the session.
        """
        self.engine = engine
        self.instance_id = instance_id or f"taskward-{uuid4().hex[:12]}"
        self.lock_ttl = lock_ttl
        self._clock = clock
        self._sessions = taskward_session_factory(engine)
        self._pinned: dict[int, Connection] = {}
        self._pinned_guard = threading.Lock()

    @classmethod
    def from_settings(cls, settings: TaskwardSettings | None = None) -> SqlRunStore:
        """Build a store (and its engine) from ``TASKWARD_*`` settings."""
        if settings is None:
            from taskward.core.config import get_settings

            settings = get_settings()

        url = make_url(settings.database_url)
        if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

        engine = create_taskward_engine(settings.database_url, echo=settings.database_echo)
        return cls(engine, instance_id=settings.instance_id)

    @property
    def uses_advisory_locks(self) -> bool:
        return self.engine.dialect.name == "postgresql"

    def create_schema(self) -> None:
        """Create the scheduler tables if they do not exist."""
        TaskwardBase.metadata.create_all(self.engine)
        logger.info("schema_ready", dialect=self.engine.dialect.name)

    async def _call(self, operation: str, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except SQLAlchemyError as e:
            logger.error("store_operation_failed", operation=operation, error=str(e))
            raise TaskSchedulerError.database_error(operation, e) from e

    # === Run records ===

    async def find_running_task(self, task_name: str) -> TaskRun | None:
        return await self._call("find_running_task", self._find_running_task, task_name)

    def _find_running_task(self, task_name: str) -> TaskRun | None:
        with self._sessions() as session:
            row = session.scalars(
                select(ScheduledTaskRunTable)
                .where(
                    ScheduledTaskRunTable.task_name == task_name,
                    ScheduledTaskRunTable.status == TaskRunStatus.RUNNING.value,
                )
                .limit(1)
            ).first()
            return _to_run(row) if row is not None else None

    async def create_task_run(self, data: TaskRunCreate) -> TaskRun:
        return await self._call("create_task_run", self._create_task_run, data)

    def _create_task_run(self, data: TaskRunCreate) -> TaskRun:
        row = ScheduledTaskRunTable(
            id=uuid4().hex,
            task_name=data.task_name,
            status=data.status.value,
            started_at=_as_utc(data.started_at),
            advisory_lock_id=data.advisory_lock_id,
            retry_of_run_id=data.retry_of_run_id,
        )
        with self._sessions() as session:
            session.add(row)
            session.commit()
            return _to_run(row)

    async def update_task_run(self, run_id: str, data: TaskRunUpdate) -> TaskRun:
        return await self._call("update_task_run", self._update_task_run, run_id, data)

    def _update_task_run(self, run_id: str, data: TaskRunUpdate) -> TaskRun:
        with self._sessions() as session:
            row = session.get(ScheduledTaskRunTable, run_id)
            if row is None:
                raise TaskSchedulerError.run_record_not_found(run_id)
            check_status_transition(run_id, TaskRunStatus(row.status))

            for key, value in data.changes().items():
                if isinstance(value, Enum):
                    value = value.value
                elif isinstance(value, datetime):
                    value = _as_utc(value)
                setattr(row, key, value)

            session.commit()
            return _to_run(row)

    async def find_retry_task_run(self, original_run_id: str) -> TaskRun | None:
        return await self._call("find_retry_task_run", self._find_retry_task_run, original_run_id)

    def _find_retry_task_run(self, original_run_id: str) -> TaskRun | None:
        with self._sessions() as session:
            row = session.scalars(
                select(ScheduledTaskRunTable)
                .where(ScheduledTaskRunTable.retry_of_run_id == original_run_id)
                .order_by(ScheduledTaskRunTable.started_at)
                .limit(1)
            ).first()
            return _to_run(row) if row is not None else None

    async def get_recent_task_runs(self, task_name: str, since: datetime) -> list[TaskRun]:
        return await self._call("get_recent_task_runs", self._get_recent_task_runs, task_name, since)

    def _get_recent_task_runs(self, task_name: str, since: datetime) -> list[TaskRun]:
        with self._sessions() as session:
            rows = session.scalars(
                select(ScheduledTaskRunTable)
                .where(
                    ScheduledTaskRunTable.task_name == task_name,
                    ScheduledTaskRunTable.started_at >= _as_utc(since),
                )
                .order_by(ScheduledTaskRunTable.started_at.desc())
            ).all()
            return [_to_run(row) for row in rows]

    # === Locks ===

    async def acquire_task_lock(self, lock_id: int) -> bool:
        if self.uses_advisory_locks:
            return await self._call("acquire_task_lock", self._acquire_advisory_lock, lock_id)
        return await self._call("acquire_task_lock", self._acquire_table_lock, lock_id)

    async def release_task_lock(self, lock_id: int) -> None:
        if self.uses_advisory_locks:
            await self._call("release_task_lock", self._release_advisory_lock, lock_id)
        else:
            await self._call("release_task_lock", self._release_table_lock, lock_id)

    def _acquire_advisory_lock(self, lock_id: int) -> bool:
        conn = self.engine.connect()
        try:
            acquired = bool(
                conn.execute(text("SELECT pg_try_advisory_lock(:lock_id)"), {"lock_id": lock_id}).scalar()
            )
            conn.commit()
        except SQLAlchemyError:
            conn.invalidate()
            conn.close()
            raise

        if not acquired:
            conn.close()
            logger.debug("advisory_lock_busy", lock_id=lock_id)
            return False

        with self._pinned_guard:
            self._pinned[lock_id] = conn
        logger.debug("advisory_lock_acquired", lock_id=lock_id)
        return True

    def _release_advisory_lock(self, lock_id: int) -> None:
        with self._pinned_guard:
            conn = self._pinned.pop(lock_id, None)
        if conn is None:
            return

        try:
            conn.execute(text("SELECT pg_advisory_unlock(:lock_id)"), {"lock_id": lock_id})
            conn.commit()
        except SQLAlchemyError:
            # Drop the session so the server frees the lock with it.
            conn.invalidate()
            raise
        finally:
            conn.close()
        logger.debug("advisory_lock_released", lock_id=lock_id)

    def _acquire_table_lock(self, lock_id: int) -> bool:
        now = _as_utc(self.get_current_time())
        with self._sessions() as session:
            session.execute(
                delete(ScheduledTaskLockTable).where(
                    ScheduledTaskLockTable.lock_id == lock_id,
                    ScheduledTaskLockTable.expires_at < now,
                )
            )
            session.add(
                ScheduledTaskLockTable(
                    lock_id=lock_id,
                    locked_by=self.instance_id,
                    locked_at=now,
                    expires_at=now + self.lock_ttl,
                )
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.debug("table_lock_busy", lock_id=lock_id)
                return False

        logger.debug("table_lock_acquired", lock_id=lock_id)
        return True

    def _release_table_lock(self, lock_id: int) -> None:
        with self._sessions() as session:
            session.execute(
                delete(ScheduledTaskLockTable).where(
                    ScheduledTaskLockTable.lock_id == lock_id,
                    ScheduledTaskLockTable.locked_by == self.instance_id,
                )
            )
            session.commit()

    # === Clock / lifecycle ===

    def get_current_time(self) -> datetime:
        if self._clock is not None:
            return self._clock()
        return datetime.now(UTC)

    async def close(self) -> None:
        for lock_id in list(self._pinned):
            try:
                await self.release_task_lock(lock_id)
            except TaskSchedulerError:
                logger.warning("lock_release_on_close_failed", lock_id=lock_id)
        await asyncio.to_thread(self.engine.dispose)
