"""SQLAlchemy 2.0 ORM layer for taskward.

Tags:
    taskward, orm, sqlalchemy

Doc-Types:
    api-reference
"""

from taskward.core.orm.base import TaskwardBase
from taskward.core.orm.session import create_taskward_engine, taskward_session_factory
from taskward.core.orm.tables import ScheduledTaskLockTable, ScheduledTaskRunTable

__all__ = [
    "ScheduledTaskLockTable",
    "ScheduledTaskRunTable",
    "TaskwardBase",
    "create_taskward_engine",
    "taskward_session_factory",
]
