"""Declarative base and type-map for taskward ORM tables.

Uses SQLAlchemy 2.0 ``DeclarativeBase`` with a ``type_annotation_map``
so ``Mapped[...]`` annotations resolve to portable column types.
"""

from __future__ import annotations

import datetime

from sqlalchemy import BigInteger, DateTime, Text
from sqlalchemy.orm import DeclarativeBase


class TaskwardBase(DeclarativeBase):
    """Shared declarative base for every taskward table.

    * ``str``   → ``Text``
    * ``int``   → ``BigInteger``  (lock ids are 32-bit, durations can exceed it)
    * ``datetime.datetime`` → ``DateTime(timezone=True)``

    SQLite drops the offset on the way in; the store re-attaches UTC when
    reading rows back.
    """

    type_annotation_map = {
        str: Text,
        int: BigInteger,
        datetime.datetime: DateTime(timezone=True),
    }
