"""
SQLAlchemy Base for the ChantierPro compliance core.

This module provides the declarative base shared by all models, plus the
column helpers every table uses (UTC timestamps, string primary keys).

Usage:
    from src.models.base import Base, UTCDateTime, new_id, utcnow

    class MyModel(Base):
        __tablename__ = "my_table"
        ...
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator


class Base(DeclarativeBase):
    """Declarative base for all ChantierPro models."""


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return uuid.uuid4().hex


class UTCDateTime(TypeDecorator[datetime]):
    """
    Timezone-aware datetime column that always round-trips as UTC.

    SQLite drops tzinfo on storage; values read back are re-tagged as UTC so
    they compare cleanly with ``datetime.now(UTC)``.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: object) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: object) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


__all__ = ["Base", "UTCDateTime", "new_id", "utcnow"]
