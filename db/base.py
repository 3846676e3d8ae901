"""Tool Ledger — Database Declarative Base.

Shared SQLAlchemy declarative base for all ORM models, plus the
timestamp column type every model uses.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, declared_attr
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp stored and returned in UTC.

    PostgreSQL keeps TIMESTAMPTZ; SQLite has no zone support and hands
    back naive values, which are read as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    __name__: str

    # Generate __tablename__ automatically unless a model sets its own
    @declared_attr.directive
    def __tablename__(cls) -> str:
        return cls.__name__.lower() + "s"

    def to_dict(self) -> dict[str, Any]:
        """Column values keyed by column name."""
        return {column.key: getattr(self, column.key) for column in self.__mapper__.column_attrs}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
