"""
Declarative base and shared column types for the SQL store.

Constraint names follow a fixed convention so that schema diffs between
SQLite (tests) and server databases stay readable.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import DateTime, MetaData
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)


class UTCDateTime(TypeDecorator):
    """
    DateTime column that reads back timezone-aware UTC values.

    Values are written as naive UTC because SQLite has no timezone support
    and would otherwise compare mixed offsets as text.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)


class ModelBase(DeclarativeBase):
    """Base class of every table row."""

    metadata = metadata

    def update(self, values: Dict[str, Any]) -> None:
        """Copy ``values`` onto mapped attributes, ignoring unknown keys."""
        for key, value in values.items():
            if hasattr(self, key):
                setattr(self, key, value)
