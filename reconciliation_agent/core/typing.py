"""
Type helpers for SQLAlchemy/SQLModel compatibility with type checkers.

SQLModel fields are declared with Python types (e.g., `status: str`) but at the
class level they're actually InstrumentedAttribute descriptors with SQLAlchemy
column methods like .desc(), .in_(), .is_(), etc.

Type checkers (mypy, ty) see them as plain Python types and report errors when
column methods are called. This module provides helpers to bridge that gap.
"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from sqlalchemy.orm.attributes import InstrumentedAttribute

T = TypeVar("T")


def col(attr: T) -> "InstrumentedAttribute[T]":
    """
    Type helper for SQLAlchemy column operations in queries.

    At runtime this is a no-op - it just returns the input unchanged.

    Usage:
        select(Order).order_by(col(Order.created_at).asc())
    """
    return attr  # type: ignore[return-value]


def utc_now() -> datetime:
    """
    Get current UTC time (timezone-aware).

    Use as default_factory in SQLModel fields.
    """
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """
    Normalize a datetime read back from the datastore to aware UTC.

    SQLite returns naive datetimes; PostgreSQL timestamptz returns aware ones.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def safe_getattr(obj: Any, name: str, default: T = None) -> T:  # type: ignore[assignment]
    """
    Type-safe getattr for dynamically accessed attributes.

    Usage:
        count = safe_getattr(result, "rowcount", 0)
    """
    return getattr(obj, name, default)


__all__ = [
    "col",
    "utc_now",
    "as_utc",
    "safe_getattr",
]
