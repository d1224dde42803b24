"""
Base model class and shared mixins for all SQLAlchemy models.

WHY: Centralizing common model functionality (timestamps, ID, polymorphic
object references) keeps every table consistent.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import DeclarativeBase


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the timezone-less DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def strip_null_bytes(value: Optional[str]) -> Optional[str]:
    """
    Remove embedded NUL characters from a string value.

    WHY: PostgreSQL rejects text containing \\x00. Inbound mail and
    trigger payloads may carry them, so string attributes are cleaned on
    write instead of failing the whole insert.
    """
    if value is None:
        return None
    return value.replace("\x00", "")


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.
    """

    pass


class TimestampMixin:
    """
    Mixin to add created_at and updated_at timestamps to models.
    """

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class PrimaryKeyMixin:
    """
    Mixin to add an integer primary key to models.
    """

    id = Column(Integer, primary_key=True, index=True)


class ObjectReferenceMixin:
    """
    Mixin for rows that belong to an arbitrary object.

    WHAT: Adds object_type ("Ticket", "Ticket::Article", ...) and o_id.

    WHY: Activity streams, histories, tags and attachments attach to
    tickets and articles alike, so they reference their owner by
    (type name, id) instead of a dedicated foreign key per owner type.
    """

    object_type = Column(String(100), nullable=False, index=True)
    o_id = Column(Integer, nullable=False, index=True)
