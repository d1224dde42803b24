"""
Activity models.

WHAT: Per-object activity records owned by a ticket:
ActivityStream, OnlineNotification, RecentView and ActivityLog.

WHY: These rows reference their owner through (object_type, o_id), so the
database cannot cascade them. Ticket destruction removes them through the
cascade registry in helpdesk.services.cascade.
"""

from sqlalchemy import Column, Integer, String, Boolean

from helpdesk.models.base import Base, TimestampMixin, PrimaryKeyMixin, ObjectReferenceMixin


class ActivityStream(Base, PrimaryKeyMixin, TimestampMixin, ObjectReferenceMixin):
    """Entry of the agents' activity stream (ticket created, updated, ...)."""

    __tablename__ = "activity_streams"

    activity_type = Column(String(50), nullable=False)
    group_id = Column(Integer, nullable=True)
    created_by_id = Column(Integer, nullable=True)


class OnlineNotification(Base, PrimaryKeyMixin, TimestampMixin, ObjectReferenceMixin):
    """In-app notification of one user about an object."""

    __tablename__ = "online_notifications"

    notification_type = Column(String(50), nullable=False)
    user_id = Column(Integer, nullable=False, index=True)
    seen = Column(Boolean, nullable=False, default=False)
    created_by_id = Column(Integer, nullable=True)


class RecentView(Base, PrimaryKeyMixin, TimestampMixin, ObjectReferenceMixin):
    """A user opened the object."""

    __tablename__ = "recent_views"

    created_by_id = Column(Integer, nullable=False, index=True)


class ActivityLog(Base, PrimaryKeyMixin, TimestampMixin, ObjectReferenceMixin):
    """Scored agent activity (first response, ticket closed, ...)."""

    __tablename__ = "activity_logs"

    user_id = Column(Integer, nullable=False, index=True)
    action = Column(String(100), nullable=False)
    score = Column(Integer, nullable=False, default=0)
