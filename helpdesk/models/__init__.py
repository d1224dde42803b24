"""
Database models package.

WHY: Importing every model here registers all tables on Base.metadata,
so create_all() and the relationship string lookups see the full schema.
"""

from helpdesk.models.base import Base, TimestampMixin, PrimaryKeyMixin, ObjectReferenceMixin
from helpdesk.models.organization import Organization
from helpdesk.models.group import Group
from helpdesk.models.user import User, UserRole, UserGroupAccess, AccessLevel
from helpdesk.models.ticket import (
    Ticket,
    TicketState,
    TicketPriority,
    StateType,
    PENDING_STATE_TYPES,
    DEFAULT_STATES,
    DEFAULT_PRIORITIES,
)
from helpdesk.models.article import TicketArticle, ArticleSender
from helpdesk.models.link import Link, LinkType
from helpdesk.models.store import Store, StoreFile, StoreContent
from helpdesk.models.activity import ActivityStream, OnlineNotification, RecentView, ActivityLog
from helpdesk.models.history import History, HistoryType, Tag

__all__ = [
    "Base",
    "TimestampMixin",
    "PrimaryKeyMixin",
    "ObjectReferenceMixin",
    "Organization",
    "Group",
    "User",
    "UserRole",
    "UserGroupAccess",
    "AccessLevel",
    "Ticket",
    "TicketState",
    "TicketPriority",
    "StateType",
    "PENDING_STATE_TYPES",
    "DEFAULT_STATES",
    "DEFAULT_PRIORITIES",
    "TicketArticle",
    "ArticleSender",
    "Link",
    "LinkType",
    "Store",
    "StoreFile",
    "StoreContent",
    "ActivityStream",
    "OnlineNotification",
    "RecentView",
    "ActivityLog",
    "History",
    "HistoryType",
    "Tag",
]
