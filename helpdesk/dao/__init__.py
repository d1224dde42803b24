"""
Data Access Object (DAO) package.

WHY: DAOs provide a clean separation between database operations and business logic,
making the codebase more testable and maintainable.
"""

from helpdesk.dao.base import BaseDAO
from helpdesk.dao.user import UserDAO, GroupDAO
from helpdesk.dao.history import HistoryDAO, TagDAO
from helpdesk.dao.link import LinkDAO
from helpdesk.dao.ticket import (
    TicketDAO,
    ArticleDAO,
    TicketStateDAO,
    TicketPriorityDAO,
    MUTABLE_ATTRIBUTES,
)

__all__ = [
    "BaseDAO",
    "UserDAO",
    "GroupDAO",
    "HistoryDAO",
    "TagDAO",
    "LinkDAO",
    "TicketDAO",
    "ArticleDAO",
    "TicketStateDAO",
    "TicketPriorityDAO",
    "MUTABLE_ATTRIBUTES",
]
