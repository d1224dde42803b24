"""
Immutable snapshots of tickets and articles.

WHAT: Frozen pydantic copies of the objects a notification talks about.

WHY: A trigger fires for one event. Later writes in the same batch (or
articles created after the event) must not leak into the notification,
so the rule engine copies ticket and article once when the batch starts
and hands only these copies to templates, recipient resolvers and the
notifier.

HOW: from_attributes=True lets pydantic read the loaded ORM objects
directly, including their selectin-loaded relationships.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from helpdesk.models.article import ArticleSender, TicketArticle
from helpdesk.models.ticket import StateType, Ticket


class Snapshot(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)


class OrganizationSnapshot(Snapshot):
    id: int
    name: str
    shared: bool


class UserSnapshot(Snapshot):
    id: int
    login: str
    firstname: str = ""
    lastname: str = ""
    fullname: str = ""
    email: Optional[str] = None
    mobile: Optional[str] = None
    active: bool = True
    organization_id: Optional[int] = None


class GroupSnapshot(Snapshot):
    id: int
    name: str
    email_address: Optional[str] = None


class StateSnapshot(Snapshot):
    id: int
    name: str
    state_type: StateType


class PrioritySnapshot(Snapshot):
    id: int
    name: str


class TicketSnapshot(Snapshot):
    id: int
    number: str
    title: str
    state_id: int
    priority_id: int
    group_id: int
    owner_id: Optional[int] = None
    customer_id: int
    organization_id: Optional[int] = None
    pending_time: Optional[datetime] = None
    merged_into_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    state: StateSnapshot
    priority: PrioritySnapshot
    group: GroupSnapshot
    owner: Optional[UserSnapshot] = None
    customer: UserSnapshot
    organization: Optional[OrganizationSnapshot] = None


class ArticleSnapshot(Snapshot):
    id: int
    ticket_id: int
    sender: ArticleSender
    from_: Optional[str] = None
    to: Optional[str] = None
    cc: Optional[str] = None
    reply_to: Optional[str] = None
    subject: Optional[str] = None
    message_id: Optional[str] = None
    body: str = ""
    content_type: str = "text/plain"
    internal: bool = False
    created_by_id: Optional[int] = None
    created_at: datetime


class NotificationObjects(Snapshot):
    """
    The ticket and article a batch of actions was triggered for.

    article is None when the ticket has no articles yet.
    """

    ticket: TicketSnapshot
    article: Optional[ArticleSnapshot] = None

    @classmethod
    def capture(cls, ticket: Ticket, article: Optional[TicketArticle] = None) -> "NotificationObjects":
        """Copy a loaded ticket and article into a snapshot."""
        return cls(
            ticket=TicketSnapshot.model_validate(ticket),
            article=ArticleSnapshot.model_validate(article) if article is not None else None,
        )
