"""
Ticket article model.

WHAT: Messages, notes and replies attached to a ticket.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Integer, String, Text, Boolean, DateTime, ForeignKey, Enum as SQLEnum, Index
from sqlalchemy.orm import Mapped, mapped_column, validates

from helpdesk.models.base import Base, utcnow, strip_null_bytes


class ArticleSender(str, Enum):
    """Who wrote the article."""

    AGENT = "Agent"
    CUSTOMER = "Customer"
    SYSTEM = "System"


class TicketArticle(Base):
    """
    Article (message) on a ticket.

    Text fields are NUL-stripped on write like the ticket title.
    """

    __tablename__ = "ticket_articles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tickets.id"), nullable=False
    )

    sender: Mapped[ArticleSender] = mapped_column(
        SQLEnum(ArticleSender, name="articlesender"),
        default=ArticleSender.AGENT,
        nullable=False,
    )

    # "from" is a reserved word in Python, not in the table
    from_: Mapped[Optional[str]] = mapped_column("from", String(3000), nullable=True)
    to: Mapped[Optional[str]] = mapped_column(String(3000), nullable=True)
    cc: Mapped[Optional[str]] = mapped_column(String(3000), nullable=True)
    reply_to: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    subject: Mapped[Optional[str]] = mapped_column(String(3000), nullable=True)
    message_id: Mapped[Optional[str]] = mapped_column(String(3000), nullable=True)

    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    content_type: Mapped[str] = mapped_column(String(20), nullable=False, default="text/plain")

    internal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_by_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_ticket_articles_ticket_id", "ticket_id"),
        Index("ix_ticket_articles_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<TicketArticle(id={self.id}, ticket_id={self.ticket_id}, sender={self.sender})>"

    @validates("from_", "to", "cc", "reply_to", "subject", "body")
    def _strip_text(self, key, value):
        return strip_null_bytes(value)
