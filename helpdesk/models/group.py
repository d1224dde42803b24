"""
Group model.

WHY: Groups are the authorization scope of tickets. Agents get access to
tickets through per-group access levels (see UserGroupAccess).
"""

from sqlalchemy import Column, String, Text, Boolean

from helpdesk.models.base import Base, TimestampMixin, PrimaryKeyMixin


class Group(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Ticket group (queue).

    email_address is the sender used for outgoing email notifications of
    tickets in this group. Without it no email notification is sent.
    """

    __tablename__ = "groups"

    name = Column(String(160), nullable=False, unique=True, index=True)
    email_address = Column(String(255), nullable=True)
    note = Column(Text, nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Group(id={self.id}, name={self.name})>"
