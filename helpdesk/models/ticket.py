"""
Ticket models.

WHAT: SQLAlchemy models for tickets, ticket states and ticket priorities.

WHY: The ticket is the root aggregate of the helpdesk core:
1. State lookup table with state types (new, open, pending, closed, merged)
2. Pending time that only exists while the ticket is pending
3. Ownership (owner agent, customer, customer organization)
4. Group as authorization scope
5. Merge target reference for merged tickets

HOW: Uses SQLAlchemy 2.0 with:
- Lookup tables for states and priorities so triggers can address them by id
- Attribute validators for NUL stripping and the pending-time invariant
- selectin relationships for everything the access policy and
  notification snapshots read
"""

from datetime import datetime
from enum import Enum
from typing import Optional, TYPE_CHECKING

from sqlalchemy import (
    Integer,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    Enum as SQLEnum,
    Index,
    inspect,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column, validates

from helpdesk.models.base import Base, utcnow, strip_null_bytes

if TYPE_CHECKING:
    from helpdesk.models.group import Group
    from helpdesk.models.organization import Organization
    from helpdesk.models.user import User


# ============================================================================
# Enums
# ============================================================================


class StateType(str, Enum):
    """
    Ticket state types.

    WHAT: Classifies concrete states ("pending close" is a PENDING_ACTION).

    WHY: Behaviour hangs off the type, not the state name:
    - PENDING_*: pending_time is meaningful
    - MERGED: ticket can no longer be a merge target
    """

    NEW = "new"
    OPEN = "open"
    PENDING_REMINDER = "pending reminder"
    PENDING_ACTION = "pending action"
    CLOSED = "closed"
    MERGED = "merged"
    REMOVED = "removed"


PENDING_STATE_TYPES = (StateType.PENDING_REMINDER, StateType.PENDING_ACTION)


# Seed data: (name, state_type)
DEFAULT_STATES = [
    ("new", StateType.NEW),
    ("open", StateType.OPEN),
    ("pending reminder", StateType.PENDING_REMINDER),
    ("pending close", StateType.PENDING_ACTION),
    ("closed", StateType.CLOSED),
    ("merged", StateType.MERGED),
    ("removed", StateType.REMOVED),
]

DEFAULT_PRIORITIES = ["1 low", "2 normal", "3 high"]


# ============================================================================
# Lookup Models
# ============================================================================


class TicketState(Base):
    """
    Ticket state lookup.
    """

    __tablename__ = "ticket_states"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(250), nullable=False, unique=True)
    state_type: Mapped[StateType] = mapped_column(
        SQLEnum(StateType, name="statetype"), nullable=False
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<TicketState(id={self.id}, name='{self.name}')>"

    @property
    def is_pending(self) -> bool:
        return self.state_type in PENDING_STATE_TYPES


class TicketPriority(Base):
    """
    Ticket priority lookup.
    """

    __tablename__ = "ticket_priorities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(250), nullable=False, unique=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<TicketPriority(id={self.id}, name='{self.name}')>"


# ============================================================================
# Ticket Model
# ============================================================================


class Ticket(Base):
    """
    Support ticket.

    WHAT: One customer-support case.

    Invariants:
    - title never contains NUL bytes
    - pending_time is None whenever the state is not a pending state
    - state_id is NOT NULL; assigning no state is rejected at flush
    """

    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    number: Mapped[str] = mapped_column(String(60), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(250), nullable=False)

    group_id: Mapped[int] = mapped_column(Integer, ForeignKey("groups.id"), nullable=False)
    priority_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("ticket_priorities.id"), nullable=False
    )
    state_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("ticket_states.id"), nullable=False
    )
    organization_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("organizations.id"), nullable=True
    )
    owner_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    customer_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)

    pending_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Set when this ticket was merged into another one
    merged_into_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("tickets.id"), nullable=True
    )

    created_by_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    updated_by_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    # Relationships
    state: Mapped["TicketState"] = relationship("TicketState", lazy="selectin")
    priority: Mapped["TicketPriority"] = relationship("TicketPriority", lazy="selectin")
    group: Mapped["Group"] = relationship("Group", lazy="selectin")
    organization: Mapped[Optional["Organization"]] = relationship(
        "Organization", lazy="selectin"
    )
    owner: Mapped[Optional["User"]] = relationship(
        "User", foreign_keys=[owner_id], lazy="selectin"
    )
    customer: Mapped["User"] = relationship(
        "User", foreign_keys=[customer_id], lazy="selectin"
    )

    __table_args__ = (
        Index("ix_tickets_group_id", "group_id"),
        Index("ix_tickets_state_id", "state_id"),
        Index("ix_tickets_owner_id", "owner_id"),
        Index("ix_tickets_customer_id", "customer_id"),
        Index("ix_tickets_organization_id", "organization_id"),
    )

    def __repr__(self) -> str:
        return f"<Ticket(id={self.id}, number='{self.number}', title='{(self.title or '')[:30]}')>"

    @validates("title")
    def _strip_title(self, key, value):
        return strip_null_bytes(value)

    @validates("state")
    def _reset_pending_time(self, key, state):
        # A null state is left for the NOT NULL constraint to reject.
        if state is not None and not state.is_pending:
            self.pending_time = None
        return state

    @property
    def is_merged(self) -> bool:
        return self.state is not None and self.state.state_type == StateType.MERGED

    @property
    def is_destroyed(self) -> bool:
        """True once the ticket row has been deleted in a flush."""
        return inspect(self).was_deleted
