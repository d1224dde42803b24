"""
Organization model.

WHY: Organizations group customer users. When an organization is shared,
its customers can see each other's tickets.
"""

from sqlalchemy import Column, String, Text, Boolean

from helpdesk.models.base import Base, TimestampMixin, PrimaryKeyMixin


class Organization(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Organization a customer user belongs to.

    Each organization has:
    - Basic info (name, note)
    - shared: customers of the organization see all of its tickets
    - active flag for soft deactivation
    """

    __tablename__ = "organizations"

    name = Column(String(255), nullable=False, index=True)
    note = Column(Text, nullable=True)

    # WHY: Defaults to True. Turning it off restricts every customer to
    # tickets where they are the customer themselves.
    shared = Column(Boolean, nullable=False, default=True)

    active = Column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name}, shared={self.shared})>"
