"""
User model.

WHY: Users are agents, customers or admins. Agents reach tickets through
per-group access levels, customers through being the ticket customer or
through a shared organization.
"""

import enum
from typing import Dict, List, Optional

from sqlalchemy import Column, Integer, String, Enum, ForeignKey, Boolean, UniqueConstraint
from sqlalchemy.orm import relationship

from helpdesk.models.base import Base, TimestampMixin, PrimaryKeyMixin


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    WHY: Enum ensures only valid roles can be assigned.
    """

    ADMIN = "ADMIN"
    AGENT = "AGENT"
    CUSTOMER = "CUSTOMER"


class AccessLevel(str, enum.Enum):
    """
    Per-group access levels.

    FULL implies every other level. The other levels only grant
    themselves.
    """

    READ = "read"
    CREATE = "create"
    CHANGE = "change"
    OVERVIEW = "overview"
    FULL = "full"


class User(Base, PrimaryKeyMixin, TimestampMixin):
    """
    User model for agents, customers and admins.
    """

    __tablename__ = "users"

    login = Column(String(255), unique=True, index=True, nullable=False)
    firstname = Column(String(150), nullable=False, default="")
    lastname = Column(String(150), nullable=False, default="")
    email = Column(String(255), index=True, nullable=True)
    mobile = Column(String(100), nullable=True)

    role = Column(Enum(UserRole, name="userrole"), nullable=False, default=UserRole.CUSTOMER)

    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True, index=True)

    active = Column(Boolean, default=True, nullable=False)

    # Relationships
    # WHY: selectin loading keeps these usable in async code without
    # implicit IO; the access policy reads both.
    organization = relationship("Organization", lazy="selectin")
    group_accesses = relationship(
        "UserGroupAccess",
        back_populates="user",
        order_by="UserGroupAccess.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, login={self.login}, role={self.role})>"

    @property
    def fullname(self) -> str:
        return f"{self.firstname} {self.lastname}".strip()

    @property
    def is_customer(self) -> bool:
        return self.role == UserRole.CUSTOMER

    @property
    def is_agent(self) -> bool:
        return self.role in (UserRole.AGENT, UserRole.ADMIN)

    @property
    def group_names_access_map(self) -> Dict[str, List[str]]:
        """Group name → granted access levels."""
        access_map: Dict[str, List[str]] = {}
        for grant in self.group_accesses:
            access_map.setdefault(grant.group.name, []).append(grant.access.value)
        return access_map

    def group_access_levels(self, group_id: Optional[int]) -> List[AccessLevel]:
        """Access levels granted on one group."""
        if group_id is None:
            return []
        return [grant.access for grant in self.group_accesses if grant.group_id == group_id]


class UserGroupAccess(Base, PrimaryKeyMixin):
    """
    One access level of one user on one group.
    """

    __tablename__ = "user_group_accesses"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    access = Column(Enum(AccessLevel, name="accesslevel"), nullable=False)

    user = relationship("User", back_populates="group_accesses")
    group = relationship("Group", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("user_id", "group_id", "access", name="uq_user_group_access"),
    )

    def __repr__(self) -> str:
        return f"<UserGroupAccess(user_id={self.user_id}, group_id={self.group_id}, access={self.access})>"
