"""
User and group Data Access Objects.

WHAT: Lookups and writes for the actors of the helpdesk.

WHY: Besides plain CRUD, two queries matter to the ticket core:
- customers found (or created) by email address during ingestion
- agents with full access to a group, the "ticket_agents" recipients
"""

from email.utils import parseaddr
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core.exceptions import (
    GroupNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from helpdesk.dao.base import BaseDAO
from helpdesk.models.group import Group
from helpdesk.models.user import User, UserRole, UserGroupAccess, AccessLevel


class UserDAO(BaseDAO[User]):
    """
    Data Access Object for User operations.
    """

    not_found_error = UserNotFoundError

    def __init__(self, session: AsyncSession):
        super().__init__(User, session)

    async def create_user(
        self,
        login: str,
        email: Optional[str] = None,
        firstname: str = "",
        lastname: str = "",
        role: UserRole = UserRole.CUSTOMER,
        organization_id: Optional[int] = None,
        active: bool = True,
    ) -> User:
        """
        Create a user.

        Args:
            login: Unique login
            email: Email address (lowercased)
            firstname: First name
            lastname: Last name
            role: ADMIN, AGENT or CUSTOMER
            organization_id: Optional organization
            active: Whether the user is active

        Returns:
            Created User
        """
        return await self.create(
            login=login,
            email=email.lower() if email else None,
            firstname=firstname,
            lastname=lastname,
            role=role,
            organization_id=organization_id,
            active=active,
        )

    async def get_by_email(self, email: str) -> Optional[User]:
        """Find a user by email address, case-insensitively."""
        result = await self.session.execute(
            select(User)
            .where(func.lower(User.email) == email.strip().lower())
            .order_by(User.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_or_create_customer(self, address: str) -> User:
        """
        Resolve a mail address ("Name <mail@example.com>") to a user.

        Unknown addresses become new customers named after the display name.

        Raises:
            ValidationError: If the address has no mailbox part
        """
        display_name, email = parseaddr(address or "")
        if not email or "@" not in email:
            raise ValidationError("Sender address is missing or invalid", address=address)

        user = await self.get_by_email(email)
        if user is not None:
            return user

        firstname, _, lastname = display_name.strip().partition(" ")
        return await self.create_user(
            login=email.lower(),
            email=email,
            firstname=firstname,
            lastname=lastname,
            role=UserRole.CUSTOMER,
        )

    async def get_many(self, user_ids: Iterable[int]) -> List[User]:
        """Load users by id, keeping the order of user_ids."""
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return []
        result = await self.session.execute(select(User).where(User.id.in_(ids)))
        by_id = {user.id: user for user in result.scalars().all()}
        return [by_id[user_id] for user_id in ids if user_id in by_id]

    async def set_group_names_access_map(
        self,
        user: User,
        access_map: Dict[str, Union[str, List[str]]],
    ) -> User:
        """
        Replace all group grants of a user.

        Args:
            user: User to update
            access_map: Group name → level or list of levels,
                e.g. {"Users": "full"} or {"Sales": ["read", "change"]}

        Returns:
            The user with group_accesses reloaded

        Raises:
            GroupNotFoundError: If a group name doesn't exist
            ValidationError: If a level is unknown
        """
        group_dao = GroupDAO(self.session)
        grants = []
        for group_name, levels in access_map.items():
            group = await group_dao.get_by_name(group_name)
            if isinstance(levels, str):
                levels = [levels]
            for level in levels:
                try:
                    grants.append((group, AccessLevel(level)))
                except ValueError as exc:
                    raise ValidationError(
                        f"Unknown access level '{level}'", group=group_name
                    ) from exc

        await self.session.refresh(user, attribute_names=["group_accesses"])
        user.group_accesses.clear()
        # Old grants must be gone before equal ones are inserted again.
        await self.session.flush()

        for group, level in grants:
            user.group_accesses.append(UserGroupAccess(group=group, group_id=group.id, access=level))
        await self.session.flush()
        await self.session.refresh(user, attribute_names=["group_accesses"])
        return user

    async def agent_ids_with_group_access(
        self,
        group_id: int,
        level: AccessLevel = AccessLevel.FULL,
    ) -> List[int]:
        """
        Ids of active agents holding a level on a group, ordered by login.

        FULL grants satisfy every level.
        """
        levels = {AccessLevel.FULL, level}
        result = await self.session.execute(
            select(User.id)
            .join(UserGroupAccess, UserGroupAccess.user_id == User.id)
            .where(
                UserGroupAccess.group_id == group_id,
                UserGroupAccess.access.in_(levels),
                User.active.is_(True),
                User.role.in_([UserRole.AGENT, UserRole.ADMIN]),
            )
            .distinct()
            .order_by(User.login)
        )
        return list(result.scalars().all())


class GroupDAO(BaseDAO[Group]):
    """
    Data Access Object for Group operations.
    """

    not_found_error = GroupNotFoundError

    def __init__(self, session: AsyncSession):
        super().__init__(Group, session)

    async def get_by_name(self, name: str) -> Group:
        """
        Raises:
            GroupNotFoundError: If no group has this name
        """
        group = await self.get_by_field("name", name)
        if group is None:
            raise GroupNotFoundError(f"Group '{name}' not found", name=name)
        return group
