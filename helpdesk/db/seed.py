"""
Default data every helpdesk database needs.

WHAT: Ticket states, priorities, the system user and the default group.

WHY: Triggers refer to states and priorities by id and the rule engine
falls back to the system user as actor, so these rows must exist before
any ticket is written.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core.config import settings
from helpdesk.models import (
    Group,
    TicketPriority,
    TicketState,
    User,
    UserRole,
    DEFAULT_PRIORITIES,
    DEFAULT_STATES,
)

logger = logging.getLogger(__name__)


async def seed_defaults(session: AsyncSession) -> None:
    """
    Insert missing default rows. Safe to call repeatedly.

    Args:
        session: Async database session (flushed, not committed)
    """
    existing_states = set((await session.execute(select(TicketState.name))).scalars().all())
    for name, state_type in DEFAULT_STATES:
        if name not in existing_states:
            session.add(TicketState(name=name, state_type=state_type, active=True))

    existing_priorities = set(
        (await session.execute(select(TicketPriority.name))).scalars().all()
    )
    for name in DEFAULT_PRIORITIES:
        if name not in existing_priorities:
            session.add(TicketPriority(name=name, active=True))

    if await session.get(User, settings.SYSTEM_USER_ID) is None:
        session.add(
            User(
                id=settings.SYSTEM_USER_ID,
                login="-",
                firstname="-",
                lastname="",
                role=UserRole.ADMIN,
                active=False,
            )
        )

    group = await session.execute(select(Group).where(Group.name == settings.DEFAULT_GROUP_NAME))
    if group.scalar_one_or_none() is None:
        session.add(Group(name=settings.DEFAULT_GROUP_NAME, active=True))

    await session.flush()
    logger.info("Default helpdesk data seeded")
