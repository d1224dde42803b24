"""
Link Data Access Object.

WHAT: Create, list and rewrite links between objects.

WHY: A merge must redirect every link of the merged ticket to the
surviving ticket. Links are rewritten in place, so their ids, creation
times and the total link count survive the merge.
"""

import logging
from typing import List

from sqlalchemy import select, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.dao.base import BaseDAO
from helpdesk.models.link import Link, LinkType

logger = logging.getLogger(__name__)


class LinkDAO(BaseDAO[Link]):
    """
    Data Access Object for Link operations.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(Link, session)

    async def add(
        self,
        source_value: int,
        target_value: int,
        link_type: LinkType = LinkType.NORMAL,
        source_object: str = "Ticket",
        target_object: str = "Ticket",
    ) -> Link:
        """
        Link two objects.

        Args:
            source_value: Id of the source object
            target_value: Id of the target object
            link_type: normal, parent or child
            source_object: Source object name
            target_object: Target object name

        Returns:
            Created Link
        """
        return await self.create(
            link_type=link_type,
            source_object=source_object,
            source_value=source_value,
            target_object=target_object,
            target_value=target_value,
        )

    @staticmethod
    def endpoint_clause(object_name: str, value: int):
        return or_(
            and_(Link.source_object == object_name, Link.source_value == value),
            and_(Link.target_object == object_name, Link.target_value == value),
        )

    async def list_for_object(self, object_name: str, value: int) -> List[Link]:
        """Links where the object is either endpoint, ordered by id."""
        result = await self.session.execute(
            select(Link).where(self.endpoint_clause(object_name, value)).order_by(Link.id)
        )
        return list(result.scalars().all())

    async def count_for_object(self, object_name: str, value: int) -> int:
        return len(await self.list_for_object(object_name, value))

    async def reassign(self, object_name: str, old_value: int, new_value: int) -> int:
        """
        Point every endpoint (object_name, old_value) at new_value in place.

        Links keep their ids and no link is added or removed, so the total
        number of links is unchanged. A link between the two objects ends
        up connecting new_value with itself.

        Args:
            object_name: Endpoint object name, e.g. "Ticket"
            old_value: Id being replaced
            new_value: Replacement id

        Returns:
            Number of rewritten links
        """
        affected = await self.list_for_object(object_name, old_value)

        for link in affected:
            if link.source_object == object_name and link.source_value == old_value:
                link.source_value = new_value
            if link.target_object == object_name and link.target_value == old_value:
                link.target_value = new_value

        await self.session.flush()
        logger.debug(f"{len(affected)} links of {object_name}#{old_value} moved to #{new_value}")
        return len(affected)
