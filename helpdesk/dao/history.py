"""
History and Tag Data Access Objects.

WHAT: Append-only change history and tag add/remove for any object
addressed by (object_type, o_id).
"""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.dao.base import BaseDAO
from helpdesk.models.history import History, HistoryType, Tag


class HistoryDAO(BaseDAO[History]):
    """
    Data Access Object for History entries.

    Entries are never updated or deleted here; they disappear only with
    their owner through the ticket cascade.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(History, session)

    async def add(
        self,
        object_type: str,
        o_id: int,
        history_type: HistoryType,
        attribute: Optional[str] = None,
        value_from: Optional[str] = None,
        value_to: Optional[str] = None,
        related_o_id: Optional[int] = None,
        created_by_id: Optional[int] = None,
    ) -> History:
        """
        Record one change.

        Args:
            object_type: Owner type name, e.g. "Ticket"
            o_id: Owner id
            history_type: Kind of change
            attribute: Changed attribute for UPDATED entries
            value_from: Previous value (stringified)
            value_to: New value (stringified)
            related_o_id: Other ticket of a merge
            created_by_id: Acting user

        Returns:
            Created History entry
        """
        entry = History(
            object_type=object_type,
            o_id=o_id,
            history_type=history_type,
            attribute=attribute,
            value_from=value_from,
            value_to=value_to,
            related_o_id=related_o_id,
            created_by_id=created_by_id,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_for(
        self,
        object_type: str,
        o_id: int,
        history_type: Optional[HistoryType] = None,
    ) -> List[History]:
        """History of one object, oldest first."""
        query = select(History).where(History.object_type == object_type, History.o_id == o_id)
        if history_type is not None:
            query = query.where(History.history_type == history_type)
        result = await self.session.execute(query.order_by(History.id))
        return list(result.scalars().all())


class TagDAO(BaseDAO[Tag]):
    """
    Data Access Object for Tags.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(Tag, session)

    async def _find(self, object_type: str, o_id: int, name: str) -> Optional[Tag]:
        result = await self.session.execute(
            select(Tag).where(
                Tag.object_type == object_type,
                Tag.o_id == o_id,
                Tag.name == name,
            )
        )
        return result.scalar_one_or_none()

    async def add(
        self,
        object_type: str,
        o_id: int,
        name: str,
        created_by_id: Optional[int] = None,
    ) -> bool:
        """
        Tag an object.

        Returns:
            True if the tag was added, False if it was blank or already present
        """
        name = name.strip()
        if not name or await self._find(object_type, o_id, name) is not None:
            return False

        self.session.add(
            Tag(object_type=object_type, o_id=o_id, name=name, created_by_id=created_by_id)
        )
        await self.session.flush()
        return True

    async def remove(self, object_type: str, o_id: int, name: str) -> bool:
        """
        Remove a tag from an object.

        Returns:
            True if the tag existed
        """
        tag = await self._find(object_type, o_id, name.strip())
        if tag is None:
            return False
        await self.session.delete(tag)
        await self.session.flush()
        return True

    async def list_for(self, object_type: str, o_id: int) -> List[str]:
        """Tag names of one object in the order they were added."""
        result = await self.session.execute(
            select(Tag.name)
            .where(Tag.object_type == object_type, Tag.o_id == o_id)
            .order_by(Tag.id)
        )
        return list(result.scalars().all())
