"""
Content-addressed attachment storage.

WHAT: Stores attachment payloads once per SHA-256 digest and counts how
many attachment records use each payload.

WHY: Ingesting the same mail twice must not store its attachments twice,
and destroying one of the tickets must not remove a payload the other
ticket still uses.

HOW:
- add() reuses the StoreFile with the same digest (ref_count + 1) or
  creates StoreFile + StoreContent (ref_count = 1)
- remove_for() deletes Store rows and decrements their StoreFile; at zero
  the payload (StoreContent) and the StoreFile are deleted
"""

import hashlib
import logging
from typing import Iterable, List, Optional, Dict, Any

from sqlalchemy import select, delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.models.store import Store, StoreContent, StoreFile

logger = logging.getLogger(__name__)


def calculate_checksum(data: bytes) -> str:
    """Calculate SHA-256 checksum of a payload."""
    return hashlib.sha256(data).hexdigest()


class AttachmentStore:
    """
    Reference-counted attachment store on the current session.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _file_by_sha(self, sha: str) -> Optional[StoreFile]:
        result = await self.session.execute(select(StoreFile).where(StoreFile.sha == sha))
        return result.scalar_one_or_none()

    async def _create_file(self, sha: str, data: bytes) -> StoreFile:
        try:
            async with self.session.begin_nested():
                store_file = StoreFile(sha=sha, size=len(data), ref_count=0)
                self.session.add(store_file)
                await self.session.flush()
                self.session.add(StoreContent(store_file_id=store_file.id, data=data))
                await self.session.flush()
        except IntegrityError:
            # Another transaction stored the same content first.
            store_file = await self._file_by_sha(sha)
            if store_file is None:
                raise
            logger.debug(f"Payload {sha[:12]} stored concurrently, reusing it")
            return store_file

        logger.debug(f"Stored new payload {sha[:12]} ({len(data)} bytes)")
        return store_file

    async def _adjust_ref_count(self, store_file: StoreFile, delta: int) -> Optional[int]:
        """
        Change ref_count in SQL and return the new value.

        Returns None if the StoreFile no longer exists.
        """
        result = await self.session.execute(
            update(StoreFile)
            .where(StoreFile.id == store_file.id)
            .values(ref_count=StoreFile.ref_count + delta)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        await self.session.refresh(store_file, attribute_names=["ref_count"])
        return store_file.ref_count

    async def add(
        self,
        object_type: str,
        o_id: int,
        filename: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        preferences: Optional[Dict[str, Any]] = None,
        created_by_id: Optional[int] = None,
    ) -> Store:
        """
        Attach a payload to an object.

        Args:
            object_type: Owner type, e.g. "Ticket::Article"
            o_id: Owner id
            filename: Original file name
            data: Payload bytes
            content_type: MIME type
            preferences: Extra metadata (Content-ID, inline flag, ...)
            created_by_id: Acting user

        Returns:
            The new Store row with its StoreFile loaded
        """
        sha = calculate_checksum(data)
        store_file = await self._file_by_sha(sha)
        if store_file is None:
            store_file = await self._create_file(sha, data)

        if await self._adjust_ref_count(store_file, 1) is None:
            # Released by a concurrent remove between lookup and increment.
            self.session.expunge(store_file)
            store_file = await self._create_file(sha, data)
            await self._adjust_ref_count(store_file, 1)

        store = Store(
            object_type=object_type,
            o_id=o_id,
            store_file_id=store_file.id,
            file=store_file,
            filename=filename,
            content_type=content_type,
            preferences=preferences or {},
            created_by_id=created_by_id,
        )
        self.session.add(store)
        await self.session.flush()
        return store

    async def list_for(self, object_type: str, o_id: int) -> List[Store]:
        """Attachments of one object, ordered by id."""
        result = await self.session.execute(
            select(Store)
            .where(Store.object_type == object_type, Store.o_id == o_id)
            .order_by(Store.id)
        )
        return list(result.scalars().all())

    async def content(self, store: Store) -> bytes:
        """Payload bytes of an attachment."""
        result = await self.session.execute(
            select(StoreContent.data).where(StoreContent.store_file_id == store.store_file_id)
        )
        return result.scalar_one()

    async def remove_for(self, object_type: str, o_ids: Iterable[int]) -> int:
        """
        Delete all attachments of the given objects.

        Payloads still referenced by other attachments are kept. The
        decrement happens in SQL, so concurrent removals of attachments
        sharing a payload each see the other's decrement.

        Args:
            object_type: Owner type
            o_ids: Owner ids

        Returns:
            Number of deleted Store rows
        """
        o_ids = list(o_ids)
        if not o_ids:
            return 0

        result = await self.session.execute(
            select(Store).where(Store.object_type == object_type, Store.o_id.in_(o_ids))
        )
        stores = list(result.scalars().all())

        for store in stores:
            store_file = store.file
            await self.session.delete(store)
            await self.session.flush()

            remaining = await self._adjust_ref_count(store_file, -1)
            if remaining is not None and remaining <= 0:
                await self.session.execute(
                    delete(StoreContent).where(StoreContent.store_file_id == store_file.id)
                )
                await self.session.delete(store_file)
                await self.session.flush()
                logger.debug(f"Released payload {store_file.sha[:12]}")

        return len(stores)
