"""
Ticket merge.

WHAT: Merges a source ticket into a target ticket.

WHY: Duplicate tickets about the same case are folded into one. The
source survives as a "merged" stub pointing at the target; its links
and (optionally) its articles move over.

HOW:
1. Reject self-merges, then lock both ticket rows and reject unknown
   targets and tickets that were merged already, before anything is
   written
2. In one SAVEPOINT: rewrite links in place, move articles, set the
   source state to merged with merged_into_id, record history on both
3. Any failure rolls the SAVEPOINT back, so no partial merge is visible
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core.exceptions import AlreadyMergedError, SelfMergeError
from helpdesk.dao.history import HistoryDAO
from helpdesk.dao.link import LinkDAO
from helpdesk.dao.ticket import ArticleDAO, TicketDAO, TicketStateDAO
from helpdesk.models.history import HistoryType
from helpdesk.models.ticket import StateType, Ticket

logger = logging.getLogger(__name__)


class MergeCoordinator:
    """
    Applies ticket merges on the current session.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.tickets = TicketDAO(session)
        self.links = LinkDAO(session)
        self.articles = ArticleDAO(session)
        self.history = HistoryDAO(session)

    async def merge_to(
        self,
        source: Ticket,
        target_ticket_id: int,
        user_id: Optional[int] = None,
        move_articles: bool = True,
    ) -> Ticket:
        """
        Merge source into the ticket with id target_ticket_id.

        Args:
            source: Ticket being merged away
            target_ticket_id: Surviving ticket
            user_id: Acting user
            move_articles: Move the source's articles to the target

        Returns:
            The target ticket

        Raises:
            SelfMergeError: If source and target are the same ticket
            TicketNotFoundError: If the target does not exist
            AlreadyMergedError: If the target or the source has been merged already
        """
        if target_ticket_id == source.id:
            raise SelfMergeError(ticket_id=source.id)

        # Rows stay locked until the enclosing transaction ends. Locking in
        # id order makes opposite merges (A into B, B into A) wait for each
        # other, so the second one sees the first as merged.
        locked = {}
        for ticket_id in sorted((source.id, target_ticket_id)):
            locked[ticket_id] = await self.tickets.get_or_raise(ticket_id, for_update=True)
        target = locked[target_ticket_id]

        if target.is_merged:
            raise AlreadyMergedError(
                ticket_id=target.id,
                merged_into_id=target.merged_into_id,
            )
        if source.is_merged:
            raise AlreadyMergedError(
                f"Ticket {source.number} is already merged into ticket {source.merged_into_id}",
                ticket_id=source.id,
                merged_into_id=source.merged_into_id,
            )

        merged_state = await TicketStateDAO(self.session).get_by_type(StateType.MERGED)

        async with self.session.begin_nested():
            rewritten = await self.links.reassign("Ticket", source.id, target.id)

            moved = 0
            if move_articles:
                moved = await self.articles.move_to_ticket(source.id, target.id)

            await self.tickets.update(source, {"state_id": merged_state.id}, updated_by_id=user_id)
            source.merged_into_id = target.id
            source.pending_time = None
            await self.session.flush()

            await self.history.add(
                "Ticket",
                source.id,
                HistoryType.MERGED_INTO,
                value_from=source.number,
                value_to=target.number,
                related_o_id=target.id,
                created_by_id=user_id,
            )
            await self.history.add(
                "Ticket",
                target.id,
                HistoryType.RECEIVED_MERGE,
                value_from=source.number,
                value_to=target.number,
                related_o_id=source.id,
                created_by_id=user_id,
            )

        logger.info(
            f"Merged ticket {source.number} into {target.number}: "
            f"{rewritten} links rewritten, {moved} articles moved"
        )
        return target
