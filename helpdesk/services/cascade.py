"""
Ticket cascade destroy.

WHAT: Deletes a ticket together with every row that belongs to it.

WHY: Most owned rows reference the ticket polymorphically through
(object_type, o_id) or as a link endpoint, which the database cannot
cascade. The owned collections are listed once in TICKET_CASCADE and
processed generically, so adding a collection is one registry entry.

HOW: Everything runs in one SAVEPOINT:
1. attachments of the articles and of the ticket are released
2. every registry entry is bulk-deleted
3. tickets merged into this one lose their merge reference
4. the ticket row is deleted
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Type

from sqlalchemy import and_, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from helpdesk.dao.link import LinkDAO
from helpdesk.models import (
    ActivityLog,
    ActivityStream,
    Base,
    History,
    Link,
    OnlineNotification,
    RecentView,
    Tag,
    Ticket,
    TicketArticle,
)
from helpdesk.services.attachment_store import AttachmentStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CascadeRule:
    """One owned collection: the model and how its rows select a ticket."""

    model: Type[Base]
    condition: Callable[[int], ColumnElement]


def _owned_by_ticket(model) -> CascadeRule:
    return CascadeRule(
        model,
        lambda ticket_id: and_(model.object_type == "Ticket", model.o_id == ticket_id),
    )


TICKET_CASCADE = (
    CascadeRule(TicketArticle, lambda ticket_id: TicketArticle.ticket_id == ticket_id),
    _owned_by_ticket(ActivityStream),
    _owned_by_ticket(OnlineNotification),
    _owned_by_ticket(Tag),
    _owned_by_ticket(History),
    _owned_by_ticket(ActivityLog),
    _owned_by_ticket(RecentView),
    CascadeRule(Link, lambda ticket_id: LinkDAO.endpoint_clause("Ticket", ticket_id)),
)


async def destroy_ticket(session: AsyncSession, ticket: Ticket) -> Dict[str, int]:
    """
    Delete a ticket and all rows it owns.

    Args:
        session: Session holding the ticket
        ticket: Ticket to delete

    Returns:
        Table name → number of deleted rows

    Raises:
        SQLAlchemyError: If any delete fails; nothing is deleted then
    """
    ticket_id = ticket.id
    number = ticket.number
    deleted: Dict[str, int] = {}

    async with session.begin_nested():
        article_ids = list(
            (
                await session.execute(
                    select(TicketArticle.id).where(TicketArticle.ticket_id == ticket_id)
                )
            ).scalars().all()
        )
        store = AttachmentStore(session)
        deleted["stores"] = await store.remove_for("Ticket::Article", article_ids)
        deleted["stores"] += await store.remove_for("Ticket", [ticket_id])

        for rule in TICKET_CASCADE:
            result = await session.execute(
                delete(rule.model)
                .where(rule.condition(ticket_id))
                .execution_options(synchronize_session="fetch")
            )
            deleted[rule.model.__tablename__] = result.rowcount

        await session.execute(
            update(Ticket)
            .where(Ticket.merged_into_id == ticket_id)
            .values(merged_into_id=None)
            .execution_options(synchronize_session="fetch")
        )

        await session.delete(ticket)
        await session.flush()

    logger.info(f"Destroyed ticket {number} (id={ticket_id}): {deleted}")
    return deleted
