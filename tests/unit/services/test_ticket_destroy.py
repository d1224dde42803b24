"""
Tests for the ticket cascade destroy.

WHY: Rows that reference a ticket by (object_type, o_id) or as a link
endpoint are invisible to the database's foreign keys. Every one of them
must go with the ticket, and nothing belonging to other tickets may.
"""

import pytest
from sqlalchemy import func, select

from helpdesk.models import (
    ActivityLog,
    ActivityStream,
    History,
    Link,
    OnlineNotification,
    RecentView,
    Tag,
    Ticket,
    TicketArticle,
)
from helpdesk.services.cascade import TICKET_CASCADE, destroy_ticket
from helpdesk.services.merge import MergeCoordinator
from tests.factories import ArticleFactory, LinkFactory, OwnedRowsFactory, TicketFactory

OWNED_MODELS = (ActivityStream, OnlineNotification, Tag, History, ActivityLog, RecentView)


async def owned_count(session, model, ticket_id) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(model)
        .where(model.object_type == "Ticket", model.o_id == ticket_id)
    )
    return result.scalar_one()


async def count(session, model, *conditions) -> int:
    query = select(func.count()).select_from(model)
    if conditions:
        query = query.where(*conditions)
    return (await session.execute(query)).scalar_one()


class TestDestroyTicket:
    """Tests for destroy_ticket."""

    def test_registry_covers_owned_collections(self):
        """Every owned collection has a cascade rule."""
        models = {rule.model for rule in TICKET_CASCADE}
        assert set(OWNED_MODELS) | {TicketArticle, Link} <= models

    @pytest.mark.asyncio
    async def test_removes_owned_rows(self, db_session, ticket, agent):
        """Every polymorphic collection is emptied."""
        await OwnedRowsFactory.create(db_session, ticket, agent, count=2)
        for model in OWNED_MODELS:
            # History also holds the CREATED entry
            assert await owned_count(db_session, model, ticket.id) >= 2
        ticket_id = ticket.id

        await destroy_ticket(db_session, ticket)

        for model in OWNED_MODELS:
            assert await owned_count(db_session, model, ticket_id) == 0, model.__tablename__
        assert await count(db_session, Ticket, Ticket.id == ticket_id) == 0
        assert ticket.is_destroyed is True

    @pytest.mark.asyncio
    async def test_other_tickets_untouched(self, db_session, ticket, customer, agent):
        """Rows of other tickets survive."""
        other = await TicketFactory.create(db_session, customer=customer)
        await OwnedRowsFactory.create(db_session, ticket, agent, count=1)
        await OwnedRowsFactory.create(db_session, other, agent, count=3)
        before = {model: await owned_count(db_session, model, other.id) for model in OWNED_MODELS}

        await destroy_ticket(db_session, ticket)

        for model in OWNED_MODELS:
            assert await owned_count(db_session, model, other.id) == before[model]

    @pytest.mark.asyncio
    async def test_removes_articles(self, db_session, ticket, customer):
        """Articles go with their ticket."""
        other = await TicketFactory.create(db_session, customer=customer)
        await ArticleFactory.create(db_session, ticket)
        await ArticleFactory.create(db_session, ticket)
        await ArticleFactory.create(db_session, other)
        ticket_id = ticket.id

        deleted = await destroy_ticket(db_session, ticket)

        assert deleted["ticket_articles"] == 2
        assert await count(db_session, TicketArticle, TicketArticle.ticket_id == ticket_id) == 0
        assert await count(db_session, TicketArticle, TicketArticle.ticket_id == other.id) == 1

    @pytest.mark.asyncio
    async def test_removes_links_from_both_endpoints(self, db_session, ticket, customer):
        """Links where the ticket is source or target are removed."""
        first = await TicketFactory.create(db_session, customer=customer)
        second = await TicketFactory.create(db_session, customer=customer)
        await LinkFactory.create(db_session, ticket, first)
        await LinkFactory.create(db_session, second, ticket)
        survivor = await LinkFactory.create(db_session, first, second)

        deleted = await destroy_ticket(db_session, ticket)

        assert deleted["links"] == 2
        remaining = (await db_session.execute(select(Link.id))).scalars().all()
        assert remaining == [survivor.id]

    @pytest.mark.asyncio
    async def test_clears_merge_references(self, db_session, ticket, customer):
        """Tickets merged into the destroyed ticket lose their reference."""
        source = await TicketFactory.create(db_session, customer=customer)
        await MergeCoordinator(db_session).merge_to(source, ticket.id)

        await destroy_ticket(db_session, ticket)

        assert source.merged_into_id is None
        assert source.is_merged is True
