"""
Unit tests for Ticket DAO.

WHAT: Tests for TicketDAO, ArticleDAO and the lookup DAOs.

WHY: Verifies that:
1. Ticket creation applies defaults and strips NUL bytes
2. The pending-time invariant holds for every update
3. A ticket without state is rejected as ValidationError
4. Updates record history
5. Selectors deduplicate tickets and honour access rules

HOW: Uses pytest-asyncio with in-memory SQLite database for isolation.
"""

import pytest
from datetime import datetime, timedelta, timezone

from helpdesk.core.exceptions import (
    StateNotFoundError,
    TicketNotFoundError,
    ValidationError,
)
from helpdesk.dao.history import HistoryDAO
from helpdesk.dao.ticket import ArticleDAO, TicketDAO, TicketStateDAO, generate_ticket_number
from helpdesk.models import HistoryType, StateType, UserRole
from tests.factories import (
    ArticleFactory,
    GroupFactory,
    OrganizationFactory,
    TicketFactory,
    UserFactory,
)


class TestTicketDAOCreate:
    """Tests for ticket creation."""

    @pytest.mark.asyncio
    async def test_create_ticket_defaults(self, db_session, default_group, customer):
        """New tickets get the default group, state "new" and priority "2 normal"."""
        ticket = await TicketDAO(db_session).create_ticket(title="Hello", customer_id=customer.id)

        assert ticket.id is not None
        assert ticket.number
        assert ticket.group.name == "Users"
        assert ticket.state.name == "new"
        assert ticket.priority.name == "2 normal"
        assert ticket.pending_time is None

    @pytest.mark.asyncio
    async def test_create_copies_customer_organization(self, db_session, customer, test_org):
        """The customer's organization is stored on the ticket."""
        ticket = await TicketFactory.create(db_session, customer=customer)
        assert ticket.organization_id == test_org.id
        assert ticket.organization.name == test_org.name

    @pytest.mark.asyncio
    async def test_create_strips_null_bytes_from_title(self, db_session, customer):
        """A title with an embedded NUL byte is stored without it."""
        ticket = await TicketDAO(db_session).create_ticket(
            title="Some title\x00 with null byte", customer_id=customer.id
        )

        fetched = await TicketDAO(db_session).get_by_id(ticket.id)
        assert fetched.title == "Some title with null byte"

    @pytest.mark.asyncio
    async def test_create_records_history(self, db_session, customer):
        """Creation is recorded in the ticket history."""
        ticket = await TicketFactory.create(db_session, customer=customer)
        entries = await HistoryDAO(db_session).list_for("Ticket", ticket.id)
        assert [entry.history_type for entry in entries] == [HistoryType.CREATED]

    @pytest.mark.asyncio
    async def test_create_rejects_pending_time_without_pending_state(self, db_session, customer):
        """pending_time cannot be given together with a non-pending state."""
        with pytest.raises(ValidationError):
            await TicketDAO(db_session).create_ticket(
                title="x",
                customer_id=customer.id,
                pending_time=datetime(2030, 1, 1),
            )

    @pytest.mark.asyncio
    async def test_create_with_pending_state_and_time(self, db_session, customer, states):
        """Pending states accept a pending_time on create."""
        ticket = await TicketDAO(db_session).create_ticket(
            title="x",
            customer_id=customer.id,
            state_id=states["pending reminder"].id,
            pending_time=datetime(2030, 1, 1, 12, 0),
        )
        assert ticket.pending_time == datetime(2030, 1, 1, 12, 0)

    def test_ticket_number_format(self):
        """Ticket numbers are a date prefix plus eight digits."""
        number = generate_ticket_number()
        assert len(number) == 16
        assert number.isdigit()

    @pytest.mark.asyncio
    async def test_get_or_raise_missing(self, db_session):
        """Unknown ids raise TicketNotFoundError."""
        with pytest.raises(TicketNotFoundError):
            await TicketDAO(db_session).get_or_raise(99999)


class TestTicketDAOUpdate:
    """Tests for validated updates."""

    @pytest.mark.asyncio
    async def test_pending_time_reset_on_non_pending_state(self, db_session, ticket, states):
        """Leaving a pending state clears pending_time."""
        dao = TicketDAO(db_session)
        await dao.update(
            ticket,
            {"state_id": states["pending reminder"].id, "pending_time": datetime(2030, 1, 1)},
        )
        assert ticket.pending_time == datetime(2030, 1, 1)

        await dao.update(ticket, {"state_id": states["open"].id})

        assert ticket.state.name == "open"
        assert ticket.pending_time is None

    @pytest.mark.asyncio
    async def test_pending_time_kept_for_other_pending_state(self, db_session, ticket, states):
        """Switching between pending states keeps pending_time."""
        dao = TicketDAO(db_session)
        await dao.update(
            ticket,
            {"state_id": states["pending reminder"].id, "pending_time": datetime(2030, 1, 1)},
        )
        await dao.update(ticket, {"state_id": states["pending close"].id})

        assert ticket.state.state_type == StateType.PENDING_ACTION
        assert ticket.pending_time == datetime(2030, 1, 1)

    @pytest.mark.asyncio
    async def test_pending_time_rejected_for_non_pending_state(self, db_session, ticket):
        """Setting pending_time on an open ticket raises ValidationError."""
        with pytest.raises(ValidationError):
            await TicketDAO(db_session).update(ticket, {"pending_time": datetime(2030, 1, 1)})
        assert ticket.pending_time is None

    @pytest.mark.asyncio
    async def test_pending_time_accepts_iso_string(self, db_session, ticket, states):
        """pending_time is coerced from ISO strings with timezone."""
        await TicketDAO(db_session).update(
            ticket,
            {
                "state_id": states["pending reminder"].id,
                "pending_time": "2030-01-01T12:00:00+02:00",
            },
        )
        assert ticket.pending_time == datetime(2030, 1, 1, 10, 0)

    @pytest.mark.asyncio
    async def test_null_state_raises_validation_error(self, db_session, ticket):
        """A ticket without state is rejected and the old state survives."""
        state_id = ticket.state_id

        with pytest.raises(ValidationError) as exc_info:
            await TicketDAO(db_session).update(ticket, {"state_id": None})

        assert exc_info.value.message == f"Ticket {ticket.id} rejected: state_id must not be empty"
        assert exc_info.value.context["attributes"] == ["state_id"]
        # Readable without a refresh after the rejected write
        assert ticket.state_id == state_id
        assert ticket.state.name == "new"

    @pytest.mark.asyncio
    async def test_unknown_state_raises_not_found(self, db_session, ticket):
        """Unknown state ids raise StateNotFoundError."""
        with pytest.raises(StateNotFoundError):
            await TicketDAO(db_session).update(ticket, {"state_id": 9999})

    @pytest.mark.asyncio
    async def test_stringified_ids_are_coerced(self, db_session, ticket, states):
        """Ids given as strings are accepted."""
        changed = await TicketDAO(db_session).update(ticket, {"state_id": str(states["closed"].id)})

        assert changed == ["state_id"]
        assert ticket.state.name == "closed"

    @pytest.mark.asyncio
    async def test_uncoercible_id_raises(self, db_session, ticket):
        """Non-numeric ids raise ValidationError."""
        with pytest.raises(ValidationError):
            await TicketDAO(db_session).update(ticket, {"priority_id": "high"})

    @pytest.mark.asyncio
    async def test_not_writable_attribute_raises(self, db_session, ticket):
        """Only whitelisted attributes can be written."""
        with pytest.raises(ValidationError):
            await TicketDAO(db_session).update(ticket, {"number": "1"})

    @pytest.mark.asyncio
    async def test_update_title_strips_null_bytes(self, db_session, ticket):
        """Updated titles are NUL-stripped too."""
        await TicketDAO(db_session).update(ticket, {"title": "new\x00 title"})
        assert ticket.title == "new title"

    @pytest.mark.asyncio
    async def test_update_records_history(self, db_session, ticket, states, agent):
        """Each changed attribute gets an UPDATED history entry."""
        await TicketDAO(db_session).update(
            ticket,
            {"state_id": states["open"].id, "title": "Renamed"},
            updated_by_id=agent.id,
        )

        entries = await HistoryDAO(db_session).list_for("Ticket", ticket.id, HistoryType.UPDATED)
        assert {entry.attribute for entry in entries} == {"state_id", "title"}
        assert all(entry.created_by_id == agent.id for entry in entries)
        assert ticket.updated_by_id == agent.id

    @pytest.mark.asyncio
    async def test_unchanged_values_are_skipped(self, db_session, ticket):
        """Writing the current value changes nothing."""
        changed = await TicketDAO(db_session).update(ticket, {"title": ticket.title})
        assert changed == []

    @pytest.mark.asyncio
    async def test_customer_change_updates_organization(self, db_session, ticket):
        """A new customer brings their organization along."""
        other_org = await OrganizationFactory.create(db_session)
        other = await UserFactory.create(db_session, organization=other_org)

        await TicketDAO(db_session).update(ticket, {"customer_id": other.id})

        assert ticket.customer_id == other.id
        assert ticket.organization_id == other_org.id


class TestArticleDAO:
    """Tests for article queries."""

    @pytest.mark.asyncio
    async def test_latest_article(self, db_session, ticket):
        """latest_article returns the most recently created article."""
        await ArticleFactory.create(db_session, ticket, body="first")
        second = await ArticleFactory.create(db_session, ticket, body="second")

        latest = await TicketDAO(db_session).latest_article(ticket.id)
        assert latest.id == second.id

    @pytest.mark.asyncio
    async def test_article_text_null_bytes_stripped(self, db_session, ticket):
        """Article text fields are NUL-stripped."""
        article = await ArticleFactory.create(db_session, ticket, body="a\x00b", from_="x\x00@example.com")
        assert article.body == "ab"
        assert article.from_ == "x@example.com"

    @pytest.mark.asyncio
    async def test_move_to_ticket(self, db_session, ticket, customer):
        """Articles can be moved to another ticket."""
        other = await TicketFactory.create(db_session, customer=customer)
        await ArticleFactory.create(db_session, ticket)
        await ArticleFactory.create(db_session, ticket)

        moved = await ArticleDAO(db_session).move_to_ticket(ticket.id, other.id)

        assert moved == 2
        assert await ArticleDAO(db_session).list_for_ticket(ticket.id) == []
        assert len(await ArticleDAO(db_session).list_for_ticket(other.id)) == 2


class TestTicketStateDAO:
    """Tests for state lookups."""

    @pytest.mark.asyncio
    async def test_get_by_type(self, db_session):
        """The merged state is found by its type."""
        state = await TicketStateDAO(db_session).get_by_type(StateType.MERGED)
        assert state.name == "merged"

    @pytest.mark.asyncio
    async def test_get_by_name_missing(self, db_session):
        """Unknown state names raise StateNotFoundError."""
        with pytest.raises(StateNotFoundError):
            await TicketStateDAO(db_session).get_by_name("nonexistent")


class TestTicketDAOSelectors:
    """Tests for selector search."""

    @pytest.mark.asyncio
    async def test_article_matches_are_deduplicated(self, db_session, ticket):
        """A ticket with several matching articles is returned once."""
        for _ in range(3):
            await ArticleFactory.create(db_session, ticket, from_="customer@example.com")

        count, tickets = await TicketDAO(db_session).selectors(
            {"article.from": {"operator": "contains", "value": "customer@example.com"}}
        )

        assert count == 1
        assert [t.id for t in tickets] == [ticket.id]

    @pytest.mark.asyncio
    async def test_combined_ticket_and_article_conditions(self, db_session, ticket, customer):
        """Ticket and article conditions must all hold."""
        other = await TicketFactory.create(db_session, customer=customer, title="Other")
        await ArticleFactory.create(db_session, ticket, body="needle")
        await ArticleFactory.create(db_session, other, body="needle")

        count, tickets = await TicketDAO(db_session).selectors(
            {
                "ticket.title": {"operator": "starts with", "value": "printer"},
                "article.body": {"operator": "contains", "value": "needle"},
            }
        )

        assert count == 1
        assert tickets[0].id == ticket.id

    @pytest.mark.asyncio
    async def test_is_with_list_and_order(self, db_session, ticket, customer, states):
        """'is' accepts lists; results come newest first."""
        second = await TicketFactory.create(db_session, customer=customer, state_name="open")
        await TicketFactory.create(db_session, customer=customer, state_name="closed")

        count, tickets = await TicketDAO(db_session).selectors(
            {"ticket.state_id": {"operator": "is", "value": [states["new"].id, states["open"].id]}}
        )

        assert count == 2
        assert [t.id for t in tickets] == [second.id, ticket.id]

    @pytest.mark.asyncio
    async def test_is_not(self, db_session, ticket, customer, states):
        """'is not' excludes the given value."""
        await TicketFactory.create(db_session, customer=customer, state_name="closed")

        count, tickets = await TicketDAO(db_session).selectors(
            {"ticket.state_id": {"operator": "is not", "value": states["closed"].id}}
        )

        assert count == 1
        assert tickets[0].id == ticket.id

    @pytest.mark.asyncio
    async def test_limit_does_not_change_count(self, db_session, customer):
        """count reports all matches even when limited."""
        for number in range(3):
            await TicketFactory.create(db_session, customer=customer, title=f"Batch {number}")

        count, tickets = await TicketDAO(db_session).selectors(
            {"ticket.title": {"operator": "starts with", "value": "Batch"}}, limit=2
        )

        assert count == 3
        assert len(tickets) == 2

    @pytest.mark.asyncio
    async def test_customer_and_organization_conditions(self, db_session, ticket, test_org):
        """Conditions may address the customer and the organization."""
        count, _ = await TicketDAO(db_session).selectors(
            {
                "customer.lastname": {"operator": "is", "value": "Braun"},
                "organization.name": {"operator": "is", "value": test_org.name},
            }
        )
        assert count == 1

    @pytest.mark.asyncio
    async def test_before_after(self, db_session, ticket):
        """before/after compare timestamps."""
        dao = TicketDAO(db_session)
        past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
        future = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()

        assert (await dao.selectors({"ticket.created_at": {"operator": "after", "value": past}}))[0] == 1
        assert (await dao.selectors({"ticket.created_at": {"operator": "before", "value": past}}))[0] == 0
        assert (await dao.selectors({"ticket.created_at": {"operator": "before", "value": future}}))[0] == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "condition",
        [
            {},
            {"unknown.title": {"operator": "is", "value": "x"}},
            {"ticket.nonexistent": {"operator": "is", "value": "x"}},
            {"ticket.title": {"operator": "matches", "value": "x"}},
            {"ticket.title": {"value": "x"}},
            {"ticket.title": {"operator": "contains"}},
        ],
    )
    async def test_invalid_conditions_raise(self, db_session, condition):
        """Malformed selectors raise ValidationError."""
        with pytest.raises(ValidationError):
            await TicketDAO(db_session).selectors(condition)

    @pytest.mark.asyncio
    async def test_current_user_restricts_results(self, db_session, ticket, customer, agent):
        """Tickets the user cannot access are hidden."""
        sales = await GroupFactory.create(db_session, name="Sales")
        hidden = await TicketFactory.create(db_session, customer=customer, group=sales, title="Printer 2")
        outsider = await UserFactory.create(db_session, role=UserRole.AGENT)
        condition = {"ticket.title": {"operator": "starts with", "value": "Printer"}}
        dao = TicketDAO(db_session)

        count, tickets = await dao.selectors(condition, current_user=agent)
        assert count == 1
        assert tickets[0].id == ticket.id

        count, _ = await dao.selectors(condition, current_user=customer)
        assert count == 2

        count, _ = await dao.selectors(condition, current_user=outsider)
        assert count == 0
        assert hidden.id is not None

    @pytest.mark.asyncio
    async def test_current_user_shared_organization(self, db_session, ticket, test_org):
        """Colleagues see tickets only through a shared organization."""
        colleague = await UserFactory.create(db_session, organization=test_org)
        condition = {"ticket.id": {"operator": "is", "value": ticket.id}}
        dao = TicketDAO(db_session)

        assert (await dao.selectors(condition, current_user=colleague))[0] == 1

        test_org.shared = False
        await db_session.flush()
        assert (await dao.selectors(condition, current_user=colleague))[0] == 0

    @pytest.mark.asyncio
    async def test_unknown_access_level_raises(self, db_session, agent):
        """Unknown access levels raise ValidationError."""
        with pytest.raises(ValidationError):
            await TicketDAO(db_session).selectors(
                {"ticket.title": {"operator": "is", "value": "x"}},
                current_user=agent,
                access="everything",
            )
