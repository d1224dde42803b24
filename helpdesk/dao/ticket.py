"""
Ticket Data Access Object.

WHAT: DAO for tickets, their articles and the state/priority lookups.

WHY: Encapsulates all ticket database operations with:
1. Validated attribute writes (pending-time invariant, NOT NULL state)
2. Change history for every written attribute
3. Selector search over ticket, article, customer and organization fields
4. The access rules of TicketAccessPolicy expressed as a SQL filter

HOW: Uses SQLAlchemy 2.0 async. Writes run inside a SAVEPOINT so a
rejected write leaves the surrounding transaction usable.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import TypeAdapter, ValidationError as PydanticValidationError
from sqlalchemy import select, func, exists, or_, update, distinct, inspect as sa_inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from helpdesk.core.config import settings
from helpdesk.core.exceptions import (
    PriorityNotFoundError,
    StateNotFoundError,
    TicketNotFoundError,
    ValidationError,
)
from helpdesk.dao.base import BaseDAO
from helpdesk.dao.history import HistoryDAO
from helpdesk.dao.user import GroupDAO, UserDAO
from helpdesk.models.article import ArticleSender, TicketArticle
from helpdesk.models.history import HistoryType
from helpdesk.models.organization import Organization
from helpdesk.models.ticket import StateType, Ticket, TicketPriority, TicketState
from helpdesk.models.base import utcnow
from helpdesk.models.user import AccessLevel, User

logger = logging.getLogger(__name__)

_DATETIME = TypeAdapter(datetime)

# Writable through update(); state_id first so its pending_time reset
# happens before an explicit pending_time is applied.
MUTABLE_ATTRIBUTES = (
    "state_id",
    "title",
    "priority_id",
    "group_id",
    "owner_id",
    "customer_id",
    "pending_time",
)

# Foreign key attribute → relationship it is written through
RELATION_ATTRIBUTES = {
    "state_id": "state",
    "priority_id": "priority",
    "group_id": "group",
    "owner_id": "owner",
    "customer_id": "customer",
}

SELECTOR_OPERATORS = (
    "is",
    "is not",
    "contains",
    "contains not",
    "starts with",
    "ends with",
    "before",
    "after",
)

# Condition keys that differ from the Python attribute name
SELECTOR_ATTRIBUTE_ALIASES = {
    "article": {"from": "from_"},
}


def generate_ticket_number() -> str:
    """Date prefix plus eight random digits, e.g. 2024061712345678."""
    return f"{utcnow():%Y%m%d}{uuid.uuid4().int % 10**8:08d}"


def parse_datetime(value: Any, field: str) -> datetime:
    """
    Parse a datetime or ISO string into a naive UTC datetime.

    Raises:
        ValidationError: If the value is not a datetime
    """
    try:
        parsed = _DATETIME.validate_python(value)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid datetime for {field}", field=field, value=str(value)) from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class TicketStateDAO(BaseDAO[TicketState]):
    """
    Data Access Object for ticket states.
    """

    not_found_error = StateNotFoundError

    def __init__(self, session: AsyncSession):
        super().__init__(TicketState, session)

    async def get_by_name(self, name: str) -> TicketState:
        """
        Raises:
            StateNotFoundError: If no state has this name
        """
        state = await self.get_by_field("name", name)
        if state is None:
            raise StateNotFoundError(f"Ticket state '{name}' not found", name=name)
        return state

    async def get_by_type(self, state_type: StateType) -> TicketState:
        """
        First active state of a type.

        Raises:
            StateNotFoundError: If no active state has this type
        """
        result = await self.session.execute(
            select(TicketState)
            .where(TicketState.state_type == state_type, TicketState.active.is_(True))
            .order_by(TicketState.id)
            .limit(1)
        )
        state = result.scalar_one_or_none()
        if state is None:
            raise StateNotFoundError(
                f"No ticket state of type '{state_type.value}'", state_type=state_type.value
            )
        return state


class TicketPriorityDAO(BaseDAO[TicketPriority]):
    """
    Data Access Object for ticket priorities.
    """

    not_found_error = PriorityNotFoundError

    def __init__(self, session: AsyncSession):
        super().__init__(TicketPriority, session)

    async def get_by_name(self, name: str) -> TicketPriority:
        priority = await self.get_by_field("name", name)
        if priority is None:
            raise PriorityNotFoundError(f"Ticket priority '{name}' not found", name=name)
        return priority


class TicketDAO(BaseDAO[Ticket]):
    """
    Data Access Object for Ticket operations.

    WHAT: Manages ticket creation, validated updates and selector search.

    WHY: Centralizes the ticket invariants so every writer (services,
    the rule engine, email ingestion) goes through the same checks.

    HOW: All methods are async and use the session without committing.
    """

    not_found_error = TicketNotFoundError

    def __init__(self, session: AsyncSession):
        """
        Initialize TicketDAO with database session.

        Args:
            session: AsyncSession for database operations
        """
        super().__init__(Ticket, session)
        self.history = HistoryDAO(session)

    # =========================================================================
    # CRUD Operations
    # =========================================================================

    async def create_ticket(
        self,
        title: str,
        customer_id: int,
        group_id: Optional[int] = None,
        state_id: Optional[int] = None,
        priority_id: Optional[int] = None,
        owner_id: Optional[int] = None,
        pending_time: Optional[datetime] = None,
        created_by_id: Optional[int] = None,
    ) -> Ticket:
        """
        Create a new ticket.

        WHAT: Creates a ticket with a generated number and records a
        CREATED history entry.

        WHY: New tickets need:
        - Default group, state "new" and priority "2 normal"
        - The customer's organization copied onto the ticket
        - NUL bytes stripped from the title (model validator)

        Args:
            title: Ticket title
            customer_id: Customer user id
            group_id: Group id (defaults to the default group)
            state_id: State id (defaults to "new")
            priority_id: Priority id (defaults to "2 normal")
            owner_id: Optional owning agent
            pending_time: Only allowed with a pending state
            created_by_id: Acting user

        Returns:
            Created Ticket instance

        Raises:
            NotFoundError: If a referenced id does not exist
            ValidationError: If pending_time is given for a non-pending state
        """
        customer = await UserDAO(self.session).get_or_raise(customer_id)
        owner = await UserDAO(self.session).get_or_raise(owner_id) if owner_id else None
        if group_id is None:
            group = await GroupDAO(self.session).get_by_name(settings.DEFAULT_GROUP_NAME)
        else:
            group = await GroupDAO(self.session).get_or_raise(group_id)
        if state_id is None:
            state = await TicketStateDAO(self.session).get_by_name("new")
        else:
            state = await TicketStateDAO(self.session).get_or_raise(state_id)
        if priority_id is None:
            priority = await TicketPriorityDAO(self.session).get_by_name("2 normal")
        else:
            priority = await TicketPriorityDAO(self.session).get_or_raise(priority_id)

        if pending_time is not None and not state.is_pending:
            raise ValidationError(
                "pending_time can only be set for pending states", state=state.name
            )

        ticket = Ticket(
            number=generate_ticket_number(),
            title=title,
            group=group,
            priority=priority,
            state=state,
            customer=customer,
            organization_id=customer.organization_id,
            owner=owner,
            created_by_id=created_by_id,
            updated_by_id=created_by_id,
        )
        ticket.pending_time = pending_time

        try:
            async with self.session.begin_nested():
                self.session.add(ticket)
                await self.session.flush()
                await self.history.add(
                    "Ticket", ticket.id, HistoryType.CREATED, created_by_id=created_by_id
                )
        except IntegrityError as exc:
            raise ValidationError("Ticket could not be created", title=title) from exc

        await self.session.refresh(ticket)
        logger.info(f"Created ticket {ticket.number} (id={ticket.id})")
        return ticket

    async def latest_article(self, ticket_id: int) -> Optional[TicketArticle]:
        """Most recently created article of a ticket."""
        return await ArticleDAO(self.session).latest_for_ticket(ticket_id)

    @staticmethod
    def coerce_value(attribute: str, value: Any) -> Any:
        """
        Convert an incoming value to the attribute's Python type.

        Ids accept ints and numeric strings; pending_time accepts datetimes
        and ISO strings.

        Raises:
            ValidationError: If the attribute is not writable or the value
                cannot be converted
        """
        if attribute not in MUTABLE_ATTRIBUTES:
            raise ValidationError(f"Ticket attribute '{attribute}' is not writable", attribute=attribute)

        if value is None or value == "":
            return None
        if attribute == "title":
            return str(value)
        if attribute == "pending_time":
            return parse_datetime(value, attribute)
        if isinstance(value, bool):
            raise ValidationError(f"Invalid id for {attribute}", attribute=attribute, value=value)
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                f"Invalid id for {attribute}", attribute=attribute, value=str(value)
            ) from exc

    async def _resolve(self, attribute: str, value: int):
        if attribute == "state_id":
            return await TicketStateDAO(self.session).get_or_raise(value)
        if attribute == "priority_id":
            return await TicketPriorityDAO(self.session).get_or_raise(value)
        if attribute == "group_id":
            return await GroupDAO(self.session).get_or_raise(value)
        return await UserDAO(self.session).get_or_raise(value)

    async def update(
        self,
        ticket: Ticket,
        changes: Dict[str, Any],
        updated_by_id: Optional[int] = None,
    ) -> List[str]:
        """
        Apply attribute changes to a ticket.

        WHAT: Validates, writes and records history for each changed attribute.

        WHY: Every writer must honour the same invariants:
        - a non-pending state clears pending_time
        - pending_time can only be set while the state is pending
        - a ticket always has a state, priority, group and customer

        Args:
            ticket: Ticket to update
            changes: Attribute → new value (attributes in MUTABLE_ATTRIBUTES)
            updated_by_id: Acting user

        Returns:
            Names of the attributes that actually changed

        Raises:
            ValidationError: On unknown attributes, uncoercible values, a
                pending_time without pending state, or a NOT NULL violation.
                The write is rolled back to the state before the call.
            NotFoundError: If a referenced id does not exist
        """
        values = {attribute: self.coerce_value(attribute, value) for attribute, value in changes.items()}

        resolved = {}
        for attribute in RELATION_ATTRIBUTES:
            if values.get(attribute) is not None:
                resolved[attribute] = await self._resolve(attribute, values[attribute])

        state = resolved.get("state_id") if "state_id" in values else ticket.state
        if values.get("pending_time") is not None and (state is None or not state.is_pending):
            raise ValidationError(
                "pending_time can only be set for pending states",
                ticket_id=ticket.id,
                state=state.name if state is not None else None,
            )

        # A rolled back SAVEPOINT expires the ticket; read nothing from it afterwards.
        ticket_id = ticket.id
        changed: List[Tuple[str, Any, Any]] = []
        try:
            async with self.session.begin_nested():
                for attribute in sorted(values, key=MUTABLE_ATTRIBUTES.index):
                    old = getattr(ticket, attribute)
                    new = values[attribute]
                    if old == new:
                        continue

                    relation = RELATION_ATTRIBUTES.get(attribute)
                    if relation is None:
                        setattr(ticket, attribute, new)
                    else:
                        setattr(ticket, relation, resolved.get(attribute))
                    if attribute == "customer_id":
                        customer = resolved.get(attribute)
                        ticket.organization_id = customer.organization_id if customer else None
                    changed.append((attribute, old, new))

                if changed:
                    ticket.updated_by_id = updated_by_id
                    await self.session.flush()
                    for attribute, old, new in changed:
                        await self.history.add(
                            "Ticket",
                            ticket.id,
                            HistoryType.UPDATED,
                            attribute=attribute,
                            value_from=_history_value(old),
                            value_to=_history_value(new),
                            created_by_id=updated_by_id,
                        )
        except IntegrityError as exc:
            attributes = [attribute for attribute, _, _ in changed]
            await self.session.refresh(ticket)
            raise ValidationError(
                f"Ticket {ticket_id} rejected: {', '.join(attributes)} must not be empty",
                ticket_id=ticket_id,
                attributes=attributes,
            ) from exc

        if changed:
            await self.session.refresh(ticket)
            logger.debug(f"Ticket {ticket.id} updated: {[a for a, _, _ in changed]}")
        return [attribute for attribute, _, _ in changed]

    # =========================================================================
    # Selector Search
    # =========================================================================

    async def selectors(
        self,
        condition: Dict[str, Dict[str, Any]],
        limit: Optional[int] = None,
        current_user: Optional[User] = None,
        access: str = "full",
    ) -> Tuple[int, List[Ticket]]:
        """
        Search tickets by a selector condition.

        WHAT: Translates {"<object>.<attribute>": {"operator", "value"}}
        into one query.

        WHY: Triggers, overviews and reports describe ticket sets this way.
        All article conditions share one EXISTS sub-select, so a ticket
        with several matching articles is returned once.

        Args:
            condition: e.g. {"ticket.title": {"operator": "contains", "value": "VPN"},
                             "article.from": {"operator": "is", "value": "a@example.com"}}
            limit: Maximum tickets returned (count is not limited)
            current_user: Restrict to tickets this user can access
            access: Access level required from current_user

        Returns:
            (number of matching tickets, tickets ordered by id descending)

        Raises:
            ValidationError: On malformed conditions, unknown objects,
                attributes or operators, or an unknown access level
        """
        if not isinstance(condition, dict) or not condition:
            raise ValidationError("Selector condition must be a non-empty mapping")
        if limit is None:
            limit = settings.SELECTOR_DEFAULT_LIMIT

        customer = aliased(User, name="selector_customer")
        organization = aliased(Organization, name="selector_organization")
        targets = {
            "ticket": Ticket,
            "article": TicketArticle,
            "customer": customer,
            "organization": organization,
        }

        ticket_clauses = []
        article_clauses = []
        joins = set()
        for key, rule in condition.items():
            object_name, _, attribute = key.partition(".")
            if object_name not in targets:
                raise ValidationError(f"Unknown selector object '{object_name}'", key=key)
            column = self._selector_column(object_name, targets[object_name], attribute, key)
            clause = self._selector_clause(column, rule, key)
            if object_name == "article":
                article_clauses.append(clause)
            else:
                ticket_clauses.append(clause)
                if object_name != "ticket":
                    joins.add(object_name)

        if article_clauses:
            ticket_clauses.append(
                exists().where(TicketArticle.ticket_id == Ticket.id, *article_clauses)
            )
        if current_user is not None:
            ticket_clauses.append(self._access_clause(current_user, access))

        def apply(query):
            if "customer" in joins:
                query = query.outerjoin(customer, Ticket.customer_id == customer.id)
            if "organization" in joins:
                query = query.outerjoin(organization, Ticket.organization_id == organization.id)
            return query.where(*ticket_clauses)

        count_result = await self.session.execute(
            apply(select(func.count(distinct(Ticket.id))).select_from(Ticket))
        )
        count = count_result.scalar_one()

        result = await self.session.execute(
            apply(select(Ticket)).order_by(Ticket.id.desc()).limit(limit)
        )
        tickets = list(result.scalars().unique().all())
        return count, tickets

    @staticmethod
    def _selector_column(object_name: str, target, attribute: str, key: str):
        attribute = SELECTOR_ATTRIBUTE_ALIASES.get(object_name, {}).get(attribute, attribute)
        columns = sa_inspect(target).mapper.column_attrs.keys()
        if not attribute or attribute not in columns:
            raise ValidationError(f"Unknown selector attribute '{key}'", key=key)
        return getattr(target, attribute)

    @staticmethod
    def _selector_clause(column, rule: Any, key: str):
        if not isinstance(rule, dict) or "operator" not in rule:
            raise ValidationError(f"Selector '{key}' needs an operator", key=key)

        operator = rule["operator"]
        value = rule.get("value")
        if operator not in SELECTOR_OPERATORS:
            raise ValidationError(f"Unknown selector operator '{operator}'", key=key, operator=operator)

        if operator == "is":
            if isinstance(value, (list, tuple, set)):
                return column.in_(list(value))
            return column.is_(None) if value is None else column == value
        if operator == "is not":
            if isinstance(value, (list, tuple, set)):
                return or_(column.not_in(list(value)), column.is_(None))
            return column.is_not(None) if value is None else or_(column != value, column.is_(None))

        if operator in ("before", "after"):
            moment = parse_datetime(value, key)
            return column < moment if operator == "before" else column > moment

        if value is None:
            raise ValidationError(f"Selector '{key}' needs a value for '{operator}'", key=key)
        text = str(value)
        if operator == "contains":
            return column.icontains(text, autoescape=True)
        if operator == "contains not":
            return or_(~column.icontains(text, autoescape=True), column.is_(None))
        if operator == "starts with":
            return column.istartswith(text, autoescape=True)
        return column.iendswith(text, autoescape=True)

    @staticmethod
    def _access_clause(user: User, access: str):
        """TicketAccessPolicy rules as a WHERE clause."""
        try:
            level = AccessLevel(access)
        except ValueError as exc:
            raise ValidationError(f"Unknown access level '{access}'", access=access) from exc

        clauses = [Ticket.owner_id == user.id, Ticket.customer_id == user.id]

        group_ids = sorted(
            {grant.group_id for grant in user.group_accesses if grant.access in (AccessLevel.FULL, level)}
        )
        if group_ids:
            clauses.append(Ticket.group_id.in_(group_ids))

        organization = user.organization
        if user.is_customer and organization is not None and organization.shared:
            colleagues = select(User.id).where(User.organization_id == organization.id)
            clauses.append(Ticket.customer_id.in_(colleagues))

        return or_(*clauses)


def _history_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class ArticleDAO(BaseDAO[TicketArticle]):
    """
    Data Access Object for ticket articles.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(TicketArticle, session)

    async def create_article(
        self,
        ticket_id: int,
        body: str = "",
        sender: ArticleSender = ArticleSender.AGENT,
        from_: Optional[str] = None,
        to: Optional[str] = None,
        cc: Optional[str] = None,
        reply_to: Optional[str] = None,
        subject: Optional[str] = None,
        message_id: Optional[str] = None,
        content_type: str = "text/plain",
        internal: bool = False,
        created_by_id: Optional[int] = None,
    ) -> TicketArticle:
        """
        Add an article to a ticket.

        Returns:
            Created TicketArticle
        """
        return await self.create(
            ticket_id=ticket_id,
            body=body,
            sender=sender,
            from_=from_,
            to=to,
            cc=cc,
            reply_to=reply_to,
            subject=subject,
            message_id=message_id,
            content_type=content_type,
            internal=internal,
            created_by_id=created_by_id,
        )

    async def list_for_ticket(self, ticket_id: int) -> List[TicketArticle]:
        """Articles of a ticket, oldest first."""
        result = await self.session.execute(
            select(TicketArticle)
            .where(TicketArticle.ticket_id == ticket_id)
            .order_by(TicketArticle.id)
        )
        return list(result.scalars().all())

    async def latest_for_ticket(self, ticket_id: int) -> Optional[TicketArticle]:
        result = await self.session.execute(
            select(TicketArticle)
            .where(TicketArticle.ticket_id == ticket_id)
            .order_by(TicketArticle.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def move_to_ticket(self, from_ticket_id: int, to_ticket_id: int) -> int:
        """
        Reassign all articles of one ticket to another.

        Returns:
            Number of moved articles
        """
        result = await self.session.execute(
            update(TicketArticle)
            .where(TicketArticle.ticket_id == from_ticket_id)
            .values(ticket_id=to_ticket_id)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount
