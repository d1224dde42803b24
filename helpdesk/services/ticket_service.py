"""
Ticket service.

WHAT: Entry point for everything done to a ticket aggregate.

WHY: Callers (API layers, schedulers, mail fetchers) should not have to
know which DAO or coordinator implements an operation. The service
wires DAOs, the merge coordinator, the rule engine, the cascade and the
access policy onto one session.

HOW: Every method works on the caller's session and never commits.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.dao.link import LinkDAO
from helpdesk.dao.ticket import ArticleDAO, TicketDAO
from helpdesk.models.article import TicketArticle
from helpdesk.models.link import Link, LinkType
from helpdesk.models.ticket import Ticket
from helpdesk.models.user import AccessLevel, User
from helpdesk.services.access_policy import access_policy
from helpdesk.services.cascade import destroy_ticket
from helpdesk.services.merge import MergeCoordinator
from helpdesk.services.notifier import LoggingNotifier, Notifier
from helpdesk.services.rule_engine import RuleEngine

logger = logging.getLogger(__name__)


class TicketService:
    """
    Service for ticket lifecycle operations.

    Example:
        service = TicketService(session, notifier=MockNotifier())
        ticket = await service.create(title="Printer on fire", customer_id=customer.id)
        await service.perform_changes(ticket, {"ticket.state_id": {"value": closed.id}}, "trigger")
    """

    def __init__(self, session: AsyncSession, notifier: Optional[Notifier] = None):
        """
        Args:
            session: Async database session
            notifier: Notification backend (defaults to LoggingNotifier)
        """
        self.session = session
        self.notifier = notifier or LoggingNotifier()
        self.tickets = TicketDAO(session)
        self.articles = ArticleDAO(session)
        self.links = LinkDAO(session)
        self.policy = access_policy

    async def create(
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
        """Create a ticket; see TicketDAO.create_ticket."""
        return await self.tickets.create_ticket(
            title=title,
            customer_id=customer_id,
            group_id=group_id,
            state_id=state_id,
            priority_id=priority_id,
            owner_id=owner_id,
            pending_time=pending_time,
            created_by_id=created_by_id,
        )

    async def get(self, ticket_id: int) -> Ticket:
        """
        Raises:
            TicketNotFoundError: If the ticket doesn't exist
        """
        return await self.tickets.get_or_raise(ticket_id)

    async def update(
        self,
        ticket: Ticket,
        changes: Dict[str, Any],
        user_id: Optional[int] = None,
    ) -> List[str]:
        """Validated attribute update; returns the changed attribute names."""
        return await self.tickets.update(ticket, changes, updated_by_id=user_id)

    async def add_article(self, ticket: Ticket, **fields: Any) -> TicketArticle:
        """Add an article; fields as for ArticleDAO.create_article."""
        return await self.articles.create_article(ticket_id=ticket.id, **fields)

    async def link(
        self,
        source: Ticket,
        target: Ticket,
        link_type: LinkType = LinkType.NORMAL,
    ) -> Link:
        return await self.links.add(source.id, target.id, link_type=link_type)

    async def destroy(self, ticket: Ticket) -> Dict[str, int]:
        """
        Delete the ticket and everything it owns in one SAVEPOINT.

        Returns:
            Table name → number of deleted rows
        """
        return await destroy_ticket(self.session, ticket)

    async def merge_to(
        self,
        ticket: Ticket,
        target_ticket_id: int,
        user_id: Optional[int] = None,
        move_articles: bool = True,
    ) -> Ticket:
        """
        Merge ticket into another ticket.

        Raises:
            SelfMergeError: If both ids are the same
            TicketNotFoundError: If the target does not exist
            AlreadyMergedError: If the target was merged itself
        """
        return await MergeCoordinator(self.session).merge_to(
            ticket, target_ticket_id, user_id=user_id, move_articles=move_articles
        )

    async def perform_changes(
        self,
        ticket: Ticket,
        perform: Mapping[str, Any],
        perform_origin: str,
        item: Union[Mapping[str, Any], TicketArticle, None] = None,
        current_user_id: Optional[int] = None,
        atomic: Optional[bool] = None,
    ) -> None:
        """Apply a rule's action map; see RuleEngine.perform_changes."""
        await RuleEngine(self.session, self.notifier).perform_changes(
            ticket,
            perform,
            perform_origin,
            item=item,
            current_user_id=current_user_id,
            atomic=atomic,
        )

    def access(self, ticket: Ticket, user: User, level: Union[str, AccessLevel]) -> bool:
        return self.policy.access(ticket, user, level)

    def ensure_access(self, ticket: Ticket, user: User, level: Union[str, AccessLevel]) -> None:
        """
        Raises:
            InsufficientPermissionsError: If the user lacks the level
        """
        self.policy.ensure_access(ticket, user, level)

    async def selectors(
        self,
        condition: Dict[str, Dict[str, Any]],
        limit: Optional[int] = None,
        current_user: Optional[User] = None,
        access: str = "full",
    ) -> Tuple[int, List[Ticket]]:
        """Selector search; see TicketDAO.selectors."""
        return await self.tickets.selectors(
            condition, limit=limit, current_user=current_user, access=access
        )
