"""
Ticket access policy.

WHAT: Decides whether a user may access a ticket at a given level.

WHY: The rule is shared by service calls (ensure_access) and mirrored
in SQL by TicketDAO.selectors, so it lives in one small pure class that
works on already-loaded objects and never queries.

Decision order, first match wins:
1. the user owns the ticket
2. the user is the ticket's customer
3. the user holds "full" or exactly the requested level on the ticket's group
4. the user is a customer in the same organization as the ticket's
   customer and that organization is shared
5. otherwise deny
"""

import logging
from typing import Union

from helpdesk.core.exceptions import InsufficientPermissionsError, ValidationError
from helpdesk.models.ticket import Ticket
from helpdesk.models.user import AccessLevel, User

logger = logging.getLogger(__name__)


def parse_access_level(level: Union[str, AccessLevel]) -> AccessLevel:
    """
    Raises:
        ValidationError: If the level is not an AccessLevel value
    """
    try:
        return AccessLevel(level)
    except ValueError as exc:
        raise ValidationError(f"Unknown access level '{level}'", level=str(level)) from exc


class TicketAccessPolicy:
    """
    Pure predicate over a ticket and a user.
    """

    def access(self, ticket: Ticket, user: User, level: Union[str, AccessLevel]) -> bool:
        """
        Check whether user may access ticket at level.

        Args:
            ticket: Loaded ticket (customer and its organization loaded)
            user: Loaded user (group accesses and organization loaded)
            level: read, create, change, overview or full

        Returns:
            True if access is granted
        """
        level = parse_access_level(level)

        if ticket.owner_id is not None and user.id == ticket.owner_id:
            return True
        if user.id == ticket.customer_id:
            return True

        granted = user.group_access_levels(ticket.group_id)
        if AccessLevel.FULL in granted or level in granted:
            return True

        return self._shared_organization_access(ticket, user)

    @staticmethod
    def _shared_organization_access(ticket: Ticket, user: User) -> bool:
        if not user.is_customer or user.organization_id is None:
            return False
        customer = ticket.customer
        if customer is None or customer.organization_id != user.organization_id:
            return False
        organization = customer.organization
        return organization is not None and bool(organization.shared)

    def ensure_access(self, ticket: Ticket, user: User, level: Union[str, AccessLevel]) -> None:
        """
        Raises:
            InsufficientPermissionsError: If access is denied
        """
        if not self.access(ticket, user, level):
            logger.warning(f"User {user.id} denied {level} access to ticket {ticket.id}")
            raise InsufficientPermissionsError(
                f"User {user.id} has no {AccessLevel(level).value} access to ticket {ticket.id}",
                ticket_id=ticket.id,
                user_id=user.id,
                level=AccessLevel(level).value,
            )


access_policy = TicketAccessPolicy()
