"""
Notification recipient resolution.

WHAT: Maps the recipient roles a trigger names ("ticket_owner",
"ticket_agents", ...) to user ids.

WHY: Roles form a closed set. Each role has one pure resolver function
over a RecipientContext, so resolution never touches the database and
unknown roles are detected up front instead of being dispatched by name.

HOW: The rule engine loads what the resolvers need (group agents, the
user behind the article sender address) into the context, then calls
resolve_recipient_ids().
"""

from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict

from helpdesk.services.snapshot import NotificationObjects


class RecipientRole(str, Enum):
    TICKET_OWNER = "ticket_owner"
    TICKET_CUSTOMER = "ticket_customer"
    TICKET_AGENTS = "ticket_agents"
    ARTICLE_LAST_SENDER = "article_last_sender"


class RecipientContext(BaseModel):
    """
    Everything the resolvers may read.

    Attributes:
        objects: Ticket and article snapshot of the batch
        group_agent_ids: Active agents with full access to the ticket group
        article_sender_id: User behind the snapshot article's sender
    """

    model_config = ConfigDict(frozen=True)

    objects: NotificationObjects
    group_agent_ids: Tuple[int, ...] = ()
    article_sender_id: Optional[int] = None


def _ticket_owner(context: RecipientContext) -> List[int]:
    owner_id = context.objects.ticket.owner_id
    return [owner_id] if owner_id is not None else []


def _ticket_customer(context: RecipientContext) -> List[int]:
    return [context.objects.ticket.customer_id]


def _ticket_agents(context: RecipientContext) -> List[int]:
    return list(context.group_agent_ids)


def _article_last_sender(context: RecipientContext) -> List[int]:
    if context.article_sender_id is None:
        return []
    return [context.article_sender_id]


RESOLVERS: Dict[RecipientRole, Callable[[RecipientContext], List[int]]] = {
    RecipientRole.TICKET_OWNER: _ticket_owner,
    RecipientRole.TICKET_CUSTOMER: _ticket_customer,
    RecipientRole.TICKET_AGENTS: _ticket_agents,
    RecipientRole.ARTICLE_LAST_SENDER: _article_last_sender,
}


def parse_roles(recipient: Union[str, Iterable[str], None]) -> Tuple[List[RecipientRole], List[str]]:
    """
    Split a trigger's recipient value into known roles and unknown names.

    Args:
        recipient: One role name or a list of role names

    Returns:
        (roles in given order without duplicates, unrecognized names)
    """
    if recipient is None:
        return [], []
    names = [recipient] if isinstance(recipient, str) else list(recipient)

    roles: List[RecipientRole] = []
    unknown: List[str] = []
    for name in names:
        try:
            role = RecipientRole(name)
        except ValueError:
            unknown.append(str(name))
            continue
        if role not in roles:
            roles.append(role)
    return roles, unknown


def resolve_recipient_ids(roles: Iterable[RecipientRole], context: RecipientContext) -> List[int]:
    """User ids for all roles, first occurrence wins."""
    user_ids: List[int] = []
    for role in roles:
        for user_id in RESOLVERS[role](context):
            if user_id not in user_ids:
                user_ids.append(user_id)
    return user_ids
