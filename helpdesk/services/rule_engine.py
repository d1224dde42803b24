"""
Rule engine ("perform changes").

WHAT: Applies the action map of a trigger, macro or scheduler job to a
ticket.

WHY: Rules are stored data written by administrators. The engine has to:
1. Leave the stored rule untouched (it is evaluated again for the next ticket)
2. Validate every attribute write like any other ticket update
3. Send notifications about the event that fired the rule, not about
   whatever the ticket looks like later
4. Tolerate actions it does not know (rules outlive code versions)

HOW: One batch per call:
- the action map is deep-copied and split into attribute writes, tag
  changes, notifications and a delete flag
- ticket and source article are captured as NotificationObjects first
- attribute writes and tags run, then notifications, then the delete
- a failing write raises and halts the batch; whether earlier writes of
  the batch survive depends on the atomic policy

Example:
    await engine.perform_changes(
        ticket,
        {
            "ticket.state_id": {"value": closed.id},
            "notification.email": {
                "recipient": ["ticket_customer"],
                "subject": "Closed: #{ticket.title}",
                "body": "Hello #{ticket.customer.firstname}",
            },
        },
        perform_origin="trigger",
        item={"article_id": article.id},
    )
"""

import copy
import logging
import warnings
from dataclasses import dataclass, field
from email.utils import parseaddr
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core.config import settings
from helpdesk.core.exceptions import UnrecognizedActionWarning, ValidationError
from helpdesk.dao.history import HistoryDAO, TagDAO
from helpdesk.dao.ticket import MUTABLE_ATTRIBUTES, ArticleDAO, TicketDAO
from helpdesk.dao.user import UserDAO
from helpdesk.models.article import TicketArticle
from helpdesk.models.history import HistoryType
from helpdesk.models.ticket import Ticket
from helpdesk.models.user import User
from helpdesk.services.cascade import destroy_ticket
from helpdesk.services.notifier import NotificationChannel, NotificationRequest, Notifier
from helpdesk.services.recipients import (
    RecipientContext,
    RecipientRole,
    parse_roles,
    resolve_recipient_ids,
)
from helpdesk.services.snapshot import ArticleSnapshot, NotificationObjects, UserSnapshot
from helpdesk.services.templating import interpolator

logger = logging.getLogger(__name__)

TAG_OPERATORS = ("add", "remove")

# Marker for actions skipped after a warning
_SKIP = object()


@dataclass
class ActionPlan:
    """A deep-copied action map split by kind, in application order."""

    attributes: List[Tuple[str, Dict[str, Any]]] = field(default_factory=list)
    tags: List[Dict[str, Any]] = field(default_factory=list)
    notifications: List[Tuple[NotificationChannel, Dict[str, Any]]] = field(default_factory=list)
    delete: bool = False


def _skip(message: str, **context: Any) -> None:
    logger.warning(f"{message} {context}" if context else message)
    warnings.warn(message, UnrecognizedActionWarning, stacklevel=3)


class RuleEngine:
    """
    Applies action maps to tickets on the current session.
    """

    def __init__(self, session: AsyncSession, notifier: Notifier):
        self.session = session
        self.notifier = notifier
        self.tickets = TicketDAO(session)
        self.articles = ArticleDAO(session)
        self.users = UserDAO(session)
        self.tags = TagDAO(session)
        self.history = HistoryDAO(session)

    # =========================================================================
    # Entry point
    # =========================================================================

    async def perform_changes(
        self,
        ticket: Ticket,
        perform: Mapping[str, Any],
        perform_origin: str,
        item: Union[Mapping[str, Any], TicketArticle, None] = None,
        current_user_id: Optional[int] = None,
        atomic: Optional[bool] = None,
    ) -> None:
        """
        Apply one action map to a ticket.

        Args:
            ticket: Ticket the rule fired for
            perform: Action map; never modified
            perform_origin: What fired the batch ("trigger", "macro", ...)
            item: Source article as {"article_id": id} or TicketArticle;
                defaults to the ticket's latest article
            current_user_id: Actor for "current_user.*" pre-conditions
            atomic: Roll back all writes of the batch on failure
                (defaults to settings.PERFORM_CHANGES_ATOMIC)

        Raises:
            ValidationError: If an attribute write is rejected; remaining
                actions of the batch are not applied
            NotFoundError: If a written id does not exist
        """
        if not isinstance(perform, Mapping):
            raise ValidationError("perform must be a mapping", perform_origin=perform_origin)
        perform = copy.deepcopy(dict(perform))
        if atomic is None:
            atomic = settings.PERFORM_CHANGES_ATOMIC

        article = await self._source_article(ticket, item)
        objects = NotificationObjects.capture(ticket, article)
        plan = self._plan(perform)
        actor_id = current_user_id if current_user_id is not None else settings.SYSTEM_USER_ID

        logger.info(
            f"perform_changes on ticket {ticket.id} from {perform_origin}: "
            f"{len(plan.attributes)} attributes, {len(plan.tags)} tag changes, "
            f"{len(plan.notifications)} notifications, delete={plan.delete}"
        )

        if atomic:
            try:
                async with self.session.begin_nested():
                    await self._apply_writes(ticket, plan, current_user_id, actor_id)
            except Exception:
                # The rollback expired the ticket; reload it for the caller.
                await self.session.refresh(ticket)
                raise
        else:
            await self._apply_writes(ticket, plan, current_user_id, actor_id)

        for channel, action in plan.notifications:
            await self._notify(ticket, channel, action, objects, perform_origin, actor_id)

        if plan.delete:
            await destroy_ticket(self.session, ticket)

    # =========================================================================
    # Planning
    # =========================================================================

    def _plan(self, perform: Dict[str, Any]) -> ActionPlan:
        plan = ActionPlan()
        for key, action in perform.items():
            object_name, _, name = str(key).partition(".")

            if object_name == "ticket" and name == "action":
                value = action.get("value") if isinstance(action, Mapping) else None
                if value == "delete":
                    plan.delete = True
                else:
                    _skip(f"Unknown ticket action '{value}'", key=key)
            elif object_name == "ticket" and name == "tags":
                plan.tags.append(action)
            elif object_name == "ticket":
                if name in MUTABLE_ATTRIBUTES:
                    plan.attributes.append((name, action))
                else:
                    _skip(f"Unknown ticket attribute '{name}'", key=key)
            elif object_name == "notification":
                try:
                    plan.notifications.append((NotificationChannel(name), action))
                except ValueError:
                    _skip(f"Unknown notification channel '{name}'", key=key)
            else:
                _skip(f"Unknown action '{key}'", key=key)
        return plan

    # =========================================================================
    # Attribute and tag writes
    # =========================================================================

    async def _apply_writes(
        self,
        ticket: Ticket,
        plan: ActionPlan,
        current_user_id: Optional[int],
        actor_id: int,
    ) -> None:
        # State first, so pending_time is checked against the new state.
        ordered = sorted(plan.attributes, key=lambda entry: MUTABLE_ATTRIBUTES.index(entry[0]))
        for attribute, action in ordered:
            value = self._attribute_value(attribute, action, current_user_id)
            if value is _SKIP:
                continue
            value = TicketDAO.coerce_value(attribute, value)
            if getattr(ticket, attribute) == value:
                continue
            logger.debug(f"Ticket {ticket.id}: set {attribute} to {value!r}")
            await self.tickets.update(ticket, {attribute: value}, updated_by_id=actor_id)

        for action in plan.tags:
            await self._apply_tags(ticket, action, actor_id)

    @staticmethod
    def _attribute_value(attribute: str, action: Any, current_user_id: Optional[int]) -> Any:
        if not isinstance(action, Mapping):
            raise ValidationError(
                f"Action for ticket.{attribute} must be a mapping", attribute=attribute
            )

        pre_condition = action.get("pre_condition") or "specific"
        if pre_condition == "specific":
            return action.get("value")
        if pre_condition == "not_set":
            return None
        if pre_condition == "current_user.id":
            if current_user_id is None:
                raise ValidationError(
                    f"ticket.{attribute} needs a current user", attribute=attribute
                )
            return current_user_id

        _skip(f"Unknown pre_condition '{pre_condition}'", attribute=attribute)
        return _SKIP

    async def _apply_tags(self, ticket: Ticket, action: Any, actor_id: int) -> None:
        if not isinstance(action, Mapping) or action.get("operator") not in TAG_OPERATORS:
            operator = action.get("operator") if isinstance(action, Mapping) else None
            _skip(f"Unknown tag operator '{operator}'", ticket_id=ticket.id)
            return

        names = [name.strip() for name in str(action.get("value") or "").split(",") if name.strip()]
        for name in names:
            if action["operator"] == "add":
                changed = await self.tags.add("Ticket", ticket.id, name, created_by_id=actor_id)
                history_type = HistoryType.TAG_ADDED
            else:
                changed = await self.tags.remove("Ticket", ticket.id, name)
                history_type = HistoryType.TAG_REMOVED
            if changed:
                await self.history.add(
                    "Ticket", ticket.id, history_type, value_to=name, created_by_id=actor_id
                )

    # =========================================================================
    # Notifications
    # =========================================================================

    async def _source_article(
        self,
        ticket: Ticket,
        item: Union[Mapping[str, Any], TicketArticle, None],
    ) -> Optional[TicketArticle]:
        if isinstance(item, TicketArticle):
            return item
        if isinstance(item, Mapping) and item.get("article_id") is not None:
            try:
                article_id = int(item["article_id"])
            except (TypeError, ValueError) as exc:
                raise ValidationError(
                    "Invalid article id", ticket_id=ticket.id, article_id=str(item["article_id"])
                ) from exc
            article = await self.articles.get_by_id(article_id)
            if article is not None and article.ticket_id == ticket.id:
                return article
            logger.warning(
                f"Article {item['article_id']} does not belong to ticket {ticket.id}, "
                f"using the latest article"
            )
        return await self.tickets.latest_article(ticket.id)

    async def _article_sender_id(self, article: Optional[ArticleSnapshot]) -> Optional[int]:
        if article is None:
            return None
        for address in (article.reply_to, article.from_):
            _, email = parseaddr(address or "")
            if email:
                user = await self.users.get_by_email(email)
                if user is not None:
                    return user.id
        return article.created_by_id

    @staticmethod
    def _address(user: User, channel: NotificationChannel) -> Optional[str]:
        return user.mobile if channel == NotificationChannel.SMS else user.email

    async def _notify(
        self,
        ticket: Ticket,
        channel: NotificationChannel,
        action: Any,
        objects: NotificationObjects,
        perform_origin: str,
        actor_id: int,
    ) -> None:
        if not isinstance(action, Mapping):
            _skip(f"Notification action for '{channel.value}' must be a mapping")
            return

        roles, unknown = parse_roles(action.get("recipient"))
        for name in unknown:
            _skip(f"Unknown recipient '{name}'", channel=channel.value)

        sender = objects.ticket.group.email_address
        if channel == NotificationChannel.EMAIL and not sender:
            logger.warning(
                f"Group '{objects.ticket.group.name}' has no email address, "
                f"email notification for ticket {objects.ticket.id} skipped"
            )
            return

        group_agent_ids: Tuple[int, ...] = ()
        if RecipientRole.TICKET_AGENTS in roles:
            group_agent_ids = tuple(
                await self.users.agent_ids_with_group_access(objects.ticket.group_id)
            )
        article_sender_id = None
        if RecipientRole.ARTICLE_LAST_SENDER in roles:
            article_sender_id = await self._article_sender_id(objects.article)

        context = RecipientContext(
            objects=objects,
            group_agent_ids=group_agent_ids,
            article_sender_id=article_sender_id,
        )
        users = await self.users.get_many(resolve_recipient_ids(roles, context))

        recipients = []
        for user in users:
            address = self._address(user, channel)
            if not user.active or not address:
                continue
            if sender and address.strip().lower() == sender.strip().lower():
                # Never mail the group's own address.
                continue
            recipients.append(UserSnapshot.model_validate(user))

        if not recipients:
            logger.info(
                f"No recipients for {channel.value} notification on ticket {objects.ticket.id}"
            )
            return

        template_objects = {"ticket": objects.ticket, "article": objects.article}
        request = NotificationRequest(
            body=interpolator.render(action.get("body"), template_objects),
            subject=(
                interpolator.render(action.get("subject"), template_objects)
                if channel == NotificationChannel.EMAIL
                else None
            ),
            recipients=tuple(recipients),
            objects=objects,
            sender=sender if channel == NotificationChannel.EMAIL else None,
            origin=perform_origin,
        )
        await self.notifier.dispatch(channel, request)

        await self.history.add(
            "Ticket",
            ticket.id,
            HistoryType.NOTIFICATION,
            attribute=channel.value,
            value_to=", ".join(request.addresses(channel)),
            created_by_id=actor_id,
        )
        logger.info(
            f"Dispatched {channel.value} notification for ticket {objects.ticket.id} "
            f"to {len(recipients)} recipients"
        )

