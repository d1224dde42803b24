"""
Notification dispatch interface.

WHAT: The boundary between the rule engine and whatever delivers
notifications (mail transport, SMS gateway, queue).

WHY: Delivery is outside the ticket core. The engine only builds a
NotificationRequest and awaits Notifier.dispatch(); tests swap in
MockNotifier to inspect what would have been sent.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from helpdesk.services.snapshot import NotificationObjects, UserSnapshot

logger = logging.getLogger(__name__)


class NotificationChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"


@dataclass(frozen=True)
class NotificationRequest:
    """
    One notification to deliver.

    WHAT: Rendered texts plus the recipients and the objects the
    notification is about.
    """

    body: str
    """Rendered body."""

    subject: Optional[str]
    """Rendered subject (None for channels without subjects)."""

    recipients: Tuple[UserSnapshot, ...]
    """Deduplicated, active recipients with an address for the channel."""

    objects: NotificationObjects
    """Ticket and article snapshot captured when the batch started."""

    sender: Optional[str] = None
    """Sender address (the group's email address for email)."""

    origin: str = ""
    """Who triggered the batch, e.g. "trigger" or "email_ingestion"."""

    def addresses(self, channel: NotificationChannel) -> List[str]:
        if channel == NotificationChannel.SMS:
            return [r.mobile for r in self.recipients if r.mobile]
        return [r.email for r in self.recipients if r.email]


class Notifier(ABC):
    """
    Abstract base class for notification delivery.
    """

    @abstractmethod
    async def dispatch(self, channel: NotificationChannel, request: NotificationRequest) -> None:
        """
        Deliver one notification.

        Args:
            channel: email or sms
            request: What to deliver and to whom
        """
        pass


class LoggingNotifier(Notifier):
    """
    Notifier that only logs requests.

    WHY: Default for deployments without a delivery backend.
    """

    async def dispatch(self, channel: NotificationChannel, request: NotificationRequest) -> None:
        logger.info(
            f"[NOTIFICATION] channel={channel.value} "
            f"ticket={request.objects.ticket.number} "
            f"to={', '.join(request.addresses(channel))} "
            f"subject={request.subject}"
        )


class MockNotifier(Notifier):
    """
    Mock notifier for testing.

    WHY: Allows asserting on dispatched notifications without delivery.
    """

    sent: List[Tuple[NotificationChannel, NotificationRequest]] = []
    """Class-level list to track dispatched notifications for testing."""

    async def dispatch(self, channel: NotificationChannel, request: NotificationRequest) -> None:
        logger.info(
            f"[MOCK NOTIFICATION] channel={channel.value}, "
            f"recipients={[r.id for r in request.recipients]}"
        )
        MockNotifier.sent.append((channel, request))

    @classmethod
    def clear_sent(cls):
        """Clear dispatched notifications (for test cleanup)."""
        cls.sent = []
