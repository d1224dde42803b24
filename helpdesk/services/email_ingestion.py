"""
Inbound email ingestion.

WHAT: Turns one raw RFC 822 message into a ticket, its first article and
the article's attachments.

WHY: Mail is the main channel customers open tickets through. The
parsing is deliberately thin: subject, addresses, message id, the
preferred text body and the attachment parts.

HOW: Parses with the stdlib email package (policy.default), resolves or
creates the customer by sender address and writes ticket, article and
attachments in one SAVEPOINT. Attachments go through AttachmentStore, so
the same attachment arriving twice shares one stored payload.
"""

import logging
from dataclasses import dataclass, field
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core.exceptions import ValidationError
from helpdesk.dao.ticket import ArticleDAO, TicketDAO
from helpdesk.dao.user import UserDAO
from helpdesk.models.article import ArticleSender, TicketArticle
from helpdesk.models.store import Store
from helpdesk.models.ticket import Ticket
from helpdesk.services.attachment_store import AttachmentStore

logger = logging.getLogger(__name__)

ARTICLE_OBJECT_TYPE = "Ticket::Article"


@dataclass
class ParsedAttachment:
    filename: str
    content_type: str
    data: bytes
    content_id: Optional[str] = None
    inline: bool = False


@dataclass
class ParsedMail:
    """Normalized fields of one inbound message."""

    from_: str
    to: Optional[str]
    cc: Optional[str]
    reply_to: Optional[str]
    subject: Optional[str]
    message_id: Optional[str]
    body: str
    content_type: str
    attachments: List[ParsedAttachment] = field(default_factory=list)


@dataclass
class IngestResult:
    """What one ingested message produced."""

    ticket: Ticket
    article: TicketArticle
    attachments: List[Store]


def _header(message: EmailMessage, name: str) -> Optional[str]:
    value = str(message.get(name) or "").strip()
    return value or None


def parse_mail(raw: bytes) -> ParsedMail:
    """
    Parse raw message bytes.

    Raises:
        ValidationError: If the message has no From header
    """
    message = BytesParser(policy=policy.default).parsebytes(raw)

    sender = _header(message, "From")
    if sender is None:
        raise ValidationError("Inbound message has no sender")

    body_part = message.get_body(preferencelist=("plain", "html"))
    body = body_part.get_content() if body_part is not None else ""
    content_type = body_part.get_content_type() if body_part is not None else "text/plain"

    attachments = []
    for part in message.iter_attachments():
        disposition = str(part.get("Content-Disposition") or "").lower()
        attachments.append(
            ParsedAttachment(
                filename=part.get_filename() or "file",
                content_type=part.get_content_type() or "application/octet-stream",
                data=part.get_payload(decode=True) or b"",
                content_id=str(part.get("Content-ID") or "").strip("<>") or None,
                inline="inline" in disposition,
            )
        )

    return ParsedMail(
        from_=sender,
        to=_header(message, "To"),
        cc=_header(message, "Cc"),
        reply_to=_header(message, "Reply-To"),
        subject=_header(message, "Subject"),
        message_id=_header(message, "Message-ID"),
        body=body,
        content_type=content_type,
        attachments=attachments,
    )


class EmailIngestionService:
    """
    Creates tickets from inbound mail on the current session.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.users = UserDAO(session)
        self.tickets = TicketDAO(session)
        self.articles = ArticleDAO(session)
        self.store = AttachmentStore(session)

    async def process(self, raw: bytes) -> IngestResult:
        """
        Ingest one raw message.

        Args:
            raw: RFC 822 message bytes

        Returns:
            IngestResult with the new ticket, its first article and the
            stored attachments

        Raises:
            ValidationError: If the message has no usable sender
        """
        mail = parse_mail(raw)

        async with self.session.begin_nested():
            customer = await self.users.find_or_create_customer(mail.from_)
            ticket = await self.tickets.create_ticket(
                title=mail.subject or "-",
                customer_id=customer.id,
                created_by_id=customer.id,
            )
            article = await self.articles.create_article(
                ticket_id=ticket.id,
                body=mail.body,
                sender=ArticleSender.CUSTOMER,
                from_=mail.from_,
                to=mail.to,
                cc=mail.cc,
                reply_to=mail.reply_to,
                subject=mail.subject,
                message_id=mail.message_id,
                content_type=mail.content_type,
                created_by_id=customer.id,
            )

            attachments = []
            for attachment in mail.attachments:
                preferences = {"inline": attachment.inline}
                if attachment.content_id:
                    preferences["content_id"] = attachment.content_id
                attachments.append(
                    await self.store.add(
                        ARTICLE_OBJECT_TYPE,
                        article.id,
                        attachment.filename,
                        attachment.data,
                        content_type=attachment.content_type,
                        preferences=preferences,
                        created_by_id=customer.id,
                    )
                )

        logger.info(
            f"Ingested mail {mail.message_id} as ticket {ticket.number} "
            f"with {len(attachments)} attachments"
        )
        return IngestResult(ticket=ticket, article=article, attachments=attachments)
