import asyncio
import email
import imaplib
import logging
from datetime import UTC, datetime, timedelta
from email.header import decode_header
from email.message import Message
from email.utils import parseaddr, parsedate_to_datetime

from bs4 import BeautifulSoup

from app.config import settings
from app.errors import MailboxError
from app.models.schemas import MailMessage
from app.providers.base import MailboxSearch

logger = logging.getLogger(__name__)


def _decode_mime_header(value: str | None) -> str:
    if not value:
        return ""
    decoded: list[str] = []
    for content, charset in decode_header(value):
        if isinstance(content, bytes):
            decoded.append(content.decode(charset or "utf-8", errors="replace"))
        else:
            decoded.append(content)
    return "".join(decoded)


def _html_to_text(html: str) -> str:
    return BeautifulSoup(html, "html.parser").get_text(" ", strip=True)


def extract_text_from_email(msg: Message) -> str:
    """Return the plain-text body, falling back to the HTML part reduced to text."""
    html_fallback = ""
    for part in msg.walk() if msg.is_multipart() else [msg]:
        if "attachment" in str(part.get("Content-Disposition", "")).lower():
            continue
        content_type = part.get_content_type()
        if content_type not in ("text/plain", "text/html"):
            continue
        payload = part.get_payload(decode=True)
        if payload is None:
            continue
        text = payload.decode(part.get_content_charset() or "utf-8", errors="replace").strip()
        if content_type == "text/plain":
            return text
        if not html_fallback:
            html_fallback = _html_to_text(text)
    return html_fallback


def _received_at(msg: Message) -> datetime | None:
    raw = msg.get("Date")
    if not raw:
        return None
    try:
        parsed = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


class ImapMailbox(MailboxSearch):
    """
    Searches an IMAP inbox for verification emails.

    IMAP SINCE only has day granularity, so the server-side search narrows by
    date, sender and subject, and messages received before `since` are dropped
    here using the Date header.
    """

    def __init__(
        self,
        server: str | None = None,
        port: int | None = None,
        username: str | None = None,
        password: str | None = None,
        mailbox: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.server = server or settings.imap_server
        self.port = port or settings.imap_port
        self.username = username or settings.imap_email
        self.password = password or settings.imap_password
        self.mailbox = mailbox or settings.imap_mailbox
        self.timeout = timeout

        if not self.server or not self.username or not self.password:
            logger.warning(
                "IMAP credentials not configured. "
                "Set IMAP_SERVER, IMAP_EMAIL and IMAP_PASSWORD environment variables."
            )

    async def search_messages(
        self, since: datetime, sender_filter: str, subject_filter: str
    ) -> list[MailMessage]:
        return await asyncio.to_thread(self._search_sync, since, sender_filter, subject_filter)

    def _search_sync(self, since: datetime, sender_filter: str, subject_filter: str) -> list[MailMessage]:
        if not self.server or not self.username or not self.password:
            raise MailboxError("IMAP credentials not configured")

        since_utc = since.astimezone(UTC) if since.tzinfo else since.replace(tzinfo=UTC)
        # SINCE compares dates in the server's timezone; start a day early and filter below
        since_date = (since_utc - timedelta(days=1)).strftime("%d-%b-%Y")
        criteria = ["SINCE", since_date]
        if sender_filter:
            criteria += ["FROM", f'"{sender_filter}"']
        if subject_filter:
            criteria += ["SUBJECT", f'"{subject_filter}"']

        messages: list[MailMessage] = []
        try:
            with imaplib.IMAP4_SSL(self.server, self.port, timeout=self.timeout) as mail:
                mail.login(self.username, self.password)
                status, _ = mail.select(self.mailbox, readonly=True)
                if status != "OK":
                    raise MailboxError(f"Could not open mailbox {self.mailbox}")

                status, data = mail.search(None, *criteria)
                if status != "OK":
                    raise MailboxError("Could not search messages")

                for msg_id in data[0].split():
                    status, msg_data = mail.fetch(msg_id, "(RFC822)")
                    if status != "OK" or not msg_data or not isinstance(msg_data[0], tuple):
                        continue
                    parsed = email.message_from_bytes(msg_data[0][1])
                    received_at = _received_at(parsed)
                    if received_at is None or received_at < since_utc:
                        continue
                    messages.append(
                        MailMessage(
                            message_id=parsed.get("Message-ID") or msg_id.decode("utf-8", errors="replace"),
                            sender=parseaddr(_decode_mime_header(parsed.get("From")))[1].lower(),
                            subject=_decode_mime_header(parsed.get("Subject")),
                            received_at=received_at,
                            body=extract_text_from_email(parsed),
                        )
                    )
        except (imaplib.IMAP4.error, OSError) as e:
            raise MailboxError(f"IMAP search failed: {e}") from e

        logger.debug(f"IMAP search returned {len(messages)} message(s) since {since_utc.isoformat()}")
        return messages
