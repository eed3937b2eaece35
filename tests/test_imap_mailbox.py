"""
Tests for the IMAP mailbox in app/providers/imap_mailbox.py.

imaplib.IMAP4_SSL is replaced with a mock connection serving prepared
RFC 822 messages.
"""

import imaplib
from datetime import UTC, datetime
from email.message import EmailMessage
from email.utils import format_datetime
from unittest.mock import MagicMock, patch

import pytest

from app.errors import MailboxError
from app.providers.imap_mailbox import ImapMailbox, extract_text_from_email

SINCE = datetime(2025, 3, 9, 23, 0, tzinfo=UTC)


def make_email(received_at: datetime, body: str, html: str | None = None) -> bytes:
    msg = EmailMessage()
    msg["From"] = "City Recreation <NoReply@frontdesksuite.com>"
    msg["Subject"] = "Verify your email"
    msg["Date"] = format_datetime(received_at)
    msg["Message-ID"] = f"<{received_at.timestamp()}@frontdesksuite.com>"
    msg.set_content(body)
    if html is not None:
        msg.add_alternative(html, subtype="html")
    return msg.as_bytes()


@pytest.fixture
def mailbox() -> ImapMailbox:
    return ImapMailbox(
        server="imap.example.com",
        port=993,
        username="me@example.com",
        password="app-password",
        mailbox="INBOX",
    )


@pytest.fixture
def mock_imap():
    with patch("app.providers.imap_mailbox.imaplib.IMAP4_SSL") as mock_class:
        connection = MagicMock()
        mock_class.return_value.__enter__.return_value = connection
        connection.select.return_value = ("OK", [b"2"])
        yield mock_class, connection


def serve(connection: MagicMock, raw_messages: list[bytes]) -> None:
    ids = b" ".join(str(i + 1).encode() for i in range(len(raw_messages)))
    connection.search.return_value = ("OK", [ids])
    connection.fetch.side_effect = [("OK", [(b"header", raw), b")"]) for raw in raw_messages]


class TestExtractText:
    """Tests for extract_text_from_email."""

    def test_plain_text_preferred(self) -> None:
        import email

        raw = make_email(SINCE, "Your verification code is: 4821", "<p>Code <b>9999</b></p>")

        assert extract_text_from_email(email.message_from_bytes(raw)) == "Your verification code is: 4821"

    def test_html_only(self) -> None:
        msg = EmailMessage()
        msg.set_content("<p>Your verification code is:</p><b>3141</b>", subtype="html")

        assert extract_text_from_email(msg) == "Your verification code is: 3141"


class TestSearchMessages:
    """Tests for ImapMailbox.search_messages."""

    @pytest.mark.asyncio
    async def test_returns_messages_since_search_start(self, mailbox: ImapMailbox, mock_imap) -> None:
        mock_class, connection = mock_imap
        serve(
            connection,
            [
                make_email(datetime(2025, 3, 9, 22, 55, tzinfo=UTC), "Your verification code is: 1111"),
                make_email(datetime(2025, 3, 9, 23, 1, tzinfo=UTC), "Your verification code is: 2222"),
            ],
        )

        messages = await mailbox.search_messages(SINCE, "noreply@frontdesksuite.com", "Verify your email")

        assert len(messages) == 1
        message = messages[0]
        assert message.body == "Your verification code is: 2222"
        assert message.sender == "noreply@frontdesksuite.com"
        assert message.subject == "Verify your email"
        assert message.received_at == datetime(2025, 3, 9, 23, 1, tzinfo=UTC)

        mock_class.assert_called_once_with("imap.example.com", 993, timeout=30.0)
        connection.login.assert_called_once_with("me@example.com", "app-password")
        connection.select.assert_called_once_with("INBOX", readonly=True)
        connection.search.assert_called_once_with(
            None,
            "SINCE",
            "08-Mar-2025",
            "FROM",
            '"noreply@frontdesksuite.com"',
            "SUBJECT",
            '"Verify your email"',
        )

    @pytest.mark.asyncio
    async def test_search_date_starts_a_day_early(self, mailbox: ImapMailbox, mock_imap) -> None:
        """Just after midnight UTC the server's local date may still be the previous day."""
        _, connection = mock_imap
        since = datetime(2025, 3, 4, 0, 30, tzinfo=UTC)
        serve(connection, [make_email(datetime(2025, 3, 4, 0, 31, tzinfo=UTC), "Your verification code is: 7070")])

        messages = await mailbox.search_messages(since, "", "")

        connection.search.assert_called_once_with(None, "SINCE", "03-Mar-2025")
        assert [m.body for m in messages] == ["Your verification code is: 7070"]

    @pytest.mark.asyncio
    async def test_empty_mailbox(self, mailbox: ImapMailbox, mock_imap) -> None:
        _, connection = mock_imap
        connection.search.return_value = ("OK", [b""])

        assert await mailbox.search_messages(SINCE, "", "") == []
        connection.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_login_failure_raises_mailbox_error(self, mailbox: ImapMailbox, mock_imap) -> None:
        _, connection = mock_imap
        connection.login.side_effect = imaplib.IMAP4.error("AUTHENTICATIONFAILED")

        with pytest.raises(MailboxError, match="AUTHENTICATIONFAILED"):
            await mailbox.search_messages(SINCE, "", "")

    @pytest.mark.asyncio
    async def test_unreachable_server(self, mailbox: ImapMailbox, mock_imap) -> None:
        mock_class, _ = mock_imap
        mock_class.side_effect = OSError("Connection refused")

        with pytest.raises(MailboxError):
            await mailbox.search_messages(SINCE, "", "")

    @pytest.mark.asyncio
    async def test_missing_credentials(self) -> None:
        with patch("app.providers.imap_mailbox.settings") as mock_settings:
            mock_settings.imap_server = ""
            mock_settings.imap_port = 993
            mock_settings.imap_email = ""
            mock_settings.imap_password = ""
            mock_settings.imap_mailbox = "INBOX"
            mailbox = ImapMailbox()

        with pytest.raises(MailboxError, match="not configured"):
            await mailbox.search_messages(SINCE, "", "")
