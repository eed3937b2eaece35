"""
Verification Waiter: polls a mailbox for a short-lived email verification code.

The portal emails a fixed-length numeric code after the contact form is
submitted. The waiter only trusts messages received at or after the moment
the form was submitted, prefers the most recent matching message, and gives
up at a hard deadline.
"""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from bs4 import BeautifulSoup

from app.errors import MailboxError, VerificationTimeoutError
from app.models.schemas import RunStage
from app.providers.base import MailboxSearch

logger = logging.getLogger(__name__)

LABELLED_CODE_PATTERNS = (
    r"verification code is:?\s*(\d{{{n}}})\b",
    r"code is:?\s*(\d{{{n}}})\b",
    r"code:\s*(\d{{{n}}})\b",
)


def extract_code(body: str, length: int = 4) -> str | None:
    """
    Extract a verification code of exactly `length` digits from an email body.

    Labelled forms ("Your verification code is: 1234") are tried first, then a
    bare standalone number of the right length. HTML bodies are reduced to
    text before matching.
    """
    if not body:
        return None
    if "<" in body and ">" in body:
        body = BeautifulSoup(body, "html.parser").get_text(" ", strip=True)

    for pattern in LABELLED_CODE_PATTERNS:
        match = re.search(pattern.format(n=length), body, re.IGNORECASE)
        if match:
            return match.group(1)

    match = re.search(rf"(?<!\d)\d{{{length}}}(?!\d)", body)
    return match.group(0) if match else None


@dataclass
class VerificationAttempt:
    """Live verification window. seen_codes holds each distinct code found, newest first."""

    search_since: datetime
    deadline: datetime
    seen_codes: list[str] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class VerificationWaiter:
    def __init__(
        self,
        mailbox: MailboxSearch,
        *,
        sender: str,
        subject: str,
        code_length: int = 4,
        poll_interval: float = 5.0,
        timeout: float = 300.0,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.mailbox = mailbox
        self.sender = sender
        self.subject = subject
        self.code_length = code_length
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._clock = clock
        self._sleep = sleep
        self._attempt: VerificationAttempt | None = None

    @property
    def current_attempt(self) -> VerificationAttempt | None:
        return self._attempt

    def discard(self) -> None:
        self._attempt = None

    async def await_code(self, search_since: datetime, timeout: float | None = None) -> str:
        """
        Poll the mailbox until a verification code arrives or the deadline passes.

        Args:
            search_since: Only messages received at or after this instant count.
            timeout: Seconds until the deadline; defaults to the waiter's timeout.

        Returns:
            The code from the most recently received matching message.

        Raises:
            VerificationTimeoutError: No code arrived before the deadline.
        """
        timeout = self.timeout if timeout is None else timeout
        start = self._clock()
        attempt = VerificationAttempt(
            search_since=search_since,
            deadline=start + timedelta(seconds=timeout),
        )
        self._attempt = attempt
        logger.info(
            f"Waiting up to {timeout:g}s for verification email from {self.sender} "
            f"(since {search_since.isoformat()})"
        )

        polls = 0
        while True:
            remaining = (attempt.deadline - self._clock()).total_seconds()
            if remaining <= 0:
                break

            polls += 1
            code = await self._poll_once(attempt, remaining)
            if code is not None:
                logger.info(f"Verification code found after {polls} poll(s)")
                return code

            remaining = (attempt.deadline - self._clock()).total_seconds()
            if remaining <= 0:
                break
            await self._sleep(min(self.poll_interval, remaining))

        raise VerificationTimeoutError(
            f"No verification code received within {timeout:g}s",
            stage=RunStage.VERIFYING_EMAIL,
        )

    async def _poll_once(self, attempt: VerificationAttempt, remaining: float) -> str | None:
        try:
            messages = await asyncio.wait_for(
                self.mailbox.search_messages(attempt.search_since, self.sender, self.subject),
                timeout=remaining,
            )
        except TimeoutError:
            logger.warning("Mailbox search did not finish before the verification deadline")
            return None
        except MailboxError as e:
            logger.warning(f"Mailbox search failed, will retry: {e}")
            return None

        candidates = sorted(
            (m for m in messages if m.received_at >= attempt.search_since),
            key=lambda m: m.received_at,
            reverse=True,
        )
        latest: str | None = None
        for message in candidates:
            code = extract_code(message.body, self.code_length)
            if code is None:
                continue
            if latest is None:
                latest = code
            if code not in attempt.seen_codes:
                attempt.seen_codes.append(code)

        if latest is not None and len(attempt.seen_codes) > 1:
            logger.info(
                f"Using code from the newest message, ignoring "
                f"{len(attempt.seen_codes) - 1} older code(s) in the search window"
            )
        return latest
