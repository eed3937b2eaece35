"""
Process-wide wiring of the reservation engine.

Builds the orchestrator and trigger loop from settings. The API modules use
the `automation_service` singleton; the FastAPI lifespan starts and stops it.
"""

import logging
from datetime import time

import pytz

from app.config import settings
from app.models.schemas import ContactInfo
from app.providers.base import BrowserDriver, MailboxSearch, ResultSink
from app.providers.imap_mailbox import ImapMailbox
from app.providers.selenium_driver import MockBrowserDriver, SeleniumBrowserDriver
from app.providers.twilio_provider import TwilioSMSProvider
from app.services.database_service import database_service
from app.services.notification_service import RunNotifier
from app.services.run_orchestrator import RunOrchestrator
from app.services.trigger_loop import TriggerLoop
from app.services.verification import VerificationWaiter

logger = logging.getLogger(__name__)


def get_timezone() -> pytz.BaseTzInfo:
    return pytz.timezone(settings.timezone)


def get_trigger_time() -> time:
    return time(settings.trigger_hour, settings.trigger_minute)


def build_browser_driver() -> BrowserDriver:
    if settings.browser_driver.lower() == "mock":
        logger.warning("BROWSER_DRIVER=mock - runs will not touch the reservation portal")
        return MockBrowserDriver()
    return SeleniumBrowserDriver()


def build_orchestrator(
    browser: BrowserDriver | None = None,
    mailbox: MailboxSearch | None = None,
    result_sinks: list[ResultSink] | None = None,
) -> RunOrchestrator:
    waiter = VerificationWaiter(
        mailbox or ImapMailbox(),
        sender=settings.verification_sender,
        subject=settings.verification_subject,
        code_length=settings.verification_code_length,
        poll_interval=settings.verification_poll_interval_seconds,
        timeout=settings.verification_timeout_seconds,
    )
    if result_sinks is None:
        result_sinks = [
            database_service,
            RunNotifier(TwilioSMSProvider(), settings.notify_phone_number),
        ]
    return RunOrchestrator(
        browser or build_browser_driver(),
        waiter,
        result_sinks,
        ContactInfo(
            name=settings.contact_name,
            phone=settings.contact_phone,
            email=settings.contact_email,
        ),
        page_load_timeout=settings.page_load_timeout_seconds,
        action_timeout=settings.action_timeout_seconds,
        browser_start_timeout=settings.browser_start_timeout_seconds,
        submit_settle=settings.submit_settle_seconds,
        run_timeout=settings.run_timeout_seconds,
    )


def build_trigger_loop(orchestrator: RunOrchestrator) -> TriggerLoop:
    return TriggerLoop(
        database_service,
        orchestrator,
        interval_seconds=settings.tick_interval_seconds,
        enabled=settings.automation_enabled,
        grace_minutes=settings.trigger_grace_minutes,
        tz=get_timezone(),
        lead_days=settings.lead_days,
        trigger_time=get_trigger_time(),
    )


class AutomationService:
    """Owns the single orchestrator and trigger loop for the process."""

    def __init__(self) -> None:
        self._orchestrator: RunOrchestrator | None = None
        self._trigger_loop: TriggerLoop | None = None

    @property
    def orchestrator(self) -> RunOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = build_orchestrator()
        return self._orchestrator

    @property
    def trigger_loop(self) -> TriggerLoop:
        if self._trigger_loop is None:
            self._trigger_loop = build_trigger_loop(self.orchestrator)
        return self._trigger_loop

    def configure(
        self, orchestrator: RunOrchestrator, trigger_loop: TriggerLoop | None = None
    ) -> None:
        self._orchestrator = orchestrator
        self._trigger_loop = trigger_loop

    def start(self) -> None:
        missing = self.orchestrator.contact.missing_fields()
        if missing:
            logger.warning(
                f"Contact details not configured ({', '.join(missing)}). "
                "Runs will be rejected until CONTACT_NAME, CONTACT_PHONE and CONTACT_EMAIL are set."
            )
        self.trigger_loop.start()

    async def shutdown(self) -> None:
        if self._trigger_loop is not None:
            await self._trigger_loop.stop()
        if self._orchestrator is not None:
            await self._orchestrator.stop()
            await self._orchestrator.browser.close()


automation_service = AutomationService()
