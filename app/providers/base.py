from abc import ABC, abstractmethod
from datetime import datetime

from app.models.schemas import MailMessage, ReservationConfig, RunResult


class BrowserDriver(ABC):
    """
    Abstract browser session used by the run orchestrator.

    Implementations own the DOM mechanics. Values must be assigned instantly and
    followed by synthetic input/change events rather than typed key by key.
    """

    @abstractmethod
    async def start(self) -> bool:
        """Open the browser session. Returns False if it could not be started."""
        pass

    @abstractmethod
    async def navigate(self, url: str) -> bool:
        """Load the given URL in the session opened by start()."""
        pass

    @abstractmethod
    async def wait_for_dom_ready(self, timeout: float) -> bool:
        """Wait until the document is ready. Returns False on timeout."""
        pass

    @abstractmethod
    async def find_and_click(self, selector: str) -> bool:
        pass

    @abstractmethod
    async def type_text(self, text: str, selector: str) -> bool:
        """Assign text to the control matching selector (or choose the matching option)."""
        pass

    @abstractmethod
    async def fill_all_contact_fields(self, name: str, phone: str, email: str) -> bool:
        """Fill name, phone and email in one pass, followed by a review pause."""
        pass

    @abstractmethod
    async def is_email_verification_required(self) -> bool:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class MailboxSearch(ABC):
    """Abstract mailbox used to find verification emails."""

    @abstractmethod
    async def search_messages(
        self, since: datetime, sender_filter: str, subject_filter: str
    ) -> list[MailMessage]:
        """Return messages from sender_filter matching subject_filter received since `since`."""
        pass


class ConfigurationStore(ABC):
    @abstractmethod
    async def list_enabled_configurations(self) -> list[ReservationConfig]:
        pass

    @abstractmethod
    async def get_configuration(self, config_id: str) -> ReservationConfig | None:
        pass


class ResultSink(ABC):
    """Receives exactly one RunResult per admitted run."""

    @abstractmethod
    async def record_result(self, result: RunResult) -> None:
        pass
