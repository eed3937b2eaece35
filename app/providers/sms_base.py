from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class SMSResult:
    success: bool
    message_sid: str | None = None
    error_message: str | None = None


class SMSProvider(ABC):
    """Abstract base class for SMS providers used for run notifications."""

    @abstractmethod
    async def send_sms(self, to_number: str, message: str) -> SMSResult:
        """
        Send an SMS message.

        Args:
            to_number: The recipient's phone number.
            message: The message content.

        Returns:
            SMSResult with success status and message SID or error.
        """
        pass

    async def send_reservation_confirmation(self, to_number: str, details: str) -> SMSResult:
        return await self.send_sms(to_number, f"Reservation confirmed! {details}")

    async def send_reservation_failure(
        self, to_number: str, reason: str, details: str | None = None
    ) -> SMSResult:
        """Send a failure notification, naming the reservation when details are known."""
        if details:
            message = f"Unable to reserve {details}: {reason}"
        else:
            message = f"Unable to reserve: {reason}"
        return await self.send_sms(to_number, message)
