"""
Error taxonomy for reservation runs.

Every error raised inside a run carries a FailureReason so the orchestrator can
turn it into a classified, human-readable RunResult instead of a raw exception.
"""

from app.models.schemas import FailureReason, RunStage


class ReservationError(Exception):
    """Base class for all errors that terminate (or prevent) a reservation run."""

    reason: FailureReason = FailureReason.AUTOMATION_FAILED

    def __init__(
        self,
        message: str,
        reason: FailureReason | None = None,
        stage: RunStage | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if reason is not None:
            self.reason = reason
        self.stage = stage

    @property
    def user_message(self) -> str:
        if self.stage is not None:
            return f"{self.reason.label} during {self.stage.value}: {self.message}"
        return f"{self.reason.label}: {self.message}"


class ConfigValidationError(ReservationError):
    """Malformed configuration or settings; raised before a run is admitted."""

    reason = FailureReason.VALIDATION_FAILED

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


class AutomationError(ReservationError):
    """Browser interaction failed: element not found, page load timeout, script failure."""


class VerificationTimeoutError(ReservationError):
    reason = FailureReason.VERIFICATION_TIMEOUT


class RunCancelledError(ReservationError):
    reason = FailureReason.CANCELLED


class MailboxError(Exception):
    """The mailbox collaborator could not be searched."""
