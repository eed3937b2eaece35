import logging

from app.models.schemas import RunResult
from app.providers.base import ResultSink
from app.providers.sms_base import SMSProvider

logger = logging.getLogger(__name__)


def describe_result(result: RunResult) -> str:
    """Short human summary, e.g. "Badminton at Richcraft, 8:30 AM on 2025-03-12"."""
    details = result.details
    summary = details.get("sport", "")
    if details.get("facility"):
        summary += f" at {details['facility']}"
    if details.get("time"):
        summary += f", {details['time']}"
    if details.get("date"):
        summary += f" on {details['date']}"
    return summary.strip(", ") or (result.config_name or result.config_id)


class RunNotifier(ResultSink):
    """Sends an SMS for every finished run when a notify number is configured."""

    def __init__(self, sms_provider: SMSProvider, to_number: str) -> None:
        self.sms_provider = sms_provider
        self.to_number = to_number

    async def record_result(self, result: RunResult) -> None:
        if not self.to_number:
            logger.debug("No notify number configured, skipping run notification")
            return

        summary = describe_result(result)
        if result.success:
            sms = await self.sms_provider.send_reservation_confirmation(self.to_number, summary)
        else:
            sms = await self.sms_provider.send_reservation_failure(
                self.to_number, result.message, summary
            )
        if not sms.success:
            logger.warning(f"Run notification not delivered: {sms.error_message}")
