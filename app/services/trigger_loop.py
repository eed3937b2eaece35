import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, time, timedelta
from datetime import tzinfo as TzInfo

from app.errors import ConfigValidationError
from app.models.schemas import RunType, TriggerInstant
from app.providers.base import ConfigurationStore
from app.services.run_orchestrator import RunOrchestrator
from app.services.schedule import DEFAULT_LEAD_DAYS, DEFAULT_TRIGGER_TIME, due_trigger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchOutcome:
    config_id: str
    trigger: TriggerInstant
    admitted: bool
    error: str | None = None


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TriggerLoop:
    """
    Periodic tick that starts automatic runs when a configuration's trigger is due.

    The loop never awaits a run: it hands the configuration to the orchestrator
    and moves on. Each (configuration, trigger instant) pair is dispatched at
    most once, so a grace window wider than the tick interval cannot start the
    same booking twice.
    """

    def __init__(
        self,
        config_store: ConfigurationStore,
        orchestrator: RunOrchestrator,
        *,
        interval_seconds: float = 60.0,
        enabled: bool = True,
        grace_minutes: int = 0,
        tz: TzInfo | None = None,
        lead_days: int = DEFAULT_LEAD_DAYS,
        trigger_time: time = DEFAULT_TRIGGER_TIME,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config_store = config_store
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self.grace_minutes = grace_minutes
        self.tz = tz
        self.lead_days = lead_days
        self.trigger_time = trigger_time
        self._clock = clock
        self._enabled = enabled
        self._dispatched: set[tuple[str, datetime]] = set()
        self._task: asyncio.Task | None = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True
        logger.info("Automation enabled")

    def disable(self) -> None:
        self._enabled = False
        logger.info("Automation disabled")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="trigger-loop")
        logger.info(f"Trigger loop started (every {self.interval_seconds:.0f}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Trigger loop stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("Trigger loop tick failed")
            await asyncio.sleep(self._seconds_until_next_tick())

    def _seconds_until_next_tick(self) -> float:
        now = self._clock().timestamp()
        delay = self.interval_seconds - (now % self.interval_seconds)
        return delay if delay > 0 else self.interval_seconds

    async def tick(self, now: datetime | None = None) -> list[DispatchOutcome]:
        """
        Dispatch every enabled configuration whose trigger is due at `now`.

        Returns one DispatchOutcome per due trigger that had not already been
        dispatched. Returns an empty list when automation is disabled.
        """
        if not self._enabled:
            logger.debug("Automation disabled, skipping tick")
            return []

        now = now or self._clock()
        self._prune(now)

        outcomes: list[DispatchOutcome] = []
        for config in await self.config_store.list_enabled_configurations():
            trigger = due_trigger(
                config,
                now,
                tz=self.tz,
                lead_days=self.lead_days,
                trigger_time=self.trigger_time,
                grace_minutes=self.grace_minutes,
            )
            if trigger is None:
                continue
            key = (config.id, trigger.at)
            if key in self._dispatched:
                continue
            self._dispatched.add(key)

            logger.info(
                f"Trigger due for '{config.name}': {trigger.weekday.value} "
                f"{trigger.slot_time.strftime('%H:%M')} on {trigger.reservation_date}"
            )
            try:
                admitted = self.orchestrator.dispatch(config, trigger=trigger, run_type=RunType.AUTOMATIC)
            except ConfigValidationError as e:
                logger.error(f"Skipping '{config.name}': {e.message}")
                outcomes.append(DispatchOutcome(config.id, trigger, admitted=False, error=e.message))
                continue
            outcomes.append(
                DispatchOutcome(
                    config.id,
                    trigger,
                    admitted=admitted,
                    error=None if admitted else "already running",
                )
            )
        return outcomes

    def _prune(self, now: datetime) -> None:
        cutoff = now - timedelta(minutes=self.grace_minutes + 1, days=1)
        self._dispatched = {key for key in self._dispatched if key[1] >= cutoff}
