"""
Run Orchestrator: drives a single reservation attempt through the portal.

Stages run strictly forward:

    navigating -> selecting_sport -> selecting_time_slot -> filling_contact
        -> (verifying_email) -> submitting -> succeeded | failed

At most one run is active at a time. Every admitted run produces exactly one
RunResult, which is handed to each result sink, and every terminal transition
(success, failure, cancellation) releases the run slot, discards the
verification attempt and closes the browser session.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time

from pydantic import ValidationError

from app.errors import (
    AutomationError,
    ConfigValidationError,
    ReservationError,
    RunCancelledError,
)
from app.models.schemas import (
    ContactInfo,
    FailureReason,
    ReservationConfig,
    RunResult,
    RunStage,
    RunState,
    RunStatus,
    RunType,
    TriggerInstant,
    details_for,
)
from app.providers.base import BrowserDriver, ResultSink
from app.providers.portal_dom_schema import DOM
from app.services.run_status import RunStatusHolder
from app.services.schedule import format_slot_time
from app.services.verification import VerificationWaiter

logger = logging.getLogger(__name__)

# Time kept back from the run budget for entering the code and submitting
VERIFICATION_RESERVE_SECONDS = 10.0


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class ActiveRun:
    run_id: int
    config: ReservationConfig
    run_type: RunType
    started_at: datetime
    slot_time: time
    reservation_date: date | None
    stage: RunStage = RunStage.IDLE
    finished: bool = False
    task: asyncio.Task | None = None
    cleanup_task: asyncio.Task | None = None
    done: asyncio.Future = field(default_factory=lambda: asyncio.get_running_loop().create_future())


class RunOrchestrator:
    def __init__(
        self,
        browser: BrowserDriver,
        waiter: VerificationWaiter,
        result_sinks: list[ResultSink] | None = None,
        contact: ContactInfo | None = None,
        *,
        page_load_timeout: float = 15.0,
        action_timeout: float = 30.0,
        browser_start_timeout: float = 60.0,
        submit_settle: float = 2.0,
        run_timeout: float = 420.0,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.browser = browser
        self.waiter = waiter
        self.result_sinks = list(result_sinks or [])
        self.contact = contact or ContactInfo(name="", phone="", email="")
        self.page_load_timeout = page_load_timeout
        self.action_timeout = action_timeout
        self.browser_start_timeout = browser_start_timeout
        self.submit_settle = submit_settle
        self.run_timeout = run_timeout
        self._clock = clock
        self._sleep = sleep

        self.status_holder = RunStatusHolder()
        self.last_result: RunResult | None = None
        self._active: ActiveRun | None = None
        self._run_counter = 0

    @property
    def status(self) -> RunStatus:
        return self.status_holder.current

    @property
    def is_running(self) -> bool:
        return self._active is not None

    def subscribe(self) -> asyncio.Queue[RunStatus]:
        return self.status_holder.subscribe()

    def unsubscribe(self, queue: asyncio.Queue[RunStatus]) -> None:
        self.status_holder.unsubscribe(queue)

    def validate(self, config: ReservationConfig) -> None:
        """Raise ConfigValidationError if the configuration or contact details cannot be run."""
        errors: list[str] = []
        try:
            ReservationConfig.model_validate(config.model_dump())
        except ValidationError as e:
            errors.extend(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
        if not config.day_time_slots:
            errors.append("No time slots selected")
        errors.extend(f"Contact {name} is not configured" for name in self.contact.missing_fields())
        if errors:
            raise ConfigValidationError(errors)

    def dispatch(
        self,
        config: ReservationConfig,
        *,
        trigger: TriggerInstant | None = None,
        run_type: RunType = RunType.MANUAL,
    ) -> bool:
        """
        Admit a run without waiting for it to finish.

        Returns:
            True if the run was started, False if another run is active.

        Raises:
            ConfigValidationError: The configuration or contact details are invalid.
        """
        return self._admit(config, trigger, run_type) is not None

    def _admit(
        self, config: ReservationConfig, trigger: TriggerInstant | None, run_type: RunType
    ) -> ActiveRun | None:
        self.validate(config)

        if self._active is not None:
            logger.warning(
                f"Run for '{config.name}' rejected: already running '{self._active.config.name}'"
            )
            return None

        if trigger is not None:
            slot_time, reservation_date = trigger.slot_time, trigger.reservation_date
        else:
            _, slot_time = config.first_slot()  # type: ignore[misc]
            reservation_date = None

        self._run_counter += 1
        run = ActiveRun(
            run_id=self._run_counter,
            config=config,
            run_type=run_type,
            started_at=self._clock(),
            slot_time=slot_time,
            reservation_date=reservation_date,
        )
        self._active = run
        self.status_holder.reset(
            state=RunState.RUNNING,
            stage=RunStage.IDLE,
            config_id=config.id,
            config_name=config.name,
            run_type=run_type,
            started_at=run.started_at,
        )
        logger.info(
            f"Starting {run_type.value} run #{run.run_id} for '{config.name}' "
            f"({config.sport_name} at {format_slot_time(slot_time)})"
        )

        run.task = asyncio.create_task(self._run_guarded(run), name=f"reservation-run-{run.run_id}")
        run.task.add_done_callback(lambda task: self._on_task_done(run, task))
        return run

    def run_now(self, config: ReservationConfig) -> bool:
        """Manual entry point: bypasses the schedule, still subject to single-flight."""
        return self.dispatch(config, run_type=RunType.MANUAL)

    async def run(
        self,
        config: ReservationConfig,
        *,
        trigger: TriggerInstant | None = None,
        run_type: RunType = RunType.MANUAL,
    ) -> RunResult | None:
        """Dispatch a run and wait for its result. Returns None if another run is active."""
        run = self._admit(config, trigger, run_type)
        if run is None:
            return None
        return await asyncio.shield(run.done)

    async def stop(self) -> bool:
        """Cancel the active run. Returns False if nothing was running."""
        run = self._active
        if run is None or run.task is None:
            logger.info("Stop requested but no run is active")
            return False

        logger.warning(f"Stopping run #{run.run_id} for '{run.config.name}' during {run.stage.value}")
        run.task.cancel()
        try:
            await run.task
        except asyncio.CancelledError:
            pass

        if run.cleanup_task is not None:
            await run.cleanup_task
        if not run.finished:
            await self._finish(run, self._failure(run, RunCancelledError("Run stopped", stage=run.stage)))
        return True

    async def _run_guarded(self, run: ActiveRun) -> RunResult:
        try:
            result = await asyncio.wait_for(self._execute(run), timeout=self.run_timeout)
        except TimeoutError:
            result = self._failure(
                run,
                ReservationError(
                    f"Run did not finish within {self.run_timeout:g}s",
                    reason=FailureReason.RUN_TIMEOUT,
                    stage=run.stage,
                ),
            )
        except ReservationError as e:
            result = self._failure(run, e)
        except asyncio.CancelledError:
            await self._finish(run, self._failure(run, RunCancelledError("Run stopped", stage=run.stage)))
            raise
        except Exception as e:
            logger.exception(f"Unexpected error in run #{run.run_id}")
            result = self._failure(run, AutomationError(str(e) or type(e).__name__, stage=run.stage))

        await self._finish(run, result)
        return result

    def _on_task_done(self, run: ActiveRun, task: asyncio.Task) -> None:
        # A task cancelled before its first step never enters _run_guarded
        if task.cancelled() and not run.finished:
            result = self._failure(run, RunCancelledError("Run stopped before it started", stage=run.stage))
            run.finished = True
            self._release(run, result)
            run.cleanup_task = asyncio.get_running_loop().create_task(self._cleanup(result))

    def _enter(self, run: ActiveRun, stage: RunStage) -> None:
        run.stage = stage
        self.status_holder.update(stage=stage)
        logger.info(f"Run #{run.run_id}: {stage.value}")

    async def _step(
        self,
        run: ActiveRun,
        action: Awaitable[bool],
        description: str,
        reason: FailureReason = FailureReason.ELEMENT_NOT_FOUND,
        timeout: float | None = None,
    ) -> None:
        timeout = self.action_timeout if timeout is None else timeout
        try:
            ok = await asyncio.wait_for(action, timeout=timeout)
        except TimeoutError:
            raise AutomationError(
                f"{description} timed out after {timeout:g}s", reason=reason, stage=run.stage
            ) from None
        if not ok:
            raise AutomationError(f"{description} failed", reason=reason, stage=run.stage)

    async def _execute(self, run: ActiveRun) -> RunResult:
        config = run.config
        slot_label = format_slot_time(run.slot_time)

        self._enter(run, RunStage.NAVIGATING)
        # page_load_timeout covers loading the page only, not browser startup
        await self._step(
            run,
            self.browser.start(),
            "Starting browser session",
            FailureReason.AUTOMATION_FAILED,
            timeout=self.browser_start_timeout,
        )
        await self._step(
            run,
            self.browser.navigate(config.facility_url),
            f"Loading {config.facility_url}",
            FailureReason.PAGE_LOAD_TIMEOUT,
            timeout=self.page_load_timeout,
        )
        await self._step(
            run,
            self.browser.wait_for_dom_ready(self.page_load_timeout),
            "Waiting for the reservation page",
            FailureReason.PAGE_LOAD_TIMEOUT,
            timeout=self.page_load_timeout,
        )

        self._enter(run, RunStage.SELECTING_SPORT)
        await self._step(run, self.browser.find_and_click(DOM.SPORT.sport_control), "Opening sport selector")
        await self._step(
            run,
            self.browser.type_text(config.sport_name, DOM.SPORT.sport_control),
            f"Selecting sport '{config.sport_name}'",
        )
        await self._step(
            run,
            self.browser.type_text(str(config.number_of_people), DOM.SPORT.people_input),
            f"Entering party size {config.number_of_people}",
        )

        self._enter(run, RunStage.SELECTING_TIME_SLOT)
        await self._step(run, self.browser.find_and_click(DOM.TIME_SLOT.time_control), "Opening time slots")
        await self._step(
            run,
            self.browser.type_text(slot_label, DOM.TIME_SLOT.time_control),
            f"Selecting time slot {slot_label}",
        )

        self._enter(run, RunStage.FILLING_CONTACT)
        search_since = self._clock()
        await self._step(
            run,
            self.browser.fill_all_contact_fields(self.contact.name, self.contact.phone, self.contact.email),
            "Filling contact information",
        )

        try:
            needs_verification = await asyncio.wait_for(
                self.browser.is_email_verification_required(), self.action_timeout
            )
        except TimeoutError:
            raise AutomationError(
                "Checking for email verification timed out", stage=run.stage
            ) from None

        if needs_verification:
            self._enter(run, RunStage.VERIFYING_EMAIL)
            code = await self.waiter.await_code(search_since, timeout=self._verification_budget(run))
            self.waiter.discard()
            await self._step(
                run, self.browser.type_text(code, DOM.VERIFICATION.code_input), "Entering verification code"
            )
            await self._step(
                run, self.browser.find_and_click(DOM.VERIFICATION.verify_button), "Confirming verification code"
            )

        self._enter(run, RunStage.SUBMITTING)
        await self._step(run, self.browser.find_and_click(DOM.SUBMIT.final_submit), "Submitting reservation")
        await self._sleep(self.submit_settle)

        return RunResult(
            success=True,
            message=f"Reserved {config.sport_name} at {config.facility_name} for {slot_label}",
            details=details_for(config, time=slot_label, date=run.reservation_date),
            config_id=config.id,
            config_name=config.name,
            run_type=run.run_type,
            started_at=run.started_at,
            finished_at=self._clock(),
        )

    def _verification_budget(self, run: ActiveRun) -> float:
        elapsed = (self._clock() - run.started_at).total_seconds()
        remaining = self.run_timeout - elapsed - VERIFICATION_RESERVE_SECONDS
        return max(min(self.waiter.timeout, remaining), 0.0)

    def _failure(self, run: ActiveRun, error: ReservationError) -> RunResult:
        stage = error.stage or run.stage
        if error.reason == FailureReason.CANCELLED:
            logger.warning(f"Run #{run.run_id} cancelled during {stage.value}")
        else:
            logger.error(f"Run #{run.run_id} failed: {error.user_message}")
        return RunResult(
            success=False,
            message=error.user_message,
            details=details_for(
                run.config,
                time=format_slot_time(run.slot_time),
                date=run.reservation_date,
            ),
            config_id=run.config.id,
            config_name=run.config.name,
            run_type=run.run_type,
            reason=error.reason,
            failed_stage=stage,
            started_at=run.started_at,
            finished_at=self._clock(),
        )

    def _release(self, run: ActiveRun, result: RunResult) -> None:
        if self._active is run:
            self._active = None
        self.waiter.discard()
        self.last_result = result
        if result.success:
            self.status_holder.update(state=RunState.SUCCEEDED, stage=RunStage.SUCCEEDED, reason=None)
        else:
            self.status_holder.update(state=RunState.FAILED, stage=RunStage.FAILED, reason=result.message)
        if not run.done.done():
            run.done.set_result(result)

    async def _finish(self, run: ActiveRun, result: RunResult) -> None:
        if run.finished:
            return
        run.finished = True
        self._release(run, result)
        await self._cleanup(result)

    async def _cleanup(self, result: RunResult) -> None:
        try:
            await asyncio.wait_for(self.browser.close(), timeout=self.action_timeout)
        except Exception as e:
            logger.warning(f"Error closing browser session: {e}")

        for sink in self.result_sinks:
            try:
                await sink.record_result(result)
            except Exception:
                logger.exception(f"Result sink {type(sink).__name__} failed")
