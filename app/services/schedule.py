"""
Schedule calculation for recurring reservation configurations.

Reservations open a fixed number of days (the lead time) before the slot day,
at a fixed time of day. These functions turn a configuration's weekly time
slots into absolute trigger instants. They are pure: no I/O and no cached
state, so any edit to a configuration is picked up on the next call.
"""

from datetime import date, datetime, time, timedelta
from datetime import tzinfo as TzInfo

import pytz

from app.models.schemas import ReservationConfig, TriggerInstant, Weekday

DEFAULT_LEAD_DAYS = 2
DEFAULT_TRIGGER_TIME = time(18, 0)
DEFAULT_HORIZON_WEEKS = 4


def _localize(day: date, at: time, tz: TzInfo | None, fallback: TzInfo | None) -> datetime:
    """Combine a date and wall-clock time, DST-correct when tz is a pytz zone."""
    naive = datetime.combine(day, at)
    if tz is not None:
        if isinstance(tz, pytz.BaseTzInfo):
            return tz.localize(naive)
        return naive.replace(tzinfo=tz)
    return naive.replace(tzinfo=fallback)


def _in_zone(now: datetime, tz: TzInfo | None) -> datetime:
    """Express `now` in tz. A naive `now` is taken as wall-clock time in tz."""
    if tz is None:
        return now
    if now.tzinfo is None:
        return _localize(now.date(), now.time(), tz, None)
    return now.astimezone(tz)


def next_trigger(
    config: ReservationConfig,
    now: datetime,
    *,
    tz: TzInfo | None = None,
    lead_days: int = DEFAULT_LEAD_DAYS,
    trigger_time: time = DEFAULT_TRIGGER_TIME,
    horizon_weeks: int = DEFAULT_HORIZON_WEEKS,
) -> TriggerInstant | None:
    """
    Compute the next instant at which a booking for this configuration should start.

    For each (weekday, time) slot, take the occurrence of that weekday on or
    after today, move back lead_days, and pin the time of day to trigger_time.
    If that instant is not strictly after `now`, roll forward a week at a time
    (up to horizon_weeks). The earliest candidate across all slots wins.

    Args:
        config: The reservation configuration.
        now: The current time. Naive or aware; if tz is given it is converted.
        tz: Zone used to build wall-clock candidates (pytz zones are localized).
        lead_days: Days between the trigger day and the slot day.
        trigger_time: Wall-clock time at which bookings open.
        horizon_weeks: How many extra weeks to look ahead.

    Returns:
        The earliest TriggerInstant strictly after now, or None.
    """
    now = _in_zone(now, tz)
    today = now.date()

    best: TriggerInstant | None = None
    for weekday in Weekday:
        for slot_time in config.times_for(weekday):
            for week in range(horizon_weeks + 1):
                days_ahead = (weekday.index - today.weekday()) % 7 + 7 * week
                slot_day = today + timedelta(days=days_ahead)
                trigger_day = slot_day - timedelta(days=lead_days)
                trigger_at = _localize(trigger_day, trigger_time, tz, now.tzinfo)
                if trigger_at <= now:
                    continue
                candidate = TriggerInstant(
                    at=trigger_at,
                    config_id=config.id,
                    weekday=weekday,
                    slot_time=slot_time,
                    reservation_date=slot_day,
                )
                if best is None or candidate.at < best.at:
                    best = candidate
                break

    return best


def due_trigger(
    config: ReservationConfig,
    now: datetime,
    *,
    tz: TzInfo | None = None,
    lead_days: int = DEFAULT_LEAD_DAYS,
    trigger_time: time = DEFAULT_TRIGGER_TIME,
    grace_minutes: int = 0,
) -> TriggerInstant | None:
    """
    Return the trigger that fires at `now`, if any.

    With grace_minutes == 0 a trigger fires only during its exact minute. A
    positive grace window also matches triggers that fired up to grace_minutes
    earlier, so a tick missed while the process was suspended is caught up.

    The slot day is the trigger day plus lead_days; the earliest time
    configured for that weekday is the slot that gets booked.
    """
    now = _in_zone(now, tz)
    minute_start = now.replace(second=0, microsecond=0)
    window_start = minute_start - timedelta(minutes=max(grace_minutes, 0))

    days = sorted({window_start.date(), now.date()})
    for trigger_day in days:
        trigger_at = _localize(trigger_day, trigger_time, tz, now.tzinfo)
        if not window_start <= trigger_at <= now:
            continue
        slot_day = trigger_day + timedelta(days=lead_days)
        weekday = Weekday.from_date(slot_day)
        times = config.times_for(weekday)
        if times:
            return TriggerInstant(
                at=trigger_at,
                config_id=config.id,
                weekday=weekday,
                slot_time=times[0],
                reservation_date=slot_day,
            )
    return None


def format_slot_time(value: time) -> str:
    """Format a time the way the portal lists slots (e.g. "8:30 AM")."""
    return value.strftime("%I:%M %p").lstrip("0")


def format_schedule(config: ReservationConfig) -> str:
    """Inline schedule summary, e.g. "Mon 8:30 AM, 9:30 AM • Wed 7:00 PM"."""
    parts = []
    for weekday in Weekday:
        times = config.times_for(weekday)
        if times:
            parts.append(f"{weekday.short_name} {', '.join(format_slot_time(t) for t in times)}")
    return " • ".join(parts)
