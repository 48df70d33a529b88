"""Slot generation from a doctor's weekly availability.

Everything here is pure: callers pass the schedule, the date-specific
exceptions, the clinic timezone and the current instant.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta, tzinfo

from medischeduler.schemas.doctors import WEEKDAYS, UnavailableDateBase, WeeklySchedule
from medischeduler.schemas.slots import DayAvailability, Slot

Interval = tuple[datetime, datetime]


def intervals_overlap(first: Interval, second: Interval) -> bool:
    """Half-open interval intersection."""
    return first[0] < second[1] and second[0] < first[1]


@dataclass
class WorkingWindow:
    """Working hours of one day with the intervals blocked inside them."""

    start: datetime
    end: datetime
    blocked: list[Interval] = field(default_factory=list)

    def is_blocked(self, start: datetime, end: datetime) -> bool:
        """Check whether ``[start, end)`` touches a break or exception window."""
        return any(intervals_overlap((start, end), blocked) for blocked in self.blocked)

    def covers(self, start: datetime, end: datetime) -> bool:
        """Check whether ``[start, end)`` fits in working hours and avoids blocked windows."""
        return self.start <= start and end <= self.end and not self.is_blocked(start, end)


def working_window(
    schedule: WeeklySchedule,
    day: date,
    exceptions: Sequence[UnavailableDateBase] = (),
    tz: tzinfo = UTC,
) -> WorkingWindow | None:
    """
    Resolve the working window of ``day``.

    Args:
        schedule: Weekly availability of the doctor
        day: Calendar date in the clinic timezone
        exceptions: Date-specific unavailability entries
        tz: Clinic timezone used to interpret wall-clock hours

    Returns:
        The window, or None when the doctor does not work that day
    """
    entry = schedule.for_date(day)
    if not entry.is_available:
        return None

    todays = [e for e in exceptions if e.unavailable_date == day]
    if any(e.is_full_day for e in todays):
        return None

    def at(moment: time) -> datetime:
        return datetime.combine(day, moment, tzinfo=tz)

    start, end = at(entry.start_time), at(entry.end_time)
    if end <= start:
        return None

    window = WorkingWindow(start=start, end=end)
    if entry.break_start is not None and entry.break_end is not None:
        if entry.break_end > entry.break_start:
            window.blocked.append((at(entry.break_start), at(entry.break_end)))
    for exception in todays:
        if exception.start_time is not None and exception.end_time is not None:
            window.blocked.append((at(exception.start_time), at(exception.end_time)))
    return window


def generate_slots(
    schedule: WeeklySchedule,
    day: date,
    slot_minutes: int,
    *,
    now: datetime | None = None,
    exceptions: Sequence[UnavailableDateBase] = (),
    tz: tzinfo = UTC,
) -> list[Slot]:
    """
    Generate the ordered bookable slots of a doctor for one date.

    Slots are laid end to end from the start of working hours and must end
    by the end of working hours. A slot touching the break or a partial-day
    exception is dropped whole, and slots starting at or before ``now`` are
    left out.
    """
    if slot_minutes <= 0:
        return []

    window = working_window(schedule, day, exceptions, tz)
    if window is None:
        return []

    step = timedelta(minutes=slot_minutes)
    slots: list[Slot] = []
    cursor = window.start
    while cursor + step <= window.end:
        slot_end = cursor + step
        if not window.is_blocked(cursor, slot_end) and (now is None or cursor > now):
            slots.append(Slot(start_time=cursor, end_time=slot_end))
        cursor = slot_end
    return slots


def covers(
    schedule: WeeklySchedule,
    start: datetime,
    duration_minutes: int,
    *,
    exceptions: Sequence[UnavailableDateBase] = (),
    tz: tzinfo = UTC,
) -> bool:
    """Check whether an appointment interval lies inside the doctor's availability."""
    local_start = start.astimezone(tz)
    window = working_window(schedule, local_start.date(), exceptions, tz)
    if window is None:
        return False
    return window.covers(local_start, local_start + timedelta(minutes=duration_minutes))


def availability_range(
    schedule: WeeklySchedule,
    start_date: date,
    days: int,
    slot_minutes: int,
    *,
    now: datetime | None = None,
    exceptions: Sequence[UnavailableDateBase] = (),
    tz: tzinfo = UTC,
) -> list[DayAvailability]:
    """Generate slots for ``days`` consecutive dates, skipping days without slots."""
    result: list[DayAvailability] = []
    for offset in range(days):
        day = start_date + timedelta(days=offset)
        slots = generate_slots(
            schedule, day, slot_minutes, now=now, exceptions=exceptions, tz=tz
        )
        if slots:
            result.append(DayAvailability(date=day, weekday=WEEKDAYS[day.weekday()], slots=slots))
    return result
