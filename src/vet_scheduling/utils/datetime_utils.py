"""
DateTime utilities for clinic scheduling.

All booking timestamps are naive datetimes in clinic-local time, truncated
to the minute. This module converts between the ``date`` + ``"HH:MM"``
pairs the booking screens submit and those timestamps, and generates the
daily slot grid.
"""

import re
from datetime import date, datetime, time, timedelta
from typing import List, Optional
from zoneinfo import ZoneInfo

DISPLAY_FORMAT = "%b %d, %Y %I:%M %p"
DATE_DISPLAY_FORMAT = "%B %d, %Y"

_TIME_PATTERN = re.compile(r"^\s*(\d{1,2}):(\d{2})(?::(\d{2})(?:\.\d+)?)?\s*$")


def get_clinic_now(timezone: Optional[str] = None) -> datetime:
    """
    Get the current clinic-local time as a naive datetime.

    Args:
        timezone: IANA zone of the clinic, or None for the host's local time

    Returns:
        Naive datetime in clinic-local time
    """
    if timezone:
        return datetime.now(ZoneInfo(timezone)).replace(tzinfo=None)
    return datetime.now()


def truncate_to_minute(dt: datetime) -> datetime:
    """Drop seconds and microseconds."""
    return dt.replace(second=0, microsecond=0)


def parse_time_of_day(value: str) -> time:
    """
    Parse a submitted time of day.

    Accepts ``H:MM``, ``HH:MM`` and ``HH:MM:SS``; seconds are discarded.

    Args:
        value: Time string from a booking form

    Returns:
        Minute-granular time

    Raises:
        ValueError: If the value is empty or not a valid time
    """
    if value is None:
        raise ValueError("Time is required")
    match = _TIME_PATTERN.match(str(value))
    if not match:
        raise ValueError(f"Invalid time format: {value!r}")

    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"Invalid time format: {value!r}")
    return time(hour, minute)


def format_time_of_day(value: time) -> str:
    """Format a time as ``HH:MM``."""
    return value.strftime("%H:%M")


def combine_slot(day: date, time_of_day: time) -> datetime:
    """Combine a date and a time of day into a minute-granular timestamp."""
    return datetime.combine(day, time_of_day.replace(second=0, microsecond=0))


def format_slot(dt: datetime) -> str:
    """Render a timestamp the way booking messages show it (``Oct 20, 2026 09:30 AM``)."""
    return dt.strftime(DISPLAY_FORMAT)


def iter_day_slots(
    day: date,
    open_time: time = time(9, 0),
    close_time: time = time(18, 0),
    slot_minutes: int = 5,
) -> List[datetime]:
    """
    Generate every slot timestamp for a day, both bounds inclusive.

    Args:
        day: Calendar day
        open_time: First slot of the day
        close_time: Last slot of the day
        slot_minutes: Step between slots

    Returns:
        Ascending list of timestamps
    """
    step = timedelta(minutes=slot_minutes)
    current = combine_slot(day, open_time)
    end = combine_slot(day, close_time)

    slots = []
    while current <= end:
        slots.append(current)
        current += step
    return slots


def is_on_slot_grid(
    dt: datetime,
    open_time: time = time(9, 0),
    close_time: time = time(18, 0),
    slot_minutes: int = 5,
) -> bool:
    """Check that a timestamp falls on a bookable slot boundary."""
    if dt.second or dt.microsecond:
        return False
    tod = dt.time()
    if tod < open_time or tod > close_time:
        return False
    minutes_from_open = (dt.hour * 60 + dt.minute) - (
        open_time.hour * 60 + open_time.minute
    )
    return minutes_from_open % slot_minutes == 0


def reminder_send_times(
    appointment_at: datetime,
    now: datetime,
    days_before: List[int],
    send_time: time = time(8, 0),
) -> List[datetime]:
    """
    Compute the future reminder timestamps for an appointment.

    Args:
        appointment_at: Appointment timestamp
        now: Current clinic-local time
        days_before: Offsets in days before the appointment
        send_time: Time of day reminders go out

    Returns:
        Reminder timestamps that are still in the future
    """
    times = []
    for days in days_before:
        send_at = combine_slot(appointment_at.date() - timedelta(days=days), send_time)
        if send_at > now:
            times.append(send_at)
    return times
