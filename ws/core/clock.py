"""Pure time arithmetic for sessions and reminders. No I/O, no clock reads."""

from datetime import datetime, time, timedelta

MAX_DURATION_HOURS = 23


def validate_duration(hours):
    """Return ``hours`` if it is a whole number of hours in 0..23, else raise ValueError."""
    if isinstance(hours, bool) or not isinstance(hours, int):
        raise ValueError(f"Session duration must be a whole number of hours, got {hours!r}")
    if not 0 <= hours <= MAX_DURATION_HOURS:
        raise ValueError(f"Session duration must be between 0 and {MAX_DURATION_HOURS} hours, got {hours}")
    return hours


def session_end(started_at: datetime, duration_hours: int) -> datetime:
    return started_at + timedelta(hours=duration_hours)


def next_daily_occurrence(at: time, after: datetime) -> datetime:
    """Next wall-clock moment matching ``at`` strictly after ``after``.

    The result keeps ``after``'s timezone, so the reminder fires at the same local time every day.
    """
    candidate = after.replace(hour=at.hour, minute=at.minute, second=0, microsecond=0)
    if candidate <= after:
        candidate += timedelta(days=1)
    return candidate
