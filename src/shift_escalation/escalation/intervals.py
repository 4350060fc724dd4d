"""Wave interval calculation.

The closer the shift, the tighter the gap between SMS waves.

Shift start times without tzinfo are provider wall-clock times and are
read in the provider zone. The work queue clock is naive UTC, so "now"
values without tzinfo are taken as UTC.
"""
from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "Australia/Sydney"

# (upper bound in hours until shift start, minutes between waves)
WAVE_INTERVAL_STEPS: tuple[tuple[float, int], ...] = (
    (0.5, 5),
    (2.0, 10),
    (3.0, 15),
    (4.0, 20),
    (5.0, 25),
)
DEFAULT_WAVE_INTERVAL_MINUTES = 30


def utc_now() -> datetime:
    """Naive UTC timestamp, the work queue's default clock."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc(value: datetime, tz: str = DEFAULT_TIMEZONE) -> datetime:
    """Naive UTC for ``value``; a naive ``value`` is wall-clock time in ``tz``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=ZoneInfo(tz))
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def hours_until(
    start: datetime,
    now: datetime | None = None,
    tz: str = DEFAULT_TIMEZONE,
) -> float:
    if now is None:
        now = utc_now()
    elif now.tzinfo is not None:
        now = now.astimezone(timezone.utc).replace(tzinfo=None)
    return (to_utc(start, tz) - now).total_seconds() / 3600


def calculate_wave_interval(
    start: datetime,
    now: datetime | None = None,
    tz: str = DEFAULT_TIMEZONE,
) -> int:
    """Minutes between waves for a shift starting at ``start``.

    Shifts already under way use the tightest interval.
    """
    remaining = hours_until(start, now, tz)

    if remaining < WAVE_INTERVAL_STEPS[0][0]:
        return WAVE_INTERVAL_STEPS[0][1]

    for bound, minutes in WAVE_INTERVAL_STEPS[1:]:
        if remaining <= bound:
            return minutes

    return DEFAULT_WAVE_INTERVAL_MINUTES
