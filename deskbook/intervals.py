"""Time intervals and bookable time options.

An interval is half-open: it contains its start and excludes its end, so
two bookings that merely touch (09:00-10:00 and 10:00-11:00) do not
overlap.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta
from typing import List, Union

from pydantic import BaseModel, model_validator


class TimeInterval(BaseModel):
    """A half-open time range within one day."""

    model_config = {"frozen": True}

    start: time
    end: time

    @model_validator(mode="after")
    def _check_order(self) -> "TimeInterval":
        if not self.start < self.end:
            raise ValueError("interval end must be after its start")
        return self

    def overlaps(self, other: "TimeInterval") -> bool:
        return overlaps(self, other)

    @property
    def hours(self) -> float:
        return duration_hours(self.start, self.end)

    def __str__(self) -> str:
        return f"{format_time(self.start)}-{format_time(self.end)}"


def overlaps(a: TimeInterval, b: TimeInterval) -> bool:
    """Return True if ``a`` and ``b`` share any instant."""
    return a.start < b.end and b.start < a.end


def parse_time(value: Union[str, time]) -> time:
    """Parse ``HH:MM`` (or ``HH:MM:SS``) into a ``time``."""
    if isinstance(value, time):
        return value
    return time.fromisoformat(value.strip())


def format_time(value: time) -> str:
    return value.strftime("%H:%M")


def duration_hours(start: time, end: time) -> float:
    anchor = datetime(2000, 1, 1)
    delta = datetime.combine(anchor, end) - datetime.combine(anchor, start)
    return delta.total_seconds() / 3600


def time_options(start: str = "08:00", end: str = "18:00", step_minutes: int = 30) -> List[str]:
    """Return the selectable times from ``start`` to ``end`` inclusive."""
    if step_minutes <= 0:
        raise ValueError("step_minutes must be positive")
    anchor = datetime(2000, 1, 1)
    current = datetime.combine(anchor, parse_time(start))
    last = datetime.combine(anchor, parse_time(end))
    options: List[str] = []
    while current <= last:
        options.append(format_time(current.time()))
        current += timedelta(minutes=step_minutes)
    return options
