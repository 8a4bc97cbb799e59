from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
from typing import Iterable, Sequence

from .errors import ValidationError


@dataclass(frozen=True, order=True)
class WorkingHourWindow:
    """Recurring weekly window. `weekday` uses 0=Sunday .. 6=Saturday."""

    weekday: int
    start: time
    end: time


def weekday_of(day: date) -> int:
    return day.isoweekday() % 7


def windows_for_day(day: date, windows: Iterable[WorkingHourWindow]) -> list[WorkingHourWindow]:
    weekday = weekday_of(day)
    return sorted(w for w in windows if w.weekday == weekday)


def is_working_day(day: date, windows: Iterable[WorkingHourWindow]) -> bool:
    weekday = weekday_of(day)
    return any(w.weekday == weekday for w in windows)


def is_within_working_hours(day: date, at: time, windows: Iterable[WorkingHourWindow]) -> bool:
    # Half-open: a time equal to `end` is outside the window.
    return any(w.start <= at < w.end for w in windows_for_day(day, windows))


def validate_windows(windows: Sequence[WorkingHourWindow]) -> tuple[WorkingHourWindow, ...]:
    """Check a calendar's windows at save time and return them sorted.

    Windows on the same weekday may be split (morning/afternoon) but must not
    overlap; overlapping windows would produce the same slot twice.
    """
    ordered = sorted(windows)
    for window in ordered:
        if not 0 <= window.weekday <= 6:
            raise ValidationError("Weekday must be between 0 (Sunday) and 6 (Saturday).", code="invalid_working_hours")
        if window.start >= window.end:
            raise ValidationError("Working hours must start before they end.", code="invalid_working_hours")
    for previous, current in zip(ordered, ordered[1:]):
        if previous.weekday == current.weekday and current.start < previous.end:
            raise ValidationError("Working hour windows overlap on the same day.", code="overlapping_working_hours")
    return tuple(ordered)
