from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable, Iterable, Mapping

from .working_hours import WorkingHourWindow, windows_for_day


@dataclass(frozen=True)
class SlotConfig:
    slot_duration: int
    slot_interval: int
    max_per_slot: int


@dataclass(frozen=True)
class Slot:
    time: time
    display: str
    available: int
    total: int


def generate_slots(
    day: date,
    config: SlotConfig,
    windows: Iterable[WorkingHourWindow],
    booked: Mapping[time, int],
    is_blocked: Callable[[time], bool] = lambda _: False,
) -> list[Slot]:
    """
    Enumerate bookable slots for one date.

    Each window is walked on its own in steps of duration + interval. Every
    start strictly before the window end is a candidate, kept only when it is
    not blocked and still has capacity. A window shorter than one slot yields
    nothing. Starts reached from more than one window are listed once.
    """
    if config.slot_duration <= 0:
        return []
    duration = timedelta(minutes=config.slot_duration)
    step = timedelta(minutes=config.slot_duration + max(config.slot_interval, 0))

    seen: set[time] = set()
    slots: list[Slot] = []
    for window in windows_for_day(day, windows):
        cursor = datetime.combine(day, window.start)
        window_end = datetime.combine(day, window.end)
        if window_end - cursor < duration:
            continue
        while cursor < window_end:
            start = cursor.time()
            cursor += step
            if start in seen or is_blocked(start):
                continue
            seen.add(start)
            available = config.max_per_slot - booked.get(start, 0)
            if available > 0:
                slots.append(
                    Slot(
                        time=start,
                        display=start.strftime("%H:%M"),
                        available=available,
                        total=config.max_per_slot,
                    )
                )
    slots.sort(key=lambda s: s.time)
    return slots
