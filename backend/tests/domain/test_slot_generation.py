from datetime import date, time

from booking_engine.domain.slots import SlotConfig, generate_slots
from booking_engine.domain.working_hours import WorkingHourWindow, is_within_working_hours

MONDAY = date(2025, 3, 3)
ONE_PER_SLOT = SlotConfig(slot_duration=30, slot_interval=0, max_per_slot=1)


def _window(start: time, end: time, weekday: int = 1) -> WorkingHourWindow:
    return WorkingHourWindow(weekday=weekday, start=start, end=end)


def test_one_hour_window_yields_two_half_hour_slots() -> None:
    slots = generate_slots(MONDAY, ONE_PER_SLOT, [_window(time(9, 0), time(10, 0))], booked={})
    assert [s.time for s in slots] == [time(9, 0), time(9, 30)]
    assert [s.display for s in slots] == ["09:00", "09:30"]
    assert all(s.available == 1 and s.total == 1 for s in slots)


def test_full_slot_is_omitted() -> None:
    slots = generate_slots(MONDAY, ONE_PER_SLOT, [_window(time(9, 0), time(10, 0))], booked={time(9, 0): 1})
    assert [s.time for s in slots] == [time(9, 30)]


def test_remaining_capacity_is_reported() -> None:
    config = SlotConfig(slot_duration=30, slot_interval=0, max_per_slot=3)
    slots = generate_slots(MONDAY, config, [_window(time(9, 0), time(9, 30))], booked={time(9, 0): 2})
    assert len(slots) == 1
    assert slots[0].available == 1
    assert slots[0].total == 3


def test_window_shorter_than_duration_yields_nothing() -> None:
    assert generate_slots(MONDAY, ONE_PER_SLOT, [_window(time(9, 0), time(9, 20))], booked={}) == []


def test_interval_spaces_slots() -> None:
    config = SlotConfig(slot_duration=30, slot_interval=15, max_per_slot=1)
    slots = generate_slots(MONDAY, config, [_window(time(9, 0), time(11, 0))], booked={})
    assert [s.time for s in slots] == [time(9, 0), time(9, 45), time(10, 30)]


def test_every_start_before_window_end_is_listed() -> None:
    windows = [_window(time(9, 0), time(10, 15))]
    slots = generate_slots(MONDAY, ONE_PER_SLOT, windows, booked={})
    assert [s.time for s in slots] == [time(9, 0), time(9, 30), time(10, 0)]
    # Listing and booking agree on the last start.
    assert is_within_working_hours(MONDAY, time(10, 0), windows)


def test_split_windows_are_walked_separately() -> None:
    windows = [_window(time(14, 0), time(15, 0)), _window(time(9, 0), time(9, 30))]
    slots = generate_slots(MONDAY, ONE_PER_SLOT, windows, booked={})
    assert [s.time for s in slots] == [time(9, 0), time(14, 0), time(14, 30)]


def test_duplicate_starts_are_listed_once() -> None:
    windows = [_window(time(9, 0), time(10, 0)), _window(time(9, 0), time(10, 0))]
    slots = generate_slots(MONDAY, ONE_PER_SLOT, windows, booked={})
    assert [s.time for s in slots] == [time(9, 0), time(9, 30)]


def test_blocked_times_are_skipped() -> None:
    slots = generate_slots(
        MONDAY,
        ONE_PER_SLOT,
        [_window(time(9, 0), time(10, 0))],
        booked={},
        is_blocked=lambda at: at == time(9, 30),
    )
    assert [s.time for s in slots] == [time(9, 0)]


def test_other_weekdays_are_ignored() -> None:
    assert generate_slots(MONDAY, ONE_PER_SLOT, [_window(time(9, 0), time(10, 0), weekday=2)], booked={}) == []


def test_non_positive_duration_yields_nothing() -> None:
    config = SlotConfig(slot_duration=0, slot_interval=0, max_per_slot=1)
    assert generate_slots(MONDAY, config, [_window(time(9, 0), time(10, 0))], booked={}) == []
