from datetime import date, datetime, time

import pytest
from booking_engine.domain.blocking import BlockType, GlobalHoliday
from booking_engine.domain.errors import NotFoundError, ValidationError
from booking_engine.models import BlockedDate, CalendarStatus
from booking_engine.usecases.slots import list_available_slots, month_overview
from fakes import (
    NOW,
    FakeBlockedRepo,
    FakeCalendarRepo,
    InMemoryAppointmentRepo,
    make_appointment,
    make_calendar,
    make_context,
)


async def _slots(day: str, *, calendar=None, appointments=(), blocked=(), ctx=None):
    return await list_available_slots(
        FakeCalendarRepo(calendar or make_calendar()),
        InMemoryAppointmentRepo(*appointments),
        FakeBlockedRepo(*blocked),
        calendar_id=1,
        appointment_date=day,
        ctx=ctx or make_context(),
    )


def _block(**values) -> BlockedDate:
    base = dict(id=1, calendar_id=1, block_type=BlockType.FULL_DAY, start_date=date(2025, 3, 5), created_at=NOW)
    base.update(values)
    return BlockedDate(**base)


@pytest.mark.asyncio
async def test_lists_every_slot_of_a_working_day() -> None:
    slots = await _slots("2025-03-05")
    assert len(slots) == 16
    assert slots[0].time == time(9, 0)
    assert slots[-1].time == time(16, 30)


@pytest.mark.asyncio
async def test_full_slots_are_left_out() -> None:
    slots = await _slots("2025-03-05", appointments=[make_appointment()])
    assert time(10, 0) not in [s.time for s in slots]
    assert len(slots) == 15


@pytest.mark.asyncio
async def test_global_holiday_yields_no_slots() -> None:
    now = datetime(2025, 12, 20, 8, 0)
    holidays = (GlobalHoliday(date(2025, 12, 25), "Christmas"),)

    assert await _slots("2025-12-25", ctx=make_context(now=now, global_holidays=holidays)) == []
    assert await _slots("2025-12-25", ctx=make_context(now=now)) != []


@pytest.mark.parametrize(
    "day",
    [
        "2025-03-02",  # yesterday
        "2025-03-08",  # Saturday
        "2025-04-10",  # beyond the advance window
    ],
)
@pytest.mark.asyncio
async def test_unbookable_days_yield_no_slots(day: str) -> None:
    assert await _slots(day) == []


@pytest.mark.asyncio
async def test_inactive_calendar_yields_no_slots() -> None:
    assert await _slots("2025-03-05", calendar=make_calendar(status=CalendarStatus.INACTIVE)) == []


@pytest.mark.asyncio
async def test_full_day_block_yields_no_slots() -> None:
    assert await _slots("2025-03-05", blocked=[_block()]) == []


@pytest.mark.asyncio
async def test_time_range_block_removes_only_covered_slots() -> None:
    lunch = _block(block_type=BlockType.TIME_RANGE, start_time=time(12, 0), end_time=time(13, 0), end_date=date(2025, 3, 5))
    times = [s.time for s in await _slots("2025-03-05", blocked=[lunch])]
    assert time(11, 30) in times
    assert time(12, 0) not in times
    assert time(12, 30) not in times
    assert time(13, 0) in times


@pytest.mark.asyncio
async def test_today_drops_starts_inside_minimum_advance() -> None:
    slots = await _slots("2025-03-03", calendar=make_calendar(advance_booking_min=2))
    assert slots[0].time == time(10, 0)


@pytest.mark.asyncio
async def test_daily_cap_reached_yields_no_slots() -> None:
    taken = make_appointment(start=time(15, 0))
    assert await _slots("2025-03-05", calendar=make_calendar(slots_per_day=1), appointments=[taken]) == []


@pytest.mark.asyncio
async def test_bad_date_and_unknown_calendar() -> None:
    with pytest.raises(ValidationError) as excinfo:
        await _slots("05/03/2025")
    assert excinfo.value.code == "invalid_date"

    with pytest.raises(NotFoundError):
        await list_available_slots(
            FakeCalendarRepo(),
            InMemoryAppointmentRepo(),
            FakeBlockedRepo(),
            calendar_id=1,
            appointment_date="2025-03-05",
            ctx=make_context(),
        )


@pytest.mark.asyncio
async def test_month_overview_counts_bookings_and_marks_closed_days() -> None:
    appointments = InMemoryAppointmentRepo(
        make_appointment(100),
        make_appointment(101, start=time(11, 0)),
        make_appointment(102, day=date(2025, 3, 12)),
        make_appointment(103, day=date(2025, 4, 2)),
    )
    blocked = FakeBlockedRepo(_block(start_date=date(2025, 3, 20), end_date=date(2025, 3, 21), reason="Inventory"))
    ctx = make_context(global_holidays=(GlobalHoliday(date(2025, 3, 4), ""),))

    overview = await month_overview(
        FakeCalendarRepo(make_calendar()), appointments, blocked, calendar_id=1, year=2025, month=3, ctx=ctx
    )

    assert overview.bookings == {date(2025, 3, 5): 2, date(2025, 3, 12): 1}
    assert overview.holidays == {
        date(2025, 3, 4): "Holiday",
        date(2025, 3, 20): "Inventory",
        date(2025, 3, 21): "Inventory",
    }


@pytest.mark.asyncio
async def test_month_overview_rejects_bad_month() -> None:
    with pytest.raises(ValidationError):
        await month_overview(
            FakeCalendarRepo(make_calendar()),
            InMemoryAppointmentRepo(),
            FakeBlockedRepo(),
            calendar_id=1,
            year=2025,
            month=13,
            ctx=make_context(),
        )
