from __future__ import annotations

import calendar as calendar_module
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional

from ..domain.blocking import Availability, DateBlockingService
from ..domain.context import SchedulingContext
from ..domain.errors import NotFoundError, ValidationError
from ..domain.repositories import AppointmentRepository, BlockedDateRepository, CalendarRepository
from ..domain.slots import Slot, SlotConfig, generate_slots
from ..domain.validation import parse_date
from ..models import Calendar, CalendarStatus


@dataclass
class MonthOverview:
    year: int
    month: int
    bookings: dict[date, int] = field(default_factory=dict)
    holidays: dict[date, str] = field(default_factory=dict)


async def list_available_slots(
    calendar_repo: CalendarRepository,
    appointment_repo: AppointmentRepository,
    blocked_repo: BlockedDateRepository,
    *,
    calendar_id: int,
    appointment_date: Optional[str],
    ctx: SchedulingContext,
) -> list[Slot]:
    """
    Bookable slots for one calendar date, ordered by time.

    Dates the booking rules would reject outright (holidays, blocked days,
    days without working hours, full daily cap) yield an empty list. Starts
    already inside the minimum-advance window are dropped.
    """
    calendar = await _get_calendar(calendar_repo, calendar_id)
    day = parse_date(appointment_date)
    if calendar.status != CalendarStatus.ACTIVE:
        return []
    if not _within_booking_horizon(calendar, day, ctx.now):
        return []

    blocking = await DateBlockingService.load(
        global_holidays=ctx.global_holidays,
        blocked_dates=blocked_repo,
        start=day,
        end=day,
        calendar_id=calendar.id,
    )
    if blocking.check(day, None, calendar.windows, calendar_id=calendar.id) is not Availability.AVAILABLE:
        return []
    if calendar.slots_per_day > 0:
        if await appointment_repo.count_on_date(calendar.id, day) >= calendar.slots_per_day:
            return []

    booked = await appointment_repo.counts_by_start_time(calendar.id, day)
    slots = generate_slots(
        day,
        SlotConfig(
            slot_duration=calendar.slot_duration,
            slot_interval=calendar.slot_interval,
            max_per_slot=calendar.max_appointments_per_slot,
        ),
        calendar.windows,
        booked,
        is_blocked=lambda at: blocking.is_calendar_blocked(calendar.id, day, at),
    )
    return [slot for slot in slots if _bookable_at(calendar, datetime.combine(day, slot.time), ctx.now)]


async def month_overview(
    calendar_repo: CalendarRepository,
    appointment_repo: AppointmentRepository,
    blocked_repo: BlockedDateRepository,
    *,
    calendar_id: int,
    year: int,
    month: int,
    ctx: SchedulingContext,
) -> MonthOverview:
    if not 1 <= month <= 12 or not 1 <= year <= 9999:
        raise ValidationError("Invalid month.", code="invalid_date")
    calendar = await _get_calendar(calendar_repo, calendar_id)
    first = date(year, month, 1)
    last = date(year, month, calendar_module.monthrange(year, month)[1])

    blocking = await DateBlockingService.load(
        global_holidays=ctx.global_holidays,
        blocked_dates=blocked_repo,
        start=first,
        end=last,
        calendar_id=calendar.id,
    )
    overview = MonthOverview(year=year, month=month)
    overview.bookings = await appointment_repo.counts_by_date(calendar.id, first, last)
    for holiday in blocking.holidays_between(first, last):
        overview.holidays[holiday.date] = holiday.description or "Holiday"

    day = first
    while day <= last:
        if day not in overview.holidays:
            for block in blocking.blocks:
                if block.applies_to(calendar.id) and block.blocks(day, None):
                    overview.holidays[day] = block.reason or "Blocked"
                    break
        day += timedelta(days=1)
    return overview


def _within_booking_horizon(calendar: Calendar, day: date, now: datetime) -> bool:
    if day < now.date():
        return False
    if calendar.advance_booking_max > 0 and day > (now + timedelta(days=calendar.advance_booking_max)).date():
        return False
    return True


def _bookable_at(calendar: Calendar, starts_at: datetime, now: datetime) -> bool:
    if starts_at < now + timedelta(hours=max(calendar.advance_booking_min, 0)):
        return False
    if calendar.advance_booking_max > 0 and starts_at > now + timedelta(days=calendar.advance_booking_max):
        return False
    return True


async def _get_calendar(calendar_repo: CalendarRepository, calendar_id: int) -> Calendar:
    calendar = await calendar_repo.get(calendar_id)
    if calendar is None:
        raise NotFoundError("Calendar not found.", code="invalid_calendar")
    return calendar
