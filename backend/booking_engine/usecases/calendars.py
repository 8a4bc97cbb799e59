from __future__ import annotations

import logging
from dataclasses import replace

from ..domain.context import SchedulingContext
from ..domain.errors import AuthorizationError, NotFoundError, ValidationError
from ..domain.repositories import CalendarRepository, NewCalendar
from ..domain.working_hours import validate_windows
from ..models import Calendar

logger = logging.getLogger(__name__)

_NON_NEGATIVE = (
    "slot_interval",
    "slots_per_day",
    "advance_booking_min",
    "advance_booking_max",
    "cancellation_min_hours",
    "min_booking_interval_hours",
)


async def create_calendar(
    calendar_repo: CalendarRepository,
    *,
    data: NewCalendar,
    ctx: SchedulingContext,
) -> Calendar:
    """Validate a calendar once at save time and persist it.

    Working hours and roles are stored already checked and normalised, so
    availability queries never re-validate them.
    """
    if not ctx.actor.is_admin:
        raise AuthorizationError("Only administrators can create calendars.")
    title = data.title.strip()
    if not title:
        raise ValidationError("Calendar title is required.", code="missing_fields")
    if data.slot_duration < 1:
        raise ValidationError("Slot duration must be at least one minute.", code="invalid_calendar_config")
    if data.max_appointments_per_slot < 1:
        raise ValidationError("Each slot must accept at least one appointment.", code="invalid_calendar_config")
    for name in _NON_NEGATIVE:
        if getattr(data, name) < 0:
            raise ValidationError(f"{name} must not be negative.", code="invalid_calendar_config")

    windows = validate_windows(data.working_hours)
    roles = tuple(sorted({role.strip().lower() for role in data.allowed_roles if role and role.strip()}))
    calendar = await calendar_repo.create(replace(data, title=title, working_hours=windows, allowed_roles=roles))
    logger.info("calendar %s created with %d working hour windows", calendar.id, len(windows))
    return calendar


async def get_calendar(calendar_repo: CalendarRepository, *, calendar_id: int) -> Calendar:
    calendar = await calendar_repo.get(calendar_id)
    if calendar is None:
        raise NotFoundError("Calendar not found.", code="invalid_calendar")
    return calendar
