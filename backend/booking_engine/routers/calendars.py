import logging

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_context, get_session
from ..domain.context import SchedulingContext
from ..domain.errors import BookingError
from ..domain.repositories import NewCalendar
from ..domain.working_hours import WorkingHourWindow
from ..infrastructure.repositories import SqlAlchemyCalendarRepository
from ..schemas import CalendarCreate, CalendarRead
from ..usecases import calendars as calendar_usecase
from .errors import service_unavailable, to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendars", tags=["calendars"])


@router.post("", response_model=CalendarRead, status_code=status.HTTP_201_CREATED)
async def create_calendar(
    payload: CalendarCreate,
    session: AsyncSession = Depends(get_session),
    ctx: SchedulingContext = Depends(get_context),
) -> CalendarRead:
    calendar_repo = SqlAlchemyCalendarRepository(session)
    data = NewCalendar(
        title=payload.title,
        slot_duration=payload.slot_duration,
        slot_interval=payload.slot_interval,
        slots_per_day=payload.slots_per_day,
        max_appointments_per_slot=payload.max_appointments_per_slot,
        advance_booking_min=payload.advance_booking_min,
        advance_booking_max=payload.advance_booking_max,
        allow_cancellation=payload.allow_cancellation,
        cancellation_min_hours=payload.cancellation_min_hours,
        min_booking_interval_hours=payload.min_booking_interval_hours,
        requires_approval=payload.requires_approval,
        require_login=payload.require_login,
        allowed_roles=tuple(payload.allowed_roles),
        working_hours=tuple(WorkingHourWindow(weekday=w.weekday, start=w.start, end=w.end) for w in payload.working_hours),
    )
    try:
        async with session.begin():
            calendar = await calendar_usecase.create_calendar(calendar_repo, data=data, ctx=ctx)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        logger.exception("calendar creation failed")
        raise service_unavailable() from exc
    return CalendarRead.from_db(calendar=calendar)


@router.get("/{calendar_id}", response_model=CalendarRead)
async def get_calendar(
    calendar_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> CalendarRead:
    try:
        calendar = await calendar_usecase.get_calendar(SqlAlchemyCalendarRepository(session), calendar_id=calendar_id)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        logger.exception("calendar lookup failed for %s", calendar_id)
        raise service_unavailable() from exc
    return CalendarRead.from_db(calendar=calendar)
