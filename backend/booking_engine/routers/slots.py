import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_context, get_session
from ..domain.context import SchedulingContext
from ..domain.errors import BookingError
from ..infrastructure.repositories import (
    SqlAlchemyAppointmentRepository,
    SqlAlchemyBlockedDateRepository,
    SqlAlchemyCalendarRepository,
)
from ..schemas import MonthOverviewRead, SlotRead
from ..usecases import slots as slot_usecase
from .errors import service_unavailable, to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendars", tags=["slots"])


@router.get("/{calendar_id}/slots", response_model=List[SlotRead])
async def list_available_slots(
    calendar_id: int = Path(..., ge=1),
    date: Optional[str] = Query(default=None, description="Site-local date (YYYY-MM-DD)"),
    session: AsyncSession = Depends(get_session),
    ctx: SchedulingContext = Depends(get_context),
) -> list[SlotRead]:
    try:
        slots = await slot_usecase.list_available_slots(
            SqlAlchemyCalendarRepository(session),
            SqlAlchemyAppointmentRepository(session),
            SqlAlchemyBlockedDateRepository(session),
            calendar_id=calendar_id,
            appointment_date=date,
            ctx=ctx,
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        logger.exception("slot listing failed for calendar %s", calendar_id)
        raise service_unavailable() from exc
    return [SlotRead.from_domain(slot) for slot in slots]


@router.get("/{calendar_id}/overview", response_model=MonthOverviewRead)
async def month_overview(
    calendar_id: int = Path(..., ge=1),
    year: int = Query(..., ge=1, le=9999),
    month: int = Query(..., ge=1, le=12),
    session: AsyncSession = Depends(get_session),
    ctx: SchedulingContext = Depends(get_context),
) -> MonthOverviewRead:
    try:
        overview = await slot_usecase.month_overview(
            SqlAlchemyCalendarRepository(session),
            SqlAlchemyAppointmentRepository(session),
            SqlAlchemyBlockedDateRepository(session),
            calendar_id=calendar_id,
            year=year,
            month=month,
            ctx=ctx,
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        logger.exception("month overview failed for calendar %s", calendar_id)
        raise service_unavailable() from exc
    return MonthOverviewRead.from_domain(overview)
