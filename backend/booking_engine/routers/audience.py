import logging

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_context, get_current_actor, get_session
from ..domain.context import Actor, SchedulingContext
from ..domain.errors import BookingError
from ..infrastructure.repositories import (
    SqlAlchemyAudienceBookingRepository,
    SqlAlchemyAudienceRepository,
    SqlAlchemyEnvironmentRepository,
)
from ..schemas import (
    AudienceBookingCancel,
    AudienceBookingCreate,
    AudienceBookingRead,
    AudienceBookingResult,
    ConflictCheck,
    ConflictReportRead,
)
from ..usecases import audience as audience_usecase
from ..utils.audit_log import emit_audit_log
from .errors import audit_failure, service_unavailable, to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/audience-bookings", tags=["audience"])


@router.post("/conflicts", response_model=ConflictReportRead, dependencies=[Depends(get_current_actor)])
async def check_conflicts(
    payload: ConflictCheck,
    session: AsyncSession = Depends(get_session),
) -> ConflictReportRead:
    booking_repo = SqlAlchemyAudienceBookingRepository(session)
    audience_repo = SqlAlchemyAudienceRepository(session)
    try:
        if payload.environment_id is None:
            report = await audience_usecase.check_participant_conflicts(
                booking_repo,
                audience_repo,
                booking_date=payload.date,
                start_time=payload.start_time,
                end_time=payload.end_time,
                user_ids=payload.user_ids,
                audience_ids=payload.audience_ids,
                exclude_booking_id=payload.exclude_booking_id,
            )
        else:
            report = await audience_usecase.check_conflicts(
                booking_repo,
                audience_repo,
                environment_id=payload.environment_id,
                booking_date=payload.date,
                start_time=payload.start_time,
                end_time=payload.end_time,
                user_ids=payload.user_ids,
                audience_ids=payload.audience_ids,
                exclude_booking_id=payload.exclude_booking_id,
            )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        logger.exception("conflict check failed")
        raise service_unavailable() from exc
    return ConflictReportRead.from_domain(report)


@router.post("", response_model=AudienceBookingResult, status_code=status.HTTP_201_CREATED)
async def create_audience_booking(
    payload: AudienceBookingCreate,
    session: AsyncSession = Depends(get_session),
    ctx: SchedulingContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> AudienceBookingResult:
    environment_repo = SqlAlchemyEnvironmentRepository(session)
    booking_repo = SqlAlchemyAudienceBookingRepository(session)
    audience_repo = SqlAlchemyAudienceRepository(session)
    try:
        async with session.begin():
            booking, report = await audience_usecase.create_audience_booking(
                environment_repo,
                booking_repo,
                audience_repo,
                environment_id=payload.environment_id,
                booking_date=payload.date,
                start_time=payload.start_time,
                end_time=payload.end_time,
                user_ids=payload.user_ids,
                audience_ids=payload.audience_ids,
                description=payload.description,
                allow_conflicts=payload.allow_conflicts,
                ctx=ctx,
            )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        logger.exception("audience booking failed for environment %s", payload.environment_id)
        raise service_unavailable() from exc

    try:
        emit_audit_log(
            action="audience_booking.created",
            initiator="admin" if actor.is_admin else "user",
            record_id=booking.id,
            environment_id=booking.environment_id,
            user_id=actor.user_id,
            status_to=booking.status,
            booking_date=booking.booking_date,
            start_time=booking.start_time,
            extra={"conflicts": len(report.overlapping_bookings)} if report.has_conflicts else None,
        )
    except RuntimeError as exc:
        raise audit_failure() from exc
    return AudienceBookingResult(
        booking=AudienceBookingRead.from_db(booking=booking),
        conflicts=ConflictReportRead.from_domain(report),
    )


@router.post("/{booking_id}/cancel", response_model=AudienceBookingRead)
async def cancel_audience_booking(
    payload: AudienceBookingCancel,
    booking_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    ctx: SchedulingContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> AudienceBookingRead:
    booking_repo = SqlAlchemyAudienceBookingRepository(session)
    try:
        async with session.begin():
            updated, previous = await audience_usecase.cancel_audience_booking(
                booking_repo, booking_id=booking_id, ctx=ctx, reason=payload.reason
            )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        logger.exception("audience booking cancellation failed for %s", booking_id)
        raise service_unavailable() from exc

    try:
        emit_audit_log(
            action="audience_booking.cancelled",
            initiator="admin" if actor.is_admin else "user",
            record_id=updated.id,
            environment_id=updated.environment_id,
            user_id=actor.user_id,
            status_from=previous,
            status_to=updated.status,
            booking_date=updated.booking_date,
            start_time=updated.start_time,
            message=payload.reason,
        )
    except RuntimeError as exc:
        raise audit_failure() from exc
    return AudienceBookingRead.from_db(booking=updated)
