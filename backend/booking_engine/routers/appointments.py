import logging
from typing import Optional

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_context, get_event_bus, get_security, get_session
from ..domain.context import SchedulingContext
from ..domain.errors import BookingError
from ..domain.events import EventBus, EventOutbox
from ..domain.validation import BookingRequest
from ..infrastructure.captcha import MathCaptcha
from ..infrastructure.repositories import (
    SqlAlchemyAppointmentRepository,
    SqlAlchemyBlockedDateRepository,
    SqlAlchemyCalendarRepository,
)
from ..models import Appointment, AppointmentStatus
from ..schemas import AppointmentCancel, AppointmentCreate, AppointmentRead
from ..usecases import appointments as appointment_usecase
from ..utils.audit_log import AuditAction, AuditInitiator, emit_audit_log
from .errors import audit_failure, service_unavailable, to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["appointments"])


def _initiator(ctx: SchedulingContext) -> AuditInitiator:
    if ctx.actor.is_admin:
        return "admin"
    return "user" if ctx.actor.is_authenticated else "guest"


def _audit(
    action: AuditAction,
    ctx: SchedulingContext,
    appointment: Appointment,
    status_from: Optional[AppointmentStatus],
    message: Optional[str] = None,
) -> None:
    try:
        emit_audit_log(
            action=action,
            initiator=_initiator(ctx),
            record_id=appointment.id,
            calendar_id=appointment.calendar_id,
            user_id=ctx.actor.user_id,
            status_from=status_from,
            status_to=appointment.status,
            booking_date=appointment.appointment_date,
            start_time=appointment.start_time,
            message=message,
        )
    except RuntimeError as exc:
        raise audit_failure() from exc


@router.post("", response_model=AppointmentRead, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    payload: AppointmentCreate,
    session: AsyncSession = Depends(get_session),
    ctx: SchedulingContext = Depends(get_context),
    bus: EventBus = Depends(get_event_bus),
    security: MathCaptcha = Depends(get_security),
) -> AppointmentRead:
    calendar_repo = SqlAlchemyCalendarRepository(session)
    appointment_repo = SqlAlchemyAppointmentRepository(session)
    blocked_repo = SqlAlchemyBlockedDateRepository(session)
    request = BookingRequest(
        calendar_id=payload.calendar_id,
        date=payload.date,
        start_time=payload.start_time,
        name=payload.name,
        email=payload.email,
        phone=payload.phone,
        document=payload.document,
        notes=payload.notes,
        consent_given=payload.consent_given,
        consent_text=payload.consent_text,
    )
    outbox = EventOutbox()
    try:
        async with session.begin():
            appointment, calendar = await appointment_usecase.create_appointment(
                calendar_repo,
                appointment_repo,
                blocked_repo,
                request=request,
                ctx=ctx,
                publisher=outbox,
                security=security,
                security_fields=payload.security,
            )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        logger.exception("appointment creation failed for calendar %s", payload.calendar_id)
        raise service_unavailable() from exc

    outbox.release(bus)
    _audit("appointment.created", ctx, appointment, None)
    return AppointmentRead.from_db(
        appointment=appointment,
        calendar=calendar,
        include_token=not ctx.actor.is_authenticated,
    )


@router.post("/{appointment_id}/cancel", response_model=AppointmentRead)
async def cancel_appointment(
    payload: AppointmentCancel,
    appointment_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    ctx: SchedulingContext = Depends(get_context),
    bus: EventBus = Depends(get_event_bus),
) -> AppointmentRead:
    calendar_repo = SqlAlchemyCalendarRepository(session)
    appointment_repo = SqlAlchemyAppointmentRepository(session)
    outbox = EventOutbox()
    try:
        async with session.begin():
            updated, calendar, previous = await appointment_usecase.cancel_appointment(
                calendar_repo,
                appointment_repo,
                appointment_id=appointment_id,
                ctx=ctx,
                token=payload.token,
                reason=payload.reason,
                publisher=outbox,
            )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        logger.exception("appointment cancellation failed for %s", appointment_id)
        raise service_unavailable() from exc

    outbox.release(bus)
    _audit("appointment.cancelled", ctx, updated, previous, message=payload.reason)
    return AppointmentRead.from_db(appointment=updated, calendar=calendar)


async def _admin_transition(
    action: AuditAction,
    appointment_id: int,
    session: AsyncSession,
    ctx: SchedulingContext,
    bus: EventBus,
) -> AppointmentRead:
    calendar_repo = SqlAlchemyCalendarRepository(session)
    appointment_repo = SqlAlchemyAppointmentRepository(session)
    outbox = EventOutbox()
    try:
        async with session.begin():
            if action == "appointment.confirmed":
                updated, calendar, previous = await appointment_usecase.approve_appointment(
                    calendar_repo, appointment_repo, appointment_id=appointment_id, ctx=ctx, publisher=outbox
                )
            elif action == "appointment.completed":
                updated, calendar, previous = await appointment_usecase.complete_appointment(
                    calendar_repo, appointment_repo, appointment_id=appointment_id, ctx=ctx
                )
            else:
                updated, calendar, previous = await appointment_usecase.mark_no_show(
                    calendar_repo, appointment_repo, appointment_id=appointment_id, ctx=ctx
                )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        logger.exception("status change %s failed for appointment %s", action, appointment_id)
        raise service_unavailable() from exc

    outbox.release(bus)
    _audit(action, ctx, updated, previous)
    return AppointmentRead.from_db(appointment=updated, calendar=calendar)


@router.post("/{appointment_id}/approve", response_model=AppointmentRead)
async def approve_appointment(
    appointment_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    ctx: SchedulingContext = Depends(get_context),
    bus: EventBus = Depends(get_event_bus),
) -> AppointmentRead:
    return await _admin_transition("appointment.confirmed", appointment_id, session, ctx, bus)


@router.post("/{appointment_id}/complete", response_model=AppointmentRead)
async def complete_appointment(
    appointment_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    ctx: SchedulingContext = Depends(get_context),
    bus: EventBus = Depends(get_event_bus),
) -> AppointmentRead:
    return await _admin_transition("appointment.completed", appointment_id, session, ctx, bus)


@router.post("/{appointment_id}/no-show", response_model=AppointmentRead)
async def mark_no_show(
    appointment_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    ctx: SchedulingContext = Depends(get_context),
    bus: EventBus = Depends(get_event_bus),
) -> AppointmentRead:
    return await _admin_transition("appointment.no_show", appointment_id, session, ctx, bus)


@router.get("/verify/{code}", response_model=AppointmentRead)
async def verify_appointment(
    code: str = Path(..., min_length=12, max_length=20),
    session: AsyncSession = Depends(get_session),
) -> AppointmentRead:
    try:
        appointment = await appointment_usecase.find_by_validation_code(
            SqlAlchemyAppointmentRepository(session), code=code
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        logger.exception("validation code lookup failed")
        raise service_unavailable() from exc
    return AppointmentRead.from_db(appointment=appointment)
