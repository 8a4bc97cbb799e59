from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from ..domain.blocking import DateBlockingService
from ..domain.codes import document_digits, generate_confirmation_token, generate_validation_code, normalize_validation_code
from ..domain.context import SchedulingContext
from ..domain.errors import (
    AuthorizationError,
    NotFoundError,
    PersistenceError,
    PolicyViolation,
    SecurityCheckFailed,
)
from ..domain.events import (
    AppointmentCancelled,
    AppointmentConfirmed,
    AppointmentCreated,
    EventPublisher,
    LifecycleEvent,
)
from ..domain.lifecycle import check_cancellation, ensure_transition, initial_status
from ..domain.repositories import (
    AppointmentRepository,
    BlockedDateRepository,
    CalendarRepository,
    NewAppointment,
)
from ..domain.security import SecurityFieldsValidator
from ..domain.validation import BookingRequest, BookingValidator, parse_booking_moment
from ..models import Appointment, AppointmentStatus, Calendar, CalendarStatus

logger = logging.getLogger(__name__)

VALIDATION_CODE_ATTEMPTS = 10


async def create_appointment(
    calendar_repo: CalendarRepository,
    appointment_repo: AppointmentRepository,
    blocked_repo: BlockedDateRepository,
    *,
    request: BookingRequest,
    ctx: SchedulingContext,
    publisher: Optional[EventPublisher] = None,
    security: Optional[SecurityFieldsValidator] = None,
    security_fields: Optional[Mapping[str, Any]] = None,
) -> tuple[Appointment, Calendar]:
    """
    Validate and insert a booking as one atomic unit.

    The bucket lock is taken before the validation pipeline runs, so the
    capacity counts it reads cannot change until the insert is done. The
    caller owns the surrounding transaction.
    """
    if security is not None:
        message = security.validate_security_fields(security_fields or {})
        if message is not None:
            raise SecurityCheckFailed(message, challenge=security.new_challenge())

    calendar = await _get_calendar(calendar_repo, request.calendar_id)
    if calendar.status != CalendarStatus.ACTIVE:
        raise PolicyViolation("This calendar is not accepting bookings.", code="calendar_inactive")

    day, start = parse_booking_moment(request)
    blocking = await DateBlockingService.load(
        global_holidays=ctx.global_holidays,
        blocked_dates=blocked_repo,
        start=day,
        end=day,
        calendar_id=calendar.id,
    )
    validator = BookingValidator(appointment_repo, blocking)

    async with appointment_repo.bucket_lock(calendar.id, day, start, whole_day=calendar.slots_per_day > 0):
        booking = await validator.validate(request, calendar, ctx)
        status = initial_status(calendar)
        appointment = await appointment_repo.create(
            NewAppointment(
                calendar_id=calendar.id,
                appointment_date=booking.appointment_date,
                start_time=booking.start_time,
                end_time=booking.end_time,
                status=status,
                confirmation_token=generate_confirmation_token(),
                validation_code=await _unique_validation_code(appointment_repo),
                user_id=ctx.actor.user_id,
                name=(request.name or "").strip() or None,
                email=(request.email or "").strip().lower() or None,
                phone=request.phone,
                document=document_digits(request.document or "") or None,
                user_notes=request.notes,
                consent_given=request.consent_given,
                consent_text=request.consent_text,
                consent_date=ctx.now if request.consent_given else None,
                consent_ip=ctx.client_ip if request.consent_given else None,
                user_ip=ctx.client_ip,
                user_agent=ctx.user_agent,
                approved_at=ctx.now if status == AppointmentStatus.CONFIRMED else None,
            )
        )

    logger.info(
        "appointment %s booked on calendar %s at %s %s (%s)",
        appointment.id,
        calendar.id,
        appointment.appointment_date,
        appointment.start_time,
        appointment.status,
    )
    _notify(publisher, AppointmentCreated(appointment=appointment, calendar=calendar), ctx)
    return appointment, calendar


async def cancel_appointment(
    calendar_repo: CalendarRepository,
    appointment_repo: AppointmentRepository,
    *,
    appointment_id: int,
    ctx: SchedulingContext,
    token: Optional[str] = None,
    reason: Optional[str] = None,
    publisher: Optional[EventPublisher] = None,
) -> tuple[Appointment, Calendar, AppointmentStatus]:
    appointment = await appointment_repo.get_for_update(appointment_id)
    if appointment is None:
        raise NotFoundError("Appointment not found.")
    calendar = await _get_calendar(calendar_repo, appointment.calendar_id)

    check_cancellation(appointment, calendar, ctx.actor, token=token, now=ctx.now)

    previous = AppointmentStatus(appointment.status)
    appointment.status = AppointmentStatus.CANCELLED
    appointment.cancelled_at = ctx.now
    appointment.cancelled_by = ctx.actor.user_id
    appointment.cancellation_reason = reason or None
    appointment.updated_at = _utc_now_naive()
    updated = await appointment_repo.update_status(appointment)

    _notify(
        publisher,
        AppointmentCancelled(appointment=updated, calendar=calendar, reason=reason, cancelled_by=ctx.actor.user_id),
        ctx,
    )
    return updated, calendar, previous


async def approve_appointment(
    calendar_repo: CalendarRepository,
    appointment_repo: AppointmentRepository,
    *,
    appointment_id: int,
    ctx: SchedulingContext,
    publisher: Optional[EventPublisher] = None,
) -> tuple[Appointment, Calendar, AppointmentStatus]:
    appointment, calendar, previous = await _transition(
        calendar_repo, appointment_repo, appointment_id, AppointmentStatus.CONFIRMED, ctx
    )
    _notify(publisher, AppointmentConfirmed(appointment=appointment, calendar=calendar), ctx)
    return appointment, calendar, previous


async def complete_appointment(
    calendar_repo: CalendarRepository,
    appointment_repo: AppointmentRepository,
    *,
    appointment_id: int,
    ctx: SchedulingContext,
) -> tuple[Appointment, Calendar, AppointmentStatus]:
    return await _transition(calendar_repo, appointment_repo, appointment_id, AppointmentStatus.COMPLETED, ctx)


async def mark_no_show(
    calendar_repo: CalendarRepository,
    appointment_repo: AppointmentRepository,
    *,
    appointment_id: int,
    ctx: SchedulingContext,
) -> tuple[Appointment, Calendar, AppointmentStatus]:
    return await _transition(calendar_repo, appointment_repo, appointment_id, AppointmentStatus.NO_SHOW, ctx)


async def find_by_validation_code(appointment_repo: AppointmentRepository, *, code: str) -> Appointment:
    appointment = await appointment_repo.find_by_validation_code(normalize_validation_code(code))
    if appointment is None:
        raise NotFoundError("No appointment matches this validation code.")
    return appointment


async def _transition(
    calendar_repo: CalendarRepository,
    appointment_repo: AppointmentRepository,
    appointment_id: int,
    target: AppointmentStatus,
    ctx: SchedulingContext,
) -> tuple[Appointment, Calendar, AppointmentStatus]:
    if not ctx.actor.is_admin:
        raise AuthorizationError("Only administrators can change the status of an appointment.")
    appointment = await appointment_repo.get_for_update(appointment_id)
    if appointment is None:
        raise NotFoundError("Appointment not found.")
    calendar = await _get_calendar(calendar_repo, appointment.calendar_id)

    previous = AppointmentStatus(appointment.status)
    ensure_transition(previous, target)
    appointment.status = target
    if target == AppointmentStatus.CONFIRMED:
        appointment.approved_at = ctx.now
        appointment.approved_by = ctx.actor.user_id
    appointment.updated_at = _utc_now_naive()
    updated = await appointment_repo.update_status(appointment)
    logger.info("appointment %s moved from %s to %s", appointment_id, previous, target)
    return updated, calendar, previous


async def _get_calendar(calendar_repo: CalendarRepository, calendar_id: int) -> Calendar:
    calendar = await calendar_repo.get(calendar_id)
    if calendar is None:
        raise NotFoundError("Calendar not found.", code="invalid_calendar")
    return calendar


async def _unique_validation_code(appointment_repo: AppointmentRepository) -> str:
    for _ in range(VALIDATION_CODE_ATTEMPTS):
        code = generate_validation_code()
        if not await appointment_repo.validation_code_exists(code):
            return code
    logger.error("could not allocate a unique validation code after %d attempts", VALIDATION_CODE_ATTEMPTS)
    raise PersistenceError()


def _notify(publisher: Optional[EventPublisher], event: LifecycleEvent, ctx: SchedulingContext) -> None:
    if publisher is None:
        return
    if ctx.disable_all_emails:
        logger.debug("notifications disabled, dropping %s", type(event).__name__)
        return
    publisher.publish(event)


def _utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
