from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional

from ..models import Calendar
from .blocking import Availability, DateBlockingService
from .codes import document_digits, validate_cpf_rf
from .context import SchedulingContext
from .errors import CapacityExceeded, PolicyViolation, ValidationError
from .repositories import AppointmentRepository
from .working_hours import is_within_working_hours

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_PATTERN = re.compile(r"^([01][0-9]|2[0-3]):[0-5][0-9](:[0-5][0-9])?$")

DOCUMENT_ERRORS = {
    "invalid_cpf": "Invalid CPF.",
    "invalid_cpf_rf": "CPF/RF must be 7 digits (RF) or 11 digits (CPF).",
}


@dataclass(frozen=True)
class BookingRequest:
    calendar_id: int
    date: Optional[str]
    start_time: Optional[str]
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    document: Optional[str] = None
    notes: Optional[str] = None
    consent_given: bool = False
    consent_text: Optional[str] = None


@dataclass(frozen=True)
class ValidatedBooking:
    appointment_date: date
    start_time: time
    end_time: time

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.appointment_date, self.start_time)


def parse_date(value: Optional[str]) -> date:
    if not value or not DATE_PATTERN.match(value):
        raise ValidationError("Invalid date format.", code="invalid_date")
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as exc:
        raise ValidationError("Invalid date format.", code="invalid_date") from exc


def parse_time(value: Optional[str]) -> time:
    if not value or not TIME_PATTERN.match(value):
        raise ValidationError("Invalid time format.", code="invalid_time")
    return time.fromisoformat(value)


def parse_booking_moment(request: BookingRequest) -> tuple[date, time]:
    if not request.date or not request.start_time:
        raise ValidationError("Date and time are required.", code="missing_fields")
    return parse_date(request.date), parse_time(request.start_time)


def derive_end_time(day: date, start: time, slot_duration: int) -> time:
    return (datetime.combine(day, start) + timedelta(minutes=slot_duration)).time()


class BookingValidator:
    """
    Ordered, fail-fast rule pipeline for a booking request.

    Local checks run first, repository counts next, compliance checks last.
    Capacity counts are only trustworthy when `validate` runs while the
    bucket lock is held (see `AppointmentRepository.bucket_lock`).
    """

    def __init__(
        self,
        appointments: AppointmentRepository,
        blocking: DateBlockingService,
        document_validator: Callable[[str], Optional[str]] = validate_cpf_rf,
    ) -> None:
        self.appointments = appointments
        self.blocking = blocking
        self.document_validator = document_validator

    async def validate(
        self,
        request: BookingRequest,
        calendar: Calendar,
        ctx: SchedulingContext,
    ) -> ValidatedBooking:
        day, start = parse_booking_moment(request)
        booking = ValidatedBooking(
            appointment_date=day,
            start_time=start,
            end_time=derive_end_time(day, start, calendar.slot_duration),
        )
        self._check_booking_window(booking, calendar, ctx.now)
        self._check_availability(booking, calendar)
        await self._check_capacity(booking, calendar)
        await self._check_cooldown(request, calendar, ctx)
        self._check_access(calendar, ctx)
        self._check_identity(request, ctx)
        return booking

    def _check_booking_window(self, booking: ValidatedBooking, calendar: Calendar, now: datetime) -> None:
        starts_at = booking.starts_at
        if starts_at < now:
            raise PolicyViolation("Cannot book appointments in the past.", code="past_date")
        if calendar.advance_booking_min > 0 and starts_at < now + timedelta(hours=calendar.advance_booking_min):
            raise PolicyViolation(
                f"Appointments must be booked at least {calendar.advance_booking_min} hours in advance.",
                code="too_soon",
            )
        if calendar.advance_booking_max > 0 and starts_at > now + timedelta(days=calendar.advance_booking_max):
            raise PolicyViolation(
                f"Appointments cannot be booked more than {calendar.advance_booking_max} days in advance.",
                code="too_far",
            )

    def _check_availability(self, booking: ValidatedBooking, calendar: Calendar) -> None:
        reason = self.blocking.check(booking.appointment_date, booking.start_time, None, calendar_id=calendar.id)
        if reason is Availability.GLOBAL_HOLIDAY:
            raise PolicyViolation("This date is a holiday.", code="date_blocked")
        if reason is not Availability.AVAILABLE:
            raise PolicyViolation("This date/time is not available.", code="date_blocked")
        if not is_within_working_hours(booking.appointment_date, booking.start_time, calendar.windows):
            raise PolicyViolation("Selected time is outside working hours.", code="outside_hours")

    async def _check_capacity(self, booking: ValidatedBooking, calendar: Calendar) -> None:
        booked = await self.appointments.count_in_bucket(calendar.id, booking.appointment_date, booking.start_time)
        if booked >= calendar.max_appointments_per_slot:
            raise CapacityExceeded("This time slot is fully booked.", code="slot_full")
        if calendar.slots_per_day > 0:
            daily = await self.appointments.count_on_date(calendar.id, booking.appointment_date)
            if daily >= calendar.slots_per_day:
                raise CapacityExceeded("Daily booking limit reached for this date.", code="daily_limit")

    async def _check_cooldown(self, request: BookingRequest, calendar: Calendar, ctx: SchedulingContext) -> None:
        interval = calendar.min_booking_interval_hours or 0
        if interval <= 0:
            return
        if ctx.actor.is_authenticated:
            existing = await self.appointments.list_active_for_requester(calendar.id, user_id=ctx.actor.user_id)
        elif request.email:
            existing = await self.appointments.list_active_for_requester(
                calendar.id, email=request.email.strip().lower()
            )
        elif request.document and document_digits(request.document):
            existing = await self.appointments.list_active_for_requester(
                calendar.id, document=document_digits(request.document)
            )
        else:
            return
        horizon = ctx.now + timedelta(hours=interval)
        for appointment in existing:
            starts_at = datetime.combine(appointment.appointment_date, appointment.start_time)
            if ctx.now <= starts_at <= horizon:
                next_allowed = (starts_at + timedelta(hours=interval)).strftime("%Y-%m-%d %H:%M")
                raise PolicyViolation(
                    f"You already have an appointment scheduled within the next {interval} hours. "
                    f"You can book again after {next_allowed}.",
                    code="booking_too_soon",
                )

    def _check_access(self, calendar: Calendar, ctx: SchedulingContext) -> None:
        if not calendar.require_login:
            return
        if not ctx.actor.is_authenticated:
            raise PolicyViolation("You must be logged in to book this calendar.", code="login_required")
        roles = calendar.role_set
        if roles and not ctx.actor.is_admin and not roles & ctx.actor.roles:
            raise PolicyViolation("You do not have permission to book this calendar.", code="insufficient_permissions")

    def _check_identity(self, request: BookingRequest, ctx: SchedulingContext) -> None:
        if not ctx.actor.is_authenticated and not (request.email or "").strip():
            raise ValidationError("Email address is required.", code="email_required")
        if request.document:
            error = self.document_validator(request.document)
            if error is not None:
                raise ValidationError(DOCUMENT_ERRORS.get(error, "Invalid identity document."), code=error)
        elif ctx.require_identity_document:
            raise ValidationError("CPF/RF is required.", code="document_required")
        if ctx.require_consent and not request.consent_given:
            raise ValidationError("You must agree to the terms to book an appointment.", code="consent_required")
