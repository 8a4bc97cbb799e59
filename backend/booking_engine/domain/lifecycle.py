from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from typing import Optional

from ..models import Appointment, AppointmentStatus, Calendar
from .context import Actor
from .errors import AuthorizationError, InvalidTransition, PolicyViolation

TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW}
)

TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.CONFIRMED: frozenset(
        {AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}


def initial_status(calendar: Calendar) -> AppointmentStatus:
    return AppointmentStatus.PENDING if calendar.requires_approval else AppointmentStatus.CONFIRMED


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in TRANSITIONS.get(AppointmentStatus(current), frozenset())


def ensure_transition(current: AppointmentStatus, target: AppointmentStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(f"An appointment that is {AppointmentStatus(current).value} cannot become {target.value}.")


def appointment_start(appointment: Appointment) -> datetime:
    return datetime.combine(appointment.appointment_date, appointment.start_time)


def owns_appointment(appointment: Appointment, actor: Actor, token: Optional[str]) -> bool:
    if actor.is_authenticated and appointment.user_id is not None and appointment.user_id == actor.user_id:
        return True
    if token and appointment.confirmation_token:
        return secrets.compare_digest(appointment.confirmation_token, token)
    return False


def check_cancellation(
    appointment: Appointment,
    calendar: Calendar,
    actor: Actor,
    *,
    token: Optional[str],
    now: datetime,
) -> None:
    """Raise when `actor` may not cancel `appointment` at `now`.

    Administrators skip ownership, calendar policy and deadline, but still
    cannot cancel twice.
    """
    if not actor.is_admin:
        if not owns_appointment(appointment, actor, token):
            raise AuthorizationError("You do not have permission to cancel this appointment.")
        if not calendar.allow_cancellation:
            raise PolicyViolation("Cancellation is not allowed for this calendar.", code="cancellation_disabled")
        deadline = appointment_start(appointment) - timedelta(hours=calendar.cancellation_min_hours)
        if not now < deadline:
            raise PolicyViolation(
                "Cancellation deadline has passed. Appointments must be cancelled at least "
                f"{calendar.cancellation_min_hours} hours in advance.",
                code="deadline_passed",
            )
    if appointment.status == AppointmentStatus.CANCELLED:
        raise PolicyViolation("This appointment is already cancelled.", code="already_cancelled")
    ensure_transition(appointment.status, AppointmentStatus.CANCELLED)
