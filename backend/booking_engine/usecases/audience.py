from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from typing import Iterable, Optional

from ..domain.blocking import Availability, DateBlockingService
from ..domain.conflicts import ConflictDetectionEngine, ConflictReport, Participants
from ..domain.context import SchedulingContext
from ..domain.errors import (
    AuthorizationError,
    NotFoundError,
    PolicyViolation,
    ScheduleConflict,
    ValidationError,
)
from ..domain.repositories import (
    AudienceBookingRepository,
    AudienceRepository,
    EnvironmentRepository,
    NewAudienceBooking,
)
from ..domain.working_hours import windows_for_day
from ..models import AudienceBooking, AudienceBookingStatus, Environment

logger = logging.getLogger(__name__)


async def check_conflicts(
    booking_repo: AudienceBookingRepository,
    audience_repo: AudienceRepository,
    *,
    environment_id: int,
    booking_date: date,
    start_time: time,
    end_time: time,
    user_ids: Iterable[int] = (),
    audience_ids: Iterable[int] = (),
    exclude_booking_id: Optional[int] = None,
) -> ConflictReport:
    engine = ConflictDetectionEngine(booking_repo, audience_repo)
    return await engine.detect(
        environment_id,
        booking_date,
        start_time,
        end_time,
        Participants(user_ids=frozenset(user_ids), audience_ids=frozenset(audience_ids)),
        exclude_booking_id=exclude_booking_id,
    )


async def check_participant_conflicts(
    booking_repo: AudienceBookingRepository,
    audience_repo: AudienceRepository,
    *,
    booking_date: date,
    start_time: time,
    end_time: time,
    user_ids: Iterable[int] = (),
    audience_ids: Iterable[int] = (),
    exclude_booking_id: Optional[int] = None,
) -> ConflictReport:
    engine = ConflictDetectionEngine(booking_repo, audience_repo)
    return await engine.detect_participant_conflicts(
        booking_date,
        start_time,
        end_time,
        Participants(user_ids=frozenset(user_ids), audience_ids=frozenset(audience_ids)),
        exclude_booking_id=exclude_booking_id,
    )


async def create_audience_booking(
    environment_repo: EnvironmentRepository,
    booking_repo: AudienceBookingRepository,
    audience_repo: AudienceRepository,
    *,
    environment_id: int,
    booking_date: date,
    start_time: time,
    end_time: time,
    user_ids: Iterable[int] = (),
    audience_ids: Iterable[int] = (),
    description: Optional[str] = None,
    allow_conflicts: bool = False,
    ctx: SchedulingContext,
) -> tuple[AudienceBooking, ConflictReport]:
    """
    Reserve an environment for a group of participants.

    The conflict report is advisory; creation is refused only because the
    caller did not opt in with `allow_conflicts`.
    """
    if not ctx.actor.is_authenticated:
        raise AuthorizationError("You must be logged in to book an environment.")
    if start_time >= end_time:
        raise ValidationError("Start time must be before end time.", code="invalid_time_range")
    environment = await environment_repo.get(environment_id)
    if environment is None:
        raise NotFoundError("Environment not found.")
    if datetime.combine(booking_date, start_time) < ctx.now:
        raise PolicyViolation("Cannot book in the past.", code="past_date")

    await _check_environment_availability(environment_repo, environment, booking_date, start_time, end_time, ctx)

    participants = Participants(user_ids=frozenset(user_ids), audience_ids=frozenset(audience_ids))
    engine = ConflictDetectionEngine(booking_repo, audience_repo)
    report = await engine.detect(environment.id, booking_date, start_time, end_time, participants)
    if report.has_conflicts and not allow_conflicts:
        raise ScheduleConflict("The environment is already booked during this time.", report=report)

    booking = await booking_repo.create(
        NewAudienceBooking(
            environment_id=environment.id,
            booking_date=booking_date,
            start_time=start_time,
            end_time=end_time,
            created_by=ctx.actor.user_id,
            user_ids=participants.user_ids,
            audience_ids=participants.audience_ids,
            description=description,
        )
    )
    if report.has_conflicts:
        logger.warning(
            "audience booking %s created over %d overlapping bookings",
            booking.id,
            len(report.overlapping_bookings),
        )
    return booking, report


async def cancel_audience_booking(
    booking_repo: AudienceBookingRepository,
    *,
    booking_id: int,
    ctx: SchedulingContext,
    reason: Optional[str] = None,
) -> tuple[AudienceBooking, AudienceBookingStatus]:
    booking = await booking_repo.get_for_update(booking_id)
    if booking is None:
        raise NotFoundError("Booking not found.")
    if not ctx.actor.is_admin and booking.created_by != ctx.actor.user_id:
        raise AuthorizationError("You do not have permission to cancel this booking.")
    if booking.status == AudienceBookingStatus.CANCELLED:
        raise PolicyViolation("This booking is already cancelled.", code="already_cancelled")

    previous = AudienceBookingStatus(booking.status)
    booking.status = AudienceBookingStatus.CANCELLED
    booking.cancellation_reason = reason or None
    booking.updated_at = datetime.now(timezone.utc).replace(tzinfo=None)
    updated = await booking_repo.update_status(booking)
    return updated, previous


async def _check_environment_availability(
    environment_repo: EnvironmentRepository,
    environment: Environment,
    booking_date: date,
    start_time: time,
    end_time: time,
    ctx: SchedulingContext,
) -> None:
    blocking = await DateBlockingService.load(
        global_holidays=ctx.global_holidays,
        environments=environment_repo,
        start=booking_date,
        end=booking_date,
        environment_id=environment.id,
    )
    # Environments without configured hours are open all day.
    windows = environment.windows or None
    reason = blocking.check(booking_date, start_time, windows, environment_id=environment.id)
    if reason in (Availability.GLOBAL_HOLIDAY, Availability.ENVIRONMENT_HOLIDAY):
        raise PolicyViolation("This date is a holiday.", code="date_blocked")
    if reason is Availability.OUTSIDE_WORKING_HOURS:
        raise PolicyViolation("Selected time is outside working hours.", code="outside_hours")
    if windows and not any(w.start <= start_time and end_time <= w.end for w in windows_for_day(booking_date, windows)):
        raise PolicyViolation("The booking must end within working hours.", code="outside_hours")
