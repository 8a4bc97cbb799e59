from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import date, datetime, time, timezone
from typing import AsyncIterator, Iterable, List, Optional

from sqlalchemy import Select, func, or_, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import ConcurrencyConflict
from ..domain.repositories import (
    AppointmentRepository,
    AudienceBookingRepository,
    AudienceRepository,
    BlockedDateRepository,
    CalendarRepository,
    EnvironmentRepository,
    NewAppointment,
    NewAudienceBooking,
    NewCalendar,
)
from ..models import (
    Appointment,
    AppointmentStatus,
    Audience,
    AudienceBooking,
    AudienceBookingAudience,
    AudienceBookingStatus,
    AudienceBookingUser,
    AudienceMember,
    BlockedDate,
    BookingLock,
    Calendar,
    CalendarStatus,
    CalendarWorkingHour,
    Environment,
    EnvironmentHoliday,
)

logger = logging.getLogger(__name__)

# InnoDB lock wait timeout and deadlock.
LOCK_CONFLICT_ERRORS = frozenset({1205, 1213})


def _utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def bucket_lock_key(calendar_id: int, appointment_date: date, start_time: time, *, whole_day: bool) -> str:
    if whole_day:
        return f"{calendar_id}:{appointment_date.isoformat()}"
    return f"{calendar_id}:{appointment_date.isoformat()}:{start_time.strftime('%H:%M:%S')}"


def _is_lock_conflict(exc: OperationalError) -> bool:
    args = getattr(exc.orig, "args", ())
    return bool(args) and args[0] in LOCK_CONFLICT_ERRORS


class SqlAlchemyCalendarRepository(CalendarRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, calendar_id: int) -> Calendar | None:
        result = await self.session.scalar(select(Calendar).where(Calendar.id == calendar_id))
        return result if isinstance(result, Calendar) else None

    async def create(self, calendar: NewCalendar) -> Calendar:
        now = _utc_now_naive()
        row = Calendar(
            title=calendar.title,
            slot_duration=calendar.slot_duration,
            slot_interval=calendar.slot_interval,
            slots_per_day=calendar.slots_per_day,
            max_appointments_per_slot=calendar.max_appointments_per_slot,
            advance_booking_min=calendar.advance_booking_min,
            advance_booking_max=calendar.advance_booking_max,
            allow_cancellation=calendar.allow_cancellation,
            cancellation_min_hours=calendar.cancellation_min_hours,
            min_booking_interval_hours=calendar.min_booking_interval_hours,
            requires_approval=calendar.requires_approval,
            require_login=calendar.require_login,
            allowed_roles=list(calendar.allowed_roles),
            status=CalendarStatus.ACTIVE,
            created_at=now,
            updated_at=now,
            working_hours=[
                CalendarWorkingHour(weekday=w.weekday, start_time=w.start, end_time=w.end)
                for w in calendar.working_hours
            ],
        )
        self.session.add(row)
        await self.session.flush()
        return row


class SqlAlchemyAppointmentRepository(AppointmentRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @asynccontextmanager
    async def bucket_lock(
        self,
        calendar_id: int,
        appointment_date: date,
        start_time: time,
        *,
        whole_day: bool = False,
    ) -> AsyncIterator[None]:
        """Hold a row lock on the bucket until the caller's transaction ends.

        The lock row is created on first use; afterwards every booking for
        the same bucket queues on `SELECT ... FOR UPDATE`. Losing a lock wait
        or a deadlock is reported as a conflict and never retried here.
        """
        key = bucket_lock_key(calendar_id, appointment_date, start_time, whole_day=whole_day)
        try:
            await self._ensure_lock_row(key)
            await self.session.scalar(
                select(BookingLock.lock_key).where(BookingLock.lock_key == key).with_for_update()
            )
            yield
        except OperationalError as exc:
            if not _is_lock_conflict(exc):
                raise
            logger.warning("lost bucket lock race on %s", key)
            raise ConcurrencyConflict("This time slot was just taken. Please choose another.") from exc

    async def _ensure_lock_row(self, key: str) -> None:
        existing = await self.session.scalar(select(BookingLock.lock_key).where(BookingLock.lock_key == key))
        if existing is not None:
            return
        try:
            async with self.session.begin_nested():
                self.session.add(BookingLock(lock_key=key, created_at=_utc_now_naive()))
        except IntegrityError:
            # Created concurrently; the FOR UPDATE that follows queues on it.
            logger.debug("lock row %s already present", key)

    async def get(self, appointment_id: int) -> Appointment | None:
        result = await self.session.scalar(select(Appointment).where(Appointment.id == appointment_id))
        return result if isinstance(result, Appointment) else None

    async def get_for_update(self, appointment_id: int) -> Appointment | None:
        result = await self.session.scalar(
            select(Appointment).where(Appointment.id == appointment_id).with_for_update()
        )
        return result if isinstance(result, Appointment) else None

    async def find_by_validation_code(self, code: str) -> Appointment | None:
        result = await self.session.scalar(select(Appointment).where(Appointment.validation_code == code))
        return result if isinstance(result, Appointment) else None

    async def validation_code_exists(self, code: str) -> bool:
        stmt = select(Appointment.id).where(Appointment.validation_code == code)
        return await self.session.scalar(stmt) is not None

    async def count_in_bucket(self, calendar_id: int, appointment_date: date, start_time: time) -> int:
        stmt = select(func.count(Appointment.id)).where(
            Appointment.calendar_id == calendar_id,
            Appointment.appointment_date == appointment_date,
            Appointment.start_time == start_time,
            Appointment.status != AppointmentStatus.CANCELLED,
        )
        return int(await self.session.scalar(stmt) or 0)

    async def count_on_date(self, calendar_id: int, appointment_date: date) -> int:
        stmt = select(func.count(Appointment.id)).where(
            Appointment.calendar_id == calendar_id,
            Appointment.appointment_date == appointment_date,
            Appointment.status != AppointmentStatus.CANCELLED,
        )
        return int(await self.session.scalar(stmt) or 0)

    async def counts_by_start_time(self, calendar_id: int, appointment_date: date) -> dict[time, int]:
        stmt = (
            select(Appointment.start_time, func.count(Appointment.id))
            .where(
                Appointment.calendar_id == calendar_id,
                Appointment.appointment_date == appointment_date,
                Appointment.status != AppointmentStatus.CANCELLED,
            )
            .group_by(Appointment.start_time)
        )
        rows = await self.session.execute(stmt)
        return {start: int(count) for start, count in rows.all()}

    async def counts_by_date(self, calendar_id: int, start: date, end: date) -> dict[date, int]:
        stmt = (
            select(Appointment.appointment_date, func.count(Appointment.id))
            .where(
                Appointment.calendar_id == calendar_id,
                Appointment.appointment_date >= start,
                Appointment.appointment_date <= end,
                Appointment.status != AppointmentStatus.CANCELLED,
            )
            .group_by(Appointment.appointment_date)
        )
        rows = await self.session.execute(stmt)
        return {day: int(count) for day, count in rows.all()}

    async def list_active_for_requester(
        self,
        calendar_id: int,
        *,
        user_id: Optional[int] = None,
        email: Optional[str] = None,
        document: Optional[str] = None,
    ) -> List[Appointment]:
        stmt: Select[tuple[Appointment]] = select(Appointment).where(
            Appointment.calendar_id == calendar_id,
            Appointment.status != AppointmentStatus.CANCELLED,
        )
        if user_id is not None:
            stmt = stmt.where(Appointment.user_id == user_id)
        elif email:
            stmt = stmt.where(func.lower(Appointment.email) == email.lower())
        elif document:
            stmt = stmt.where(Appointment.document == document)
        else:
            return []
        rows = await self.session.scalars(stmt.order_by(Appointment.appointment_date, Appointment.start_time))
        return list(rows.all())

    async def create(self, appointment: NewAppointment) -> Appointment:
        now = _utc_now_naive()
        row = Appointment(**asdict(appointment), created_at=now, updated_at=now)
        self.session.add(row)
        await self.session.flush()
        return row

    async def update_status(self, appointment: Appointment) -> Appointment:
        self.session.add(appointment)
        await self.session.flush()
        return appointment


class SqlAlchemyBlockedDateRepository(BlockedDateRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_in_range(self, calendar_id: int, start: date, end: date) -> List[BlockedDate]:
        stmt = select(BlockedDate).where(
            or_(BlockedDate.calendar_id == calendar_id, BlockedDate.calendar_id.is_(None)),
            BlockedDate.start_date <= end,
            or_(BlockedDate.end_date.is_(None), BlockedDate.end_date >= start),
        )
        rows = await self.session.scalars(stmt)
        return list(rows.all())


class SqlAlchemyEnvironmentRepository(EnvironmentRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, environment_id: int) -> Environment | None:
        result = await self.session.scalar(select(Environment).where(Environment.id == environment_id))
        return result if isinstance(result, Environment) else None

    async def holidays_between(self, environment_id: int, start: date, end: date) -> set[date]:
        stmt = select(EnvironmentHoliday.holiday_date).where(
            EnvironmentHoliday.environment_id == environment_id,
            EnvironmentHoliday.holiday_date >= start,
            EnvironmentHoliday.holiday_date <= end,
        )
        rows = await self.session.scalars(stmt)
        return set(rows.all())


class SqlAlchemyAudienceRepository(AudienceRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def members_of(self, audience_ids: Iterable[int], *, include_children: bool = True) -> set[int]:
        pending = set(audience_ids)
        if not pending:
            return set()
        resolved: set[int] = set()
        while pending:
            resolved |= pending
            if not include_children:
                break
            children = await self.session.scalars(select(Audience.id).where(Audience.parent_id.in_(pending)))
            pending = set(children.all()) - resolved
        rows = await self.session.scalars(
            select(AudienceMember.user_id).where(AudienceMember.audience_id.in_(resolved))
        )
        return set(rows.all())


class SqlAlchemyAudienceBookingRepository(AudienceBookingRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_for_update(self, booking_id: int) -> AudienceBooking | None:
        result = await self.session.scalar(
            select(AudienceBooking).where(AudienceBooking.id == booking_id).with_for_update()
        )
        return result if isinstance(result, AudienceBooking) else None

    async def list_overlapping(
        self,
        booking_date: date,
        start_time: time,
        end_time: time,
        *,
        environment_id: Optional[int] = None,
        exclude_booking_id: Optional[int] = None,
    ) -> List[AudienceBooking]:
        stmt: Select[tuple[AudienceBooking]] = select(AudienceBooking).where(
            AudienceBooking.booking_date == booking_date,
            AudienceBooking.status == AudienceBookingStatus.ACTIVE,
            AudienceBooking.start_time < end_time,
            AudienceBooking.end_time > start_time,
        )
        if environment_id is not None:
            stmt = stmt.where(AudienceBooking.environment_id == environment_id)
        if exclude_booking_id is not None:
            stmt = stmt.where(AudienceBooking.id != exclude_booking_id)
        rows = await self.session.scalars(stmt.order_by(AudienceBooking.start_time))
        return list(rows.all())

    async def create(self, booking: NewAudienceBooking) -> AudienceBooking:
        now = _utc_now_naive()
        row = AudienceBooking(
            environment_id=booking.environment_id,
            booking_date=booking.booking_date,
            start_time=booking.start_time,
            end_time=booking.end_time,
            description=booking.description,
            status=AudienceBookingStatus.ACTIVE,
            created_by=booking.created_by,
            created_at=now,
            updated_at=now,
            users=[AudienceBookingUser(user_id=user_id) for user_id in sorted(booking.user_ids)],
            audiences=[
                AudienceBookingAudience(audience_id=audience_id) for audience_id in sorted(booking.audience_ids)
            ],
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def update_status(self, booking: AudienceBooking) -> AudienceBooking:
        self.session.add(booking)
        await self.session.flush()
        return booking
