from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import AsyncContextManager, Iterable, Optional, Protocol

from ..models import (
    Appointment,
    AppointmentStatus,
    AudienceBooking,
    BlockedDate,
    Calendar,
    Environment,
)
from .working_hours import WorkingHourWindow


@dataclass(frozen=True)
class NewAppointment:
    calendar_id: int
    appointment_date: date
    start_time: time
    end_time: time
    status: AppointmentStatus
    confirmation_token: str
    validation_code: str
    user_id: Optional[int] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    document: Optional[str] = None
    user_notes: Optional[str] = None
    consent_given: bool = False
    consent_text: Optional[str] = None
    consent_date: Optional[datetime] = None
    consent_ip: Optional[str] = None
    user_ip: Optional[str] = None
    user_agent: Optional[str] = None
    approved_at: Optional[datetime] = None


@dataclass(frozen=True)
class NewCalendar:
    title: str
    slot_duration: int
    slot_interval: int
    slots_per_day: int
    max_appointments_per_slot: int
    advance_booking_min: int
    advance_booking_max: int
    allow_cancellation: bool
    cancellation_min_hours: int
    min_booking_interval_hours: int
    requires_approval: bool
    require_login: bool
    allowed_roles: tuple[str, ...]
    working_hours: tuple[WorkingHourWindow, ...]


@dataclass(frozen=True)
class NewAudienceBooking:
    environment_id: int
    booking_date: date
    start_time: time
    end_time: time
    created_by: int
    user_ids: frozenset[int]
    audience_ids: frozenset[int]
    description: Optional[str] = None


class CalendarRepository(Protocol):
    async def get(self, calendar_id: int) -> Calendar | None: ...

    async def create(self, calendar: NewCalendar) -> Calendar: ...


class AppointmentRepository(Protocol):
    def bucket_lock(
        self,
        calendar_id: int,
        appointment_date: date,
        start_time: time,
        *,
        whole_day: bool = False,
    ) -> AsyncContextManager[None]: ...

    async def get(self, appointment_id: int) -> Appointment | None: ...

    async def get_for_update(self, appointment_id: int) -> Appointment | None: ...

    async def find_by_validation_code(self, code: str) -> Appointment | None: ...

    async def validation_code_exists(self, code: str) -> bool: ...

    async def count_in_bucket(self, calendar_id: int, appointment_date: date, start_time: time) -> int: ...

    async def count_on_date(self, calendar_id: int, appointment_date: date) -> int: ...

    async def counts_by_start_time(self, calendar_id: int, appointment_date: date) -> dict[time, int]: ...

    async def counts_by_date(self, calendar_id: int, start: date, end: date) -> dict[date, int]: ...

    async def list_active_for_requester(
        self,
        calendar_id: int,
        *,
        user_id: Optional[int] = None,
        email: Optional[str] = None,
        document: Optional[str] = None,
    ) -> list[Appointment]: ...

    async def create(self, appointment: NewAppointment) -> Appointment: ...

    async def update_status(self, appointment: Appointment) -> Appointment: ...


class BlockedDateRepository(Protocol):
    async def list_in_range(self, calendar_id: int, start: date, end: date) -> Iterable[BlockedDate]: ...


class EnvironmentRepository(Protocol):
    async def get(self, environment_id: int) -> Environment | None: ...

    async def holidays_between(self, environment_id: int, start: date, end: date) -> set[date]: ...


class AudienceRepository(Protocol):
    async def members_of(self, audience_ids: Iterable[int], *, include_children: bool = True) -> set[int]: ...


class AudienceBookingRepository(Protocol):
    async def get_for_update(self, booking_id: int) -> AudienceBooking | None: ...

    async def list_overlapping(
        self,
        booking_date: date,
        start_time: time,
        end_time: time,
        *,
        environment_id: Optional[int] = None,
        exclude_booking_id: Optional[int] = None,
    ) -> list[AudienceBooking]: ...

    async def create(self, booking: NewAudienceBooking) -> AudienceBooking: ...

    async def update_status(self, booking: AudienceBooking) -> AudienceBooking: ...
