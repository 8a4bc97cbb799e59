from datetime import date, datetime, time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_serializer

from .domain.conflicts import ConflictReport
from .domain.slots import Slot
from .models import Appointment, AppointmentStatus, AudienceBooking, AudienceBookingStatus, Calendar, CalendarStatus
from .usecases.slots import MonthOverview


class SlotRead(BaseModel):
    time: time
    display: str
    available: int
    total: int

    @field_serializer("time")
    def _ser_time(self, value: time) -> str:
        return value.strftime("%H:%M")

    @classmethod
    def from_domain(cls, slot: Slot) -> "SlotRead":
        return cls(time=slot.time, display=slot.display, available=slot.available, total=slot.total)


class MonthOverviewRead(BaseModel):
    year: int
    month: int
    bookings: Dict[str, int]
    holidays: Dict[str, str]

    @classmethod
    def from_domain(cls, overview: MonthOverview) -> "MonthOverviewRead":
        return cls(
            year=overview.year,
            month=overview.month,
            bookings={day.isoformat(): count for day, count in sorted(overview.bookings.items())},
            holidays={day.isoformat(): reason for day, reason in sorted(overview.holidays.items())},
        )


class AppointmentCreate(BaseModel):
    calendar_id: int
    # Kept as text so malformed values surface as booking errors, not schema errors.
    date: Optional[str] = None
    start_time: Optional[str] = None
    name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)
    document: Optional[str] = Field(default=None, max_length=32)
    notes: Optional[str] = None
    consent_given: bool = False
    consent_text: Optional[str] = None
    security: Dict[str, Any] = Field(default_factory=dict)


class AppointmentCancel(BaseModel):
    token: Optional[str] = None
    reason: Optional[str] = Field(default=None, max_length=1000)


class AppointmentRead(BaseModel):
    appointment_id: int
    calendar_id: int
    calendar_title: Optional[str] = None
    date: date
    start_time: time
    end_time: time
    status: AppointmentStatus
    validation_code: str
    name: Optional[str] = None
    confirmation_token: Optional[str] = None

    @classmethod
    def from_db(
        cls,
        *,
        appointment: Appointment,
        calendar: Optional[Calendar] = None,
        include_token: bool = False,
    ) -> "AppointmentRead":
        return cls(
            appointment_id=appointment.id,
            calendar_id=appointment.calendar_id,
            calendar_title=calendar.title if calendar is not None else None,
            date=appointment.appointment_date,
            start_time=appointment.start_time,
            end_time=appointment.end_time,
            status=appointment.status,
            validation_code=appointment.validation_code,
            name=appointment.name,
            confirmation_token=appointment.confirmation_token if include_token else None,
        )


class WorkingHourIn(BaseModel):
    weekday: int = Field(ge=0, le=6, description="0=Sunday .. 6=Saturday")
    start: time
    end: time


class CalendarCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    slot_duration: int = Field(default=30, ge=1)
    slot_interval: int = Field(default=0, ge=0)
    slots_per_day: int = Field(default=0, ge=0)
    max_appointments_per_slot: int = Field(default=1, ge=1)
    advance_booking_min: int = Field(default=0, ge=0)
    advance_booking_max: int = Field(default=30, ge=0)
    allow_cancellation: bool = True
    cancellation_min_hours: int = Field(default=24, ge=0)
    min_booking_interval_hours: int = Field(default=0, ge=0)
    requires_approval: bool = False
    require_login: bool = False
    allowed_roles: List[str] = Field(default_factory=list)
    working_hours: List[WorkingHourIn] = Field(default_factory=list)


class CalendarRead(BaseModel):
    calendar_id: int
    title: str
    status: CalendarStatus
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
    allowed_roles: List[str]
    working_hours: List[WorkingHourIn]

    @classmethod
    def from_db(cls, *, calendar: Calendar) -> "CalendarRead":
        return cls(
            calendar_id=calendar.id,
            title=calendar.title,
            status=calendar.status,
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
            allowed_roles=sorted(calendar.role_set),
            working_hours=[WorkingHourIn(weekday=w.weekday, start=w.start, end=w.end) for w in calendar.windows],
        )


class ConflictCheck(BaseModel):
    environment_id: Optional[int] = None
    date: date
    start_time: time
    end_time: time
    user_ids: List[int] = Field(default_factory=list)
    audience_ids: List[int] = Field(default_factory=list)
    exclude_booking_id: Optional[int] = None


class AudienceBookingCreate(BaseModel):
    environment_id: int
    date: date
    start_time: time
    end_time: time
    user_ids: List[int] = Field(default_factory=list)
    audience_ids: List[int] = Field(default_factory=list)
    description: Optional[str] = None
    allow_conflicts: bool = False


class AudienceBookingCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class AudienceBookingRead(BaseModel):
    booking_id: int
    environment_id: int
    date: date
    start_time: time
    end_time: time
    status: AudienceBookingStatus
    created_by: int
    user_ids: List[int]
    audience_ids: List[int]
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_db(cls, *, booking: AudienceBooking) -> "AudienceBookingRead":
        return cls(
            booking_id=booking.id,
            environment_id=booking.environment_id,
            date=booking.booking_date,
            start_time=booking.start_time,
            end_time=booking.end_time,
            status=booking.status,
            created_by=booking.created_by,
            user_ids=sorted(booking.user_ids),
            audience_ids=sorted(booking.audience_ids),
            description=booking.description,
            created_at=booking.created_at,
        )


class ConflictReportRead(BaseModel):
    has_conflicts: bool
    overlapping_bookings: List[AudienceBookingRead]
    affected_user_count: int
    affected_users: List[int]

    @classmethod
    def from_domain(cls, report: ConflictReport) -> "ConflictReportRead":
        return cls(
            has_conflicts=report.has_conflicts,
            overlapping_bookings=[AudienceBookingRead.from_db(booking=b) for b in report.overlapping_bookings],
            affected_user_count=report.affected_user_count,
            affected_users=sorted(report.affected_users),
        )


class AudienceBookingResult(BaseModel):
    booking: AudienceBookingRead
    conflicts: ConflictReportRead
