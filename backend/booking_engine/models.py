from __future__ import annotations

from datetime import date, datetime, time
from enum import StrEnum
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, CheckConstraint, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql.sqltypes import BigInteger, Date, DateTime, Integer, String, Text, Time

from .domain.blocking import BlockType
from .domain.working_hours import WorkingHourWindow


class Base(DeclarativeBase):
    pass


def _enum(enum_cls: type[StrEnum]) -> Enum:
    return Enum(enum_cls, values_callable=lambda cls: [e.value for e in cls], native_enum=False)


class CalendarStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class AppointmentStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class AudienceBookingStatus(StrEnum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    roles: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class Calendar(Base):
    __tablename__ = "calendars"
    __table_args__ = (
        CheckConstraint("slot_duration >= 1", name="chk_calendars_duration"),
        CheckConstraint("slot_interval >= 0", name="chk_calendars_interval"),
        CheckConstraint("max_appointments_per_slot >= 1", name="chk_calendars_capacity"),
        CheckConstraint("slots_per_day >= 0", name="chk_calendars_daily"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    slot_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    slot_interval: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    slots_per_day: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_appointments_per_slot: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    advance_booking_min: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    advance_booking_max: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    allow_cancellation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    cancellation_min_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=24)
    min_booking_interval_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    require_login: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    allowed_roles: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[CalendarStatus] = mapped_column(
        _enum(CalendarStatus), nullable=False, default=CalendarStatus.ACTIVE
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    working_hours: Mapped[list["CalendarWorkingHour"]] = relationship(
        back_populates="calendar", cascade="all, delete-orphan", lazy="selectin"
    )

    @property
    def windows(self) -> tuple[WorkingHourWindow, ...]:
        return tuple(sorted(row.window for row in self.working_hours))

    @property
    def role_set(self) -> frozenset[str]:
        return frozenset(self.allowed_roles or ())


class CalendarWorkingHour(Base):
    __tablename__ = "calendar_working_hours"
    __table_args__ = (
        CheckConstraint("weekday BETWEEN 0 AND 6", name="chk_cwh_weekday"),
        CheckConstraint("start_time < end_time", name="chk_cwh_time"),
        Index("idx_cwh_calendar", "calendar_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    calendar_id: Mapped[int] = mapped_column(ForeignKey("calendars.id"), nullable=False)
    weekday: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)

    calendar: Mapped["Calendar"] = relationship(back_populates="working_hours")

    @property
    def window(self) -> WorkingHourWindow:
        return WorkingHourWindow(weekday=self.weekday, start=self.start_time, end=self.end_time)


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        UniqueConstraint("validation_code", name="uq_appointments_validation_code"),
        UniqueConstraint("confirmation_token", name="uq_appointments_confirmation_token"),
        Index("idx_appointments_bucket", "calendar_id", "appointment_date", "start_time"),
        Index("idx_appointments_user", "user_id"),
        Index("idx_appointments_email", "email"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    calendar_id: Mapped[int] = mapped_column(ForeignKey("calendars.id"), nullable=False)
    user_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    appointment_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    status: Mapped[AppointmentStatus] = mapped_column(
        _enum(AppointmentStatus), nullable=False, default=AppointmentStatus.PENDING
    )
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    document: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    user_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confirmation_token: Mapped[str] = mapped_column(String(64), nullable=False)
    validation_code: Mapped[str] = mapped_column(String(14), nullable=False)
    consent_given: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    consent_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    consent_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    consent_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    approved_by: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    cancelled_by: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class BlockedDate(Base):
    __tablename__ = "blocked_dates"
    __table_args__ = (
        Index("idx_blocked_calendar", "calendar_id"),
        Index("idx_blocked_dates", "start_date", "end_date"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    # NULL applies to every calendar.
    calendar_id: Mapped[Optional[int]] = mapped_column(ForeignKey("calendars.id"), nullable=True)
    block_type: Mapped[BlockType] = mapped_column(_enum(BlockType), nullable=False, default=BlockType.FULL_DAY)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    start_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    end_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    recurring_pattern: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class BookingLock(Base):
    """One row per bucket (or calendar-day) serialising capacity decisions."""

    __tablename__ = "booking_locks"

    lock_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class Environment(Base):
    __tablename__ = "environments"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    working_hours: Mapped[list["EnvironmentWorkingHour"]] = relationship(
        back_populates="environment", cascade="all, delete-orphan", lazy="selectin"
    )

    @property
    def windows(self) -> tuple[WorkingHourWindow, ...]:
        return tuple(sorted(row.window for row in self.working_hours))


class EnvironmentWorkingHour(Base):
    __tablename__ = "environment_working_hours"
    __table_args__ = (
        CheckConstraint("weekday BETWEEN 0 AND 6", name="chk_ewh_weekday"),
        CheckConstraint("start_time < end_time", name="chk_ewh_time"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    environment_id: Mapped[int] = mapped_column(ForeignKey("environments.id"), nullable=False)
    weekday: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)

    environment: Mapped["Environment"] = relationship(back_populates="working_hours")

    @property
    def window(self) -> WorkingHourWindow:
        return WorkingHourWindow(weekday=self.weekday, start=self.start_time, end=self.end_time)


class EnvironmentHoliday(Base):
    __tablename__ = "environment_holidays"
    __table_args__ = (UniqueConstraint("environment_id", "holiday_date", name="uq_env_holiday"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    environment_id: Mapped[int] = mapped_column(ForeignKey("environments.id"), nullable=False)
    holiday_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


class Audience(Base):
    __tablename__ = "audiences"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    parent_id: Mapped[Optional[int]] = mapped_column(ForeignKey("audiences.id"), nullable=True)


class AudienceMember(Base):
    __tablename__ = "audience_members"
    __table_args__ = (UniqueConstraint("audience_id", "user_id", name="uq_audience_member"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    audience_id: Mapped[int] = mapped_column(ForeignKey("audiences.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)


class AudienceBooking(Base):
    __tablename__ = "audience_bookings"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="chk_audience_booking_time"),
        Index("idx_audience_booking_env_date", "environment_id", "booking_date"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    environment_id: Mapped[int] = mapped_column(ForeignKey("environments.id"), nullable=False)
    booking_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[AudienceBookingStatus] = mapped_column(
        _enum(AudienceBookingStatus), nullable=False, default=AudienceBookingStatus.ACTIVE
    )
    created_by: Mapped[int] = mapped_column(BigInteger, nullable=False)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    users: Mapped[list["AudienceBookingUser"]] = relationship(cascade="all, delete-orphan", lazy="selectin")
    audiences: Mapped[list["AudienceBookingAudience"]] = relationship(cascade="all, delete-orphan", lazy="selectin")

    @property
    def user_ids(self) -> frozenset[int]:
        return frozenset(row.user_id for row in self.users)

    @property
    def audience_ids(self) -> frozenset[int]:
        return frozenset(row.audience_id for row in self.audiences)


class AudienceBookingUser(Base):
    __tablename__ = "audience_booking_users"
    __table_args__ = (UniqueConstraint("booking_id", "user_id", name="uq_audience_booking_user"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("audience_bookings.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)


class AudienceBookingAudience(Base):
    __tablename__ = "audience_booking_audiences"
    __table_args__ = (UniqueConstraint("booking_id", "audience_id", name="uq_audience_booking_audience"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("audience_bookings.id"), nullable=False)
    audience_id: Mapped[int] = mapped_column(ForeignKey("audiences.id"), nullable=False)
