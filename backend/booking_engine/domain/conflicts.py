from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time
from typing import Iterable, Optional

from ..models import AudienceBooking, AudienceBookingStatus
from .errors import ValidationError
from .repositories import AudienceBookingRepository, AudienceRepository


def intervals_overlap(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    """Half-open overlap: touching intervals do not overlap."""
    return start_a < end_b and end_a > start_b


@dataclass(frozen=True)
class Participants:
    user_ids: frozenset[int] = frozenset()
    audience_ids: frozenset[int] = frozenset()


@dataclass
class ConflictReport:
    overlapping_bookings: list[AudienceBooking] = field(default_factory=list)
    affected_users: set[int] = field(default_factory=set)

    @property
    def affected_user_count(self) -> int:
        return len(self.affected_users)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.overlapping_bookings)


class ConflictDetectionEngine:
    """Advisory overlap check for group bookings. Never blocks by itself."""

    def __init__(self, bookings: AudienceBookingRepository, audiences: AudienceRepository) -> None:
        self.bookings = bookings
        self.audiences = audiences

    async def expand(self, participants: Participants) -> set[int]:
        users = set(participants.user_ids)
        if participants.audience_ids:
            users |= await self.audiences.members_of(participants.audience_ids, include_children=True)
        return users

    async def detect(
        self,
        environment_id: int,
        booking_date: date,
        start_time: time,
        end_time: time,
        participants: Participants,
        *,
        exclude_booking_id: Optional[int] = None,
    ) -> ConflictReport:
        """Overlapping active bookings on the same resource and the users they share."""
        if start_time >= end_time:
            raise ValidationError("Start time must be before end time.", code="invalid_time_range")
        candidates = await self.bookings.list_overlapping(
            booking_date,
            start_time,
            end_time,
            environment_id=environment_id,
            exclude_booking_id=exclude_booking_id,
        )
        requested = await self.expand(participants)
        return await self._report(candidates, requested, start_time, end_time)

    async def detect_participant_conflicts(
        self,
        booking_date: date,
        start_time: time,
        end_time: time,
        participants: Participants,
        *,
        exclude_booking_id: Optional[int] = None,
    ) -> ConflictReport:
        """Overlapping active bookings anywhere that share at least one participant."""
        if start_time >= end_time:
            raise ValidationError("Start time must be before end time.", code="invalid_time_range")
        requested = await self.expand(participants)
        if not requested:
            return ConflictReport()
        candidates = await self.bookings.list_overlapping(
            booking_date, start_time, end_time, exclude_booking_id=exclude_booking_id
        )
        report = await self._report(candidates, requested, start_time, end_time)
        shared = []
        for booking in report.overlapping_bookings:
            if await self.expand(_participants_of(booking)) & requested:
                shared.append(booking)
        report.overlapping_bookings = shared
        return report

    async def _report(
        self,
        candidates: Iterable[AudienceBooking],
        requested: set[int],
        start_time: time,
        end_time: time,
    ) -> ConflictReport:
        report = ConflictReport()
        for booking in sorted(candidates, key=lambda b: b.start_time):
            if booking.status != AudienceBookingStatus.ACTIVE:
                continue
            if not intervals_overlap(booking.start_time, booking.end_time, start_time, end_time):
                continue
            report.overlapping_bookings.append(booking)
            if requested:
                report.affected_users |= await self.expand(_participants_of(booking)) & requested
        return report


def _participants_of(booking: AudienceBooking) -> Participants:
    return Participants(user_ids=booking.user_ids, audience_ids=booking.audience_ids)
