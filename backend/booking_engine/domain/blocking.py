from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, time
from enum import StrEnum
from typing import Any, Iterable, Mapping, Optional, Sequence

from .errors import ValidationError
from .working_hours import WorkingHourWindow, is_within_working_hours, is_working_day, weekday_of

logger = logging.getLogger(__name__)


class BlockType(StrEnum):
    FULL_DAY = "full_day"
    TIME_RANGE = "time_range"
    RECURRING = "recurring"


class Availability(StrEnum):
    AVAILABLE = "available"
    GLOBAL_HOLIDAY = "global_holiday"
    OUTSIDE_WORKING_HOURS = "outside_working_hours"
    CALENDAR_BLOCKED = "calendar_blocked"
    ENVIRONMENT_HOLIDAY = "environment_holiday"


@dataclass(frozen=True)
class GlobalHoliday:
    date: date
    description: str = ""


@dataclass(frozen=True)
class RecurringPattern:
    kind: str
    days: frozenset[int] = frozenset()
    dates: frozenset[str] = frozenset()

    @classmethod
    def parse(cls, data: Mapping[str, Any]) -> "RecurringPattern":
        kind = data.get("type")
        if kind in ("weekly", "monthly"):
            days = data.get("days") or []
            if not isinstance(days, list) or not all(isinstance(d, int) for d in days):
                raise ValidationError("Recurring days must be a list of integers.", code="invalid_block_pattern")
            return cls(kind=kind, days=frozenset(days))
        if kind == "yearly":
            dates = data.get("dates") or []
            if not isinstance(dates, list) or not all(isinstance(d, str) and len(d) == 5 for d in dates):
                raise ValidationError("Recurring dates must be MM-DD strings.", code="invalid_block_pattern")
            return cls(kind=kind, dates=frozenset(dates))
        raise ValidationError("Unknown recurring pattern.", code="invalid_block_pattern")

    def matches(self, day: date) -> bool:
        if self.kind == "weekly":
            return weekday_of(day) in self.days
        if self.kind == "monthly":
            return day.day in self.days
        if self.kind == "yearly":
            return day.strftime("%m-%d") in self.dates
        return False


@dataclass(frozen=True)
class BlockRule:
    calendar_id: Optional[int]
    block_type: BlockType
    start_date: date
    end_date: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    pattern: Optional[RecurringPattern] = None
    reason: str = ""

    @classmethod
    def from_row(cls, row: Any) -> "BlockRule":
        pattern = None
        if row.block_type == BlockType.RECURRING and row.recurring_pattern:
            pattern = RecurringPattern.parse(row.recurring_pattern)
        return cls(
            calendar_id=row.calendar_id,
            block_type=BlockType(row.block_type),
            start_date=row.start_date,
            end_date=row.end_date,
            start_time=row.start_time,
            end_time=row.end_time,
            pattern=pattern,
            reason=row.reason or "",
        )

    def applies_to(self, calendar_id: int) -> bool:
        return self.calendar_id is None or self.calendar_id == calendar_id

    def covers_date(self, day: date) -> bool:
        return self.start_date <= day and (self.end_date is None or self.end_date >= day)

    def blocks(self, day: date, at: Optional[time] = None) -> bool:
        if not self.covers_date(day):
            return False
        if self.block_type == BlockType.FULL_DAY:
            return True
        if self.block_type == BlockType.TIME_RANGE:
            if at is None or self.start_time is None or self.end_time is None:
                return False
            return self.start_time <= at < self.end_time
        if self.block_type == BlockType.RECURRING and self.pattern is not None:
            return self.pattern.matches(day)
        return False


@dataclass
class DateBlockingService:
    """Single availability predicate over holidays, working hours and blocks.

    Rules are loaded once per request; every check afterwards is pure.
    """

    global_holidays: Sequence[GlobalHoliday] = ()
    blocks: Sequence[BlockRule] = ()
    environment_holidays: Mapping[int, frozenset[date]] = field(default_factory=dict)

    @classmethod
    async def load(
        cls,
        *,
        global_holidays: Sequence[GlobalHoliday],
        blocked_dates: Any = None,
        environments: Any = None,
        start: date,
        end: date,
        calendar_id: Optional[int] = None,
        environment_id: Optional[int] = None,
    ) -> "DateBlockingService":
        blocks: list[BlockRule] = []
        if calendar_id is not None and blocked_dates is not None:
            for row in await blocked_dates.list_in_range(calendar_id, start, end):
                try:
                    blocks.append(BlockRule.from_row(row))
                except ValidationError:
                    logger.warning("skipping blocked date %s with malformed recurring pattern", row.id)
        holidays: dict[int, frozenset[date]] = {}
        if environment_id is not None and environments is not None:
            holidays[environment_id] = frozenset(await environments.holidays_between(environment_id, start, end))
        return cls(global_holidays=tuple(global_holidays), blocks=tuple(blocks), environment_holidays=holidays)

    def is_global_holiday(self, day: date) -> bool:
        return any(h.date == day for h in self.global_holidays)

    def holidays_between(self, start: date, end: date) -> list[GlobalHoliday]:
        return sorted((h for h in self.global_holidays if start <= h.date <= end), key=lambda h: h.date)

    def is_calendar_blocked(self, calendar_id: int, day: date, at: Optional[time] = None) -> bool:
        return any(b.applies_to(calendar_id) and b.blocks(day, at) for b in self.blocks)

    def is_environment_holiday(self, environment_id: int, day: date) -> bool:
        return day in self.environment_holidays.get(environment_id, frozenset())

    def check(
        self,
        day: date,
        at: Optional[time],
        working_hours: Optional[Iterable[WorkingHourWindow]],
        *,
        calendar_id: Optional[int] = None,
        environment_id: Optional[int] = None,
    ) -> Availability:
        """Return the first reason the moment is unavailable, in fixed order.

        Passing `working_hours=None` skips the working-hours step.
        """
        if self.is_global_holiday(day):
            return Availability.GLOBAL_HOLIDAY
        if working_hours is not None:
            windows = list(working_hours)
            inside = is_working_day(day, windows) if at is None else is_within_working_hours(day, at, windows)
            if not inside:
                return Availability.OUTSIDE_WORKING_HOURS
        if calendar_id is not None and self.is_calendar_blocked(calendar_id, day, at):
            return Availability.CALENDAR_BLOCKED
        if environment_id is not None and self.is_environment_holiday(environment_id, day):
            return Availability.ENVIRONMENT_HOLIDAY
        return Availability.AVAILABLE

    def is_date_available(
        self,
        day: date,
        at: Optional[time],
        working_hours: Iterable[WorkingHourWindow],
        *,
        calendar_id: Optional[int] = None,
        environment_id: Optional[int] = None,
    ) -> bool:
        return (
            self.check(day, at, working_hours, calendar_id=calendar_id, environment_id=environment_id)
            is Availability.AVAILABLE
        )
