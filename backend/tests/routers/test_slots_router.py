from datetime import date, time
from typing import cast

import pytest
from booking_engine.domain.blocking import GlobalHoliday
from booking_engine.routers import slots as router
from fakes import FakeBlockedRepo, FakeCalendarRepo, InMemoryAppointmentRepo, make_appointment, make_calendar, make_context
from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession


def _wire(monkeypatch: pytest.MonkeyPatch, *appointments) -> None:
    calendars = FakeCalendarRepo(make_calendar(hours=[(3, time(9, 0), time(10, 0))]))
    repo = InMemoryAppointmentRepo(*appointments)
    monkeypatch.setattr(router, "SqlAlchemyCalendarRepository", lambda s: calendars)  # type: ignore[assignment]
    monkeypatch.setattr(router, "SqlAlchemyAppointmentRepository", lambda s: repo)  # type: ignore[assignment]
    monkeypatch.setattr(router, "SqlAlchemyBlockedDateRepository", lambda s: FakeBlockedRepo())  # type: ignore[assignment]


@pytest.mark.asyncio
async def test_slots_serialise_time_as_hours_and_minutes(monkeypatch: pytest.MonkeyPatch) -> None:
    _wire(monkeypatch, make_appointment(start=time(9, 30)))

    slots = await router.list_available_slots(
        calendar_id=1, date="2025-03-05", session=cast(AsyncSession, object()), ctx=make_context()
    )

    assert [s.model_dump(mode="json") for s in slots] == [
        {"time": "09:00", "display": "09:00", "available": 1, "total": 1}
    ]


@pytest.mark.asyncio
async def test_missing_date_returns_400(monkeypatch: pytest.MonkeyPatch) -> None:
    _wire(monkeypatch)

    with pytest.raises(HTTPException) as excinfo:
        await router.list_available_slots(
            calendar_id=1, date=None, session=cast(AsyncSession, object()), ctx=make_context()
        )
    assert excinfo.value.status_code == 400
    assert cast(dict, excinfo.value.detail)["code"] == "invalid_date"


@pytest.mark.asyncio
async def test_unknown_calendar_returns_404(monkeypatch: pytest.MonkeyPatch) -> None:
    _wire(monkeypatch)

    with pytest.raises(HTTPException) as excinfo:
        await router.list_available_slots(
            calendar_id=2, date="2025-03-05", session=cast(AsyncSession, object()), ctx=make_context()
        )
    assert excinfo.value.status_code == 404


@pytest.mark.asyncio
async def test_month_overview_uses_iso_keys(monkeypatch: pytest.MonkeyPatch) -> None:
    _wire(monkeypatch, make_appointment())
    ctx = make_context(global_holidays=(GlobalHoliday(date(2025, 3, 4), "Carnival"),))

    overview = await router.month_overview(
        calendar_id=1, year=2025, month=3, session=cast(AsyncSession, object()), ctx=ctx
    )

    assert overview.bookings == {"2025-03-05": 1}
    assert overview.holidays == {"2025-03-04": "Carnival"}
