from datetime import date, datetime, time

import pytest
from booking_engine.domain.blocking import DateBlockingService, GlobalHoliday
from booking_engine.domain.errors import CapacityExceeded, PolicyViolation, ValidationError
from booking_engine.domain.validation import BookingValidator, parse_booking_moment, parse_date, parse_time
from booking_engine.models import AppointmentStatus
from fakes import ADMIN, MEMBER, InMemoryAppointmentRepo, make_appointment, make_calendar, make_context, make_request


def _validator(*appointments, blocking: DateBlockingService = DateBlockingService()) -> BookingValidator:
    return BookingValidator(InMemoryAppointmentRepo(*appointments), blocking)


@pytest.mark.asyncio
async def test_valid_request_returns_derived_end_time() -> None:
    booking = await _validator().validate(make_request(), make_calendar(), make_context())
    assert booking.appointment_date == date(2025, 3, 5)
    assert booking.start_time == time(10, 0)
    assert booking.end_time == time(10, 30)


@pytest.mark.parametrize(
    ("overrides", "code"),
    [
        ({"date": None}, "missing_fields"),
        ({"start_time": ""}, "missing_fields"),
        ({"date": "05/03/2025"}, "invalid_date"),
        ({"date": "2025-02-30"}, "invalid_date"),
        ({"start_time": "25:00"}, "invalid_time"),
    ],
)
@pytest.mark.asyncio
async def test_malformed_moment_is_rejected(overrides: dict, code: str) -> None:
    with pytest.raises(ValidationError) as excinfo:
        await _validator().validate(make_request(**overrides), make_calendar(), make_context())
    assert excinfo.value.code == code


@pytest.mark.parametrize(
    ("overrides", "calendar_overrides", "code"),
    [
        ({"date": "2025-03-03", "start_time": "07:30"}, {}, "past_date"),
        ({}, {"advance_booking_min": 72}, "too_soon"),
        ({"date": "2025-04-10"}, {}, "too_far"),
        ({"start_time": "18:00"}, {}, "outside_hours"),
        ({"date": "2025-03-08"}, {}, "outside_hours"),
    ],
)
@pytest.mark.asyncio
async def test_booking_window_and_hours(overrides: dict, calendar_overrides: dict, code: str) -> None:
    with pytest.raises(PolicyViolation) as excinfo:
        await _validator().validate(make_request(**overrides), make_calendar(**calendar_overrides), make_context())
    assert excinfo.value.code == code


@pytest.mark.asyncio
async def test_holiday_is_reported_as_blocked_date() -> None:
    blocking = DateBlockingService(global_holidays=(GlobalHoliday(date(2025, 3, 5), "Ash Wednesday"),))
    with pytest.raises(PolicyViolation) as excinfo:
        await _validator(blocking=blocking).validate(make_request(), make_calendar(), make_context())
    assert excinfo.value.code == "date_blocked"


@pytest.mark.asyncio
async def test_full_bucket_is_rejected() -> None:
    with pytest.raises(CapacityExceeded) as excinfo:
        await _validator(make_appointment()).validate(make_request(), make_calendar(), make_context())
    assert excinfo.value.code == "slot_full"


@pytest.mark.asyncio
async def test_cancelled_appointments_free_their_bucket() -> None:
    cancelled = make_appointment(status=AppointmentStatus.CANCELLED)
    booking = await _validator(cancelled).validate(make_request(), make_calendar(), make_context())
    assert booking.start_time == time(10, 0)


@pytest.mark.asyncio
async def test_daily_cap_is_rejected() -> None:
    other = make_appointment(start=time(11, 0), email="someone@example.com")
    with pytest.raises(CapacityExceeded) as excinfo:
        await _validator(other).validate(make_request(), make_calendar(slots_per_day=1), make_context())
    assert excinfo.value.code == "daily_limit"


@pytest.mark.asyncio
async def test_cooldown_blocks_a_second_booking_by_the_same_email() -> None:
    upcoming = make_appointment(start=time(14, 0), email="ANA@example.com")
    calendar = make_calendar(min_booking_interval_hours=72)
    with pytest.raises(PolicyViolation) as excinfo:
        await _validator(upcoming).validate(make_request(email="Ana@Example.com"), calendar, make_context())
    assert excinfo.value.code == "booking_too_soon"
    assert "2025-03-08 14:00" in excinfo.value.message


@pytest.mark.asyncio
async def test_cooldown_ignores_other_calendars_and_distant_appointments() -> None:
    elsewhere = make_appointment(calendar_id=2, start=time(14, 0))
    later = make_appointment(101, day=date(2025, 3, 20), start=time(14, 0))
    calendar = make_calendar(min_booking_interval_hours=24)
    booking = await _validator(elsewhere, later).validate(make_request(), calendar, make_context())
    assert booking.start_time == time(10, 0)


@pytest.mark.asyncio
async def test_cooldown_uses_user_id_for_signed_in_actors() -> None:
    mine = make_appointment(start=time(14, 0), user_id=MEMBER.user_id, email="other@example.com")
    calendar = make_calendar(min_booking_interval_hours=72)
    with pytest.raises(PolicyViolation) as excinfo:
        await _validator(mine).validate(make_request(), calendar, make_context(actor=MEMBER))
    assert excinfo.value.code == "booking_too_soon"


@pytest.mark.asyncio
async def test_capacity_is_checked_before_cooldown() -> None:
    taken = make_appointment(email="ana@example.com")
    calendar = make_calendar(min_booking_interval_hours=72)
    with pytest.raises(CapacityExceeded):
        await _validator(taken).validate(make_request(), calendar, make_context())


@pytest.mark.asyncio
async def test_login_required_for_guests() -> None:
    with pytest.raises(PolicyViolation) as excinfo:
        await _validator().validate(make_request(), make_calendar(require_login=True), make_context())
    assert excinfo.value.code == "login_required"


@pytest.mark.asyncio
async def test_role_restriction() -> None:
    calendar = make_calendar(require_login=True, allowed_roles=["staff"])
    with pytest.raises(PolicyViolation) as excinfo:
        await _validator().validate(make_request(), calendar, make_context(actor=MEMBER))
    assert excinfo.value.code == "insufficient_permissions"

    booking = await _validator().validate(make_request(), calendar, make_context(actor=ADMIN))
    assert booking.end_time == time(10, 30)


@pytest.mark.parametrize(
    ("overrides", "code"),
    [
        ({"email": "  "}, "email_required"),
        ({"document": "111.111.111-11"}, "invalid_cpf"),
        ({"document": "12345"}, "invalid_cpf_rf"),
        ({"document": None}, "document_required"),
        ({"consent_given": False}, "consent_required"),
    ],
)
@pytest.mark.asyncio
async def test_identity_and_consent(overrides: dict, code: str) -> None:
    with pytest.raises(ValidationError) as excinfo:
        await _validator().validate(make_request(**overrides), make_calendar(), make_context())
    assert excinfo.value.code == code


@pytest.mark.asyncio
async def test_identity_requirements_follow_context_flags() -> None:
    ctx = make_context(require_identity_document=False, require_consent=False)
    request = make_request(document=None, consent_given=False)
    booking = await _validator().validate(request, make_calendar(), ctx)
    assert booking.start_time == time(10, 0)


@pytest.mark.asyncio
async def test_registration_number_is_accepted() -> None:
    booking = await _validator().validate(make_request(document="1234567"), make_calendar(), make_context())
    assert booking.start_time == time(10, 0)


@pytest.mark.asyncio
async def test_first_failing_rule_wins() -> None:
    request = make_request(start_time="18:00", consent_given=False, email=None)
    with pytest.raises(PolicyViolation) as excinfo:
        await _validator().validate(request, make_calendar(), make_context())
    assert excinfo.value.code == "outside_hours"


def test_parsers_accept_seconds_and_reject_garbage() -> None:
    assert parse_time("09:30:15") == time(9, 30, 15)
    assert parse_date("2025-03-05") == date(2025, 3, 5)
    with pytest.raises(ValidationError):
        parse_time("9:30")
    assert parse_booking_moment(make_request()) == (date(2025, 3, 5), time(10, 0))


@pytest.mark.asyncio
async def test_booking_exactly_now_is_allowed() -> None:
    ctx = make_context(now=datetime(2025, 3, 5, 10, 0))
    booking = await _validator().validate(make_request(), make_calendar(), ctx)
    assert booking.start_time == time(10, 0)
