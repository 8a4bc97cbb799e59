from datetime import date, time

import pytest
from booking_engine.domain.conflicts import ConflictDetectionEngine, Participants, intervals_overlap
from booking_engine.domain.errors import ValidationError
from booking_engine.models import AudienceBookingStatus
from fakes import FakeAudienceBookingRepo, FakeAudienceRepo, make_audience_booking

DAY = date(2025, 3, 5)


def test_half_open_overlap() -> None:
    assert intervals_overlap(time(10, 0), time(11, 0), time(10, 30), time(11, 30))
    assert not intervals_overlap(time(10, 0), time(11, 0), time(11, 0), time(12, 0))
    assert intervals_overlap(time(9, 0), time(12, 0), time(10, 0), time(11, 0))


@pytest.mark.asyncio
async def test_overlapping_booking_in_same_environment_is_reported() -> None:
    existing = make_audience_booking(1, time(10, 0), time(11, 0), user_ids=[5, 6])
    engine = ConflictDetectionEngine(FakeAudienceBookingRepo(existing), FakeAudienceRepo())

    report = await engine.detect(7, DAY, time(10, 30), time(11, 30), Participants(user_ids=frozenset({6, 9})))

    assert report.has_conflicts
    assert [b.id for b in report.overlapping_bookings] == [1]
    assert report.affected_users == {6}
    assert report.affected_user_count == 1


@pytest.mark.asyncio
async def test_touching_booking_is_not_a_conflict() -> None:
    existing = make_audience_booking(1, time(10, 0), time(11, 0), user_ids=[5])
    engine = ConflictDetectionEngine(FakeAudienceBookingRepo(existing), FakeAudienceRepo())

    report = await engine.detect(7, DAY, time(11, 0), time(12, 0), Participants(user_ids=frozenset({5})))

    assert not report.has_conflicts
    assert report.affected_user_count == 0


@pytest.mark.asyncio
async def test_cancelled_and_excluded_bookings_are_ignored() -> None:
    cancelled = make_audience_booking(1, time(10, 0), time(11, 0), status=AudienceBookingStatus.CANCELLED)
    itself = make_audience_booking(2, time(10, 0), time(11, 0))
    engine = ConflictDetectionEngine(FakeAudienceBookingRepo(cancelled, itself), FakeAudienceRepo())

    report = await engine.detect(7, DAY, time(10, 0), time(11, 0), Participants(), exclude_booking_id=2)

    assert not report.has_conflicts


@pytest.mark.asyncio
async def test_audiences_expand_to_members_including_children() -> None:
    existing = make_audience_booking(1, time(10, 0), time(11, 0), audience_ids=[20])
    audiences = FakeAudienceRepo(members={10: {1, 2}, 11: {3}, 20: {3, 4}}, children={10: {11}})
    engine = ConflictDetectionEngine(FakeAudienceBookingRepo(existing), audiences)

    report = await engine.detect(7, DAY, time(10, 0), time(10, 30), Participants(audience_ids=frozenset({10})))

    assert report.affected_users == {3}


@pytest.mark.asyncio
async def test_participant_conflicts_span_environments_but_need_a_shared_user() -> None:
    shared = make_audience_booking(1, time(10, 0), time(11, 0), environment_id=8, user_ids=[5])
    unrelated = make_audience_booking(2, time(10, 0), time(11, 0), environment_id=9, user_ids=[6])
    engine = ConflictDetectionEngine(FakeAudienceBookingRepo(shared, unrelated), FakeAudienceRepo())

    report = await engine.detect_participant_conflicts(
        DAY, time(10, 30), time(11, 30), Participants(user_ids=frozenset({5}))
    )

    assert [b.id for b in report.overlapping_bookings] == [1]
    assert report.affected_users == {5}


@pytest.mark.asyncio
async def test_participant_conflicts_without_participants_is_empty() -> None:
    existing = make_audience_booking(1, time(10, 0), time(11, 0), user_ids=[5])
    engine = ConflictDetectionEngine(FakeAudienceBookingRepo(existing), FakeAudienceRepo())

    report = await engine.detect_participant_conflicts(DAY, time(10, 0), time(11, 0), Participants())

    assert not report.has_conflicts


@pytest.mark.asyncio
async def test_inverted_range_is_rejected() -> None:
    engine = ConflictDetectionEngine(FakeAudienceBookingRepo(), FakeAudienceRepo())
    with pytest.raises(ValidationError) as excinfo:
        await engine.detect(7, DAY, time(11, 0), time(10, 0), Participants())
    assert excinfo.value.code == "invalid_time_range"
