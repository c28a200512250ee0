"""Tests for the availability checker."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from positivenrg.core.errors import ValidationError
from positivenrg.db.enums import AppointmentStatus
from positivenrg.db.models import Appointment
from positivenrg.repositories import AppointmentRepository, CompanionRepository
from positivenrg.services.availability_service import (
    REASON_ALREADY_BOOKED,
    REASON_CALENDAR_BUSY,
    REASON_NOT_ACTIVE,
    REASON_UNAVAILABLE,
    AvailabilityChecker,
    get_cached_availability,
    overlaps,
)
from positivenrg.services.calendar_service import BusyWindow


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2030, 1, 7, hour, minute, tzinfo=timezone.utc)


def _book(db, companion, user, start, end, status=AppointmentStatus.CONFIRMED):
    appointment = Appointment(
        user_id=user.id,
        companion_id=companion.id,
        start_time=start,
        end_time=end,
        duration_minutes=int((end - start).total_seconds() // 60),
        timezone="UTC",
        status=status.value,
        amount=5000,
        currency="GBP",
    )
    db.add(appointment)
    db.commit()
    return appointment


@pytest.fixture
def checker(db, calendar):
    return AvailabilityChecker(CompanionRepository(db), AppointmentRepository(db), calendar)


def test_overlap_is_symmetric_and_reflexive():
    intervals = [
        (_at(10), _at(11)),
        (_at(10, 30), _at(11, 30)),
        (_at(11), _at(12)),
        (_at(9), _at(13)),
        (_at(14), _at(15)),
    ]
    for a in intervals:
        assert overlaps(*a, *a)
        for b in intervals:
            assert overlaps(*a, *b) == overlaps(*b, *a)


def test_overlap_is_half_open():
    assert not overlaps(_at(10), _at(11), _at(11), _at(12))
    assert overlaps(_at(10), _at(11), _at(10, 59), _at(12))


def test_back_to_back_booking_allowed(db, checker, companion, booker):
    _book(db, companion, booker, _at(10), _at(11))

    clash = checker.check(companion.id, _at(10, 30), _at(11, 30))
    assert clash.available is False
    assert clash.reason == REASON_ALREADY_BOOKED

    after = checker.check(companion.id, _at(11), _at(12))
    assert after.available is True
    assert after.reason is None

    before = checker.check(companion.id, _at(9), _at(10))
    assert before.available is True


def test_cancelled_appointments_do_not_block(db, checker, companion, booker):
    _book(db, companion, booker, _at(10), _at(11), status=AppointmentStatus.CANCELLED)
    assert checker.check(companion.id, _at(10), _at(11)).available is True


def test_pending_appointments_block(db, checker, companion, booker):
    _book(db, companion, booker, _at(10), _at(11), status=AppointmentStatus.PENDING)
    assert checker.check(companion.id, _at(9, 30), _at(10, 30)).available is False


def test_other_companion_bookings_ignored(db, checker, companion, booker, other_user):
    from positivenrg.db.models import HumanCompanion

    second = HumanCompanion(
        user_id=other_user.id, display_name="Alex", price_per_hour=4000, minimum_duration=30
    )
    db.add(second)
    db.commit()
    _book(db, second, booker, _at(10), _at(11))

    assert checker.check(companion.id, _at(10), _at(11)).available is True


def test_inverted_and_empty_ranges_rejected(checker, companion):
    with pytest.raises(ValidationError):
        checker.check(companion.id, _at(11), _at(10))
    with pytest.raises(ValidationError):
        checker.check(companion.id, _at(10), _at(10))


def test_missing_or_inactive_companion(db, checker, companion):
    assert checker.check(uuid.uuid4(), _at(10), _at(11)).reason == REASON_NOT_ACTIVE

    companion.is_active = False
    db.commit()
    result = checker.check(companion.id, _at(10), _at(11))
    assert result.available is False
    assert result.reason == REASON_NOT_ACTIVE


def test_companion_marked_unavailable(db, checker, companion):
    companion.is_available = False
    db.commit()
    assert checker.check(companion.id, _at(10), _at(11)).reason == REASON_UNAVAILABLE


def test_calendar_busy_window_blocks(db, checker, companion, calendar):
    companion.calendar_sync_enabled = True
    db.commit()
    calendar.busy = [BusyWindow(start=_at(10, 45), end=_at(12))]

    result = checker.check(companion.id, _at(10), _at(11))
    assert result.available is False
    assert result.reason == REASON_CALENDAR_BUSY

    # Busy window ending at the requested start does not block
    assert checker.check(companion.id, _at(12), _at(13)).available is True


def test_calendar_not_consulted_without_sync(checker, companion, calendar):
    calendar.busy = [BusyWindow(start=_at(0), end=_at(23))]
    assert checker.check(companion.id, _at(10), _at(11)).available is True
    assert calendar.calls == 0


def test_calendar_failure_is_ignored(db, checker, companion, calendar, booker):
    companion.calendar_sync_enabled = True
    db.commit()
    calendar.fail = True

    assert checker.check(companion.id, _at(10), _at(11)).available is True

    _book(db, companion, booker, _at(10), _at(11))
    assert checker.check(companion.id, _at(10), _at(11)).reason == REASON_ALREADY_BOOKED


def test_naive_datetimes_are_utc(db, checker, companion, booker):
    _book(db, companion, booker, _at(10), _at(11))
    naive_start = datetime(2030, 1, 7, 10, 30)
    assert checker.check(companion.id, naive_start, naive_start + timedelta(hours=1)).available is False


def test_offset_datetimes_compared_as_instants(db, checker, companion, booker):
    _book(db, companion, booker, _at(10), _at(11))
    plus_two = timezone(timedelta(hours=2))
    # 13:00+02:00 is 11:00 UTC, right after the booking
    start = datetime(2030, 1, 7, 13, 0, tzinfo=plus_two)
    assert checker.check(companion.id, start, start + timedelta(hours=1)).available is True


def test_cached_availability_round_trip(db, checker, companion, cache, fake_redis):
    first = get_cached_availability(checker, cache, companion.id, _at(10), _at(11))
    assert first.available is True
    assert any(key.startswith(f"availability:{companion.id}:") for key in fake_redis.store)

    companion.is_available = False
    db.commit()
    # Served from cache until invalidated or expired
    assert get_cached_availability(checker, cache, companion.id, _at(10), _at(11)).available is True
    # The write path never trusts the cache
    assert checker.check(companion.id, _at(10), _at(11)).available is False
