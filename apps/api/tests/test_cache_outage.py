"""Read paths keep answering from the database while Redis is unreachable."""

import pytest

from positivenrg.core.cache import CacheClient
from positivenrg.db.enums import AppointmentStatus
from positivenrg.repositories import AppointmentRepository, CompanionRepository
from positivenrg.schemas.companion import CompanionListFilters
from positivenrg.services import appointment_service, companion_service
from positivenrg.services.availability_service import (
    REASON_ALREADY_BOOKED,
    AvailabilityChecker,
    get_cached_availability,
)
from positivenrg.services.booking_service import BookingOrchestrator

from conftest import BrokenRedis, actor_for


@pytest.fixture
def broken_cache() -> CacheClient:
    return CacheClient(BrokenRedis())


def test_companion_profile_served_from_database(db, broken_cache, companion):
    profile = companion_service.get_companion_profile(db, broken_cache, companion.id)

    assert profile.id == companion.id
    assert profile.display_name == "Sam"
    assert profile.price_per_hour == 5000


def test_directory_served_from_database(db, broken_cache, companion):
    profiles = companion_service.list_active_companions(db, broken_cache, CompanionListFilters())
    assert [p.id for p in profiles] == [companion.id]


def test_appointment_served_from_database(db, broken_cache, companion, booker, slot_start, slot_end):
    orchestrator = BookingOrchestrator(db, broken_cache)
    appointment = orchestrator.create_booking(actor_for(booker), companion.id, slot_start, slot_end)

    read = appointment_service.get_appointment(db, broken_cache, appointment.id, actor_for(booker))

    assert read.id == appointment.id
    assert read.status == AppointmentStatus.PENDING.value
    assert read.amount == 5000


def test_cached_availability_served_from_database(db, broken_cache, companion, booker, slot_start, slot_end):
    checker = AvailabilityChecker(CompanionRepository(db), AppointmentRepository(db))
    assert get_cached_availability(checker, broken_cache, companion.id, slot_start, slot_end).available is True

    BookingOrchestrator(db, broken_cache).create_booking(actor_for(booker), companion.id, slot_start, slot_end)

    result = get_cached_availability(checker, broken_cache, companion.id, slot_start, slot_end)
    assert result.available is False
    assert result.reason == REASON_ALREADY_BOOKED
