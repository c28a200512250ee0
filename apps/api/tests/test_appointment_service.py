"""Tests for the appointment lifecycle after booking."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from positivenrg.core.errors import NotFoundError, UnauthorizedError, UpstreamError, ValidationError
from positivenrg.db.enums import AppointmentStatus, CancelledBy, PaymentStatus
from positivenrg.db.models import CompanionEarning
from positivenrg.repositories import EarningRepository
from positivenrg.services import appointment_service
from positivenrg.services.booking_service import BookingOrchestrator

from conftest import actor_for


@pytest.fixture
def orchestrator(db, cache, payments, calendar):
    return BookingOrchestrator(db, cache, payments=payments, calendar=calendar)


@pytest.fixture
def pending(orchestrator, companion, booker, slot_start, slot_end):
    return orchestrator.create_booking(actor_for(booker), companion.id, slot_start, slot_end)


@pytest.fixture
def confirmed(db, cache, orchestrator, pending, booker):
    payment = orchestrator.start_payment(actor_for(booker), pending.id)
    return appointment_service.confirm_appointment_payment(db, cache, payment.payment_intent_id)


# =============================================================================
# Payment webhook outcomes
# =============================================================================

def test_confirm_payment_moves_to_confirmed(confirmed):
    assert confirmed.status == AppointmentStatus.CONFIRMED.value
    assert confirmed.payment_status == PaymentStatus.PAID.value


def test_confirm_payment_is_idempotent(db, cache, confirmed):
    again = appointment_service.confirm_appointment_payment(db, cache, confirmed.payment_intent_id)
    assert again.id == confirmed.id
    assert again.status == AppointmentStatus.CONFIRMED.value


def test_confirm_unknown_intent(db, cache):
    with pytest.raises(NotFoundError):
        appointment_service.confirm_appointment_payment(db, cache, "pi_missing")


def test_payment_after_sweep_keeps_cancelled(db, cache, orchestrator, pending, booker):
    payment = orchestrator.start_payment(actor_for(booker), pending.id)
    appointment_service.expire_abandoned_bookings(
        db, cache, now=datetime.now(timezone.utc) + timedelta(hours=2)
    )

    appointment = appointment_service.confirm_appointment_payment(db, cache, payment.payment_intent_id)
    assert appointment.status == AppointmentStatus.CANCELLED.value
    assert appointment.payment_status == PaymentStatus.PAID.value


def test_payment_failure_keeps_pending(db, cache, orchestrator, pending, booker):
    payment = orchestrator.start_payment(actor_for(booker), pending.id)
    appointment = appointment_service.mark_payment_failed(db, cache, payment.payment_intent_id)

    assert appointment.status == AppointmentStatus.PENDING.value
    assert appointment.payment_status == PaymentStatus.FAILED.value


def test_payment_failure_for_unknown_intent(db, cache):
    assert appointment_service.mark_payment_failed(db, cache, "pi_missing") is None


# =============================================================================
# Cancellation
# =============================================================================

def test_user_cancels_unpaid_booking(db, cache, pending, booker):
    appointment = appointment_service.cancel_appointment(
        db, cache, pending.id, actor_for(booker), reason="Changed plans"
    )
    assert appointment.status == AppointmentStatus.CANCELLED.value
    assert appointment.cancelled_by == CancelledBy.USER.value
    assert appointment.cancellation_reason == "Changed plans"
    assert appointment.refund_amount == 0
    assert appointment.cancelled_at is not None


def test_companion_cancels(db, cache, pending, companion_user):
    appointment = appointment_service.cancel_appointment(db, cache, pending.id, actor_for(companion_user))
    assert appointment.cancelled_by == CancelledBy.COMPANION.value


def test_stranger_cannot_cancel(db, cache, pending, other_user):
    with pytest.raises(UnauthorizedError):
        appointment_service.cancel_appointment(db, cache, pending.id, actor_for(other_user))


def test_admin_is_not_a_participant_for_cancel(db, cache, pending, admin_user):
    with pytest.raises(UnauthorizedError):
        appointment_service.cancel_appointment(db, cache, pending.id, actor_for(admin_user))


def test_cancel_twice_rejected(db, cache, pending, booker):
    appointment_service.cancel_appointment(db, cache, pending.id, actor_for(booker))
    with pytest.raises(ValidationError):
        appointment_service.cancel_appointment(db, cache, pending.id, actor_for(booker))


def test_cancel_commit_failure_rolls_back(db, cache, pending, booker, monkeypatch):
    def lost_connection():
        raise OperationalError("UPDATE appointments", {}, Exception("server closed the connection"))

    monkeypatch.setattr(db, "commit", lost_connection)

    with pytest.raises(UpstreamError) as exc_info:
        appointment_service.cancel_appointment(db, cache, pending.id, actor_for(booker))

    assert exc_info.value.service == "database"
    db.refresh(pending)
    assert pending.status == AppointmentStatus.PENDING.value
    assert pending.cancelled_at is None


def test_full_refund_with_notice(db, cache, confirmed, booker, payments, slot_start):
    appointment = appointment_service.cancel_appointment(
        db,
        cache,
        confirmed.id,
        actor_for(booker),
        payments=payments,
        now=slot_start - timedelta(days=2),
    )
    assert appointment.refund_amount == 5000
    assert payments.refunds == [(confirmed.payment_intent_id, 5000)]
    db.refresh(appointment)
    assert appointment.payment_status == PaymentStatus.REFUNDED.value


def test_late_cancel_refunds_half(db, cache, confirmed, booker, payments, slot_start):
    appointment = appointment_service.cancel_appointment(
        db,
        cache,
        confirmed.id,
        actor_for(booker),
        payments=payments,
        now=slot_start - timedelta(hours=2),
    )
    assert appointment.refund_amount == 2500
    assert payments.refunds == [(confirmed.payment_intent_id, 2500)]


def test_refund_failure_keeps_cancellation(db, cache, confirmed, booker, payments, slot_start):
    payments.fail = True
    appointment = appointment_service.cancel_appointment(
        db,
        cache,
        confirmed.id,
        actor_for(booker),
        payments=payments,
        now=slot_start - timedelta(days=2),
    )
    db.refresh(appointment)
    assert appointment.status == AppointmentStatus.CANCELLED.value
    assert appointment.payment_status == PaymentStatus.PAID.value
    assert appointment.refund_amount == 5000


def test_cancelled_slot_is_free_again(db, cache, orchestrator, pending, booker, companion, slot_start, slot_end):
    appointment_service.cancel_appointment(db, cache, pending.id, actor_for(booker))
    result = orchestrator.checker.check(companion.id, slot_start, slot_end)
    assert result.available is True


# =============================================================================
# Completion / earnings
# =============================================================================

def test_complete_records_earning(db, cache, confirmed, companion, companion_user):
    appointment, earning = appointment_service.complete_appointment(
        db, cache, confirmed.id, actor_for(companion_user)
    )

    assert appointment.status == AppointmentStatus.COMPLETED.value
    assert appointment.completed_at is not None
    assert earning.amount == 5000
    assert earning.platform_fee == 1000
    assert earning.net_amount == 4000
    db.refresh(companion)
    assert companion.total_bookings == 1
    assert companion.total_earnings == 4000


def test_complete_twice_creates_one_earning(db, cache, confirmed, companion, companion_user):
    _, first = appointment_service.complete_appointment(db, cache, confirmed.id, actor_for(companion_user))
    _, second = appointment_service.complete_appointment(db, cache, confirmed.id, actor_for(companion_user))

    assert first.id == second.id
    assert db.query(CompanionEarning).count() == 1
    db.refresh(companion)
    assert companion.total_bookings == 1


def test_concurrent_earning_insert_rereads(db, cache, confirmed, companion, companion_user, monkeypatch):
    _, first = appointment_service.complete_appointment(db, cache, confirmed.id, actor_for(companion_user))

    original = EarningRepository.find_by_appointment
    calls = {"count": 0}

    def stale_then_real(self, appointment_id):
        calls["count"] += 1
        if calls["count"] == 1:
            return None
        return original(self, appointment_id)

    monkeypatch.setattr(EarningRepository, "find_by_appointment", stale_then_real)

    _, second = appointment_service.complete_appointment(db, cache, confirmed.id, actor_for(companion_user))

    assert second.id == first.id
    assert db.query(CompanionEarning).count() == 1
    db.refresh(companion)
    assert companion.total_earnings == 4000


def test_admin_can_complete(db, cache, confirmed, admin_user):
    appointment, _ = appointment_service.complete_appointment(db, cache, confirmed.id, actor_for(admin_user))
    assert appointment.status == AppointmentStatus.COMPLETED.value


def test_booker_cannot_complete(db, cache, confirmed, booker):
    with pytest.raises(UnauthorizedError):
        appointment_service.complete_appointment(db, cache, confirmed.id, actor_for(booker))


def test_pending_cannot_complete(db, cache, pending, companion_user):
    with pytest.raises(ValidationError):
        appointment_service.complete_appointment(db, cache, pending.id, actor_for(companion_user))
    assert db.query(CompanionEarning).count() == 0


def test_no_show(db, cache, confirmed, companion_user):
    appointment = appointment_service.mark_no_show(db, cache, confirmed.id, actor_for(companion_user))
    assert appointment.status == AppointmentStatus.NO_SHOW.value

    with pytest.raises(ValidationError):
        appointment_service.mark_no_show(db, cache, confirmed.id, actor_for(companion_user))


# =============================================================================
# Reads
# =============================================================================

def test_get_appointment_participants_only(db, cache, pending, booker, companion_user, other_user, admin_user):
    for user in (booker, companion_user, admin_user):
        assert appointment_service.get_appointment(db, cache, pending.id, actor_for(user)).id == pending.id

    with pytest.raises(UnauthorizedError):
        appointment_service.get_appointment(db, cache, pending.id, actor_for(other_user))


def test_get_appointment_reads_through_cache(db, cache, fake_redis, pending, booker):
    appointment_service.get_appointment(db, cache, pending.id, actor_for(booker))
    assert f"appointment:{pending.id}" in fake_redis.store


def test_list_appointments_both_sides(db, pending, booker, companion_user, other_user):
    items, total = appointment_service.list_appointments(db, actor_for(booker))
    assert total == 1 and items[0].id == pending.id

    items, total = appointment_service.list_appointments(db, actor_for(companion_user))
    assert total == 1

    _, total = appointment_service.list_appointments(db, actor_for(other_user))
    assert total == 0

    _, total = appointment_service.list_appointments(
        db, actor_for(booker), status=AppointmentStatus.CONFIRMED
    )
    assert total == 0


# =============================================================================
# Abandoned booking sweep
# =============================================================================

def test_sweep_cancels_stale_unpaid(db, cache, pending):
    cancelled = appointment_service.expire_abandoned_bookings(
        db, cache, now=datetime.now(timezone.utc) + timedelta(hours=2)
    )
    assert cancelled == 1
    db.refresh(pending)
    assert pending.status == AppointmentStatus.CANCELLED.value
    assert pending.cancelled_by == CancelledBy.SYSTEM.value
    assert pending.cancellation_reason == "Payment not completed"


def test_sweep_skips_recent_bookings(db, cache, pending):
    assert appointment_service.expire_abandoned_bookings(db, cache) == 0
    db.refresh(pending)
    assert pending.status == AppointmentStatus.PENDING.value


def test_sweep_skips_confirmed(db, cache, confirmed):
    cancelled = appointment_service.expire_abandoned_bookings(
        db, cache, now=datetime.now(timezone.utc) + timedelta(hours=2)
    )
    assert cancelled == 0
    db.refresh(confirmed)
    assert confirmed.status == AppointmentStatus.CONFIRMED.value
