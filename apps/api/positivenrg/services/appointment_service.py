"""Appointment service - lifecycle after booking: payment, cancellation, completion."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from positivenrg.core.cache import CacheClient, cache_keys, cache_ttl
from positivenrg.core.config import settings
from positivenrg.core.errors import NotFoundError, UnauthorizedError, UpstreamError, ValidationError
from positivenrg.core.structured_logging import build_log_context
from positivenrg.db.enums import (
    APPOINTMENT_TRANSITIONS,
    AppointmentStatus,
    CancelledBy,
    PaymentStatus,
)
from positivenrg.db.models import Appointment, CompanionEarning
from positivenrg.db.session import commit_or_raise
from positivenrg.repositories import AppointmentRepository, CompanionRepository
from positivenrg.schemas.appointment import AppointmentRead
from positivenrg.schemas.auth import Actor
from positivenrg.services.earnings_service import process_appointment_earning
from positivenrg.services.payment_service import PaymentProvider
from positivenrg.services.pricing_service import calculate_refund_amount

logger = logging.getLogger(__name__)


# =============================================================================
# Helpers
# =============================================================================

def _ensure_transition(appointment: Appointment, target: AppointmentStatus) -> None:
    current = AppointmentStatus(appointment.status)
    if target not in APPOINTMENT_TRANSITIONS[current]:
        raise ValidationError(
            f"Cannot move appointment from {current.value} to {target.value}",
            appointment_id=str(appointment.id),
        )


def _invalidate(cache: CacheClient, appointment: Appointment) -> None:
    cache.delete(cache_keys.appointment(appointment.id))
    cache.delete_pattern(f"availability:{appointment.companion_id}:*")


def _companion_owner_id(db: Session, appointment: Appointment) -> UUID | None:
    companion = CompanionRepository(db).find_by_id(appointment.companion_id)
    return companion.user_id if companion else None


def _get_or_404(db: Session, appointment_id: UUID) -> Appointment:
    appointment = AppointmentRepository(db).find_by_id(appointment_id)
    if not appointment:
        raise NotFoundError("Appointment", appointment_id)
    return appointment


# =============================================================================
# Reads
# =============================================================================

def get_appointment(
    db: Session,
    cache: CacheClient,
    appointment_id: UUID,
    actor: Actor,
) -> AppointmentRead:
    """Participants (booker, companion) and admins only. Read-through cached."""
    key = cache_keys.appointment(appointment_id)
    cached = cache.get(key)
    if cached is not None:
        appointment_read = AppointmentRead.model_validate(cached)
    else:
        appointment_read = AppointmentRead.model_validate(_get_or_404(db, appointment_id))
        cache.set(key, appointment_read.model_dump(mode="json"), cache_ttl.appointment)

    if actor.is_admin or appointment_read.user_id == actor.user_id:
        return appointment_read
    companion = CompanionRepository(db).find_by_user_id(actor.user_id)
    if companion and companion.id == appointment_read.companion_id:
        return appointment_read
    raise UnauthorizedError("Not a participant of this appointment")


def list_appointments(
    db: Session,
    actor: Actor,
    status: AppointmentStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Appointment], int]:
    """Appointments the actor booked plus those booked with their companion profile."""
    companion = CompanionRepository(db).find_by_user_id(actor.user_id)
    return AppointmentRepository(db).list_for_participant(
        user_id=actor.user_id,
        companion_id=companion.id if companion else None,
        status=status,
        limit=limit,
        offset=offset,
    )


# =============================================================================
# Payment Confirmation (webhook)
# =============================================================================

def confirm_appointment_payment(
    db: Session,
    cache: CacheClient,
    payment_intent_id: str,
) -> Appointment:
    """PENDING -> CONFIRMED once the provider reports success. Idempotent."""
    repo = AppointmentRepository(db)
    appointment = repo.find_by_payment_intent(payment_intent_id)
    if not appointment:
        raise NotFoundError("Appointment for payment intent", payment_intent_id)

    if appointment.payment_status == PaymentStatus.PAID.value:
        return appointment

    if appointment.status != AppointmentStatus.PENDING.value:
        # Paid after the sweep cancelled it; keep the status, record the payment
        appointment.payment_status = PaymentStatus.PAID.value
        commit_or_raise(db, appointment_id=appointment.id)
        logger.warning(
            "Payment received for non-pending appointment",
            extra=build_log_context(appointment_id=appointment.id, outcome=appointment.status),
        )
        _invalidate(cache, appointment)
        return appointment

    repo.update_status(
        appointment,
        AppointmentStatus.CONFIRMED,
        payment_status=PaymentStatus.PAID.value,
    )
    commit_or_raise(db, appointment_id=appointment.id)
    db.refresh(appointment)
    _invalidate(cache, appointment)
    logger.info(
        "Appointment payment confirmed",
        extra=build_log_context(
            user_id=appointment.user_id,
            appointment_id=appointment.id,
            outcome="confirmed",
        ),
    )
    return appointment


def mark_payment_failed(
    db: Session,
    cache: CacheClient,
    payment_intent_id: str,
) -> Appointment | None:
    """Record a failed payment. The appointment stays PENDING so the user can retry."""
    appointment = AppointmentRepository(db).find_by_payment_intent(payment_intent_id)
    if not appointment:
        logger.warning("Payment failure for unknown intent %s", payment_intent_id)
        return None
    if appointment.payment_status == PaymentStatus.PAID.value:
        return appointment

    appointment.payment_status = PaymentStatus.FAILED.value
    commit_or_raise(db, appointment_id=appointment.id)
    _invalidate(cache, appointment)
    logger.info(
        "Appointment payment failed",
        extra=build_log_context(appointment_id=appointment.id, outcome="payment_failed"),
    )
    return appointment


# =============================================================================
# Cancellation
# =============================================================================

def cancel_appointment(
    db: Session,
    cache: CacheClient,
    appointment_id: UUID,
    actor: Actor,
    reason: str | None = None,
    payments: PaymentProvider | None = None,
    now: datetime | None = None,
) -> Appointment:
    """
    Cancel a PENDING or CONFIRMED appointment.

    Only the booking user or the companion may cancel. The row is kept and
    stops blocking the slot. Paid bookings get a refund: full with enough
    notice, partial otherwise.
    """
    repo = AppointmentRepository(db)
    appointment = repo.find_by_id_for_update(appointment_id)
    if not appointment:
        raise NotFoundError("Appointment", appointment_id)

    if appointment.user_id == actor.user_id:
        cancelled_by = CancelledBy.USER
    elif _companion_owner_id(db, appointment) == actor.user_id:
        cancelled_by = CancelledBy.COMPANION
    else:
        raise UnauthorizedError("Only the booking user or the companion can cancel")

    _ensure_transition(appointment, AppointmentStatus.CANCELLED)

    cancelled_at = now or datetime.now(timezone.utc)
    was_paid = appointment.payment_status == PaymentStatus.PAID.value
    refund_amount = (
        calculate_refund_amount(appointment.amount, appointment.start_time, cancelled_at)
        if was_paid
        else 0
    )

    repo.update_status(
        appointment,
        AppointmentStatus.CANCELLED,
        cancelled_at=cancelled_at,
        cancelled_by=cancelled_by.value,
        cancellation_reason=reason,
        refund_amount=refund_amount,
    )
    commit_or_raise(db, appointment_id=appointment.id)
    db.refresh(appointment)
    _invalidate(cache, appointment)

    logger.info(
        "Appointment cancelled",
        extra=build_log_context(
            user_id=actor.user_id,
            appointment_id=appointment.id,
            outcome=f"cancelled_by_{cancelled_by.value}",
        ),
    )

    if was_paid and refund_amount > 0 and payments is not None and appointment.payment_intent_id:
        refund_appointment_payment(db, cache, appointment, payments)

    return appointment


def refund_appointment_payment(
    db: Session,
    cache: CacheClient,
    appointment: Appointment,
    payments: PaymentProvider,
) -> str | None:
    """
    Refund the stored refund_amount through the provider.

    A provider failure is logged and leaves payment_status PAID so the refund
    can be retried; the cancellation itself stands.
    """
    if appointment.payment_status != PaymentStatus.PAID.value or not appointment.payment_intent_id:
        raise ValidationError("Appointment payment not paid, cannot refund")

    try:
        refund_id = payments.refund(appointment.payment_intent_id, appointment.refund_amount or 0)
    except UpstreamError:
        logger.error(
            "Refund failed, will need retry",
            extra=build_log_context(appointment_id=appointment.id, outcome="refund_failed"),
        )
        return None

    appointment.payment_status = PaymentStatus.REFUNDED.value
    commit_or_raise(db, appointment_id=appointment.id)
    _invalidate(cache, appointment)
    logger.info(
        "Appointment payment refunded",
        extra=build_log_context(appointment_id=appointment.id, outcome="refunded"),
    )
    return refund_id


# =============================================================================
# Completion / No-show
# =============================================================================

def complete_appointment(
    db: Session,
    cache: CacheClient,
    appointment_id: UUID,
    actor: Actor,
    now: datetime | None = None,
) -> tuple[Appointment, CompanionEarning]:
    """
    CONFIRMED -> COMPLETED and record the companion earning.

    Repeating the call for a completed appointment returns the existing
    earning and never creates a second one.
    """
    appointment = AppointmentRepository(db).find_by_id_for_update(appointment_id)
    if not appointment:
        raise NotFoundError("Appointment", appointment_id)
    if not actor.is_admin and _companion_owner_id(db, appointment) != actor.user_id:
        raise UnauthorizedError("Only the companion or an admin can complete an appointment")

    if appointment.status != AppointmentStatus.COMPLETED.value:
        _ensure_transition(appointment, AppointmentStatus.COMPLETED)
        AppointmentRepository(db).update_status(
            appointment,
            AppointmentStatus.COMPLETED,
            completed_at=now or datetime.now(timezone.utc),
        )

    appointment_id = appointment.id
    earning = process_appointment_earning(db, appointment)
    appointment = _get_or_404(db, appointment_id)
    _invalidate(cache, appointment)
    cache.delete(cache_keys.companion(appointment.companion_id))

    logger.info(
        "Appointment completed",
        extra=build_log_context(
            user_id=actor.user_id,
            appointment_id=appointment_id,
            outcome="completed",
        ),
    )
    return appointment, earning


def mark_no_show(
    db: Session,
    cache: CacheClient,
    appointment_id: UUID,
    actor: Actor,
) -> Appointment:
    appointment = _get_or_404(db, appointment_id)
    if not actor.is_admin and _companion_owner_id(db, appointment) != actor.user_id:
        raise UnauthorizedError("Only the companion or an admin can mark a no-show")
    _ensure_transition(appointment, AppointmentStatus.NO_SHOW)

    AppointmentRepository(db).update_status(appointment, AppointmentStatus.NO_SHOW)
    commit_or_raise(db, appointment_id=appointment.id)
    _invalidate(cache, appointment)
    logger.info(
        "Appointment marked no-show",
        extra=build_log_context(user_id=actor.user_id, appointment_id=appointment.id, outcome="no_show"),
    )
    return appointment


# =============================================================================
# Abandoned Booking Sweep
# =============================================================================

def expire_abandoned_bookings(
    db: Session,
    cache: CacheClient,
    now: datetime | None = None,
) -> int:
    """Cancel unpaid PENDING bookings older than the retention window."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=settings.PENDING_BOOKING_RETENTION_MINUTES)
    repo = AppointmentRepository(db)

    abandoned = repo.find_abandoned(cutoff)
    for appointment in abandoned:
        repo.update_status(
            appointment,
            AppointmentStatus.CANCELLED,
            cancelled_at=now,
            cancelled_by=CancelledBy.SYSTEM.value,
            cancellation_reason="Payment not completed",
            refund_amount=0,
        )
    if abandoned:
        commit_or_raise(db)
        for appointment in abandoned:
            _invalidate(cache, appointment)
        logger.info("Cancelled %d abandoned bookings", len(abandoned))
    return len(abandoned)
