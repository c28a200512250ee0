"""
Booking orchestrator - select time, confirm details, start payment.

Only create_booking persists a row, and it is always PENDING. The row moves
to CONFIRMED when the payment webhook arrives (appointment_service).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from positivenrg.core.cache import CacheClient
from positivenrg.core.config import settings
from positivenrg.core.errors import (
    ConflictError,
    NotFoundError,
    UnauthorizedError,
    UpstreamError,
    ValidationError,
)
from positivenrg.core.structured_logging import build_log_context
from positivenrg.db.enums import AppointmentStatus, MeetingType, PaymentStatus
from positivenrg.db.models import Appointment, HumanCompanion
from positivenrg.db.session import commit_or_raise, translate_storage_error
from positivenrg.repositories import AppointmentRepository, CompanionRepository
from positivenrg.schemas.auth import Actor
from positivenrg.services.availability_service import (
    REASON_ALREADY_BOOKED,
    AvailabilityChecker,
    validate_range,
)
from positivenrg.services.calendar_service import CalendarProvider
from positivenrg.services.payment_service import (
    REUSABLE_INTENT_STATUSES,
    SETTLED_INTENT_STATUSES,
    PaymentProvider,
)
from positivenrg.services.pricing_service import calculate_appointment_amount

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingInterval:
    """Checked [start, end) in UTC, handed from step 1 to step 2."""
    start: datetime
    end: datetime
    duration_minutes: int


@dataclass(frozen=True)
class PaymentStart:
    client_secret: str
    payment_intent_id: str


def _get_timezone(tz_name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def _parse_meeting_type(value) -> MeetingType:
    if isinstance(value, MeetingType):
        return value
    try:
        return MeetingType(value)
    except ValueError as exc:
        raise ValidationError(f"Invalid meeting type: {value}") from exc


class BookingOrchestrator:
    """Multi-step booking workflow over injected storage, cache and providers."""

    def __init__(
        self,
        db: Session,
        cache: CacheClient,
        payments: PaymentProvider | None = None,
        calendar: CalendarProvider | None = None,
    ):
        self.db = db
        self.cache = cache
        self.payments = payments
        self.companions = CompanionRepository(db)
        self.appointments = AppointmentRepository(db)
        self.checker = AvailabilityChecker(self.companions, self.appointments, calendar)

    def _get_companion(self, companion_id: UUID) -> HumanCompanion:
        companion = self.companions.find_by_id(companion_id)
        if not companion:
            raise NotFoundError("Companion", companion_id)
        return companion

    @staticmethod
    def _check_duration(companion: HumanCompanion, duration_minutes: int) -> None:
        if duration_minutes < companion.minimum_duration:
            raise ValidationError(
                f"Minimum booking duration is {companion.minimum_duration} minutes",
                duration_minutes=duration_minutes,
                minimum_duration=companion.minimum_duration,
            )

    # =========================================================================
    # Step 1: select time
    # =========================================================================

    def select_time(
        self,
        companion_id: UUID,
        booking_date: date,
        start_time: time,
        duration_minutes: int,
    ) -> BookingInterval:
        """
        Build the interval in the companion's timezone and check it.

        An unavailable slot raises ConflictError carrying the checker's reason.
        """
        companion = self._get_companion(companion_id)
        if duration_minutes <= 0:
            raise ValidationError("Duration must be positive", duration_minutes=duration_minutes)
        self._check_duration(companion, duration_minutes)

        local_start = datetime.combine(booking_date, start_time, tzinfo=_get_timezone(companion.timezone))
        start = local_start.astimezone(timezone.utc)
        end = start + timedelta(minutes=duration_minutes)

        result = self.checker.check(companion_id, start, end)
        if not result.available:
            raise ConflictError(result.reason or REASON_ALREADY_BOOKED, companion_id=str(companion_id))

        return BookingInterval(start=start, end=end, duration_minutes=duration_minutes)

    # =========================================================================
    # Step 2: meeting details -> PENDING appointment
    # =========================================================================

    def create_booking(
        self,
        actor: Actor,
        companion_id: UUID,
        start: datetime,
        end: datetime,
        meeting_type: MeetingType | str = MeetingType.VIDEO_CALL,
        notes: str | None = None,
        timezone_name: str | None = None,
    ) -> Appointment:
        start, end = validate_range(start, end)
        meeting = _parse_meeting_type(meeting_type)
        if notes is not None:
            notes = notes.strip() or None
        if notes and len(notes) > settings.BOOKING_NOTES_MAX_LENGTH:
            raise ValidationError(
                f"Notes must be at most {settings.BOOKING_NOTES_MAX_LENGTH} characters"
            )

        companion = self._get_companion(companion_id)

        span = end - start
        if span % timedelta(minutes=1):
            raise ValidationError("Booking must be a whole number of minutes")
        duration_minutes = int(span.total_seconds() // 60)
        self._check_duration(companion, duration_minutes)

        # Step 1 may be stale by now
        result = self.checker.check(companion_id, start, end)
        if not result.available:
            raise ConflictError(result.reason or REASON_ALREADY_BOOKED, companion_id=str(companion_id))

        amount = calculate_appointment_amount(duration_minutes, companion.price_per_hour)

        try:
            appointment = self.appointments.create(
                user_id=actor.user_id,
                companion_id=companion.id,
                start_time=start,
                end_time=end,
                duration_minutes=duration_minutes,
                timezone=timezone_name or companion.timezone,
                meeting_type=meeting.value,
                notes=notes,
                status=AppointmentStatus.PENDING.value,
                amount=amount,
                currency=companion.currency,
                payment_status=PaymentStatus.PENDING.value,
            )
            self.db.commit()
        except IntegrityError as exc:
            # Exclusion constraint caught a booking that raced the check above
            self.db.rollback()
            logger.info(
                "Booking lost race for slot",
                extra=build_log_context(user_id=actor.user_id, companion_id=companion_id, outcome="conflict"),
            )
            raise ConflictError(REASON_ALREADY_BOOKED, companion_id=str(companion_id)) from exc
        except SQLAlchemyError as exc:
            raise translate_storage_error(
                self.db, exc, user_id=actor.user_id, companion_id=companion_id
            ) from exc

        self.db.refresh(appointment)
        self.cache.delete_pattern(f"availability:{companion_id}:*")
        logger.info(
            "Appointment created",
            extra=build_log_context(
                user_id=actor.user_id,
                companion_id=companion_id,
                appointment_id=appointment.id,
                outcome="created",
            ),
        )
        return appointment

    # =========================================================================
    # Step 3: payment intent
    # =========================================================================

    def start_payment(self, actor: Actor, appointment_id: UUID) -> PaymentStart:
        """
        Create (or reuse) a payment intent for a PENDING appointment.

        Provider failures raise UpstreamError and leave the appointment PENDING.
        """
        if self.payments is None:
            raise UpstreamError("Payments are not configured", service="stripe")

        appointment = self.appointments.find_by_id(appointment_id)
        if not appointment:
            raise NotFoundError("Appointment", appointment_id)
        if appointment.user_id != actor.user_id:
            raise UnauthorizedError("Only the booking user can pay for this appointment")
        if appointment.status != AppointmentStatus.PENDING.value:
            raise ValidationError("Appointment is not awaiting payment", status=appointment.status)
        if appointment.payment_status == PaymentStatus.PAID.value:
            raise ValidationError("Appointment is already paid")

        if appointment.payment_intent_id:
            existing = self.payments.retrieve_payment_intent(appointment.payment_intent_id)
            if existing.status in REUSABLE_INTENT_STATUSES and existing.client_secret:
                return PaymentStart(client_secret=existing.client_secret, payment_intent_id=existing.id)
            if existing.status in SETTLED_INTENT_STATUSES:
                # Money is taken or held; the webhook will confirm the booking
                raise ConflictError(
                    "Appointment payment already in progress",
                    appointment_id=str(appointment.id),
                    intent_status=existing.status,
                )

        idempotency_key = f"appointment:{appointment.id}:{appointment.payment_intent_id or 'initial'}"
        intent = self.payments.create_payment_intent(
            appointment.amount,
            appointment.currency,
            {
                "appointment_id": str(appointment.id),
                "user_id": str(appointment.user_id),
                "companion_id": str(appointment.companion_id),
                "type": "appointment",
            },
            idempotency_key=idempotency_key,
        )
        if not intent.client_secret:
            raise UpstreamError("Payment provider returned no client secret", service="stripe")

        appointment.payment_intent_id = intent.id
        appointment.payment_status = PaymentStatus.PENDING.value
        commit_or_raise(self.db, appointment_id=appointment.id)

        logger.info(
            "Payment intent created",
            extra=build_log_context(
                user_id=actor.user_id,
                appointment_id=appointment.id,
                outcome="payment_started",
            ),
        )
        return PaymentStart(client_secret=intent.client_secret, payment_intent_id=intent.id)
