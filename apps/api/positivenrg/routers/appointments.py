"""Appointments router - booking workflow and appointment lifecycle.

Booking steps:
- POST /appointments/check          select a time and check it
- POST /appointments                confirm details, create PENDING appointment
- POST /appointments/{id}/payment   payment intent for the PENDING appointment
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from positivenrg.core.cache import CacheClient
from positivenrg.core.deps import (
    get_cache,
    get_calendar_provider,
    get_current_actor,
    get_db,
    get_payment_provider,
    rate_limited,
    require_csrf_header,
)
from positivenrg.core.errors import ConflictError
from positivenrg.db.enums import AppointmentStatus
from positivenrg.schemas.appointment import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentCreated,
    AppointmentListResponse,
    AppointmentRead,
    PaymentIntentResponse,
    ReviewCreate,
    ReviewRead,
    SlotCheckResponse,
    SlotSelection,
)
from positivenrg.schemas.auth import Actor
from positivenrg.schemas.companion import EarningRead
from positivenrg.services import appointment_service, review_service
from positivenrg.services.booking_service import BookingOrchestrator

router = APIRouter()


def get_booking_orchestrator(
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    payments=Depends(get_payment_provider),
    calendar=Depends(get_calendar_provider),
) -> BookingOrchestrator:
    return BookingOrchestrator(db, cache, payments=payments, calendar=calendar)


# =============================================================================
# Booking Workflow
# =============================================================================

@router.post(
    "/check",
    response_model=SlotCheckResponse,
    dependencies=[Depends(require_csrf_header)],
)
def check_slot(
    data: SlotSelection,
    actor: Actor = Depends(get_current_actor),
    booking: BookingOrchestrator = Depends(get_booking_orchestrator),
):
    """Step 1: check a date/time/duration and return the UTC interval when free."""
    try:
        interval = booking.select_time(
            data.companion_id, data.booking_date, data.start_time, data.duration_minutes
        )
    except ConflictError as e:
        return SlotCheckResponse(available=False, reason=e.message)
    return SlotCheckResponse(available=True, start_time=interval.start, end_time=interval.end)


@router.post(
    "",
    response_model=AppointmentCreated,
    status_code=201,
    dependencies=[Depends(require_csrf_header), Depends(rate_limited("booking"))],
)
def create_appointment(
    data: AppointmentCreate,
    actor: Actor = Depends(get_current_actor),
    booking: BookingOrchestrator = Depends(get_booking_orchestrator),
):
    """Step 2: create the PENDING appointment. The slot is re-checked first."""
    appointment = booking.create_booking(
        actor,
        data.companion_id,
        data.start_time,
        data.end_time,
        meeting_type=data.meeting_type,
        notes=data.notes,
        timezone_name=data.timezone,
    )
    return AppointmentCreated(
        appointment_id=appointment.id,
        amount=appointment.amount,
        currency=appointment.currency,
        status=appointment.status,
    )


@router.post(
    "/{appointment_id}/payment",
    response_model=PaymentIntentResponse,
    dependencies=[Depends(require_csrf_header)],
)
def start_payment(
    appointment_id: UUID,
    actor: Actor = Depends(get_current_actor),
    booking: BookingOrchestrator = Depends(get_booking_orchestrator),
):
    """Step 3: client secret for completing payment out of band."""
    payment = booking.start_payment(actor, appointment_id)
    return PaymentIntentResponse(
        client_secret=payment.client_secret,
        payment_intent_id=payment.payment_intent_id,
    )


# =============================================================================
# Reads
# =============================================================================

@router.get("", response_model=AppointmentListResponse)
def list_appointments(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    status: AppointmentStatus | None = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """Appointments the current user booked or received as a companion."""
    items, total = appointment_service.list_appointments(
        db, actor, status=status, limit=limit, offset=offset
    )
    return AppointmentListResponse(
        items=[AppointmentRead.model_validate(a) for a in items],
        total=total,
    )


@router.get("/{appointment_id}", response_model=AppointmentRead)
def get_appointment(
    appointment_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
):
    return appointment_service.get_appointment(db, cache, appointment_id, actor)


# =============================================================================
# Lifecycle
# =============================================================================

@router.post(
    "/{appointment_id}/cancel",
    response_model=AppointmentRead,
    dependencies=[Depends(require_csrf_header)],
)
def cancel_appointment(
    appointment_id: UUID,
    data: AppointmentCancel,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    payments=Depends(get_payment_provider),
):
    """Cancel as the booking user or the companion."""
    appointment = appointment_service.cancel_appointment(
        db, cache, appointment_id, actor, reason=data.reason, payments=payments
    )
    return AppointmentRead.model_validate(appointment)


@router.post(
    "/{appointment_id}/complete",
    response_model=EarningRead,
    dependencies=[Depends(require_csrf_header)],
)
def complete_appointment(
    appointment_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
):
    """Mark completed (companion or admin). Returns the single earning record."""
    _, earning = appointment_service.complete_appointment(db, cache, appointment_id, actor)
    return EarningRead.model_validate(earning)


@router.post(
    "/{appointment_id}/no-show",
    response_model=AppointmentRead,
    dependencies=[Depends(require_csrf_header)],
)
def mark_no_show(
    appointment_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
):
    appointment = appointment_service.mark_no_show(db, cache, appointment_id, actor)
    return AppointmentRead.model_validate(appointment)


@router.post(
    "/{appointment_id}/review",
    response_model=ReviewRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_review(
    appointment_id: UUID,
    data: ReviewCreate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
):
    """Review a completed appointment (booking user, once)."""
    review = review_service.create_review(
        db,
        cache,
        actor,
        appointment_id,
        rating=data.rating,
        review_text=data.review_text,
        is_public=data.is_public,
    )
    return ReviewRead.model_validate(review)
