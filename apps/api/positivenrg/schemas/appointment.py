"""Appointment schemas - Pydantic models for the booking API."""

from datetime import date, datetime, time
from uuid import UUID

from pydantic import BaseModel, Field

from positivenrg.db.enums import MeetingType


# =============================================================================
# Booking Steps
# =============================================================================

class SlotSelection(BaseModel):
    """Step 1: pick a date, a start time and a duration."""
    companion_id: UUID
    booking_date: date
    start_time: time
    duration_minutes: int = Field(..., gt=0, le=24 * 60)


class SlotCheckResponse(BaseModel):
    """Result of step 1. The interval is present only when bookable."""
    available: bool
    reason: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None


class AppointmentCreate(BaseModel):
    """Step 2: confirm meeting details for a previously checked interval."""
    companion_id: UUID
    start_time: datetime
    end_time: datetime
    meeting_type: MeetingType = MeetingType.VIDEO_CALL
    notes: str | None = None
    timezone: str | None = Field(None, max_length=50)


class AppointmentCreated(BaseModel):
    appointment_id: UUID
    amount: int
    currency: str
    status: str


class PaymentIntentResponse(BaseModel):
    """Step 3: client secret for completing payment out of band."""
    client_secret: str
    payment_intent_id: str


# =============================================================================
# Lifecycle
# =============================================================================

class AppointmentCancel(BaseModel):
    """Schema for cancelling an appointment."""
    reason: str | None = Field(None, max_length=1000)


class AppointmentRead(BaseModel):
    """Schema for reading an appointment."""
    model_config = {"from_attributes": True}

    id: UUID
    user_id: UUID
    companion_id: UUID
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    timezone: str
    meeting_type: str
    status: str
    amount: int
    currency: str
    notes: str | None
    meeting_link: str | None
    payment_status: str
    refund_amount: int | None
    cancelled_at: datetime | None
    cancelled_by: str | None
    cancellation_reason: str | None
    completed_at: datetime | None
    user_rating: int | None
    user_review: str | None
    created_at: datetime


class AppointmentListResponse(BaseModel):
    """Schema for appointment list response."""
    items: list[AppointmentRead]
    total: int


# =============================================================================
# Reviews
# =============================================================================

class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    review_text: str | None = Field(None, max_length=2000)
    is_public: bool = True


class ReviewRead(BaseModel):
    model_config = {"from_attributes": True}

    id: UUID
    appointment_id: UUID
    companion_id: UUID
    user_id: UUID
    rating: int
    review_text: str | None
    is_public: bool
    created_at: datetime


# =============================================================================
# Internal
# =============================================================================

class SweepResponse(BaseModel):
    cancelled: int
