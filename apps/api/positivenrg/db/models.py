"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from positivenrg.db.base import Base
from positivenrg.db.enums import (
    AppointmentStatus,
    EarningStatus,
    MeetingType,
    PaymentStatus,
    Role,
)
from positivenrg.db.types import EncryptedString

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class User(Base):
    """Platform account. Books appointments and may own a companion profile."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(
        String(20), default=Role.USER.value, server_default=text(f"'{Role.USER.value}'"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    token_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    companion: Mapped["HumanCompanion | None"] = relationship(back_populates="user")


class HumanCompanion(Base):
    """
    Bookable human companion profile.

    Created by "become a companion" onboarding, edited by its owner,
    verified by an admin. Never hard-deleted; deactivation clears is_active.
    """

    __tablename__ = "human_companions"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_human_companion_user"),
        Index("idx_human_companions_active", "is_active", "is_verified"),
        CheckConstraint("price_per_hour >= 0", name="ck_companion_price_non_negative"),
        CheckConstraint("minimum_duration > 0", name="ck_companion_min_duration_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    avatar: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Pricing (minor currency units per hour)
    price_per_hour: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="GBP", nullable=False)
    minimum_duration: Mapped[int] = mapped_column(Integer, default=30, nullable=False)

    # Display only; interval math is done in UTC
    timezone: Mapped[str] = mapped_column(String(50), default="Europe/London", nullable=False)

    # Versioned document, see schemas.companion.CompanionDetails
    details: Mapped[dict] = mapped_column(JSONDocument, default=dict, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    calendar_sync_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Aggregates
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    review_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_bookings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_earnings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    user: Mapped["User"] = relationship(back_populates="companion")
    calendar_integration: Mapped["CalendarIntegration | None"] = relationship(
        back_populates="companion"
    )


class Appointment(Base):
    """
    Booked session between a user and a human companion.

    Lifecycle: pending → confirmed → completed/cancelled/no_show.
    Rows are never deleted; cancellation is a status change.

    The Postgres exclusion constraint on (companion_id, [start_time, end_time))
    for non-cancelled rows lives in the baseline migration.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_companion_start", "companion_id", "start_time"),
        Index("idx_appointments_user_start", "user_id", "start_time"),
        Index("idx_appointments_status", "status"),
        UniqueConstraint("payment_intent_id", name="uq_appointment_payment_intent"),
        CheckConstraint("end_time > start_time", name="ck_appointment_range"),
        CheckConstraint("duration_minutes > 0", name="ck_appointment_duration_positive"),
        CheckConstraint("amount >= 0", name="ck_appointment_amount_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    companion_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("human_companions.id", ondelete="CASCADE"), nullable=False
    )

    # Scheduling (stored in UTC)
    start_time: Mapped[datetime] = mapped_column(nullable=False)
    end_time: Mapped[datetime] = mapped_column(nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    timezone: Mapped[str] = mapped_column(String(50), nullable=False)

    meeting_type: Mapped[str] = mapped_column(
        String(20), default=MeetingType.VIDEO_CALL.value, nullable=False
    )
    meeting_link: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default=AppointmentStatus.PENDING.value,
        server_default=text(f"'{AppointmentStatus.PENDING.value}'"),
        nullable=False,
    )

    # Money (minor currency units)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_status: Mapped[str] = mapped_column(
        String(20), default=PaymentStatus.PENDING.value, nullable=False
    )
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    refund_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Cancellation / completion
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(20), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Mirrored from the review once submitted
    user_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    user_review: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    user: Mapped["User"] = relationship()
    companion: Mapped["HumanCompanion"] = relationship()
    earning: Mapped["CompanionEarning | None"] = relationship(back_populates="appointment")
    review: Mapped["CompanionReview | None"] = relationship(back_populates="appointment")


class CompanionEarning(Base):
    """
    Payout record derived from a completed appointment.

    One row per appointment; immutable once written.
    """

    __tablename__ = "companion_earnings"
    __table_args__ = (
        UniqueConstraint("appointment_id", name="uq_companion_earning_appointment"),
        Index("idx_companion_earnings_companion_status", "companion_id", "status"),
        CheckConstraint(
            "platform_fee + net_amount = amount", name="ck_companion_earning_conserves_amount"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False
    )
    companion_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("human_companions.id", ondelete="CASCADE"), nullable=False
    )

    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    platform_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    net_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=EarningStatus.PENDING.value, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    appointment: Mapped["Appointment"] = relationship(back_populates="earning")


class CompanionReview(Base):
    """Rating left by the booking user after a completed appointment."""

    __tablename__ = "companion_reviews"
    __table_args__ = (
        UniqueConstraint("appointment_id", name="uq_companion_review_appointment"),
        Index("idx_companion_reviews_companion", "companion_id", "is_public"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_companion_review_rating"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False
    )
    companion_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("human_companions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    review_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    appointment: Mapped["Appointment"] = relationship(back_populates="review")


class CalendarIntegration(Base):
    """Google Calendar credentials for a companion with calendar sync enabled."""

    __tablename__ = "calendar_integrations"
    __table_args__ = (
        UniqueConstraint("companion_id", name="uq_calendar_integration_companion"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    companion_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("human_companions.id", ondelete="CASCADE"), nullable=False
    )
    calendar_id: Mapped[str] = mapped_column(String(255), default="primary", nullable=False)
    access_token: Mapped[str | None] = mapped_column(EncryptedString, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(EncryptedString, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    companion: Mapped["HumanCompanion"] = relationship(back_populates="calendar_integration")
