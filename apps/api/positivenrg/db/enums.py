"""Enum definitions for application constants."""

from enum import Enum


class Role(str, Enum):
    """Platform role of a user account."""

    USER = "user"
    ADMIN = "admin"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in {item.value for item in cls}


class MeetingType(str, Enum):
    """How a booked session takes place."""

    VIDEO_CALL = "video_call"
    PHONE_CALL = "phone_call"
    TEXT_CHAT = "text_chat"
    IN_PERSON = "in_person"


class AppointmentStatus(str, Enum):
    """
    Appointment lifecycle status.

    Flow: pending → confirmed → completed
              ↘ cancelled
              ↘ no_show
    """

    PENDING = "pending"  # Created, awaiting payment
    CONFIRMED = "confirmed"  # Paid, scheduled
    COMPLETED = "completed"  # Session took place
    CANCELLED = "cancelled"  # Cancelled by user or companion
    NO_SHOW = "no_show"  # Booker didn't show up


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class EarningStatus(str, Enum):
    """Payout state of a companion earning."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"


class CancelledBy(str, Enum):
    USER = "user"
    COMPANION = "companion"
    SYSTEM = "system"


# Allowed status transitions (from -> set of to)
APPOINTMENT_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset(
        {
            AppointmentStatus.CONFIRMED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {
            AppointmentStatus.COMPLETED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}
