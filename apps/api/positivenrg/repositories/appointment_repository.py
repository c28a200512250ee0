"""Appointment repository - database operations for appointments."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from positivenrg.db.enums import AppointmentStatus, PaymentStatus
from positivenrg.db.models import Appointment


class AppointmentRepository:
    """Repository for appointment rows. Rows are never deleted."""

    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, appointment_id: UUID) -> Appointment | None:
        return self.db.get(Appointment, appointment_id)

    def find_by_id_for_update(self, appointment_id: UUID) -> Appointment | None:
        return (
            self.db.query(Appointment)
            .filter(Appointment.id == appointment_id)
            .with_for_update()
            .first()
        )

    def find_by_payment_intent(self, payment_intent_id: str) -> Appointment | None:
        return (
            self.db.query(Appointment)
            .filter(Appointment.payment_intent_id == payment_intent_id)
            .first()
        )

    def find_overlapping(
        self,
        companion_id: UUID,
        start: datetime,
        end: datetime,
        exclude_status: AppointmentStatus | None = AppointmentStatus.CANCELLED,
        exclude_appointment_id: UUID | None = None,
    ) -> list[Appointment]:
        """
        Appointments whose [start_time, end_time) intersects [start, end).

        Half-open: an appointment ending exactly at `start` does not overlap.
        """
        query = self.db.query(Appointment).filter(
            Appointment.companion_id == companion_id,
            Appointment.start_time < end,
            Appointment.end_time > start,
        )
        if exclude_status is not None:
            query = query.filter(Appointment.status != exclude_status.value)
        if exclude_appointment_id:
            query = query.filter(Appointment.id != exclude_appointment_id)
        return query.order_by(Appointment.start_time).all()

    def create(self, **data) -> Appointment:
        appointment = Appointment(**data)
        self.db.add(appointment)
        self.db.flush()
        return appointment

    def update_status(
        self,
        appointment: Appointment,
        status: AppointmentStatus,
        **fields,
    ) -> Appointment:
        appointment.status = status.value
        for key, value in fields.items():
            setattr(appointment, key, value)
        self.db.flush()
        return appointment

    def list_for_participant(
        self,
        *,
        user_id: UUID,
        companion_id: UUID | None = None,
        status: AppointmentStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Appointment], int]:
        """Appointments the user booked, or received as a companion."""
        participant = Appointment.user_id == user_id
        if companion_id:
            participant = or_(participant, Appointment.companion_id == companion_id)

        query = self.db.query(Appointment).filter(participant)
        if status:
            query = query.filter(Appointment.status == status.value)

        total = query.count()
        items = (
            query.order_by(Appointment.start_time.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return items, total

    def find_abandoned(self, created_before: datetime) -> list[Appointment]:
        """Unpaid PENDING bookings created before the cutoff."""
        return (
            self.db.query(Appointment)
            .filter(
                Appointment.status == AppointmentStatus.PENDING.value,
                Appointment.payment_status != PaymentStatus.PAID.value,
                Appointment.created_at < created_before,
            )
            .all()
        )
