"""Review service - ratings left after completed appointments."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from positivenrg.core.cache import CacheClient, cache_keys
from positivenrg.core.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from positivenrg.core.structured_logging import build_log_context
from positivenrg.db.enums import AppointmentStatus
from positivenrg.db.models import CompanionReview
from positivenrg.db.session import translate_storage_error
from positivenrg.repositories import AppointmentRepository, CompanionRepository, ReviewRepository
from positivenrg.schemas.auth import Actor
from positivenrg.services.companion_service import update_companion_rating

logger = logging.getLogger(__name__)


def create_review(
    db: Session,
    cache: CacheClient,
    actor: Actor,
    appointment_id: UUID,
    rating: int,
    review_text: str | None = None,
    is_public: bool = True,
) -> CompanionReview:
    """
    Review a completed appointment. One review per appointment.

    Mirrors the rating onto the appointment and recomputes the companion's
    aggregate rating in the same transaction.
    """
    if rating < 1 or rating > 5:
        raise ValidationError("Rating must be between 1 and 5", rating=rating)

    appointment = AppointmentRepository(db).find_by_id(appointment_id)
    if not appointment:
        raise NotFoundError("Appointment", appointment_id)
    if appointment.user_id != actor.user_id:
        raise UnauthorizedError("Only the booking user can review this appointment")
    if appointment.status != AppointmentStatus.COMPLETED.value:
        raise ValidationError("Only completed appointments can be reviewed")

    repo = ReviewRepository(db)
    if repo.find_by_appointment(appointment_id):
        raise ConflictError("Appointment already reviewed", appointment_id=str(appointment_id))

    text = review_text.strip() if review_text else None
    try:
        review = repo.create(
            appointment_id=appointment.id,
            companion_id=appointment.companion_id,
            user_id=actor.user_id,
            rating=rating,
            review_text=text or None,
            is_public=is_public,
        )
        appointment.user_rating = rating
        appointment.user_review = text or None
        update_companion_rating(db, cache, appointment.companion_id)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Appointment already reviewed", appointment_id=str(appointment_id)) from exc
    except SQLAlchemyError as exc:
        raise translate_storage_error(db, exc, appointment_id=appointment_id) from exc

    db.refresh(review)
    cache.delete(cache_keys.appointment(appointment_id))
    logger.info(
        "Review created",
        extra=build_log_context(
            user_id=actor.user_id,
            appointment_id=appointment_id,
            companion_id=review.companion_id,
            outcome="created",
        ),
    )
    return review


def list_public_reviews(
    db: Session,
    companion_id: UUID,
    limit: int = 20,
    offset: int = 0,
) -> list[CompanionReview]:
    """Newest public reviews for a companion profile."""
    if not CompanionRepository(db).find_by_id(companion_id):
        raise NotFoundError("Companion", companion_id)
    return ReviewRepository(db).list_public(companion_id, limit=limit, offset=offset)
