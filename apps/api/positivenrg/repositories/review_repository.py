"""Review repository - database operations for companion reviews."""

from uuid import UUID

from sqlalchemy.orm import Session

from positivenrg.db.models import CompanionReview


class ReviewRepository:
    def __init__(self, db: Session):
        self.db = db

    def find_by_appointment(self, appointment_id: UUID) -> CompanionReview | None:
        return (
            self.db.query(CompanionReview)
            .filter(CompanionReview.appointment_id == appointment_id)
            .first()
        )

    def create(self, **data) -> CompanionReview:
        review = CompanionReview(**data)
        self.db.add(review)
        self.db.flush()
        return review

    def list_public(self, companion_id: UUID, limit: int = 20, offset: int = 0) -> list[CompanionReview]:
        return (
            self.db.query(CompanionReview)
            .filter(
                CompanionReview.companion_id == companion_id,
                CompanionReview.is_public.is_(True),
            )
            .order_by(CompanionReview.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
