"""Companion repository - database operations for human companions."""

from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from positivenrg.db.models import CalendarIntegration, CompanionReview, HumanCompanion


class CompanionRepository:
    """Repository for companion profile rows."""

    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, companion_id: UUID) -> HumanCompanion | None:
        return self.db.get(HumanCompanion, companion_id)

    def find_by_user_id(self, user_id: UUID) -> HumanCompanion | None:
        return (
            self.db.query(HumanCompanion)
            .filter(HumanCompanion.user_id == user_id)
            .first()
        )

    def create(self, user_id: UUID, **data) -> HumanCompanion:
        companion = HumanCompanion(user_id=user_id, **data)
        self.db.add(companion)
        self.db.flush()
        return companion

    def update(self, companion: HumanCompanion, **updates) -> HumanCompanion:
        """Apply non-None updates to known columns."""
        for key, value in updates.items():
            if value is not None and hasattr(companion, key):
                setattr(companion, key, value)
        self.db.flush()
        return companion

    def list_active(
        self,
        *,
        verified_only: bool = False,
        min_rating: float | None = None,
        max_price: int | None = None,
        limit: int | None = 20,
        offset: int = 0,
    ) -> list[HumanCompanion]:
        """
        Active, available companions for the public directory.

        Ordered verified first, then by rating and total bookings.
        """
        query = self.db.query(HumanCompanion).filter(
            HumanCompanion.is_active.is_(True),
            HumanCompanion.is_available.is_(True),
        )
        if verified_only:
            query = query.filter(HumanCompanion.is_verified.is_(True))
        if min_rating is not None:
            query = query.filter(HumanCompanion.rating >= min_rating)
        if max_price is not None:
            query = query.filter(HumanCompanion.price_per_hour <= max_price)

        return (
            query.order_by(
                HumanCompanion.is_verified.desc(),
                func.coalesce(HumanCompanion.rating, 0).desc(),
                HumanCompanion.total_bookings.desc(),
                HumanCompanion.created_at.asc(),
            )
            .offset(offset)
            .limit(limit)
            .all()
        )

    def increment_total_bookings(self, companion: HumanCompanion, earned: int = 0) -> None:
        companion.total_bookings = HumanCompanion.total_bookings + 1
        companion.total_earnings = HumanCompanion.total_earnings + earned
        self.db.flush()
        self.db.refresh(companion, ["total_bookings", "total_earnings"])

    def public_rating_stats(self, companion_id: UUID) -> tuple[float | None, int]:
        """Mean rating and count over public reviews."""
        avg, count = (
            self.db.query(func.avg(CompanionReview.rating), func.count(CompanionReview.id))
            .filter(
                CompanionReview.companion_id == companion_id,
                CompanionReview.is_public.is_(True),
            )
            .one()
        )
        return (float(avg) if avg is not None else None), int(count or 0)

    def get_calendar_integration(self, companion_id: UUID) -> CalendarIntegration | None:
        return (
            self.db.query(CalendarIntegration)
            .filter(CalendarIntegration.companion_id == companion_id)
            .first()
        )
