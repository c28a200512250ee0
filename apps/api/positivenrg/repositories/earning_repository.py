"""Earning repository - database operations for companion earnings."""

from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from positivenrg.db.enums import EarningStatus
from positivenrg.db.models import CompanionEarning


class EarningRepository:
    def __init__(self, db: Session):
        self.db = db

    def find_by_appointment(self, appointment_id: UUID) -> CompanionEarning | None:
        return (
            self.db.query(CompanionEarning)
            .filter(CompanionEarning.appointment_id == appointment_id)
            .first()
        )

    def create(self, **data) -> CompanionEarning:
        earning = CompanionEarning(**data)
        self.db.add(earning)
        self.db.flush()
        return earning

    def list_for_companion(
        self,
        companion_id: UUID,
        status: EarningStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[CompanionEarning], int, tuple[int, int, int]]:
        """Page of earnings plus the count and (amount, fee, net) totals of the full filter."""
        query = self.db.query(CompanionEarning).filter(
            CompanionEarning.companion_id == companion_id
        )
        if status:
            query = query.filter(CompanionEarning.status == status.value)

        totals = query.with_entities(
            func.count(CompanionEarning.id),
            func.coalesce(func.sum(CompanionEarning.amount), 0),
            func.coalesce(func.sum(CompanionEarning.platform_fee), 0),
            func.coalesce(func.sum(CompanionEarning.net_amount), 0),
        ).one()

        items = (
            query.order_by(CompanionEarning.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        count, amount, fee, net = totals
        return items, int(count), (int(amount), int(fee), int(net))

    def totals_by_status(self, companion_id: UUID) -> dict[str, tuple[int, int, int]]:
        """status -> (count, amount, net_amount)."""
        rows = (
            self.db.query(
                CompanionEarning.status,
                func.count(CompanionEarning.id),
                func.coalesce(func.sum(CompanionEarning.amount), 0),
                func.coalesce(func.sum(CompanionEarning.net_amount), 0),
            )
            .filter(CompanionEarning.companion_id == companion_id)
            .group_by(CompanionEarning.status)
            .all()
        )
        return {status: (int(c), int(a), int(n)) for status, c, a, n in rows}
