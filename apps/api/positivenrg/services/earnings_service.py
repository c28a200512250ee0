"""Earnings service - payout records derived from completed appointments."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from positivenrg.core.errors import NotFoundError, UnauthorizedError
from positivenrg.core.structured_logging import build_log_context
from positivenrg.db.enums import EarningStatus
from positivenrg.db.models import Appointment, CompanionEarning
from positivenrg.db.session import translate_storage_error
from positivenrg.repositories import CompanionRepository, EarningRepository
from positivenrg.schemas.auth import Actor
from positivenrg.schemas.companion import (
    EarningRead,
    EarningsListResponse,
    EarningsSummary,
    EarningsSummaryBucket,
)
from positivenrg.services.pricing_service import calculate_earnings

logger = logging.getLogger(__name__)


def process_appointment_earning(db: Session, appointment: Appointment) -> CompanionEarning:
    """
    Create the earning for a completed appointment, exactly once.

    Safe under retries: an existing row is returned as is, and a concurrent
    insert that wins the unique constraint is re-read after rollback.
    Commits the caller's pending changes together with the new row.
    """
    repo = EarningRepository(db)
    existing = repo.find_by_appointment(appointment.id)
    if existing:
        return existing

    appointment_id = appointment.id
    split = calculate_earnings(appointment.amount)
    try:
        earning = repo.create(
            appointment_id=appointment.id,
            companion_id=appointment.companion_id,
            amount=appointment.amount,
            currency=appointment.currency,
            platform_fee=split.platform_fee,
            net_amount=split.net_amount,
            status=EarningStatus.PENDING.value,
        )
        companion = CompanionRepository(db).find_by_id(appointment.companion_id)
        if companion:
            CompanionRepository(db).increment_total_bookings(companion, earned=split.net_amount)
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = repo.find_by_appointment(appointment_id)
        if existing is None:
            raise
        logger.info(
            "Earning already recorded by a concurrent request",
            extra=build_log_context(appointment_id=appointment_id, outcome="duplicate"),
        )
        return existing
    except SQLAlchemyError as exc:
        raise translate_storage_error(db, exc, appointment_id=appointment_id) from exc

    db.refresh(earning)
    logger.info(
        "Companion earning recorded",
        extra=build_log_context(
            appointment_id=appointment_id,
            companion_id=earning.companion_id,
            outcome="created",
        ),
    )
    return earning


def _require_companion_access(db: Session, companion_id: UUID, actor: Actor) -> None:
    companion = CompanionRepository(db).find_by_id(companion_id)
    if not companion:
        raise NotFoundError("Companion", companion_id)
    if companion.user_id != actor.user_id and not actor.is_admin:
        raise UnauthorizedError("Only the companion can view these earnings")


def get_companion_earnings(
    db: Session,
    companion_id: UUID,
    actor: Actor,
    status: EarningStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> EarningsListResponse:
    _require_companion_access(db, companion_id, actor)
    items, total, (amount, fee, net) = EarningRepository(db).list_for_companion(
        companion_id, status=status, limit=limit, offset=offset
    )
    return EarningsListResponse(
        items=[EarningRead.model_validate(e) for e in items],
        total=total,
        total_amount=amount,
        total_platform_fee=fee,
        total_net_amount=net,
    )


def get_earnings_summary(db: Session, companion_id: UUID, actor: Actor) -> EarningsSummary:
    """Per-status count, gross and net totals."""
    _require_companion_access(db, companion_id, actor)
    summary = EarningsSummary(companion_id=companion_id)
    for status, (count, amount, net) in EarningRepository(db).totals_by_status(companion_id).items():
        if status not in {s.value for s in EarningStatus}:
            continue
        setattr(summary, status, EarningsSummaryBucket(count=count, amount=amount, net_amount=net))
        summary.lifetime_net_amount += net
    return summary
