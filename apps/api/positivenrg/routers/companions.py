"""Companions router - profiles, public directory, availability and earnings."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from positivenrg.core.cache import CacheClient
from positivenrg.core.deps import (
    get_cache,
    get_calendar_provider,
    get_current_actor,
    get_db,
    rate_limited,
    require_admin,
    require_csrf_header,
)
from positivenrg.db.enums import EarningStatus
from positivenrg.repositories import AppointmentRepository, CompanionRepository
from positivenrg.schemas.appointment import ReviewRead
from positivenrg.schemas.auth import Actor
from positivenrg.schemas.companion import (
    AvailabilityRead,
    CompanionCreate,
    CompanionListFilters,
    CompanionRead,
    CompanionUpdate,
    EarningsListResponse,
    EarningsSummary,
)
from positivenrg.services import companion_service, earnings_service, review_service
from positivenrg.services.availability_service import (
    AvailabilityChecker,
    get_cached_availability,
    to_utc,
)

router = APIRouter()


# =============================================================================
# Directory
# =============================================================================

@router.get("", response_model=list[CompanionRead])
def list_companions(
    verified_only: bool = False,
    min_rating: float | None = Query(None, ge=0, le=5),
    max_price: int | None = Query(None, ge=0),
    tags: list[str] = Query(default=[]),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
):
    """Active companions, verified first, then by rating and bookings."""
    filters = CompanionListFilters(
        verified_only=verified_only,
        min_rating=min_rating,
        max_price=max_price,
        tags=tags,
        limit=limit,
        offset=offset,
    )
    return companion_service.list_active_companions(db, cache, filters)


@router.get("/{companion_id}", response_model=CompanionRead)
def get_companion(
    companion_id: UUID,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
):
    return companion_service.get_companion_profile(db, cache, companion_id)


@router.get("/{companion_id}/reviews", response_model=list[ReviewRead])
def list_reviews(
    companion_id: UUID,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return review_service.list_public_reviews(db, companion_id, limit=limit, offset=offset)


@router.get("/{companion_id}/availability", response_model=AvailabilityRead)
def get_availability(
    companion_id: UUID,
    start: datetime,
    end: datetime,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    calendar=Depends(get_calendar_provider),
):
    """Read-only availability probe. Cached briefly; booking always re-checks."""
    checker = AvailabilityChecker(
        CompanionRepository(db), AppointmentRepository(db), calendar
    )
    result = get_cached_availability(checker, cache, companion_id, start, end)
    return AvailabilityRead(
        companion_id=companion_id,
        start_time=to_utc(start),
        end_time=to_utc(end),
        available=result.available,
        reason=result.reason,
    )


# =============================================================================
# Profile Management
# =============================================================================

@router.post(
    "",
    response_model=CompanionRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header), Depends(rate_limited("companion_registration"))],
)
def become_companion(
    data: CompanionCreate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
):
    """Create the current user's companion profile."""
    companion = companion_service.create_companion_profile(db, cache, actor, data)
    return CompanionRead.model_validate(companion)


@router.patch(
    "/{companion_id}",
    response_model=CompanionRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_companion(
    companion_id: UUID,
    data: CompanionUpdate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
):
    companion = companion_service.update_companion_profile(db, cache, companion_id, actor, data)
    return CompanionRead.model_validate(companion)


@router.post(
    "/{companion_id}/verify",
    response_model=CompanionRead,
    dependencies=[Depends(require_csrf_header)],
)
def verify_companion(
    companion_id: UUID,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
):
    companion = companion_service.verify_companion(db, cache, companion_id, actor)
    return CompanionRead.model_validate(companion)


@router.post(
    "/{companion_id}/deactivate",
    response_model=CompanionRead,
    dependencies=[Depends(require_csrf_header)],
)
def deactivate_companion(
    companion_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
):
    companion = companion_service.deactivate_companion(db, cache, companion_id, actor)
    return CompanionRead.model_validate(companion)


# =============================================================================
# Earnings
# =============================================================================

@router.get("/{companion_id}/earnings", response_model=EarningsListResponse)
def list_earnings(
    companion_id: UUID,
    status: EarningStatus | None = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    return earnings_service.get_companion_earnings(
        db, companion_id, actor, status=status, limit=limit, offset=offset
    )


@router.get("/{companion_id}/earnings/summary", response_model=EarningsSummary)
def earnings_summary(
    companion_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    return earnings_service.get_earnings_summary(db, companion_id, actor)
