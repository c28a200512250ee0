"""Companion service - human companion profiles, directory and ratings."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from positivenrg.core.cache import CacheClient, cache_keys, cache_ttl
from positivenrg.core.errors import ConflictError, NotFoundError, UnauthorizedError
from positivenrg.core.structured_logging import build_log_context
from positivenrg.db.models import HumanCompanion
from positivenrg.db.session import commit_or_raise, translate_storage_error
from positivenrg.repositories import CompanionRepository
from positivenrg.schemas.auth import Actor
from positivenrg.schemas.companion import (
    CompanionCreate,
    CompanionListFilters,
    CompanionRead,
    CompanionUpdate,
)

logger = logging.getLogger(__name__)

COMPANION_LIST_PATTERN = "companions:list:*"


def invalidate_companion_cache(cache: CacheClient, companion_id: UUID) -> None:
    cache.delete(cache_keys.companion(companion_id))
    cache.delete_pattern(COMPANION_LIST_PATTERN)
    cache.delete_pattern(f"availability:{companion_id}:*")


def _get_or_404(repo: CompanionRepository, companion_id: UUID) -> HumanCompanion:
    companion = repo.find_by_id(companion_id)
    if not companion:
        raise NotFoundError("Companion", companion_id)
    return companion


# =============================================================================
# Profile CRUD
# =============================================================================

def create_companion_profile(
    db: Session,
    cache: CacheClient,
    actor: Actor,
    data: CompanionCreate,
) -> HumanCompanion:
    """Create the actor's companion profile. One per user; starts active and unverified."""
    repo = CompanionRepository(db)
    if repo.find_by_user_id(actor.user_id):
        raise ConflictError("Companion profile already exists", user_id=str(actor.user_id))

    try:
        companion = repo.create(
            actor.user_id,
            display_name=data.display_name.strip(),
            bio=data.bio,
            avatar=data.avatar,
            price_per_hour=data.price_per_hour,
            currency=data.currency.upper(),
            minimum_duration=data.minimum_duration,
            timezone=data.timezone,
            details=data.details.model_dump(),
            is_active=True,
            is_available=True,
            is_verified=False,
        )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Companion profile already exists", user_id=str(actor.user_id)) from exc
    except SQLAlchemyError as exc:
        raise translate_storage_error(db, exc, user_id=actor.user_id) from exc

    db.refresh(companion)
    cache.delete_pattern(COMPANION_LIST_PATTERN)
    logger.info(
        "Companion profile created",
        extra=build_log_context(user_id=actor.user_id, companion_id=companion.id, outcome="created"),
    )
    return companion


def get_companion_profile(db: Session, cache: CacheClient, companion_id: UUID) -> CompanionRead:
    """Read-through cached profile."""
    key = cache_keys.companion(companion_id)
    cached = cache.get(key)
    if cached is not None:
        return CompanionRead.model_validate(cached)

    companion = _get_or_404(CompanionRepository(db), companion_id)
    profile = CompanionRead.model_validate(companion)
    cache.set(key, profile.model_dump(mode="json"), cache_ttl.companion)
    return profile


def update_companion_profile(
    db: Session,
    cache: CacheClient,
    companion_id: UUID,
    actor: Actor,
    updates: CompanionUpdate,
) -> HumanCompanion:
    repo = CompanionRepository(db)
    companion = _get_or_404(repo, companion_id)
    if companion.user_id != actor.user_id:
        raise UnauthorizedError("Only the companion can edit this profile")

    fields = updates.model_dump(exclude_unset=True, exclude={"details"})
    if "display_name" in fields and fields["display_name"]:
        fields["display_name"] = fields["display_name"].strip()
    repo.update(companion, **fields)
    if updates.details is not None:
        companion.details = updates.details.model_dump()
    commit_or_raise(db, companion_id=companion.id)
    db.refresh(companion)

    invalidate_companion_cache(cache, companion.id)
    logger.info(
        "Companion profile updated",
        extra=build_log_context(user_id=actor.user_id, companion_id=companion.id, outcome="updated"),
    )
    return companion


def list_active_companions(
    db: Session,
    cache: CacheClient,
    filters: CompanionListFilters,
) -> list[CompanionRead]:
    """Public directory, cached briefly under a hash of the filters."""
    filter_dict = filters.model_dump()
    key = cache_keys.companion_list(filter_dict)
    cached = cache.get(key)
    if isinstance(cached, list):
        return [CompanionRead.model_validate(item) for item in cached]

    repo = CompanionRepository(db)
    wanted_tags = {tag.strip().lower() for tag in filters.tags if tag.strip()}
    # Tag matching happens on the details document, so page after filtering
    companions = repo.list_active(
        verified_only=filters.verified_only,
        min_rating=filters.min_rating,
        max_price=filters.max_price,
        limit=None if wanted_tags else filters.limit,
        offset=0 if wanted_tags else filters.offset,
    )
    profiles = [CompanionRead.model_validate(c) for c in companions]
    if wanted_tags:
        profiles = [
            p for p in profiles
            if wanted_tags & {tag.lower() for tag in p.details.tags}
        ][filters.offset:filters.offset + filters.limit]

    cache.set(key, [p.model_dump(mode="json") for p in profiles], cache_ttl.companion_list)
    return profiles


# =============================================================================
# Admin / Lifecycle
# =============================================================================

def verify_companion(
    db: Session,
    cache: CacheClient,
    companion_id: UUID,
    actor: Actor,
) -> HumanCompanion:
    if not actor.is_admin:
        raise UnauthorizedError("Admin role required")

    companion = _get_or_404(CompanionRepository(db), companion_id)
    companion.is_verified = True
    commit_or_raise(db, companion_id=companion.id)
    db.refresh(companion)

    invalidate_companion_cache(cache, companion.id)
    logger.info(
        "Companion verified",
        extra=build_log_context(user_id=actor.user_id, companion_id=companion.id, outcome="verified"),
    )
    return companion


def deactivate_companion(
    db: Session,
    cache: CacheClient,
    companion_id: UUID,
    actor: Actor,
) -> HumanCompanion:
    """Soft-delete: the row stays for appointment and earnings history."""
    companion = _get_or_404(CompanionRepository(db), companion_id)
    if companion.user_id != actor.user_id:
        raise UnauthorizedError("Only the companion can deactivate this profile")

    companion.is_active = False
    commit_or_raise(db, companion_id=companion.id)
    db.refresh(companion)

    invalidate_companion_cache(cache, companion.id)
    logger.info(
        "Companion deactivated",
        extra=build_log_context(user_id=actor.user_id, companion_id=companion.id, outcome="deactivated"),
    )
    return companion


def update_companion_rating(db: Session, cache: CacheClient, companion_id: UUID) -> HumanCompanion:
    """Recompute rating as the mean of public reviews (None when there are none)."""
    repo = CompanionRepository(db)
    companion = _get_or_404(repo, companion_id)
    rating, count = repo.public_rating_stats(companion_id)
    companion.rating = round(rating, 2) if rating is not None else None
    companion.review_count = count
    db.flush()
    invalidate_companion_cache(cache, companion_id)
    return companion
