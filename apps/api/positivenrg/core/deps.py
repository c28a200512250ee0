"""FastAPI dependencies for authentication, authorization, clients and database access."""

import time
from typing import Generator
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from positivenrg.core.cache import CacheClient
from positivenrg.core.rate_limit import (
    RATE_LIMIT_POLICIES,
    RateLimitConfig,
    check_rate_limit,
    get_request_identifier,
)
from positivenrg.core.redis_client import get_sync_redis_client
from positivenrg.core.security import decode_session_token
from positivenrg.db.enums import Role
from positivenrg.db.session import SessionLocal
from positivenrg.schemas.auth import Actor


# Cookie and header names
COOKIE_NAME = "nrg_session"
CSRF_HEADER = "X-Requested-With"
CSRF_HEADER_VALUE = "XMLHttpRequest"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_cache() -> CacheClient:
    """Cache over the shared Redis pool; disabled when Redis is not configured."""
    return CacheClient(get_sync_redis_client())


def get_payment_provider():
    from positivenrg.services.payment_service import StripePaymentProvider

    return StripePaymentProvider()


def get_calendar_provider(db: Session = Depends(get_db)):
    from positivenrg.services.calendar_service import GoogleCalendarProvider

    return GoogleCalendarProvider(db)


# =============================================================================
# Authentication
# =============================================================================

def get_current_actor(
    request: Request,
    db: Session = Depends(get_db),
) -> Actor:
    """
    Resolve the session cookie into the acting user.

    Validates:
    - Session cookie exists
    - JWT is valid and not expired
    - User exists and is active
    - Token version matches (for revocation support)

    Raises:
        HTTPException 401: Authentication failed
    """
    from positivenrg.db.models import User

    token = request.cookies.get(COOKIE_NAME)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = decode_session_token(token)
        user_id = UUID(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid session")

    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="Account disabled")
    if user.token_version != payload.get("token_version"):
        raise HTTPException(status_code=401, detail="Session revoked")

    # Validate role is a known enum value - return 403 not 500
    if not Role.has_value(user.role):
        raise HTTPException(status_code=403, detail=f"Unknown role '{user.role}'")

    return Actor(user_id=user.id, role=Role(user.role), email=user.email, name=user.name)


def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="Admin role required")
    return actor


def require_csrf_header(request: Request) -> None:
    """
    Verify CSRF header on mutations.

    Apply to state-changing endpoints (POST, PATCH, DELETE).

    Raises:
        HTTPException 403: Missing or invalid CSRF header
    """
    if request.headers.get(CSRF_HEADER) != CSRF_HEADER_VALUE:
        raise HTTPException(
            status_code=403,
            detail=f"Missing CSRF header. Include '{CSRF_HEADER}: {CSRF_HEADER_VALUE}'"
        )


# =============================================================================
# Named Rate Limits
# =============================================================================

def rate_limited(policy_name: str):
    """
    Dependency factory applying a named fixed-window policy per actor.

    Usage:
        @router.post("", dependencies=[Depends(rate_limited("booking"))])
    """
    policy = RATE_LIMIT_POLICIES[policy_name]

    def dependency(
        request: Request,
        actor: Actor = Depends(get_current_actor),
        cache: CacheClient = Depends(get_cache),
    ) -> None:
        config = RateLimitConfig(
            limit=policy.limit,
            window_seconds=policy.window_seconds,
            identifier=get_request_identifier(request, actor.user_id),
        )
        result = check_rate_limit(cache, config, scope=policy_name)
        if not result.allowed:
            retry_after = max(1, int(result.reset_at.timestamp() - time.time()))
            raise HTTPException(
                status_code=429,
                detail="Too many requests",
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(result.limit),
                    "X-RateLimit-Remaining": str(result.remaining),
                },
            )

    return dependency
