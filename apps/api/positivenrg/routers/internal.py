"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from an external cron.
"""

import hmac

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from positivenrg.core.cache import CacheClient
from positivenrg.core.config import settings
from positivenrg.core.deps import get_cache, get_db
from positivenrg.schemas.appointment import SweepResponse
from positivenrg.services import appointment_service

router = APIRouter(prefix="/internal/scheduled", tags=["internal"])


def verify_internal_secret(x_internal_secret: str = Header(...)):
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if not hmac.compare_digest(x_internal_secret, expected):
        raise HTTPException(status_code=403, detail="Invalid internal secret")


@router.post(
    "/booking-sweep",
    response_model=SweepResponse,
    dependencies=[Depends(verify_internal_secret)],
)
def sweep_abandoned_bookings(
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
):
    """Cancel unpaid PENDING bookings older than the retention window."""
    cancelled = appointment_service.expire_abandoned_bookings(db, cache)
    return SweepResponse(cancelled=cancelled)
