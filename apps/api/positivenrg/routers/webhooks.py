"""Webhooks router - Stripe payment events."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from positivenrg.core.cache import CacheClient
from positivenrg.core.deps import get_cache, get_db
from positivenrg.core.errors import NotFoundError
from positivenrg.services import appointment_service
from positivenrg.services.payment_service import construct_webhook_event

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/stripe")
async def receive_stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
):
    """
    Receive Stripe events for appointment payments.

    Security:
    - Verifies the Stripe-Signature header against STRIPE_WEBHOOK_SECRET

    Processing:
    - payment_intent.succeeded      -> appointment CONFIRMED, payment PAID
    - payment_intent.payment_failed -> payment FAILED
    - Other event types are acknowledged and ignored
    """
    body = await request.body()
    event = construct_webhook_event(body, request.headers.get("Stripe-Signature"))

    event_type = event["type"]
    intent = event["data"]["object"]
    metadata = intent.get("metadata") or {}
    if metadata.get("type") != "appointment":
        return {"received": True, "handled": False}

    if event_type == "payment_intent.succeeded":
        try:
            appointment_service.confirm_appointment_payment(db, cache, intent["id"])
        except NotFoundError:
            # Acknowledge so Stripe stops retrying an intent we never stored
            logger.warning("Stripe webhook for unknown payment intent %s", intent["id"])
            return {"received": True, "handled": False}
        return {"received": True, "handled": True}

    if event_type == "payment_intent.payment_failed":
        appointment = appointment_service.mark_payment_failed(db, cache, intent["id"])
        return {"received": True, "handled": appointment is not None}

    return {"received": True, "handled": False}
