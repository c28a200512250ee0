"""Payment service - Stripe payment intents, refunds and webhook verification."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import stripe

from positivenrg.core.config import settings
from positivenrg.core.errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentIntentHandle:
    id: str
    client_secret: str | None
    status: str


class PaymentProvider(Protocol):
    def create_payment_intent(
        self, amount: int, currency: str, metadata: dict[str, str], idempotency_key: str | None = None
    ) -> PaymentIntentHandle: ...

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntentHandle: ...

    def refund(self, payment_intent_id: str, amount: int) -> str: ...


# Intents in these states can still be completed by the client
REUSABLE_INTENT_STATUSES = {
    "requires_payment_method",
    "requires_confirmation",
    "requires_action",
    "processing",
}

# Funds captured or authorised; a new intent would charge twice
SETTLED_INTENT_STATUSES = {"succeeded", "requires_capture"}


class StripePaymentProvider:
    """Stripe-backed payment provider. The API key is passed per call."""

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY

    def _require_key(self) -> str:
        if not self.api_key:
            raise UpstreamError("Payments are not configured", service="stripe")
        return self.api_key

    @staticmethod
    def _to_handle(intent: Any) -> PaymentIntentHandle:
        return PaymentIntentHandle(
            id=intent["id"],
            client_secret=intent.get("client_secret"),
            status=intent.get("status", ""),
        )

    def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> PaymentIntentHandle:
        api_key = self._require_key()
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=currency.lower(),
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                api_key=api_key,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            logger.error(
                "Stripe payment intent creation failed: %s",
                exc,
                extra={"appointment_id": metadata.get("appointment_id")},
            )
            raise UpstreamError("Payment provider unavailable", service="stripe") from exc
        return self._to_handle(intent)

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntentHandle:
        api_key = self._require_key()
        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id, api_key=api_key)
        except stripe.StripeError as exc:
            logger.warning("Stripe payment intent lookup failed: %s", exc)
            raise UpstreamError("Payment provider unavailable", service="stripe") from exc
        return self._to_handle(intent)

    def refund(self, payment_intent_id: str, amount: int) -> str:
        api_key = self._require_key()
        try:
            refund = stripe.Refund.create(
                payment_intent=payment_intent_id,
                amount=amount,
                api_key=api_key,
            )
        except stripe.StripeError as exc:
            logger.error("Stripe refund failed for %s: %s", payment_intent_id, exc)
            raise UpstreamError("Refund failed", service="stripe") from exc
        return refund["id"]


def construct_webhook_event(payload: bytes, signature: str | None) -> dict:
    """Verify a Stripe webhook signature and return the event."""
    if not settings.STRIPE_WEBHOOK_SECRET:
        raise UpstreamError("Stripe webhooks are not configured", service="stripe")
    if not signature:
        raise ValidationError("Missing Stripe signature")
    try:
        event = stripe.Webhook.construct_event(payload, signature, settings.STRIPE_WEBHOOK_SECRET)
    except ValueError as exc:
        raise ValidationError("Invalid webhook payload") from exc
    except stripe.SignatureVerificationError as exc:
        raise ValidationError("Invalid Stripe signature") from exc
    return event
