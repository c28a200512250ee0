"""Stripe webhook handling for appointment payments."""

import pytest

from positivenrg.db.enums import AppointmentStatus, PaymentStatus
from positivenrg.services.booking_service import BookingOrchestrator

from conftest import actor_for


@pytest.fixture
def paying(db, cache, payments, companion, booker, slot_start, slot_end):
    orchestrator = BookingOrchestrator(db, cache, payments=payments)
    appointment = orchestrator.create_booking(actor_for(booker), companion.id, slot_start, slot_end)
    orchestrator.start_payment(actor_for(booker), appointment.id)
    db.refresh(appointment)
    return appointment


def _event(event_type: str, intent_id: str, metadata: dict | None = None) -> dict:
    return {
        "type": event_type,
        "data": {
            "object": {
                "id": intent_id,
                "metadata": {"type": "appointment"} if metadata is None else metadata,
            }
        },
    }


@pytest.fixture
def deliver(client, monkeypatch):
    async def send(event: dict):
        monkeypatch.setattr(
            "positivenrg.routers.webhooks.construct_webhook_event",
            lambda payload, signature: event,
        )
        return await client.post(
            "/webhooks/stripe", content=b"{}", headers={"Stripe-Signature": "t=1,v1=test"}
        )

    return send


@pytest.mark.asyncio
async def test_succeeded_confirms_appointment(db, deliver, paying):
    response = await deliver(_event("payment_intent.succeeded", paying.payment_intent_id))

    assert response.status_code == 200
    assert response.json() == {"received": True, "handled": True}
    db.refresh(paying)
    assert paying.status == AppointmentStatus.CONFIRMED.value
    assert paying.payment_status == PaymentStatus.PAID.value


@pytest.mark.asyncio
async def test_redelivery_is_harmless(db, deliver, paying):
    await deliver(_event("payment_intent.succeeded", paying.payment_intent_id))
    response = await deliver(_event("payment_intent.succeeded", paying.payment_intent_id))

    assert response.json()["handled"] is True
    db.refresh(paying)
    assert paying.status == AppointmentStatus.CONFIRMED.value


@pytest.mark.asyncio
async def test_failed_payment_recorded(db, deliver, paying):
    response = await deliver(_event("payment_intent.payment_failed", paying.payment_intent_id))

    assert response.json()["handled"] is True
    db.refresh(paying)
    assert paying.status == AppointmentStatus.PENDING.value
    assert paying.payment_status == PaymentStatus.FAILED.value


@pytest.mark.asyncio
async def test_unknown_intent_acknowledged(deliver):
    response = await deliver(_event("payment_intent.succeeded", "pi_unknown"))
    assert response.status_code == 200
    assert response.json()["handled"] is False


@pytest.mark.asyncio
async def test_other_payment_types_ignored(db, deliver, paying):
    response = await deliver(
        _event("payment_intent.succeeded", paying.payment_intent_id, metadata={"type": "subscription"})
    )
    assert response.json()["handled"] is False
    db.refresh(paying)
    assert paying.status == AppointmentStatus.PENDING.value


@pytest.mark.asyncio
async def test_missing_signature_rejected(client):
    response = await client.post("/webhooks/stripe", content=b"{}")
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_bad_signature_rejected(client):
    response = await client.post(
        "/webhooks/stripe",
        content=b'{"type": "payment_intent.succeeded"}',
        headers={"Stripe-Signature": "t=1,v1=not-a-real-signature"},
    )
    assert response.status_code == 422
    assert response.json()["detail"] == "Invalid Stripe signature"
