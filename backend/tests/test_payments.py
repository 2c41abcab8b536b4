"""Payment webhook: signature verification and idempotent order updates."""

import hashlib
import hmac
import json
import time
import uuid

import pytest

from santavid.config import settings
from santavid.errors import ConfigurationError, Unauthorized, ValidationError
from santavid.orchestrator import state
from santavid.services.payments import CHECKOUT_COMPLETED, verify_payment_event

from conftest import load_order, make_order

SECRET = "whsec_test_secret"


def event_body(order_id, event_type: str = CHECKOUT_COMPLETED) -> bytes:
    return json.dumps({
        "id": "evt_1",
        "type": event_type,
        "data": {
            "object": {
                "id": "cs_test_1",
                "payment_intent": "pi_123",
                "amount_total": 1999,
                "metadata": {"orderId": str(order_id)},
            }
        },
    }).encode()


def sign(payload: bytes, secret: str = SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def webhook_settings(monkeypatch):
    monkeypatch.setattr(settings.payments, "stripe_webhook_secret", SECRET)
    monkeypatch.setattr(settings.payments, "auto_start_on_payment", False)
    return settings.payments


# ============================================================================
# Verification
# ============================================================================

def test_verify_valid_event():
    order_id = uuid.uuid4()
    payload = event_body(order_id)

    event = verify_payment_event(payload, sign(payload), secret=SECRET)

    assert event.confirms_payment
    assert event.order_id == order_id
    assert event.payment_reference == "pi_123"
    assert event.amount_paid == 1999


def test_verify_rejects_bad_signature():
    payload = event_body(uuid.uuid4())

    with pytest.raises(Unauthorized):
        verify_payment_event(payload, sign(payload, secret="whsec_wrong"), secret=SECRET)


def test_verify_rejects_missing_signature():
    with pytest.raises(Unauthorized):
        verify_payment_event(event_body(uuid.uuid4()), None, secret=SECRET)


def test_verify_requires_configured_secret(monkeypatch):
    monkeypatch.setattr(settings.payments, "stripe_webhook_secret", "")
    payload = event_body(uuid.uuid4())

    with pytest.raises(ConfigurationError):
        verify_payment_event(payload, sign(payload))


def test_verify_rejects_malformed_order_reference():
    payload = event_body("not-a-uuid")

    with pytest.raises(ValidationError):
        verify_payment_event(payload, sign(payload), secret=SECRET)


def test_other_event_types_do_not_confirm_payment():
    payload = event_body(uuid.uuid4(), event_type="checkout.session.expired")

    event = verify_payment_event(payload, sign(payload), secret=SECRET)

    assert not event.confirms_payment


# ============================================================================
# Webhook endpoint
# ============================================================================

async def test_webhook_marks_order_paid(api_client, session, session_factory, services, webhook_settings):
    order_id = await make_order(session)
    payload = event_body(order_id)

    response = await api_client.post(
        "/api/webhooks/payment", content=payload, headers={"Stripe-Signature": sign(payload)}
    )

    assert response.status_code == 200
    assert response.json() == {"received": True, "order_id": str(order_id), "applied": True}
    order = await load_order(session_factory, order_id)
    assert order.status == state.PAID
    assert order.payment_reference == "pi_123"
    assert order.amount_paid == 1999
    assert services.notifier.sent == [
        ("parent@example.com", "Santa is creating a magical video for Emma and Liam!")
    ]


async def test_redelivered_event_is_a_no_op(api_client, session, session_factory, services, webhook_settings):
    order_id = await make_order(session)
    payload = event_body(order_id)

    await api_client.post("/api/webhooks/payment", content=payload, headers={"Stripe-Signature": sign(payload)})
    response = await api_client.post(
        "/api/webhooks/payment", content=payload, headers={"Stripe-Signature": sign(payload)}
    )

    assert response.status_code == 200
    assert response.json()["applied"] is False
    assert (await load_order(session_factory, order_id)).status == state.PAID
    assert len(services.notifier.sent) == 1


async def test_invalid_signature_changes_nothing(api_client, session, session_factory, webhook_settings):
    order_id = await make_order(session)
    payload = event_body(order_id)

    response = await api_client.post(
        "/api/webhooks/payment",
        content=payload,
        headers={"Stripe-Signature": sign(payload, secret="whsec_wrong")},
    )

    assert response.status_code == 403
    assert (await load_order(session_factory, order_id)).status == state.PENDING_PAYMENT


async def test_payment_starts_generation(api_client, session, session_factory, services, webhook_settings):
    webhook_settings.auto_start_on_payment = True
    order_id = await make_order(session)
    payload = event_body(order_id)

    response = await api_client.post(
        "/api/webhooks/payment", content=payload, headers={"Stripe-Signature": sign(payload)}
    )

    assert response.status_code == 200
    order = await load_order(session_factory, order_id)
    assert order.status == state.GENERATING_SCENES
    assert services.video_generator.started == [1, 2]
