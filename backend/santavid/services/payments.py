"""Payment confirmation events from Stripe webhooks.

The signature is checked with the Stripe SDK before the body is trusted.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

import stripe

from santavid.config import settings
from santavid.errors import ConfigurationError, Unauthorized, ValidationError

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"


@dataclass(frozen=True)
class PaymentEvent:
    event_type: str
    order_id: Optional[uuid.UUID]
    payment_reference: Optional[str]
    amount_paid: Optional[int]

    @property
    def confirms_payment(self) -> bool:
        return self.event_type == CHECKOUT_COMPLETED and self.order_id is not None


def verify_payment_event(
    payload: bytes,
    signature_header: Optional[str],
    secret: Optional[str] = None,
) -> PaymentEvent:
    """Verify the Stripe-Signature header and extract the order reference.

    Raises:
        Unauthorized: Missing or invalid signature.
        ValidationError: Body is not a well-formed event.
        ConfigurationError: No webhook secret configured.
    """
    secret = secret or settings.payments.stripe_webhook_secret
    if not secret:
        raise ConfigurationError("payments.stripe_webhook_secret is not configured")
    if not signature_header:
        raise Unauthorized("Missing Stripe-Signature header")

    try:
        text = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(text, signature_header, secret)
    except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
        logger.warning(f"Rejected payment event: {e}")
        raise Unauthorized("Invalid payment event signature") from e

    try:
        event = json.loads(text)
        event_type = event["type"]
        obj = event.get("data", {}).get("object", {}) or {}
    except (json.JSONDecodeError, KeyError, AttributeError) as e:
        raise ValidationError(f"Malformed payment event: {e}") from e

    order_id = None
    raw_order_id = (obj.get("metadata") or {}).get("orderId")
    if raw_order_id:
        try:
            order_id = uuid.UUID(str(raw_order_id))
        except ValueError as e:
            raise ValidationError(f"Invalid orderId in payment event: {raw_order_id}") from e

    return PaymentEvent(
        event_type=event_type,
        order_id=order_id,
        payment_reference=obj.get("payment_intent"),
        amount_paid=obj.get("amount_total"),
    )
