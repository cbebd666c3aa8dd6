"""
Payment confirmation bridge.

``create_charge`` hands the amount to Stripe and returns the provider order
(a PaymentIntent). A payment can then be confirmed two ways:

* ``verify_signature``: a signed callback, HMAC-SHA256 over
  ``"<order id>|<payment id>"`` keyed with PAYMENT_SIGNING_SECRET.
* ``parse_webhook``: Stripe's own ``Stripe-Signature`` webhook, keyed with
  STRIPE_WEBHOOK_SECRET.

Either way the confirmation must also match the charge recorded on the
order (``charge_matches``). Acting on a confirmed payment is up to the caller.
"""
import hashlib
import hmac
import logging
import os
import time
from typing import Optional

import stripe

from errors import UpstreamFailure, ValidationError

log = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"


def to_minor_units(amount: float) -> int:
    return int(round(float(amount) * 100))


def create_charge(amount: float, currency: Optional[str] = None) -> dict:
    if amount is None or amount <= 0:
        raise ValidationError("Amount must be positive")
    currency = (currency or os.getenv("DEFAULT_CURRENCY", "inr")).lower()
    receipt = f"receipt_order_{int(time.time() * 1000)}"
    try:
        intent = stripe.PaymentIntent.create(
            amount=to_minor_units(amount),
            currency=currency,
            metadata={"receipt": receipt},
            api_key=os.getenv("STRIPE_SECRET_KEY", ""),
        )
    except stripe.StripeError as exc:
        log.exception("[payment] Failed to create provider order for amount=%s %s", amount, currency)
        raise UpstreamFailure("Failed to create payment order") from exc
    log.info("[payment] Created provider order id=%s amount=%s %s", intent["id"], amount, currency)
    return {
        "id": intent["id"],
        "amount": intent["amount"],
        "currency": intent["currency"],
        "receipt": receipt,
        "client_secret": intent["client_secret"],
    }


def payment_ref(charge: dict) -> dict:
    return {"provider_order_id": charge["id"], "amount": charge["amount"], "currency": charge["currency"]}


def charge_matches(ref: Optional[dict], provider_order_id: str, amount_due: float) -> bool:
    """True when ``provider_order_id`` is the charge recorded for a bill of ``amount_due``."""
    if not ref:
        return False
    return ref["provider_order_id"] == provider_order_id and ref["amount"] == to_minor_units(amount_due)


def expected_signature(order_id: str, payment_id: str, secret: str) -> str:
    body = f"{order_id}|{payment_id}"
    return hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()


def verify_signature(order_id: str, payment_id: str, signature: str) -> bool:
    secret = os.getenv("PAYMENT_SIGNING_SECRET", "")
    if not secret:
        log.error("[payment] PAYMENT_SIGNING_SECRET is not set; rejecting verification")
        return False
    if not (order_id and payment_id and signature):
        return False
    ok = hmac.compare_digest(expected_signature(order_id, payment_id, secret), signature)
    if ok:
        log.info("[payment] Verified payment %s for provider order %s", payment_id, order_id)
    else:
        log.warning("[payment] Signature mismatch for provider order %s", order_id)
    return ok


def parse_webhook(payload: bytes, sig_header: Optional[str]):
    """Return the Stripe event carried by a webhook request, or raise ValidationError."""
    secret = os.getenv("STRIPE_WEBHOOK_SECRET", "")
    if not secret:
        log.error("[payment] STRIPE_WEBHOOK_SECRET is not set; rejecting webhook")
        raise ValidationError("Webhook verification failed")
    try:
        event = stripe.Webhook.construct_event(payload=payload, sig_header=sig_header, secret=secret)
    except (ValueError, stripe.SignatureVerificationError) as exc:
        log.warning("[payment] Rejected webhook: %s", exc)
        raise ValidationError("Webhook verification failed") from exc
    log.info("[payment] Webhook %s (%s)", event["id"], event["type"])
    return event
