# Overview: Service-layer operations for gateway webhooks; verifies and applies events to the order ledger.

"""
Webhook Reconciler

WHY: The gateway confirms payments asynchronously and delivers each event
at least once. Every handler here is idempotent under redelivery:

- payment_intent.succeeded: payments are looked up by intent id first; the
  (payment_intent_id, seller_id) unique constraint closes the race between
  two concurrent deliveries, and the losing writer reports success.
- payment_intent.payment_failed: logged only; creates no state.
- charge.refunded: every succeeded payment of the intent is refunded,
  whether the charge was refunded in full or in part, so refunded money is
  never paid out. Payments already refunded do not change.

Signatures are verified before the body is parsed. Datastore failures
propagate so the route answers non-2xx and the gateway retries.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field

import stripe
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import SignatureError, ValidationError
from ..validation import require_json_object
from . import order_service
from .gateway_events import (
    ChargeRefunded,
    GatewayEvent,
    PaymentFailed,
    PaymentSucceeded,
    parse_event,
)


ACTION_CREATED = "created"
ACTION_DUPLICATE = "duplicate"
ACTION_REFUNDED = "refunded"
ACTION_ALREADY_REFUNDED = "already_refunded"
ACTION_FAILURE_RECORDED = "failure_recorded"
ACTION_IGNORED = "ignored"


@dataclass
class WebhookOutcome:
    event_type: str
    action: str
    order_ids: list[int] = field(default_factory=list)


def verify_event(raw_body: bytes, signature_header: str | None, secret: str | None, tolerance: int) -> dict:
    """
    Verify the stripe-signature header, then decode the JSON body.

    Raises:
        SignatureError: secret unset (500), header missing or invalid (400)
        ValidationError: body is not a JSON object
    """
    if not secret:
        raise SignatureError("STRIPE_WEBHOOK_SECRET not configured", configured=False)
    if not signature_header:
        raise SignatureError("Missing stripe-signature header")

    try:
        payload_text = raw_body.decode("utf-8")
    except UnicodeDecodeError:
        raise SignatureError("Webhook body is not valid UTF-8")

    try:
        stripe.WebhookSignature.verify_header(payload_text, signature_header, secret, tolerance)
    except stripe.SignatureVerificationError as exc:
        raise SignatureError(str(exc))

    try:
        payload = json.loads(payload_text)
    except ValueError:
        raise ValidationError("Invalid JSON payload")
    return require_json_object(payload)


def _handle_payment_succeeded(event: PaymentSucceeded) -> WebhookOutcome:
    existing = order_service.find_payments_for_intent(event.payment_intent_id)
    if existing:
        current_app.logger.info("Duplicate delivery for payment intent %s ignored", event.payment_intent_id)
        return WebhookOutcome(event.event_type, ACTION_DUPLICATE, [p.order_id for p in existing])

    try:
        created = order_service.create_from_cart(
            buyer_id=event.buyer_id,
            cart_items=list(event.cart_items),
            shipping_address=event.shipping_address,
            gateway_amount_cents=event.amount_cents,
            gateway_currency=event.currency,
            payment_intent_id=event.payment_intent_id,
            payment_method=event.payment_method,
        )
    except IntegrityError:
        # A concurrent delivery committed first
        existing = order_service.find_payments_for_intent(event.payment_intent_id)
        if not existing:
            raise
        current_app.logger.info("Payment intent %s already reconciled by a concurrent delivery", event.payment_intent_id)
        return WebhookOutcome(event.event_type, ACTION_DUPLICATE, [p.order_id for p in existing])

    for order, payment in created:
        current_app.logger.info(
            "Order %s created for seller %s (subtotal=%s fee=%s seller_amount=%s)",
            order.order_number, order.seller_id, order.subtotal_cents,
            payment.platform_fee_cents, payment.seller_amount_cents,
        )
    return WebhookOutcome(event.event_type, ACTION_CREATED, [order.id for order, _ in created])


def _handle_payment_failed(event: PaymentFailed) -> WebhookOutcome:
    current_app.logger.warning(
        "Payment intent %s failed: code=%s reason=%s",
        event.payment_intent_id, event.failure_code, event.failure_message,
    )
    return WebhookOutcome(event.event_type, ACTION_FAILURE_RECORDED)


def _handle_charge_refunded(event: ChargeRefunded) -> WebhookOutcome:
    refunded = order_service.refund_payments_for_intent(event.payment_intent_id, event.reason)
    if refunded:
        current_app.logger.info(
            "Refund processed for payment intent %s (charge %s, %s cents refunded)",
            event.payment_intent_id, event.charge_id, event.amount_refunded_cents,
        )
        return WebhookOutcome(event.event_type, ACTION_REFUNDED, [p.order_id for p in refunded])

    existing = order_service.find_payments_for_intent(event.payment_intent_id)
    if not existing:
        current_app.logger.warning("Refund for unknown payment intent %s", event.payment_intent_id)
        return WebhookOutcome(event.event_type, ACTION_IGNORED)
    return WebhookOutcome(event.event_type, ACTION_ALREADY_REFUNDED, [p.order_id for p in existing])


def handle_event(event: GatewayEvent) -> WebhookOutcome:
    if isinstance(event, PaymentSucceeded):
        return _handle_payment_succeeded(event)
    if isinstance(event, PaymentFailed):
        return _handle_payment_failed(event)
    if isinstance(event, ChargeRefunded):
        return _handle_charge_refunded(event)

    current_app.logger.info("Unhandled event type: %s", event.event_type)
    return WebhookOutcome(event.event_type, ACTION_IGNORED)


def process_webhook(raw_body: bytes, signature_header: str | None) -> WebhookOutcome:
    """Verify, parse and apply one gateway delivery."""
    config = current_app.config
    payload = verify_event(
        raw_body,
        signature_header,
        config.get("STRIPE_WEBHOOK_SECRET"),
        config["STRIPE_WEBHOOK_TOLERANCE"],
    )
    return handle_event(parse_event(payload))
