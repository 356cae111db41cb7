# Overview: Typed gateway webhook events parsed from verified Stripe payloads.

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union

from ..errors import ValidationError
from ..validation import CartItem, coerce_int, parse_cart_items, parse_shipping_address


EVENT_PAYMENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_PAYMENT_FAILED = "payment_intent.payment_failed"
EVENT_CHARGE_REFUNDED = "charge.refunded"

DEFAULT_REFUND_REASON = "Customer requested refund"

# Stripe metadata: at most 50 keys, each value at most 500 characters
METADATA_MAX_KEYS = 50
METADATA_VALUE_LIMIT = 500


def pack_metadata_json(key: str, value: Any) -> dict[str, str]:
    """
    Encode value as compact JSON spread over `<key>_0 .. <key>_<n-1>`,
    with `<key>_parts` holding n.
    """
    text = json.dumps(value, separators=(",", ":"))
    chunks = [text[i:i + METADATA_VALUE_LIMIT] for i in range(0, len(text), METADATA_VALUE_LIMIT)]
    packed = {f"{key}_parts": str(len(chunks))}
    for index, chunk in enumerate(chunks):
        packed[f"{key}_{index}"] = chunk
    return packed


def unpack_metadata_json(metadata: dict, key: str) -> str | None:
    """Reassemble a value written by pack_metadata_json; None when absent."""
    raw_parts = metadata.get(f"{key}_parts")
    if raw_parts in (None, ""):
        return None
    parts = coerce_int(raw_parts, f"metadata.{key}_parts")
    if not 1 <= parts <= METADATA_MAX_KEYS:
        raise ValidationError(f"metadata.{key}_parts out of range")

    chunks = []
    for index in range(parts):
        chunk = metadata.get(f"{key}_{index}")
        if not isinstance(chunk, str):
            raise ValidationError(f"metadata.{key}_{index} missing")
        chunks.append(chunk)
    return "".join(chunks)


@dataclass(frozen=True)
class PaymentSucceeded:
    event_type = EVENT_PAYMENT_SUCCEEDED

    event_id: str
    payment_intent_id: str
    amount_cents: int
    currency: str
    buyer_id: int
    cart_items: tuple[CartItem, ...]
    shipping_address: dict
    payment_method: str = "card"


@dataclass(frozen=True)
class PaymentFailed:
    event_type = EVENT_PAYMENT_FAILED

    event_id: str
    payment_intent_id: str
    failure_code: str | None
    failure_message: str | None


@dataclass(frozen=True)
class ChargeRefunded:
    event_type = EVENT_CHARGE_REFUNDED

    event_id: str
    charge_id: str
    payment_intent_id: str
    amount_refunded_cents: int
    reason: str


@dataclass(frozen=True)
class UnhandledEvent:
    event_id: str
    event_type: str


GatewayEvent = Union[PaymentSucceeded, PaymentFailed, ChargeRefunded, UnhandledEvent]


def _require_str(obj: dict, key: str, context: str) -> str:
    value = obj.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{context}.{key} is required")
    return value.strip()


def _parse_payment_succeeded(event_id: str, obj: dict) -> PaymentSucceeded:
    metadata = obj.get("metadata")
    if not isinstance(metadata, dict):
        raise ValidationError("Payment intent metadata missing")
    if metadata.get("buyer_id") in (None, ""):
        raise ValidationError("Payment intent metadata missing buyer_id")

    method_types = obj.get("payment_method_types") or []
    payment_method = method_types[0] if method_types and isinstance(method_types[0], str) else "card"

    return PaymentSucceeded(
        event_id=event_id,
        payment_intent_id=_require_str(obj, "id", "payment_intent"),
        amount_cents=coerce_int(obj.get("amount_received", obj.get("amount")), "payment_intent.amount"),
        currency=_require_str(obj, "currency", "payment_intent").lower(),
        buyer_id=coerce_int(metadata["buyer_id"], "metadata.buyer_id"),
        cart_items=tuple(parse_cart_items(unpack_metadata_json(metadata, "cart_items"))),
        shipping_address=parse_shipping_address(unpack_metadata_json(metadata, "shipping_address")),
        payment_method=payment_method,
    )


def _parse_payment_failed(event_id: str, obj: dict) -> PaymentFailed:
    error = obj.get("last_payment_error") or {}
    if not isinstance(error, dict):
        error = {}
    return PaymentFailed(
        event_id=event_id,
        payment_intent_id=_require_str(obj, "id", "payment_intent"),
        failure_code=error.get("code"),
        failure_message=error.get("message"),
    )


def _refund_reason(obj: dict) -> str:
    refunds = obj.get("refunds")
    if isinstance(refunds, dict):
        for refund in refunds.get("data") or []:
            if isinstance(refund, dict) and refund.get("reason"):
                return str(refund["reason"])
    return DEFAULT_REFUND_REASON


def _parse_charge_refunded(event_id: str, obj: dict) -> ChargeRefunded:
    amount_refunded = obj.get("amount_refunded", 0)
    return ChargeRefunded(
        event_id=event_id,
        charge_id=_require_str(obj, "id", "charge"),
        payment_intent_id=_require_str(obj, "payment_intent", "charge"),
        amount_refunded_cents=coerce_int(amount_refunded, "charge.amount_refunded"),
        reason=_refund_reason(obj),
    )


def parse_event(payload: Any) -> GatewayEvent:
    """
    Map a verified Stripe event payload onto its tagged event type.

    Unknown types become UnhandledEvent; malformed known types raise
    ValidationError before reaching the ledger.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid event payload")

    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise ValidationError("Event type missing")
    event_id = str(payload.get("id") or "")

    if event_type not in (EVENT_PAYMENT_SUCCEEDED, EVENT_PAYMENT_FAILED, EVENT_CHARGE_REFUNDED):
        return UnhandledEvent(event_id=event_id, event_type=event_type)

    data = payload.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        raise ValidationError("Event data.object missing")

    if event_type == EVENT_PAYMENT_SUCCEEDED:
        return _parse_payment_succeeded(event_id, obj)
    if event_type == EVENT_PAYMENT_FAILED:
        return _parse_payment_failed(event_id, obj)
    return _parse_charge_refunded(event_id, obj)
