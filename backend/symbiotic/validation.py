from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from .errors import ValidationError


# Maximum unit price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999
MAX_QUANTITY = 10_000
MAX_CART_ITEMS = 100
MAX_ID = 2_147_483_647
MAX_ADDRESS_FIELD_LENGTH = 200

CART_ITEM_FIELDS = {"seller_id", "product_id", "unit_price_cents", "quantity"}
SHIPPING_ADDRESS_FIELDS = {"name", "line1", "line2", "city", "state", "postal_code", "country", "phone"}


@dataclass(frozen=True)
class CartItem:
    """Strictly validated cart line. Unknown keys are rejected upstream."""
    seller_id: int
    product_id: int
    unit_price_cents: int
    quantity: int

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "seller_id": self.seller_id,
            "product_id": self.product_id,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
        }


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion: rejects bools, floats, decimals and
    scientific notation. Digit strings are accepted (gateway metadata
    is string-typed).
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    raise ValidationError(f"{field} must be an integer")


def parse_cart_item(raw: Any, index: int) -> CartItem:
    if not isinstance(raw, dict):
        raise ValidationError(f"cart_items[{index}] must be an object")

    unknown = set(raw.keys()) - CART_ITEM_FIELDS
    if unknown:
        raise ValidationError(f"cart_items[{index}] has unknown fields: {', '.join(sorted(unknown))}")
    missing = CART_ITEM_FIELDS - set(raw.keys())
    if missing:
        raise ValidationError(f"cart_items[{index}] missing fields: {', '.join(sorted(missing))}")

    item = CartItem(
        seller_id=coerce_int(raw["seller_id"], f"cart_items[{index}].seller_id"),
        product_id=coerce_int(raw["product_id"], f"cart_items[{index}].product_id"),
        unit_price_cents=coerce_int(raw["unit_price_cents"], f"cart_items[{index}].unit_price_cents"),
        quantity=coerce_int(raw["quantity"], f"cart_items[{index}].quantity"),
    )

    if not 0 < item.seller_id <= MAX_ID or not 0 < item.product_id <= MAX_ID:
        raise ValidationError(f"cart_items[{index}] references an invalid seller or product")
    if item.unit_price_cents < 0 or item.unit_price_cents > MAX_PRICE_CENTS:
        raise ValidationError(f"cart_items[{index}].unit_price_cents must be between 0 and {MAX_PRICE_CENTS}")
    if item.quantity <= 0 or item.quantity > MAX_QUANTITY:
        raise ValidationError(f"cart_items[{index}].quantity must be between 1 and {MAX_QUANTITY}")
    return item


def parse_cart_items(raw: Any) -> list[CartItem]:
    """
    Validate a cart. Accepts a list or its JSON encoding (gateway metadata
    can only carry strings).
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise ValidationError("cart_items is not valid JSON")

    if not isinstance(raw, list) or not raw:
        raise ValidationError("Cart items required")
    if len(raw) > MAX_CART_ITEMS:
        raise ValidationError(f"Cart cannot exceed {MAX_CART_ITEMS} items")

    return [parse_cart_item(entry, i) for i, entry in enumerate(raw)]


def parse_shipping_address(raw: Any) -> dict:
    """Optional address; returns {} when absent. Unknown keys are rejected."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise ValidationError("shipping_address is not valid JSON")
    if not isinstance(raw, dict):
        raise ValidationError("shipping_address must be an object")

    unknown = set(raw.keys()) - SHIPPING_ADDRESS_FIELDS
    if unknown:
        raise ValidationError(f"shipping_address has unknown fields: {', '.join(sorted(unknown))}")

    address = {}
    for key, value in raw.items():
        if value is None:
            continue
        if not isinstance(value, str):
            raise ValidationError(f"shipping_address.{key} must be a string")
        value = value.strip()
        if len(value) > MAX_ADDRESS_FIELD_LENGTH:
            raise ValidationError(f"shipping_address.{key} cannot exceed {MAX_ADDRESS_FIELD_LENGTH} characters")
        address[key] = value
    return address


def parse_currency(raw: Any, supported, default: str) -> str:
    if raw is None:
        return default
    if not isinstance(raw, str) or raw.lower() not in supported:
        raise ValidationError("Invalid currency", details={"supported": list(supported)})
    return raw.lower()


def require_json_object(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload
