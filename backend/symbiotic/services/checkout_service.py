# Overview: Checkout validation and payment intent creation.

"""
Checkout Service

WHY: The client proposes a cart and an amount; the server re-prices the cart
from the catalogue before asking the gateway to charge anything. The
validated cart travels to the webhook as intent metadata (strings only).
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import InsufficientStockError, ValidationError
from ..models import Product, User
from ..validation import (
    CartItem,
    coerce_int,
    parse_cart_items,
    parse_currency,
    parse_shipping_address,
)
from . import gateway_client
from .gateway_client import PaymentIntentResult
from .gateway_events import METADATA_MAX_KEYS, pack_metadata_json


def verify_cart_against_catalog(items: list[CartItem], currency: str) -> None:
    """
    Check every line against the live catalogue.

    Raises:
        ValidationError: unknown/inactive product, wrong seller, stale price,
            or currency mismatch
        InsufficientStockError: requested quantity exceeds stock
    """
    requested: dict[int, int] = {}
    for index, item in enumerate(items):
        product = db.session.query(Product).filter_by(id=item.product_id).first()
        if not product or not product.is_active:
            raise ValidationError(f"cart_items[{index}]: product {item.product_id} is not available")
        if product.seller_id != item.seller_id:
            raise ValidationError(f"cart_items[{index}]: product {item.product_id} is not sold by seller {item.seller_id}")
        if product.price_cents != item.unit_price_cents:
            raise ValidationError(
                f"cart_items[{index}]: price for product {item.product_id} has changed",
                details={"product_id": product.id, "price_cents": product.price_cents},
            )
        if product.currency != currency:
            raise ValidationError(f"cart_items[{index}]: product {item.product_id} is priced in {product.currency}")

        requested[product.id] = requested.get(product.id, 0) + item.quantity
        if requested[product.id] > product.stock:
            raise InsufficientStockError(
                f"Insufficient stock for product {product.id}",
                details={
                    "product_id": product.id,
                    "requested_quantity": requested[product.id],
                    "available": product.stock,
                },
            )


def build_intent_metadata(buyer_id: int, items: list[CartItem], shipping_address: dict) -> dict[str, str]:
    """Intent metadata, with the cart and address split to fit the gateway's value limit."""
    metadata = {"buyer_id": str(buyer_id)}
    metadata.update(pack_metadata_json("cart_items", [item.to_dict() for item in items]))
    metadata.update(pack_metadata_json("shipping_address", shipping_address))
    if len(metadata) > METADATA_MAX_KEYS:
        raise ValidationError("Cart is too large to check out in one payment")
    return metadata


def create_checkout_intent(buyer: User, payload: dict) -> PaymentIntentResult:
    """
    Validate a checkout request and create the gateway payment intent.

    Request body:
        amount_cents: int >= MIN_PAYMENT_CENTS, must equal the cart total
        currency: usd | eur | gbp | cad (default usd)
        cart_items: [{seller_id, product_id, unit_price_cents, quantity}, ...]
        shipping_address: optional object
    """
    config = current_app.config

    if payload.get("amount_cents") is None:
        raise ValidationError("amount_cents is required")
    amount_cents = coerce_int(payload["amount_cents"], "amount_cents")
    if amount_cents < config["MIN_PAYMENT_CENTS"]:
        raise ValidationError(f"Amount must be at least {config['MIN_PAYMENT_CENTS']} cents")

    currency = parse_currency(payload.get("currency"), config["SUPPORTED_CURRENCIES"], config["DEFAULT_CURRENCY"])
    items = parse_cart_items(payload.get("cart_items"))
    shipping_address = parse_shipping_address(payload.get("shipping_address"))

    verify_cart_against_catalog(items, currency)

    cart_total = sum(item.line_total_cents for item in items)
    if cart_total != amount_cents:
        raise ValidationError(
            "amount_cents does not match cart total",
            details={"cart_total_cents": cart_total},
        )

    return gateway_client.create_payment_intent(
        amount_cents=amount_cents,
        currency=currency,
        metadata=build_intent_metadata(buyer.id, items, shipping_address),
    )
