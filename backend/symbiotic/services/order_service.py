# Overview: Service-layer operations for the order ledger; encapsulates business logic and database work.

"""
Order Ledger Service

WHY: Owns Order and Payment records: creation from a paid cart, fulfillment
status transitions, and the refund path. Every mutation here is a single
unit of work; callers never see a half-applied multi-seller checkout.

DESIGN PRINCIPLES:
- One Order per seller in a cart (each seller fulfils and is paid separately)
- Money in integer cents; platform fee = floor(subtotal * fee_bps / 10000)
- Line items are snapshots; later catalogue price changes never leak in
- Stock is decremented with a conditional UPDATE (stock >= qty), never
  read-modify-write
- Timeline is append-only (order_events)
"""

from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..errors import (
    ForbiddenError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ..models import Order, OrderEvent, OrderLine, Payment, Product, SellerProfile, User
from ..validation import CartItem
from symbiotic.time_utils import utcnow
from . import notification_service
from .concurrency import lock_for_update, run_with_retry


# =============================================================================
# ORDER STATUS (CONSTANTS)
# =============================================================================

STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_IN_PRODUCTION = "in_production"
STATUS_READY = "ready"
STATUS_IN_TRANSIT = "in_transit"
STATUS_DELIVERED = "delivered"
STATUS_CANCELLED = "cancelled"
STATUS_REFUNDED = "refunded"

# Forward fulfillment progression, in order
FULFILLMENT_FLOW = (
    STATUS_PENDING,
    STATUS_CONFIRMED,
    STATUS_IN_PRODUCTION,
    STATUS_READY,
    STATUS_IN_TRANSIT,
    STATUS_DELIVERED,
)

VALID_ORDER_STATUSES = FULFILLMENT_FLOW + (STATUS_CANCELLED, STATUS_REFUNDED)
TERMINAL_STATUSES = frozenset({STATUS_DELIVERED, STATUS_CANCELLED, STATUS_REFUNDED})


# =============================================================================
# PAYMENT STATUS (CONSTANTS)
# =============================================================================

ORDER_PAYMENT_PENDING = "pending"
ORDER_PAYMENT_PROCESSING = "processing"
ORDER_PAYMENT_PAID = "paid"
ORDER_PAYMENT_FAILED = "failed"
ORDER_PAYMENT_REFUNDED = "refunded"

PAYMENT_SUCCEEDED = "succeeded"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"

BPS_DENOMINATOR = 10_000


# =============================================================================
# PURE HELPERS
# =============================================================================

def fee_split(subtotal_cents: int, fee_bps: int) -> tuple[int, int]:
    """
    Split a subtotal into (platform_fee, seller_amount).

    Floor division keeps fractional cents with the seller, and
    platform_fee + seller_amount == subtotal always holds.
    """
    if subtotal_cents < 0:
        raise ValueError("subtotal_cents must be >= 0")
    if not 0 <= fee_bps <= BPS_DENOMINATOR:
        raise ValueError("fee_bps must be between 0 and 10000")
    platform_fee = subtotal_cents * fee_bps // BPS_DENOMINATOR
    return platform_fee, subtotal_cents - platform_fee


def is_allowed_transition(current: str, new: str) -> bool:
    """
    Transitions accepted by update_status.

    - same state (no-op)
    - the next forward fulfillment state
    - cancelled, from any non-terminal state
    `refunded` is reachable only through the refund path.
    """
    if current == new:
        return True
    if new == STATUS_CANCELLED:
        return current not in TERMINAL_STATUSES
    if current in FULFILLMENT_FLOW and new in FULFILLMENT_FLOW:
        return FULFILLMENT_FLOW.index(new) == FULFILLMENT_FLOW.index(current) + 1
    return False


def group_by_seller(items: list[CartItem]) -> dict[int, list[CartItem]]:
    """Group cart items by seller, preserving first-seen seller order."""
    groups: dict[int, list[CartItem]] = {}
    for item in items:
        groups.setdefault(item.seller_id, []).append(item)
    return groups


_ORDER_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def generate_order_number(now_ms: int | None = None) -> str:
    """ORD-<epoch millis>-<9 random base36 chars>."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(random.choices(_ORDER_SUFFIX_ALPHABET, k=9))
    return f"ORD-{now_ms}-{suffix}"


def _allocate_order_number(attempts: int = 5) -> str:
    """Generate an order number not yet present; regenerate on collision."""
    for _ in range(attempts):
        candidate = generate_order_number()
        exists = db.session.query(Order.id).filter_by(order_number=candidate).first()
        if not exists:
            return candidate
    raise InvalidStateError("Could not allocate a unique order number")


# =============================================================================
# ORDER CREATION
# =============================================================================

def _append_event(order: Order, status: str, note: str, actor_user_id: int | None = None) -> OrderEvent:
    event = OrderEvent(
        status=status,
        note=note,
        actor_user_id=actor_user_id,
        occurred_at=utcnow(),
    )
    order.timeline.append(event)
    return event


def _decrement_stock(item: CartItem) -> None:
    """
    Atomic subtract-and-check. A row only matches if it belongs to the
    seller and still has enough stock.
    """
    result = db.session.execute(
        update(Product)
        .where(
            Product.id == item.product_id,
            Product.seller_id == item.seller_id,
            Product.stock >= item.quantity,
        )
        .values(stock=Product.stock - item.quantity)
    )
    if result.rowcount == 1:
        return

    product = db.session.query(Product).filter_by(id=item.product_id).first()
    if not product or product.seller_id != item.seller_id:
        raise ValidationError(
            f"Product {item.product_id} is not sold by seller {item.seller_id}"
        )
    raise InsufficientStockError(
        f"Insufficient stock for product {item.product_id}",
        details={
            "product_id": item.product_id,
            "requested_quantity": item.quantity,
            "available": product.stock,
        },
    )


def _create_seller_order(
    *,
    buyer_id: int,
    seller: SellerProfile,
    items: list[CartItem],
    shipping_address: dict,
    currency: str,
    payment_intent_id: str,
    payment_method: str,
    fee_bps: int,
) -> tuple[Order, Payment]:
    subtotal = sum(item.line_total_cents for item in items)
    platform_fee, seller_amount = fee_split(subtotal, fee_bps)

    order = Order(
        order_number=_allocate_order_number(),
        buyer_id=buyer_id,
        seller_id=seller.id,
        status=STATUS_PENDING,
        payment_status=ORDER_PAYMENT_PAID,
        subtotal_cents=subtotal,
        shipping_cost_cents=0,
        tax_cents=0,
        discount_cents=0,
        total_cents=subtotal,
        currency=currency,
        shipping_address=shipping_address,
        payment_intent_id=payment_intent_id,
    )
    for position, item in enumerate(items, start=1):
        order.lines.append(OrderLine(
            position=position,
            product_id=item.product_id,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
            line_total_cents=item.line_total_cents,
        ))
    _append_event(order, STATUS_PENDING, f"Order created from payment {payment_intent_id}", buyer_id)

    db.session.add(order)
    db.session.flush()  # Get order ID

    for item in items:
        _decrement_stock(item)

    payment = Payment(
        order_id=order.id,
        seller_id=seller.id,
        payment_intent_id=payment_intent_id,
        amount_cents=subtotal,
        currency=currency,
        payment_method=payment_method,
        gateway="stripe",
        status=PAYMENT_SUCCEEDED,
        platform_fee_cents=platform_fee,
        seller_amount_cents=seller_amount,
        platform_fee_bps=fee_bps,
    )
    db.session.add(payment)
    db.session.flush()

    notification_service.notify_order_created(order, seller)
    return order, payment


def build_orders_from_cart(
    *,
    buyer_id: int,
    cart_items: list[CartItem],
    shipping_address: dict,
    gateway_amount_cents: int,
    gateway_currency: str,
    payment_intent_id: str,
    payment_method: str = "card",
    fee_bps: int | None = None,
) -> list[tuple[Order, Payment]]:
    """
    Stage one Order + Payment per seller in the current transaction.

    Does not commit; see create_from_cart for the committing wrapper.

    Raises:
        ValidationError: empty cart, unknown buyer/seller, amount mismatch
        InsufficientStockError: a line could not be decremented
    """
    if not cart_items:
        raise ValidationError("Cart items required")

    cart_total = sum(item.line_total_cents for item in cart_items)
    if cart_total != gateway_amount_cents:
        raise ValidationError(
            "Cart total does not match the charged amount",
            details={"cart_total_cents": cart_total, "gateway_amount_cents": gateway_amount_cents},
        )

    if not db.session.query(User.id).filter_by(id=buyer_id).first():
        raise ValidationError(f"Buyer {buyer_id} not found")

    if fee_bps is None:
        fee_bps = current_app.config["PLATFORM_FEE_BPS"]

    created = []
    for seller_id, items in group_by_seller(cart_items).items():
        seller = db.session.query(SellerProfile).filter_by(id=seller_id).first()
        if not seller or not seller.is_active:
            raise ValidationError(f"Seller {seller_id} not found")

        created.append(_create_seller_order(
            buyer_id=buyer_id,
            seller=seller,
            items=items,
            shipping_address=shipping_address,
            currency=gateway_currency.lower(),
            payment_intent_id=payment_intent_id,
            payment_method=payment_method,
            fee_bps=fee_bps,
        ))
    return created


def create_from_cart(**kwargs) -> list[tuple[Order, Payment]]:
    """
    Create one Order + Payment per seller and commit them as one unit.

    Any failure rolls back every seller group, including stock decrements.
    Accepts the keyword arguments of build_orders_from_cart.
    """
    try:
        created = build_orders_from_cart(**kwargs)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return created


def find_payments_for_intent(payment_intent_id: str) -> list[Payment]:
    return db.session.query(Payment).filter_by(
        payment_intent_id=payment_intent_id
    ).order_by(Payment.id).all()


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def _can_manage(order: Order, actor: User) -> bool:
    if actor.is_admin:
        return True
    return order.seller is not None and order.seller.user_id == actor.id


def _increment_sales(order: Order) -> None:
    for line in order.lines:
        db.session.execute(
            update(Product)
            .where(Product.id == line.product_id)
            .values(sales_count=Product.sales_count + line.quantity)
        )


MAX_TRACKING_NUMBER_LENGTH = 128
MAX_SELLER_NOTES_LENGTH = 2000


def _clean_text(value, field: str, max_length: int) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{field} cannot exceed {max_length} characters")
    return value or None


def update_status(
    order_id: int,
    new_status: str,
    actor: User,
    tracking_number: str | None = None,
    seller_notes: str | None = None,
) -> Order:
    """
    Move an order along its fulfillment lifecycle.

    tracking_number and seller_notes are stored when given; a same-state
    update may carry them alone. Entering in_transit stamps shipped_at.

    Raises:
        ValidationError: unknown status, or malformed tracking/notes
        NotFoundError: order missing
        ForbiddenError: actor is neither the order's seller nor an admin
        InvalidStateError: transition not allowed
    """
    if new_status not in VALID_ORDER_STATUSES:
        raise ValidationError(
            f"Invalid status: {new_status}",
            details={"valid_statuses": list(VALID_ORDER_STATUSES)},
        )
    tracking_number = _clean_text(tracking_number, "tracking_number", MAX_TRACKING_NUMBER_LENGTH)
    seller_notes = _clean_text(seller_notes, "seller_notes", MAX_SELLER_NOTES_LENGTH)

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError("Order not found")

        if not _can_manage(order, actor):
            raise ForbiddenError("Not authorized to update this order")

        if not is_allowed_transition(order.status, new_status):
            raise InvalidStateError(f"Cannot change order status from {order.status} to {new_status}")

        details_changed = False
        if tracking_number is not None and tracking_number != order.tracking_number:
            order.tracking_number = tracking_number
            details_changed = True
        if seller_notes is not None and seller_notes != order.seller_notes:
            order.seller_notes = seller_notes
            details_changed = True

        if order.status == new_status:
            if details_changed:
                db.session.commit()
            return order

        now = utcnow()
        order.status = new_status
        if new_status == STATUS_IN_TRANSIT:
            order.shipped_at = now
        elif new_status == STATUS_DELIVERED:
            order.delivered_at = now
            _increment_sales(order)
        elif new_status == STATUS_CANCELLED:
            order.cancelled_at = now

        _append_event(order, new_status, f"Status updated by {actor.email}", actor.id)
        notification_service.notify_status_changed(order)

        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# REFUNDS
# =============================================================================

def refund_payments_for_intent(payment_intent_id: str, reason: str) -> list[Payment]:
    """
    Mark every succeeded Payment for the intent refunded, with its Order.

    Payments already refunded are skipped, so redelivery is a no-op.
    Returns the payments changed by this call (empty when nothing to do).
    """
    def _op():
        payments = lock_for_update(
            db.session.query(Payment).filter_by(payment_intent_id=payment_intent_id)
        ).order_by(Payment.id).all()

        changed = []
        now = utcnow()
        for payment in payments:
            if payment.status != PAYMENT_SUCCEEDED:
                continue

            payment.status = PAYMENT_REFUNDED
            payment.refunded_at = now

            order = payment.order
            order.status = STATUS_REFUNDED
            order.payment_status = ORDER_PAYMENT_REFUNDED
            order.refund_reason = reason
            order.refunded_at = now
            _append_event(order, STATUS_REFUNDED, f"Refunded: {reason}")
            notification_service.notify_refunded(order)
            changed.append(payment)

        if changed:
            db.session.commit()
        return changed

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

@dataclass(frozen=True)
class OrderFilter:
    """
    Explicit order filter; each set field becomes one parameterized predicate.
    """
    seller_id: int | None = None
    buyer_id: int | None = None
    status: str | None = None
    payment_status: str | None = None
    limit: int = 20
    offset: int = 0

    def predicates(self) -> list:
        clauses = []
        if self.seller_id is not None:
            clauses.append(Order.seller_id == self.seller_id)
        if self.buyer_id is not None:
            clauses.append(Order.buyer_id == self.buyer_id)
        if self.status is not None:
            clauses.append(Order.status == self.status)
        if self.payment_status is not None:
            clauses.append(Order.payment_status == self.payment_status)
        return clauses


def list_orders(order_filter: OrderFilter) -> tuple[list[Order], int]:
    """Returns (page of orders newest first, total matching)."""
    if not 1 <= order_filter.limit <= 100:
        raise ValidationError("limit must be between 1 and 100")
    if order_filter.offset < 0:
        raise ValidationError("offset must be >= 0")
    if order_filter.status is not None and order_filter.status not in VALID_ORDER_STATUSES:
        raise ValidationError(f"Invalid status: {order_filter.status}")

    query = db.session.query(Order).filter(*order_filter.predicates())
    total = query.count()
    orders = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .limit(order_filter.limit)
        .offset(order_filter.offset)
        .all()
    )
    return orders, total


def get_order(order_id: int, actor: User) -> Order:
    """Order visible to its buyer, its seller, or an admin."""
    order = db.session.query(Order).filter_by(id=order_id).first()
    if not order:
        raise NotFoundError("Order not found")
    if order.buyer_id != actor.id and not _can_manage(order, actor):
        raise ForbiddenError("Not authorized to view this order")
    return order
