# Overview: Notification outbox writes for the email collaborator.

from __future__ import annotations

from ..extensions import db
from ..models import Notification, Order, SellerProfile


KIND_ORDER_CONFIRMATION = "order.confirmation"
KIND_SELLER_NEW_ORDER = "order.seller_new_order"
KIND_ORDER_STATUS_CHANGED = "order.status_changed"
KIND_ORDER_REFUNDED = "order.refunded"
KIND_PAYOUT_REQUESTED = "payout.requested"


def enqueue(recipient_user_id: int, kind: str, *, order_id: int | None = None, payload: dict | None = None) -> Notification:
    """Add an outbox row to the current transaction (caller commits)."""
    notification = Notification(
        recipient_user_id=recipient_user_id,
        kind=kind,
        order_id=order_id,
        payload=payload or {},
    )
    db.session.add(notification)
    return notification


def _order_payload(order: Order) -> dict:
    return {
        "order_number": order.order_number,
        "status": order.status,
        "total_cents": order.total_cents,
        "currency": order.currency,
        "items": [
            {"product_id": line.product_id, "quantity": line.quantity}
            for line in order.lines
        ],
    }


def notify_order_created(order: Order, seller: SellerProfile) -> None:
    enqueue(order.buyer_id, KIND_ORDER_CONFIRMATION, order_id=order.id, payload=_order_payload(order))
    enqueue(seller.user_id, KIND_SELLER_NEW_ORDER, order_id=order.id, payload=_order_payload(order))


def notify_status_changed(order: Order) -> None:
    enqueue(order.buyer_id, KIND_ORDER_STATUS_CHANGED, order_id=order.id, payload=_order_payload(order))


def notify_refunded(order: Order) -> None:
    payload = _order_payload(order)
    payload["refund_reason"] = order.refund_reason
    enqueue(order.buyer_id, KIND_ORDER_REFUNDED, order_id=order.id, payload=payload)
