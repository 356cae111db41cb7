# Overview: Service-layer operations for seller payouts; aggregates settled proceeds into payout batches.

"""
Payout Calculator

WHY: Sellers are paid in batches of accumulated seller_amount. A Payout is a
snapshot that references the exact orders it settles; it never mutates the
Orders or Payments it was computed from.

DESIGN PRINCIPLES:
- Eligible = succeeded Payments of the seller's Orders (in one currency)
  that carry no active claim
- Claims live in payout_orders.claim_order_id (unique): inserted in the same
  transaction as the Payout, so two concurrent requests cannot both settle
  the same order. The loser hits IntegrityError, rolls back and recomputes.
- A failed payout releases its claims; a paid payout keeps them forever
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import exists
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import InvalidStateError, NotFoundError, PreconditionFailedError, ValidationError
from ..models import Order, Payment, Payout, PayoutOrder, SellerProfile
from symbiotic.time_utils import days_from_now, utcnow
from . import notification_service
from .concurrency import lock_for_update, run_with_retry
from .order_service import PAYMENT_SUCCEEDED


# =============================================================================
# PAYOUT STATUS (CONSTANTS)
# =============================================================================

PAYOUT_PENDING = "pending"
PAYOUT_PROCESSING = "processing"
PAYOUT_PAID = "paid"
PAYOUT_FAILED = "failed"

VALID_PAYOUT_STATUSES = (PAYOUT_PENDING, PAYOUT_PROCESSING, PAYOUT_PAID, PAYOUT_FAILED)

_ALLOWED_PAYOUT_TRANSITIONS = {
    PAYOUT_PENDING: {PAYOUT_PROCESSING, PAYOUT_FAILED},
    PAYOUT_PROCESSING: {PAYOUT_PAID, PAYOUT_FAILED},
    PAYOUT_PAID: set(),
    PAYOUT_FAILED: set(),
}


def _get_seller_for_user(user_id: int) -> SellerProfile:
    seller = db.session.query(SellerProfile).filter_by(user_id=user_id).first()
    if not seller:
        raise NotFoundError("Seller profile not found")
    return seller


def _resolve_currency(currency: str | None) -> str:
    config = current_app.config
    if currency is None:
        return config["DEFAULT_CURRENCY"]
    if not isinstance(currency, str):
        raise ValidationError("currency must be a string")
    currency = currency.strip().lower()
    if currency not in config["SUPPORTED_CURRENCIES"]:
        raise ValidationError(f"Unsupported currency: {currency}")
    return currency


def eligible_payments(seller_id: int, currency: str) -> list[Payment]:
    """
    Succeeded payments of the seller whose order is not claimed by a
    pending, processing or paid payout.
    """
    claimed = exists().where(PayoutOrder.claim_order_id == Payment.order_id)
    return (
        db.session.query(Payment)
        .join(Order, Payment.order_id == Order.id)
        .filter(
            Order.seller_id == seller_id,
            Payment.seller_id == seller_id,
            Payment.status == PAYMENT_SUCCEEDED,
            Order.currency == currency,
            ~claimed,
        )
        .order_by(Payment.order_id)
        .all()
    )


def get_available_balance(user_id: int, currency: str | None = None) -> dict:
    seller = _get_seller_for_user(user_id)
    currency = _resolve_currency(currency)
    payments = eligible_payments(seller.id, currency)
    return {
        "seller_id": seller.id,
        "currency": currency,
        "available_balance_cents": sum(p.seller_amount_cents for p in payments),
        "eligible_orders": [p.order_id for p in payments],
        "minimum_payout_cents": current_app.config["MIN_PAYOUT_CENTS"],
        "can_request_payout": seller.can_receive_payouts,
    }


def request_payout(user_id: int, currency: str | None = None) -> Payout:
    """
    Create a pending Payout covering every eligible order of the seller.

    Raises:
        NotFoundError: user has no seller profile
        PreconditionFailedError: payout account not linked
        InvalidStateError: eligible amount below MIN_PAYOUT_CENTS
    """
    currency = _resolve_currency(currency)
    minimum = current_app.config["MIN_PAYOUT_CENTS"]

    def _op():
        seller = _get_seller_for_user(user_id)
        if not seller.can_receive_payouts:
            raise PreconditionFailedError("Please complete payment account setup before requesting payouts")

        payments = eligible_payments(seller.id, currency)
        amount = sum(p.seller_amount_cents for p in payments)
        if amount < minimum:
            raise InvalidStateError(
                f"Minimum payout amount is ${minimum / 100:.2f}",
                details={"available_balance": amount, "minimum_payout": minimum},
            )

        payout = Payout(
            seller_id=seller.id,
            amount_cents=amount,
            currency=currency,
            status=PAYOUT_PENDING,
            payout_method=seller.payout_method,
            scheduled_date=days_from_now(current_app.config["PAYOUT_DELAY_DAYS"]),
        )
        for payment in payments:
            payout.items.append(PayoutOrder(
                order_id=payment.order_id,
                claim_order_id=payment.order_id,
                seller_amount_cents=payment.seller_amount_cents,
            ))
        db.session.add(payout)
        db.session.flush()  # Get payout ID; surfaces claim conflicts

        notification_service.enqueue(
            seller.user_id,
            notification_service.KIND_PAYOUT_REQUESTED,
            payload={"payout_id": payout.id, "amount_cents": amount, "currency": currency},
        )
        db.session.commit()

        current_app.logger.info(
            "Payout %s requested by seller %s: %s %s over %s orders",
            payout.id, seller.id, amount, currency, len(payments),
        )
        return payout

    return run_with_retry(_op, retry_on=(IntegrityError,))


def list_payouts(user_id: int, status: str | None = None) -> list[Payout]:
    seller = _get_seller_for_user(user_id)
    query = db.session.query(Payout).filter(Payout.seller_id == seller.id)
    if status is not None:
        if status not in VALID_PAYOUT_STATUSES:
            raise ValidationError(f"Invalid payout status: {status}")
        query = query.filter(Payout.status == status)
    return query.order_by(Payout.created_at.desc(), Payout.id.desc()).all()


def list_all_payouts(status: str | None = None) -> list[Payout]:
    query = db.session.query(Payout)
    if status is not None:
        if status not in VALID_PAYOUT_STATUSES:
            raise ValidationError(f"Invalid payout status: {status}")
        query = query.filter(Payout.status == status)
    return query.order_by(Payout.id).all()


# =============================================================================
# TRANSFER LIFECYCLE
# =============================================================================

def _transition(payout_id: int, new_status: str, reason: str | None = None) -> Payout:
    def _op():
        payout = lock_for_update(db.session.query(Payout).filter_by(id=payout_id)).first()
        if not payout:
            raise NotFoundError("Payout not found")

        if new_status not in _ALLOWED_PAYOUT_TRANSITIONS[payout.status]:
            raise InvalidStateError(f"Cannot change payout status from {payout.status} to {new_status}")

        now = utcnow()
        payout.status = new_status
        if new_status == PAYOUT_PAID:
            payout.paid_at = now
        elif new_status == PAYOUT_FAILED:
            payout.failed_at = now
            payout.failure_reason = reason
            for item in payout.items:
                item.claim_order_id = None

        db.session.commit()
        current_app.logger.info("Payout %s marked %s", payout.id, new_status)
        return payout

    return run_with_retry(_op)


def mark_payout_processing(payout_id: int) -> Payout:
    return _transition(payout_id, PAYOUT_PROCESSING)


def mark_payout_paid(payout_id: int) -> Payout:
    return _transition(payout_id, PAYOUT_PAID)


def mark_payout_failed(payout_id: int, reason: str | None = None) -> Payout:
    """Fail the payout and release its orders for a later payout."""
    return _transition(payout_id, PAYOUT_FAILED, reason or "Transfer failed")
