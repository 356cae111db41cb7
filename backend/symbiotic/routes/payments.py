# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

# backend/symbiotic/routes/payments.py
"""
Payment Processing API Routes

WHY: Buyers pay through the gateway; the gateway tells us about it through
signed webhooks; sellers draw their proceeds as payouts.

DESIGN:
- create-payment-intent re-prices the cart before any charge is attempted
- Orders are created by the webhook, never by the client
- Payouts are computed server-side from settled orders

SECURITY:
- Webhook is public but signature-verified (stripe-signature header)
- Payment status is scoped to the buyer who paid (admins see all)
- Payout routes require the seller role
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import MarketplaceError, NotFoundError
from ..models import Order, Payment
from ..extensions import db
from ..services import checkout_service, payout_service, webhook_service
from ..decorators import require_auth, require_role
from ..models.auth import ROLE_SELLER
from ..validation import require_json_object


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


# =============================================================================
# CHECKOUT
# =============================================================================

@payments_bp.post("/create-payment-intent")
@require_auth
def create_payment_intent_route():
    """
    Create a gateway payment intent for the buyer's cart.

    Request body:
    {
        "amount_cents": 3500,
        "currency": "usd",
        "cart_items": [
            {"seller_id": 1, "product_id": 7, "unit_price_cents": 1000, "quantity": 2},
            ...
        ],
        "shipping_address": {"line1": "...", "city": "...", ...}
    }

    Returns:
        200: {client_secret, payment_intent_id, amount_cents, currency}
        400: Invalid input
        409: Insufficient stock
        500: Gateway error
    """
    try:
        payload = require_json_object(request.get_json(silent=True))
        result = checkout_service.create_checkout_intent(g.current_user, payload)
        return jsonify(result.to_dict()), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create payment intent")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# WEBHOOK
# =============================================================================

@payments_bp.post("/webhook")
def webhook_route():
    """
    Gateway webhook receiver.

    The raw body is verified against the stripe-signature header before it
    is parsed. Any non-2xx answer makes the gateway redeliver, so every
    handler is idempotent.

    Returns:
        200: {"received": true}
        400: Signature missing/invalid, or malformed event
        409: Insufficient stock while reconciling
        500: Webhook secret not configured, or datastore failure
    """
    try:
        outcome = webhook_service.process_webhook(
            request.get_data(),
            request.headers.get("stripe-signature"),
        )
        return jsonify({"received": True, "action": outcome.action}), 200

    except MarketplaceError as e:
        current_app.logger.warning("Webhook rejected: %s", e)
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to process webhook")
        return jsonify({"error": "Webhook processing failed"}), 500


# =============================================================================
# PAYMENT STATUS
# =============================================================================

@payments_bp.get("/status/<payment_intent_id>")
@require_auth
def payment_status_route(payment_intent_id: str):
    """
    Payments recorded for a payment intent, one per seller order.

    Returns 404 until the webhook has been reconciled, and for intents
    paid by another buyer.
    """
    try:
        user = g.current_user
        query = (
            db.session.query(Payment, Order)
            .join(Order, Payment.order_id == Order.id)
            .filter(Payment.payment_intent_id == payment_intent_id)
        )
        if not user.is_admin:
            query = query.filter(Order.buyer_id == user.id)
        rows = query.order_by(Payment.id).all()

        if not rows:
            raise NotFoundError("Payment not found")

        payments = []
        for payment, order in rows:
            body = payment.to_dict()
            body["order_number"] = order.order_number
            body["order_status"] = order.status
            payments.append(body)

        return jsonify({"payment_intent_id": payment_intent_id, "payments": payments}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get payment status")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYOUTS
# =============================================================================

@payments_bp.post("/request-payout")
@require_auth
@require_role(ROLE_SELLER)
def request_payout_route():
    """
    Request a payout of the seller's available balance.

    Request body (optional):
    {
        "currency": "usd"
    }

    Returns:
        201: {message, payout, estimated_arrival}
        400: Below minimum, or payout account not linked
        404: No seller profile
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        payout = payout_service.request_payout(g.current_user.id, currency=data.get("currency"))

        return jsonify({
            "message": "Payout request submitted successfully",
            "payout": payout.to_dict(),
            "estimated_arrival": current_app.config["PAYOUT_ESTIMATED_ARRIVAL"],
        }), 201

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to request payout")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/balance")
@require_auth
@require_role(ROLE_SELLER)
def balance_route():
    try:
        balance = payout_service.get_available_balance(
            g.current_user.id,
            currency=request.args.get("currency"),
        )
        return jsonify(balance), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get seller balance")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/payouts")
@require_auth
@require_role(ROLE_SELLER)
def list_payouts_route():
    try:
        payouts = payout_service.list_payouts(g.current_user.id, status=request.args.get("status"))
        return jsonify({"payouts": [p.to_dict() for p in payouts]}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list payouts")
        return jsonify({"error": "Internal server error"}), 500
