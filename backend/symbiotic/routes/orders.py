# Overview: Flask API routes for order operations; parses input and returns JSON responses.

# backend/symbiotic/routes/orders.py
"""
Order API Routes

WHY: Buyers track their orders; sellers move them through fulfillment.

SECURITY:
- Status updates: the order's seller or an admin
- Reads: the order's buyer, its seller, or an admin
- Listing is always scoped to the caller unless the caller is an admin
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import MarketplaceError, ValidationError
from ..services import order_service
from ..services.order_service import OrderFilter
from ..decorators import require_auth
from ..validation import coerce_int, require_json_object


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.put("/<int:order_id>/status")
@require_auth
def update_order_status_route(order_id: int):
    """
    Update fulfillment status.

    Request body:
    {
        "status": "in_transit",
        "tracking_number": "1Z999AA10123456784",       // optional
        "seller_notes": "Left with building concierge" // optional
    }

    Returns:
        200: Updated order
        400: Invalid status or illegal transition
        403: Not the order's seller
        404: Order not found
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        new_status = data.get("status")
        if not isinstance(new_status, str) or not new_status:
            raise ValidationError("status is required")

        order = order_service.update_status(
            order_id,
            new_status,
            g.current_user,
            tracking_number=data.get("tracking_number"),
            seller_notes=data.get("seller_notes"),
        )
        return jsonify({"order": order.to_dict()}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id, g.current_user)
        body = order.to_dict()
        if order.payment is not None:
            body["payment"] = order.payment.to_dict()
        return jsonify({"order": body}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


def _filter_from_request(user) -> OrderFilter:
    """
    Build the caller-scoped filter.

    role=buyer (default for buyers) lists orders placed by the caller;
    role=seller (default for sellers) lists orders received by the caller's
    seller profile. Admins see every order unless they pass a role.
    """
    args = request.args
    role = args.get("role")
    if role not in (None, "buyer", "seller"):
        raise ValidationError("role must be buyer or seller")

    limit = coerce_int(args.get("limit", 20), "limit")
    offset = coerce_int(args.get("offset", 0), "offset")
    status = args.get("status") or None
    payment_status = args.get("payment_status") or None

    if role is None and not user.is_admin:
        role = "seller" if user.seller_profile is not None and user.role == "seller" else "buyer"

    seller_id = buyer_id = None
    if role == "buyer":
        buyer_id = user.id
    elif role == "seller":
        if user.seller_profile is None:
            raise ValidationError("No seller profile for this account")
        seller_id = user.seller_profile.id

    return OrderFilter(
        seller_id=seller_id,
        buyer_id=buyer_id,
        status=status,
        payment_status=payment_status,
        limit=limit,
        offset=offset,
    )


@orders_bp.get("")
@require_auth
def list_orders_route():
    """
    List orders, newest first.

    Query params: role, status, payment_status, limit (1-100), offset
    """
    try:
        order_filter = _filter_from_request(g.current_user)
        orders, total = order_service.list_orders(order_filter)
        return jsonify({
            "orders": [o.to_dict(include_timeline=False) for o in orders],
            "pagination": {
                "total": total,
                "limit": order_filter.limit,
                "offset": order_filter.offset,
            },
        }), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500
