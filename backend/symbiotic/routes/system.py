# backend/symbiotic/routes/system.py
"""
System health endpoint.

Checks the datastore and reports whether the gateway is configured.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Order, Payout, User
from symbiotic.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        order_count = db.session.query(Order).count()
        pending_payouts = db.session.query(Payout).filter_by(status="pending").count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "orders": order_count,
                "pending_payouts": pending_payouts,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_gateway_config() -> dict:
    """Secrets are reported as present/absent only."""
    config = current_app.config
    missing = [
        key for key in ("STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET")
        if not config.get(key)
    ]
    if missing:
        return {"status": "degraded", "warning": f"Missing configuration: {', '.join(missing)}"}
    return {"status": "healthy"}


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: Healthy or degraded (gateway not configured)
    - 503: Database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    gateway_health = check_gateway_config()

    if database_health["status"] == "unhealthy":
        overall_status = "unhealthy"
        http_status = 503
    elif gateway_health["status"] == "degraded":
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "payment_gateway": gateway_health,
        }
    }

    return response, http_status
