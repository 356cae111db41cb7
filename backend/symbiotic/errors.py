# Overview: Domain error taxonomy shared by services and routes.

"""
Marketplace Error Taxonomy

Every domain failure maps to exactly one HTTP status. Routes catch
MarketplaceError, return ``error.to_dict()`` with ``error.status_code``,
and log anything else as a 500.
"""

from __future__ import annotations


class MarketplaceError(Exception):
    """Base class for errors that are reported to the caller."""

    status_code = 500
    error = "Internal server error"

    def __init__(self, message: str | None = None, details: dict | None = None):
        super().__init__(message or self.error)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.message:
            body["message"] = self.message
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(MarketplaceError):
    """Malformed or missing input (empty cart, amount below minimum, ...)."""
    status_code = 400
    error = "Validation failed"


class UnauthorizedError(MarketplaceError):
    status_code = 401
    error = "Authentication required"


class ForbiddenError(MarketplaceError):
    """Actor lacks rights over the target order or seller account."""
    status_code = 403
    error = "Forbidden"


class NotFoundError(MarketplaceError):
    status_code = 404
    error = "Not found"


class PreconditionFailedError(MarketplaceError):
    """Seller has not completed payout account linkage."""
    status_code = 400
    error = "Precondition failed"


class InvalidStateError(MarketplaceError):
    """Illegal status transition, or payout below the minimum threshold."""
    status_code = 400
    error = "Invalid state"


class SignatureError(MarketplaceError):
    """Webhook signature missing, invalid, or the signing secret is unset."""
    status_code = 400
    error = "Webhook signature verification failed"

    def __init__(self, message: str | None = None, *, configured: bool = True):
        super().__init__(message)
        if not configured:
            self.status_code = 500
            self.error = "Webhook secret not configured"


class GatewayError(MarketplaceError):
    """The payment gateway call failed; no intent was created."""
    status_code = 500
    error = "Payment gateway error"


class InsufficientStockError(MarketplaceError):
    """A conditional stock decrement matched no row."""
    status_code = 409
    error = "Insufficient stock"
