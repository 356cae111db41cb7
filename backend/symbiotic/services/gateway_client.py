# Overview: Thin Stripe client wrapper for payment intent creation.

from __future__ import annotations

from dataclasses import dataclass

import stripe
from flask import current_app

from ..errors import GatewayError


@dataclass(frozen=True)
class PaymentIntentResult:
    payment_intent_id: str
    client_secret: str
    amount_cents: int
    currency: str

    def to_dict(self) -> dict:
        return {
            "client_secret": self.client_secret,
            "payment_intent_id": self.payment_intent_id,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
        }


def create_payment_intent(amount_cents: int, currency: str, metadata: dict[str, str]) -> PaymentIntentResult:
    """
    Create a Stripe PaymentIntent.

    Raises:
        GatewayError: secret key not configured, or Stripe rejected the call
    """
    api_key = current_app.config.get("STRIPE_SECRET_KEY")
    if not api_key:
        raise GatewayError("Please set STRIPE_SECRET_KEY in environment variables")

    try:
        intent = stripe.PaymentIntent.create(
            api_key=api_key,
            amount=amount_cents,
            currency=currency,
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
        )
    except stripe.StripeError as exc:
        current_app.logger.warning("Stripe payment intent creation failed: %s", exc)
        raise GatewayError(getattr(exc, "user_message", None) or str(exc))

    return PaymentIntentResult(
        payment_intent_id=intent.id,
        client_secret=intent.client_secret,
        amount_cents=intent.amount,
        currency=intent.currency,
    )
