# backend/symbiotic/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///symbiotic.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Comma-separated browser origins allowed to call the API
    CORS_ALLOWED_ORIGINS = tuple(
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    )

    # Payment gateway (Stripe)
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    STRIPE_WEBHOOK_TOLERANCE = _env_int("STRIPE_WEBHOOK_TOLERANCE", 300)  # seconds

    # Marketplace economics (all amounts in cents)
    PLATFORM_FEE_BPS = _env_int("PLATFORM_FEE_BPS", 1000)  # 1000 bps = 10%
    MIN_PAYMENT_CENTS = _env_int("MIN_PAYMENT_CENTS", 50)
    MIN_PAYOUT_CENTS = _env_int("MIN_PAYOUT_CENTS", 1000)
    PAYOUT_DELAY_DAYS = _env_int("PAYOUT_DELAY_DAYS", 3)
    PAYOUT_ESTIMATED_ARRIVAL = os.environ.get("PAYOUT_ESTIMATED_ARRIVAL", "3-5 business days")

    DEFAULT_CURRENCY = "usd"
    SUPPORTED_CURRENCIES = ("usd", "eur", "gbp", "cad")
