# backend/repairdesk/config.py
from __future__ import annotations
import os
from decimal import Decimal


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///repairdesk.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Subscription billing
    BILLING_AMOUNT_PER_LOCATION = Decimal(os.environ.get("BILLING_AMOUNT_PER_LOCATION", "50"))
    BILLING_DAY_OF_MONTH = int(os.environ.get("BILLING_DAY_OF_MONTH", "1"))
    BILLING_SCHEDULER_ENABLED = _env_bool("BILLING_SCHEDULER_ENABLED")
    BILLING_SCHEDULER_HOUR = int(os.environ.get("BILLING_SCHEDULER_HOUR", "2"))

    # Payment processors
    SQUARE_SUBSCRIPTION_PLAN_ID = os.environ.get("SQUARE_SUBSCRIPTION_PLAN_ID", "")
    SQUARE_WEBHOOK_SIGNATURE_KEY = os.environ.get("SQUARE_WEBHOOK_SIGNATURE_KEY", "")
    SQUARE_WEBHOOK_URL = os.environ.get("SQUARE_WEBHOOK_URL", "")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
    PAYMENT_HTTP_TIMEOUT = float(os.environ.get("PAYMENT_HTTP_TIMEOUT", "30"))
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "USD")

    # Passphrase for encrypting integration credentials at rest
    ENCRYPTION_KEY = os.environ.get("ENCRYPTION_KEY")
