"""Normalized request and result types shared by every payment adapter."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP


PAYMENT_METHOD_TYPES = ("online", "terminal")

PAYMENT_STATUSES = ("succeeded", "pending", "failed", "canceled")
REFUND_STATUSES = ("succeeded", "pending", "failed")
CHECKOUT_STATUSES = ("pending", "completed", "canceled", "failed")

IDEMPOTENCY_KEY_MAX_LENGTH = 45


class PaymentProviderError(Exception):
    """Raised by adapters when the processor rejects or fails a call."""

    def __init__(self, message: str, *, provider: str | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.code = code


def to_minor_units(amount) -> int:
    """Decimal/float major units to integer cents."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount) -> Decimal:
    return (Decimal(int(amount or 0)) / 100).quantize(Decimal("0.01"))


@dataclass
class PaymentRequest:
    amount: Decimal
    currency: str
    invoice_id: str
    customer_id: str
    payment_method: str | None = None
    source_id: str | None = None
    idempotency_key: str | None = None
    description: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    payment_method_type: str = "online"
    device_id: str | None = None


@dataclass
class PaymentResult:
    transaction_id: str
    status: str
    payment_method: str
    amount: Decimal
    currency: str
    fee: Decimal | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "transactionId": self.transaction_id,
            "status": self.status,
            "amount": float(self.amount),
            "currency": self.currency,
        }


@dataclass
class RefundRequest:
    transaction_id: str
    amount: Decimal | None = None
    reason: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class RefundResult:
    refund_id: str
    status: str
    amount: Decimal
    currency: str
    transaction_id: str

    def to_dict(self) -> dict:
        return {
            "refundId": self.refund_id,
            "status": self.status,
            "amount": float(self.amount),
            "currency": self.currency,
            "transactionId": self.transaction_id,
        }


@dataclass
class TerminalCheckoutRequest:
    amount: Decimal
    currency: str
    invoice_id: str
    customer_id: str
    device_id: str
    description: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class TerminalCheckoutResult:
    checkout_id: str
    status: str
    device_id: str | None = None
    expires_at: str | None = None

    def to_dict(self) -> dict:
        return {
            "checkoutId": self.checkout_id,
            "status": self.status,
            "deviceId": self.device_id,
            "expiresAt": self.expires_at,
        }


@dataclass
class ConnectionTestResult:
    success: bool
    error: str | None = None

    def to_dict(self) -> dict:
        data = {"success": self.success}
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class CustomerRequest:
    email: str
    given_name: str | None = None
    family_name: str | None = None
    company_name: str | None = None
    phone_number: str | None = None


@dataclass
class CustomerResult:
    customer_id: str
    email: str


@dataclass
class SubscriptionRequest:
    customer_id: str
    card_id: str
    plan_id: str
    location_id: str
    idempotency_key: str
    start_date: str | None = None


@dataclass
class SubscriptionUpdate:
    subscription_id: str
    plan_id: str | None = None
    card_id: str | None = None


@dataclass
class SubscriptionResult:
    subscription_id: str
    status: str
    plan_id: str
    customer_id: str
