# Overview: Square Connect v2 adapter (payments, refunds, terminal checkouts, subscriptions).

"""
Talks to the Square REST API directly with httpx.

Amounts go over the wire in minor units. Square caps idempotency keys at
45 characters, so generated keys are built from a short prefix of the
invoice/transaction id plus a millisecond timestamp.

Credentials (decrypted on demand):
- accessToken (required)
- applicationId (required for online payments)
- locationId (required for payments, checkouts, cards, subscriptions)

Settings:
- testMode: use the sandbox host
"""

from __future__ import annotations

import logging
import re
from datetime import timedelta

import httpx
from flask import current_app, has_app_context

from ...time_utils import now_ms, to_utc_z, utcnow
from .base import PaymentAdapter
from .types import (
    IDEMPOTENCY_KEY_MAX_LENGTH,
    ConnectionTestResult,
    CustomerRequest,
    CustomerResult,
    PaymentProviderError,
    PaymentRequest,
    PaymentResult,
    RefundRequest,
    RefundResult,
    SubscriptionRequest,
    SubscriptionResult,
    SubscriptionUpdate,
    TerminalCheckoutRequest,
    TerminalCheckoutResult,
    from_minor_units,
    to_minor_units,
)

logger = logging.getLogger(__name__)

PRODUCTION_BASE_URL = "https://connect.squareup.com"
SANDBOX_BASE_URL = "https://connect.squareupsandbox.com"
SQUARE_API_VERSION = "2024-01-18"
DEFAULT_TIMEOUT_SECONDS = 30.0

SCOPE_HINT = (
    " Please ensure your Square access token has the required OAuth scopes:"
    " MERCHANT_PROFILE_READ, PAYMENTS_READ, and PAYMENTS_WRITE."
)

_DURATION_RE = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)


def idempotency_key(*parts: str) -> str:
    return "-".join(parts)[:IDEMPOTENCY_KEY_MAX_LENGTH]


def parse_duration(value: str | None) -> timedelta | None:
    """ISO-8601 duration such as "PT5M" to a timedelta; None if unparseable."""
    if not value:
        return None
    match = _DURATION_RE.match(value.strip())
    if not match or not any(match.groupdict().values()):
        return None
    parts = {k: float(v) for k, v in match.groupdict().items() if v}
    return timedelta(**parts)


def payment_status(status: str | None) -> str:
    if status == "COMPLETED":
        return "succeeded"
    if status == "PENDING":
        return "pending"
    return "failed"


def checkout_status(status: str | None) -> str:
    return {
        "COMPLETED": "completed",
        "CANCELED": "canceled",
        "FAILED": "failed",
    }.get(status or "", "pending")


def error_detail(payload) -> str | None:
    """Join the detail (or code) of every entry in a Square `errors` array."""
    if not isinstance(payload, dict):
        return None
    errors = payload.get("errors")
    if not isinstance(errors, list) or not errors:
        return None
    parts = [e.get("detail") or e.get("message") or e.get("code") or "" for e in errors if isinstance(e, dict)]
    return "; ".join(p for p in parts if p) or None


class SquareAdapter(PaymentAdapter):
    provider = "square"
    display_name = "Square"

    def __init__(self, config, *, transport: httpx.BaseTransport | None = None, timeout: float | None = None):
        super().__init__(config)
        self._transport = transport
        self._timeout = timeout

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    @property
    def base_url(self) -> str:
        return SANDBOX_BASE_URL if self.test_mode else PRODUCTION_BASE_URL

    def _timeout_seconds(self) -> float:
        if self._timeout is not None:
            return self._timeout
        if has_app_context():
            return float(current_app.config.get("PAYMENT_HTTP_TIMEOUT", DEFAULT_TIMEOUT_SECONDS))
        return DEFAULT_TIMEOUT_SECONDS

    def _client(self, access_token: str) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Square-Version": SQUARE_API_VERSION,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(self._timeout_seconds()),
            transport=self._transport,
        )

    def _require(self, creds: dict[str, str], *names: str) -> None:
        missing = [n for n in names if not creds.get(n)]
        if missing:
            if len(names) == 1:
                raise PaymentProviderError(f"Square {names[0]} is required", provider=self.provider)
            raise PaymentProviderError(
                f"Square credentials incomplete: {', '.join(names)} are required",
                provider=self.provider,
            )

    def _request(self, method: str, path: str, *, json: dict | None = None) -> dict:
        creds = self.credentials()
        self._require(creds, "accessToken")
        try:
            with self._client(creds["accessToken"]) as client:
                response = client.request(method, path, json=json)
        except httpx.RequestError as exc:
            raise PaymentProviderError(f"Square request error: {exc}", provider=self.provider) from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.is_error:
            detail = error_detail(payload) or f"HTTP {response.status_code}"
            code = None
            if isinstance(payload, dict) and payload.get("errors"):
                code = payload["errors"][0].get("code")
            raise PaymentProviderError(detail, provider=self.provider, code=code)
        if not isinstance(payload, dict):
            raise PaymentProviderError("Square returned a non-JSON response", provider=self.provider)
        return payload

    def _call(self, label: str, method: str, path: str, *, json: dict | None = None) -> dict:
        """_request with the operation name folded into the error message."""
        try:
            return self._request(method, path, json=json)
        except PaymentProviderError as exc:
            logger.error("Square %s error: %s", label, exc.message)
            raise PaymentProviderError(f"Square {label} failed: {exc.message}", provider=self.provider, code=exc.code) from exc

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def test_connection(self) -> ConnectionTestResult:
        if not self.credentials().get("accessToken"):
            return ConnectionTestResult(False, "Access token is required")

        try:
            merchants = self._request("GET", "/v2/merchants").get("merchant") or []
            if merchants:
                return ConnectionTestResult(True)
        except PaymentProviderError as merchant_error:
            logger.warning("Merchants API failed, trying Locations API: %s", merchant_error.message)
            try:
                locations = self._request("GET", "/v2/locations").get("locations") or []
            except PaymentProviderError:
                return ConnectionTestResult(False, self._with_scope_hint(merchant_error.message))
            if locations:
                return ConnectionTestResult(True)
            return ConnectionTestResult(False, self._with_scope_hint(merchant_error.message))

        return ConnectionTestResult(
            False,
            "Failed to retrieve merchant or location information. "
            "Please verify your access token has the correct permissions.",
        )

    @staticmethod
    def _with_scope_hint(message: str) -> str:
        if "authorized" in message.lower():
            return message + SCOPE_HINT
        return message

    def process_payment(self, request: PaymentRequest) -> PaymentResult:
        creds = self.credentials()
        self._require(creds, "accessToken", "applicationId", "locationId")

        if request.payment_method_type == "terminal":
            if not request.device_id:
                raise PaymentProviderError("Device ID is required for terminal payments", provider=self.provider)
            checkout = self.create_terminal_checkout(TerminalCheckoutRequest(
                amount=request.amount,
                currency=request.currency,
                invoice_id=request.invoice_id,
                customer_id=request.customer_id,
                device_id=request.device_id,
                description=request.description,
                metadata=request.metadata,
            ))
            return PaymentResult(
                transaction_id=checkout.checkout_id,
                status="succeeded" if checkout.status == "completed" else "pending",
                payment_method="terminal",
                amount=request.amount,
                currency=request.currency,
                metadata={
                    **request.metadata,
                    "checkoutId": checkout.checkout_id,
                    "deviceId": checkout.device_id or "",
                    "invoiceId": request.invoice_id,
                },
            )

        if not request.source_id:
            raise PaymentProviderError(
                "Square requires a card nonce (sourceId) from the Web Payments SDK for online payments. "
                'For in-person payments, use paymentMethodType "terminal" with a deviceId.',
                provider=self.provider,
            )

        key = (request.idempotency_key or idempotency_key(request.invoice_id[:8], str(now_ms())))
        body = {
            "source_id": request.source_id,
            "idempotency_key": key[:IDEMPOTENCY_KEY_MAX_LENGTH],
            "amount_money": {"amount": to_minor_units(request.amount), "currency": request.currency},
            "location_id": creds["locationId"],
            "reference_id": request.invoice_id,
            "note": request.description or f"Payment for invoice {request.invoice_id}",
        }
        payment = self._call("payment", "POST", "/v2/payments", json=body).get("payment")
        if not payment:
            raise PaymentProviderError("Square payment failed: No payment returned", provider=self.provider)

        fee = None
        fees = payment.get("processing_fee") or []
        if fees:
            fee = from_minor_units(sum(int((f.get("amount_money") or {}).get("amount") or 0) for f in fees))

        return PaymentResult(
            transaction_id=payment.get("id", ""),
            status=payment_status(payment.get("status")),
            payment_method=payment.get("source_type") or "card",
            amount=request.amount,
            currency=request.currency,
            fee=fee,
            metadata={"invoiceId": request.invoice_id, "locationId": creds["locationId"]},
        )

    def refund_payment(self, request: RefundRequest) -> RefundResult:
        payment = self._call("refund", "GET", f"/v2/payments/{request.transaction_id}").get("payment")
        if not payment:
            raise PaymentProviderError("Square refund failed: Payment not found", provider=self.provider)

        total = payment.get("total_money") or {}
        amount_cents = to_minor_units(request.amount) if request.amount else int(total.get("amount") or 0)
        body = {
            "idempotency_key": idempotency_key("rf", request.transaction_id[:8], str(now_ms())),
            "payment_id": request.transaction_id,
            "amount_money": {"amount": amount_cents, "currency": total.get("currency") or "USD"},
            "reason": request.reason or "Customer request",
        }
        refund = self._call("refund", "POST", "/v2/refunds", json=body).get("refund")
        if not refund:
            raise PaymentProviderError("Square refund failed: No refund returned", provider=self.provider)

        money = refund.get("amount_money") or {}
        return RefundResult(
            refund_id=refund.get("id", ""),
            status=payment_status(refund.get("status")),
            amount=from_minor_units(money.get("amount")),
            currency=money.get("currency") or "USD",
            transaction_id=request.transaction_id,
        )

    def _checkout_result(self, checkout: dict, fallback_id: str | None = None) -> TerminalCheckoutResult:
        expires_at = None
        duration = parse_duration(checkout.get("deadline_duration"))
        if duration is not None:
            expires_at = to_utc_z(utcnow() + duration)
        return TerminalCheckoutResult(
            checkout_id=checkout.get("id") or fallback_id or "",
            status=checkout_status(checkout.get("status")),
            device_id=(checkout.get("device_options") or {}).get("device_id"),
            expires_at=expires_at,
        )

    def create_terminal_checkout(self, request: TerminalCheckoutRequest) -> TerminalCheckoutResult:
        creds = self.credentials()
        self._require(creds, "accessToken", "locationId")
        if not request.device_id:
            raise PaymentProviderError("Device ID is required for terminal checkout", provider=self.provider)

        body = {
            "idempotency_key": idempotency_key("term", request.invoice_id[:8], str(now_ms())),
            "checkout": {
                "amount_money": {"amount": to_minor_units(request.amount), "currency": request.currency},
                "reference_id": request.invoice_id,
                "note": request.description or f"Payment for invoice {request.invoice_id}",
                "device_options": {
                    "device_id": request.device_id,
                    "skip_receipt_screen": False,
                    "tip_settings": {"allow_tipping": False},
                },
            },
        }
        checkout = self._call("terminal checkout", "POST", "/v2/terminals/checkouts", json=body).get("checkout")
        if not checkout or not checkout.get("id"):
            raise PaymentProviderError(
                "Square terminal checkout failed: No checkout returned", provider=self.provider
            )
        return self._checkout_result(checkout)

    def get_terminal_checkout_status(self, checkout_id: str) -> TerminalCheckoutResult:
        checkout = self._call(
            "terminal checkout status", "GET", f"/v2/terminals/checkouts/{checkout_id}"
        ).get("checkout")
        if not checkout:
            raise PaymentProviderError("Terminal checkout not found", provider=self.provider)
        return self._checkout_result(checkout, fallback_id=checkout_id)

    def create_customer(self, request: CustomerRequest) -> CustomerResult:
        body = {
            "given_name": request.given_name,
            "family_name": request.family_name,
            "company_name": request.company_name,
            "email_address": request.email,
            "phone_number": request.phone_number,
        }
        body = {k: v for k, v in body.items() if v is not None}
        customer = self._call("customer creation", "POST", "/v2/customers", json=body).get("customer")
        if not customer or not customer.get("id"):
            raise PaymentProviderError(
                "Square customer creation failed: No customer returned", provider=self.provider
            )
        return CustomerResult(customer_id=customer["id"], email=customer.get("email_address") or request.email)

    def save_card_for_customer(self, customer_id: str, card_token: str) -> str:
        creds = self.credentials()
        self._require(creds, "accessToken", "locationId")
        body = {
            "idempotency_key": idempotency_key("card", customer_id[:8], str(now_ms())),
            "source_id": card_token,
            "card": {"customer_id": customer_id},
        }
        card = self._call("card save", "POST", "/v2/cards", json=body).get("card")
        if not card or not card.get("id"):
            raise PaymentProviderError("Square card save failed: No card returned", provider=self.provider)
        return card["id"]

    def create_subscription(self, request: SubscriptionRequest) -> SubscriptionResult:
        body = {
            "idempotency_key": request.idempotency_key[:IDEMPOTENCY_KEY_MAX_LENGTH],
            "location_id": request.location_id,
            "plan_variation_id": request.plan_id,
            "customer_id": request.customer_id,
            "card_id": request.card_id,
        }
        if request.start_date:
            body["start_date"] = request.start_date
        subscription = self._call("subscription creation", "POST", "/v2/subscriptions", json=body).get("subscription")
        if not subscription or not subscription.get("id"):
            raise PaymentProviderError(
                "Square subscription creation failed: No subscription returned", provider=self.provider
            )
        return SubscriptionResult(
            subscription_id=subscription["id"],
            status=subscription.get("status") or "PENDING",
            plan_id=subscription.get("plan_variation_id") or request.plan_id,
            customer_id=subscription.get("customer_id") or request.customer_id,
        )

    def update_subscription(self, request: SubscriptionUpdate) -> SubscriptionResult:
        changes = {}
        if request.plan_id:
            changes["plan_variation_id"] = request.plan_id
        if request.card_id:
            changes["card_id"] = request.card_id
        subscription = self._call(
            "subscription update", "PUT", f"/v2/subscriptions/{request.subscription_id}",
            json={"subscription": changes},
        ).get("subscription")
        if not subscription or not subscription.get("id"):
            raise PaymentProviderError(
                "Square subscription update failed: No subscription returned", provider=self.provider
            )
        return SubscriptionResult(
            subscription_id=subscription["id"],
            status=subscription.get("status") or "ACTIVE",
            plan_id=subscription.get("plan_variation_id") or "",
            customer_id=subscription.get("customer_id") or "",
        )
