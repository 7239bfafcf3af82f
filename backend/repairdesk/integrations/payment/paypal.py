# Overview: PayPal REST adapter (order capture and capture refunds).

"""
Talks to the PayPal REST API directly with httpx.

The client id and secret are exchanged once per adapter for an OAuth
bearer token. A charge creates a CAPTURE order and captures it straight away;
refunds look up the capture for its currency before refunding it.

Credentials (decrypted on demand):
- clientId (required)
- clientSecret (required)

Settings:
- testMode: use the sandbox host
"""

from __future__ import annotations

import logging
from decimal import Decimal

import httpx
from flask import current_app, has_app_context

from .base import PaymentAdapter
from .types import (
    ConnectionTestResult,
    PaymentProviderError,
    PaymentRequest,
    PaymentResult,
    RefundRequest,
    RefundResult,
)

logger = logging.getLogger(__name__)

PRODUCTION_BASE_URL = "https://api-m.paypal.com"
SANDBOX_BASE_URL = "https://api-m.sandbox.paypal.com"
DEFAULT_TIMEOUT_SECONDS = 30.0
MIN_CREDENTIAL_LENGTH = 10


def money_value(amount) -> str:
    return str(Decimal(str(amount)).quantize(Decimal("0.01")))


def capture_status(status: str | None) -> str:
    if status == "COMPLETED":
        return "succeeded"
    if status == "PENDING":
        return "pending"
    return "failed"


def error_detail(payload) -> str | None:
    """Message from a PayPal error body (REST `message`/`details` or OAuth `error_description`)."""
    if not isinstance(payload, dict):
        return None
    if payload.get("error_description"):
        return payload["error_description"]
    message = payload.get("message")
    details = payload.get("details")
    if isinstance(details, list) and details:
        issues = [d.get("description") or d.get("issue") or "" for d in details if isinstance(d, dict)]
        issues = [i for i in issues if i]
        if issues:
            return "; ".join(issues)
    return message or payload.get("error")


class PayPalAdapter(PaymentAdapter):
    provider = "paypal"
    display_name = "PayPal"

    def __init__(self, config, *, transport: httpx.BaseTransport | None = None, timeout: float | None = None):
        super().__init__(config)
        self._transport = transport
        self._timeout = timeout
        self._token: str | None = None

    @property
    def base_url(self) -> str:
        return SANDBOX_BASE_URL if self.test_mode else PRODUCTION_BASE_URL

    def _timeout_seconds(self) -> float:
        if self._timeout is not None:
            return self._timeout
        if has_app_context():
            return float(current_app.config.get("PAYMENT_HTTP_TIMEOUT", DEFAULT_TIMEOUT_SECONDS))
        return DEFAULT_TIMEOUT_SECONDS

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            headers={"Accept": "application/json"},
            timeout=httpx.Timeout(self._timeout_seconds()),
            transport=self._transport,
        )

    def _client_credentials(self) -> tuple[str, str]:
        creds = self.credentials()
        client_id, client_secret = creds.get("clientId"), creds.get("clientSecret")
        if not client_id or not client_secret:
            raise PaymentProviderError("PayPal client ID and client secret are required", provider=self.provider)
        return client_id, client_secret

    @staticmethod
    def _parse(response: httpx.Response):
        try:
            return response.json()
        except ValueError:
            return None

    def _raise_for(self, response: httpx.Response, payload) -> None:
        if response.is_error:
            code = (payload.get("name") or payload.get("error")) if isinstance(payload, dict) else None
            raise PaymentProviderError(
                error_detail(payload) or f"HTTP {response.status_code}", provider=self.provider, code=code
            )
        if not isinstance(payload, dict):
            raise PaymentProviderError("PayPal returned a non-JSON response", provider=self.provider)

    def _access_token(self, client: httpx.Client) -> str:
        if self._token:
            return self._token
        client_id, client_secret = self._client_credentials()
        response = client.post(
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(client_id, client_secret),
        )
        payload = self._parse(response)
        self._raise_for(response, payload)
        token = payload.get("access_token")
        if not token:
            raise PaymentProviderError("PayPal did not return an access token", provider=self.provider)
        self._token = token
        return token

    def _call(self, label: str, method: str, path: str, *, json: dict | None = None, headers: dict | None = None) -> dict:
        """Authorized request with the operation name folded into the error message."""
        try:
            with self._client() as client:
                token = self._access_token(client)
                response = client.request(
                    method, path, json=json, headers={"Authorization": f"Bearer {token}", **(headers or {})}
                )
            payload = self._parse(response)
            self._raise_for(response, payload)
        except httpx.RequestError as exc:
            logger.error("PayPal %s error: %s", label, exc)
            raise PaymentProviderError(f"PayPal {label} failed: request error: {exc}", provider=self.provider) from exc
        except PaymentProviderError as exc:
            logger.error("PayPal %s error: %s", label, exc.message)
            raise PaymentProviderError(f"PayPal {label} failed: {exc.message}", provider=self.provider, code=exc.code) from exc
        return payload

    def test_connection(self) -> ConnectionTestResult:
        creds = self.credentials()
        client_id, client_secret = creds.get("clientId"), creds.get("clientSecret")
        if not client_id or not client_secret:
            return ConnectionTestResult(False, "Client ID and client secret are required")
        if len(client_id) < MIN_CREDENTIAL_LENGTH or len(client_secret) < MIN_CREDENTIAL_LENGTH:
            return ConnectionTestResult(False, "Invalid PayPal credentials format")

        try:
            with self._client() as client:
                self._access_token(client)
        except httpx.RequestError as exc:
            return ConnectionTestResult(False, f"PayPal request error: {exc}")
        except PaymentProviderError as exc:
            return ConnectionTestResult(False, exc.message)
        return ConnectionTestResult(True)

    def process_payment(self, request: PaymentRequest) -> PaymentResult:
        if request.payment_method_type == "terminal":
            raise self.unsupported("Terminal checkout")
        self._client_credentials()

        order_body = {
            "intent": "CAPTURE",
            "purchase_units": [{
                "reference_id": request.invoice_id,
                "custom_id": request.invoice_id,
                "description": request.description or f"Payment for invoice {request.invoice_id}",
                "amount": {"currency_code": request.currency, "value": money_value(request.amount)},
            }],
        }
        headers = {"Prefer": "return=representation"}
        if request.idempotency_key:
            headers["PayPal-Request-Id"] = request.idempotency_key

        order = self._call("payment", "POST", "/v2/checkout/orders", json=order_body, headers=headers)
        order_id = order.get("id")
        if not order_id:
            raise PaymentProviderError("PayPal payment failed: No order returned", provider=self.provider)

        captured = self._call("payment", "POST", f"/v2/checkout/orders/{order_id}/capture", json={})
        captures = []
        for unit in captured.get("purchase_units") or []:
            captures.extend((unit.get("payments") or {}).get("captures") or [])
        capture = captures[0] if captures else {}

        return PaymentResult(
            transaction_id=capture.get("id") or order_id,
            status=capture_status(capture.get("status") or captured.get("status")),
            payment_method="paypal",
            amount=request.amount,
            currency=request.currency,
            metadata={**request.metadata, "invoiceId": request.invoice_id, "orderId": order_id},
        )

    def refund_payment(self, request: RefundRequest) -> RefundResult:
        self._client_credentials()
        capture_path = f"/v2/payments/captures/{request.transaction_id}"

        capture = self._call("refund", "GET", capture_path)
        currency = (capture.get("amount") or {}).get("currency_code") or "USD"

        body = {"note_to_payer": request.reason or "Refund request"}
        if request.amount:
            body["amount"] = {"currency_code": currency, "value": money_value(request.amount)}

        refund = self._call("refund", "POST", f"{capture_path}/refund", json=body)
        if not refund.get("id"):
            raise PaymentProviderError("PayPal refund failed: No refund returned", provider=self.provider)

        money = refund.get("amount") or {}
        if money.get("value"):
            amount = Decimal(money["value"])
        else:
            amount = Decimal(str(request.amount or 0))
        return RefundResult(
            refund_id=refund["id"],
            status=capture_status(refund.get("status")),
            amount=amount,
            currency=(money.get("currency_code") or currency).upper(),
            transaction_id=request.transaction_id,
        )
