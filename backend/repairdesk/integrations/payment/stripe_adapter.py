# Overview: Stripe adapter (charges and refunds through PaymentIntents).

from __future__ import annotations

import logging

import stripe

from .base import PaymentAdapter
from .types import (
    ConnectionTestResult,
    PaymentProviderError,
    PaymentRequest,
    PaymentResult,
    RefundRequest,
    RefundResult,
    from_minor_units,
    to_minor_units,
)

logger = logging.getLogger(__name__)

STRIPE_API_VERSION = "2023-10-16"
STRIPE_REFUND_REASONS = ("duplicate", "fraudulent", "requested_by_customer")


def intent_status(status: str | None) -> str:
    if status == "succeeded":
        return "succeeded"
    if status in ("requires_payment_method", "canceled"):
        return "failed"
    return "pending"


class StripeAdapter(PaymentAdapter):
    """
    Stripe via the official SDK.

    The API key is passed per call rather than set on the module, since one
    process serves many companies with different keys.
    """

    provider = "stripe"
    display_name = "Stripe"

    def _api_key(self) -> str:
        api_key = self.credentials().get("apiKey")
        if not api_key:
            raise PaymentProviderError("Stripe API key is required", provider=self.provider)
        return api_key

    def _options(self, **extra) -> dict:
        return {"api_key": self._api_key(), "stripe_version": STRIPE_API_VERSION, **extra}

    def test_connection(self) -> ConnectionTestResult:
        api_key = self.credentials().get("apiKey")
        if not api_key:
            return ConnectionTestResult(False, "API key is required")
        if not api_key.startswith("sk_"):
            return ConnectionTestResult(False, "Invalid Stripe API key format. Must start with sk_")
        try:
            stripe.Account.retrieve(api_key=api_key, stripe_version=STRIPE_API_VERSION)
        except stripe.StripeError as exc:
            logger.error("Stripe connection test error: %s", exc)
            return ConnectionTestResult(False, f"Stripe API error: {exc.user_message or exc}")
        return ConnectionTestResult(True)

    def process_payment(self, request: PaymentRequest) -> PaymentResult:
        if request.payment_method_type == "terminal":
            raise self.unsupported("Terminal checkout")

        metadata = {"invoiceId": request.invoice_id, "customerId": request.customer_id, **request.metadata}
        params = {
            "amount": to_minor_units(request.amount),
            "currency": request.currency.lower(),
            "payment_method": request.source_id or request.payment_method,
            "confirm": True,
            "description": request.description or f"Payment for invoice {request.invoice_id}",
            "metadata": metadata,
        }
        if request.idempotency_key:
            options = self._options(idempotency_key=request.idempotency_key)
        else:
            options = self._options()

        try:
            intent = stripe.PaymentIntent.create(**params, **options)
        except stripe.StripeError as exc:
            logger.error("Stripe processPayment error: %s", exc)
            raise PaymentProviderError(
                f"Stripe payment failed: {exc.user_message or exc}", provider=self.provider, code=exc.code
            ) from exc

        fee = None
        application_fee = getattr(intent, "application_fee_amount", None)
        if application_fee:
            fee = from_minor_units(application_fee)
        method_types = getattr(intent, "payment_method_types", None) or ["card"]
        return PaymentResult(
            transaction_id=intent.id,
            status=intent_status(getattr(intent, "status", None)),
            payment_method=method_types[0],
            amount=request.amount,
            currency=request.currency,
            fee=fee,
            metadata={"invoiceId": request.invoice_id, "customerId": request.customer_id},
        )

    def refund_payment(self, request: RefundRequest) -> RefundResult:
        params = {"payment_intent": request.transaction_id}
        if request.amount:
            params["amount"] = to_minor_units(request.amount)
        metadata = dict(request.metadata)
        if request.reason in STRIPE_REFUND_REASONS:
            params["reason"] = request.reason
        elif request.reason:
            metadata["reason"] = request.reason
        if metadata:
            params["metadata"] = metadata

        try:
            stripe.PaymentIntent.retrieve(request.transaction_id, **self._options())
            refund = stripe.Refund.create(**params, **self._options())
        except stripe.StripeError as exc:
            logger.error("Stripe refundPayment error: %s", exc)
            raise PaymentProviderError(
                f"Stripe refund failed: {exc.user_message or exc}", provider=self.provider, code=exc.code
            ) from exc

        status = getattr(refund, "status", None)
        return RefundResult(
            refund_id=refund.id,
            status=status if status in ("succeeded", "pending") else "failed",
            amount=from_minor_units(getattr(refund, "amount", 0)),
            currency=(getattr(refund, "currency", None) or "usd").upper(),
            transaction_id=request.transaction_id,
        )
