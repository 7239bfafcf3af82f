# Overview: Charges, refunds and terminal checkouts against the company's configured processor.

"""
Payment gateway.

Resolves the company's payment integration once per call, hands the
normalized request to that provider's adapter and converts adapter
failures into PaymentError (HTTP 400). Nothing here retries: a failed
charge is surfaced and the user re-submits.

Invoice bookkeeping (mark paid, record refund) stays with the caller so the
processor call and the local write are visibly separate steps.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from flask import current_app

from ..errors import ConfigurationError, PaymentError
from ..integrations.payment import PaymentAdapter, PaymentProviderError, get_payment_adapter
from ..integrations.payment.types import (
    PaymentRequest,
    PaymentResult,
    RefundRequest,
    RefundResult,
    TerminalCheckoutRequest,
    TerminalCheckoutResult,
)
from ..models import Invoice
from . import credential_service
from .tenant_service import get_company

logger = logging.getLogger(__name__)


def default_currency() -> str:
    return current_app.config.get("DEFAULT_CURRENCY", "USD")


def is_payment_configured(company_id: int) -> bool:
    """True when the company has an enabled payment integration. Never raises."""
    try:
        config = credential_service.get_integration(company_id, "payment")
    except Exception:
        logger.exception("Error checking payment configuration for company %s", company_id)
        return False
    return config is not None and config.enabled


def get_currency(company_id: int) -> str:
    """Company currency setting, falling back to DEFAULT_CURRENCY."""
    company = get_company(company_id)
    if not company:
        return default_currency()
    return (company.settings or {}).get("currency") or default_currency()


def get_adapter(company_id: int) -> PaymentAdapter:
    config = credential_service.get_integration(company_id, "payment")
    if not config:
        raise ConfigurationError("Payment integration not configured")
    if not config.enabled:
        raise ConfigurationError("Payment integration is disabled")
    try:
        return get_payment_adapter(config)
    except PaymentProviderError as exc:
        raise ConfigurationError(exc.message) from exc


def process_payment(
    company_id: int,
    invoice: Invoice,
    *,
    amount=None,
    payment_method: str | None = None,
    source_id: str | None = None,
    idempotency_key: str | None = None,
    payment_method_type: str = "online",
    device_id: str | None = None,
) -> PaymentResult:
    """Charge `amount` (default: invoice total) for an invoice."""
    adapter = get_adapter(company_id)
    request = PaymentRequest(
        amount=Decimal(str(amount)) if amount else Decimal(invoice.total_amount),
        currency=get_currency(company_id),
        invoice_id=str(invoice.id),
        customer_id=str(invoice.customer_id),
        payment_method=payment_method or "card",
        source_id=source_id,
        idempotency_key=idempotency_key,
        description=f"Payment for invoice {invoice.invoice_number}",
        metadata={"invoiceNumber": invoice.invoice_number},
        payment_method_type=payment_method_type or "online",
        device_id=device_id,
    )
    try:
        result = adapter.process_payment(request)
    except PaymentProviderError as exc:
        logger.warning("Payment failed for invoice %s (company %s): %s", invoice.id, company_id, exc.message)
        raise PaymentError(f"Payment failed: {exc.message}") from exc
    logger.info(
        "Payment %s for invoice %s via %s: %s",
        result.transaction_id, invoice.id, adapter.provider, result.status,
    )
    return result


def refund_payment(company_id: int, transaction_id: str, *, amount=None, reason: str | None = None) -> RefundResult:
    """Refund all (amount=None) or part of a processor transaction."""
    adapter = get_adapter(company_id)
    request = RefundRequest(
        transaction_id=transaction_id,
        amount=Decimal(str(amount)) if amount else None,
        reason=reason,
    )
    try:
        result = adapter.refund_payment(request)
    except PaymentProviderError as exc:
        logger.warning("Refund failed for transaction %s (company %s): %s", transaction_id, company_id, exc.message)
        raise PaymentError(f"Refund failed: {exc.message}") from exc
    logger.info("Refund %s for transaction %s: %s", result.refund_id, transaction_id, result.status)
    return result


def create_terminal_checkout(company_id: int, invoice: Invoice, *, device_id: str, amount=None) -> TerminalCheckoutResult:
    """Push an in-person checkout for the invoice to a card terminal."""
    adapter = get_adapter(company_id)
    request = TerminalCheckoutRequest(
        amount=Decimal(str(amount)) if amount else Decimal(invoice.total_amount),
        currency=get_currency(company_id),
        invoice_id=str(invoice.id),
        customer_id=str(invoice.customer_id),
        device_id=device_id,
        description=f"Payment for invoice {invoice.invoice_number}",
        metadata={"invoiceNumber": invoice.invoice_number},
    )
    try:
        return adapter.create_terminal_checkout(request)
    except PaymentProviderError as exc:
        logger.warning("Terminal checkout failed for invoice %s: %s", invoice.id, exc.message)
        raise PaymentError(f"Terminal checkout failed: {exc.message}") from exc


def get_terminal_checkout_status(company_id: int, checkout_id: str) -> TerminalCheckoutResult:
    adapter = get_adapter(company_id)
    try:
        return adapter.get_terminal_checkout_status(checkout_id)
    except PaymentProviderError as exc:
        raise PaymentError(f"Failed to get checkout status: {exc.message}") from exc
