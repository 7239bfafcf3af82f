# Overview: Flask API routes for processor payments, refunds, terminal checkouts and webhooks.

"""
Payment Processing API Routes

WHY: Let staff charge and refund invoices through the company's own
payment processor account, and let the processor report back.

DESIGN:
- Charges go through the company's configured integration (Square/Stripe/PayPal)
- A succeeded charge marks the invoice paid with the processor transaction id
- A pending charge (terminal) is settled later by the webhook
- Refunds are annotated on the invoice; if that annotation fails the refund
  stands and the inconsistency is logged for manual review

WEBHOOKS:
- POST /api/payments/webhook/<provider> is unauthenticated and ALWAYS
  answers 200 so the processor does not retry-storm on our errors
"""

from decimal import Decimal, InvalidOperation

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..errors import AppError, BadRequestError, NotFoundError, PaymentError
from ..extensions import db
from ..services import invoice_service, payment_service, webhook_service
from ..services.concurrency import commit_with_retry


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")

NOT_CONFIGURED = "Payment integration is not configured. Please configure a payment provider in settings."

# Largest value the Numeric(10, 2) money columns hold.
MAX_AMOUNT = Decimal("99999999.99")


def parse_amount(value) -> Decimal | None:
    """Optional positive amount from a JSON body."""
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise BadRequestError("Amount must be a positive number")
    if not amount.is_finite() or amount < Decimal("0.01") or amount > MAX_AMOUNT:
        raise BadRequestError("Amount must be a positive number")
    return amount


def _required(data: dict, key: str, label: str) -> str:
    value = data.get(key)
    if value is None or str(value).strip() == "":
        raise BadRequestError(f"{label} is required")
    return str(value).strip()


def _invoice_id(data: dict) -> int:
    raw = _required(data, "invoiceId", "Invoice ID")
    try:
        return int(raw)
    except ValueError:
        raise BadRequestError("Invoice ID must be an integer")


def _payable_invoice(invoice_id: int, company_id: int):
    if not payment_service.is_payment_configured(company_id):
        raise BadRequestError(NOT_CONFIGURED)
    invoice = invoice_service.find_by_id(invoice_id, company_id)
    if not invoice:
        raise NotFoundError("Invoice not found")
    if invoice.status == "paid":
        raise BadRequestError("Invoice is already paid")
    return invoice


# =============================================================================
# CHARGES
# =============================================================================

@payments_bp.post("/process")
@require_tenant
def process_payment_route():
    """
    Charge an invoice.

    Request body:
    {
        "invoiceId": 12,
        "amount": 25.00,            (optional, defaults to invoice total)
        "sourceId": "cnon:...",     (card token from the processor's web SDK)
        "paymentMethod": "card",    (optional)
        "paymentMethodType": "online" | "terminal",
        "deviceId": "...",          (terminal only)
        "idempotencyKey": "..."     (optional, max 45 chars)
    }

    Returns:
        200: {"success": true, "data": {transactionId, status, amount, currency}}
        400: Not configured, already paid, invalid input, processor failure
        404: Invoice not found
    """
    try:
        data = request.get_json(silent=True) or {}
        invoice_id = _invoice_id(data)
        amount = parse_amount(data.get("amount"))

        idempotency_key = data.get("idempotencyKey")
        if idempotency_key is not None and not isinstance(idempotency_key, str):
            raise BadRequestError("Idempotency key must be a string")
        if idempotency_key and len(idempotency_key) > 45:
            raise BadRequestError("Idempotency key must not exceed 45 characters")

        invoice = _payable_invoice(invoice_id, g.company_id)

        result = payment_service.process_payment(
            g.company_id,
            invoice,
            amount=amount,
            payment_method=data.get("paymentMethod"),
            source_id=data.get("sourceId"),
            idempotency_key=idempotency_key,
            payment_method_type=data.get("paymentMethodType") or "online",
            device_id=data.get("deviceId"),
        )

        if result.status == "failed":
            raise PaymentError("Payment failed: the processor declined the payment")

        if result.status == "succeeded":
            invoice_service.mark_invoice_as_paid(
                invoice.id,
                payment_method=result.payment_method,
                payment_reference=result.transaction_id,
                company_id=g.company_id,
            )
            commit_with_retry()

        return jsonify({"success": True, "data": result.to_dict()})

    except AppError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Payment processing error")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/refund")
@require_tenant
def refund_payment_route():
    """
    Refund a processor transaction (full when amount is omitted).

    Request body:
    {
        "transactionId": "...",
        "amount": 10.00,   (optional)
        "reason": "..."    (optional, max 500 chars)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        transaction_id = _required(data, "transactionId", "Transaction ID")
        amount = parse_amount(data.get("amount"))
        reason = data.get("reason")
        if reason is not None and not isinstance(reason, str):
            raise BadRequestError("Reason must be a string")
        if reason and len(reason) > 500:
            raise BadRequestError("Reason must not exceed 500 characters")

        if not payment_service.is_payment_configured(g.company_id):
            raise BadRequestError("Payment integration is not configured")

        result = payment_service.refund_payment(g.company_id, transaction_id, amount=amount, reason=reason)

        if result.status in ("succeeded", "pending"):
            try:
                invoice_service.record_refund(transaction_id, result.amount, g.company_id, result.refund_id)
                commit_with_retry()
                current_app.logger.info(
                    "Refund %s recorded on invoice for transaction %s", result.refund_id, transaction_id
                )
            except Exception:
                # The processor already refunded; leave it and flag for manual review.
                db.session.rollback()
                current_app.logger.exception(
                    "Refund %s processed but not recorded on invoice for transaction %s",
                    result.refund_id, transaction_id,
                )

        return jsonify({"success": True, "data": result.to_dict()})

    except AppError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Refund processing error")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# TERMINAL CHECKOUTS
# =============================================================================

@payments_bp.post("/terminal/checkout")
@require_tenant
def create_terminal_checkout_route():
    """
    Send an invoice to a card terminal for in-person payment.

    Request body: {"invoiceId": 12, "deviceId": "...", "amount": 25.00 (optional)}
    """
    try:
        data = request.get_json(silent=True) or {}
        invoice_id = _invoice_id(data)
        device_id = _required(data, "deviceId", "Device ID")
        amount = parse_amount(data.get("amount"))

        invoice = _payable_invoice(invoice_id, g.company_id)
        result = payment_service.create_terminal_checkout(
            g.company_id, invoice, device_id=device_id, amount=amount
        )
        return jsonify({"success": True, "data": result.to_dict()})

    except AppError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Terminal checkout creation error")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/terminal/checkout/<checkout_id>")
@require_tenant
def get_terminal_checkout_route(checkout_id: str):
    """Poll a terminal checkout's status."""
    try:
        if not payment_service.is_payment_configured(g.company_id):
            raise BadRequestError("Payment integration is not configured")
        result = payment_service.get_terminal_checkout_status(g.company_id, checkout_id)
        return jsonify({"success": True, "data": result.to_dict()})

    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Terminal checkout status error")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# WEBHOOKS
# =============================================================================

@payments_bp.post("/webhook/<provider>")
def webhook_route(provider: str):
    """
    Processor callback. No tenant context: the invoice id in the event
    identifies the company.

    Always 200: {"received": true} or {"received": true, "error": "..."}
    """
    try:
        body = webhook_service.handle_webhook(
            provider, request.get_data(), request.headers, url=request.url
        )
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Error processing webhook from %s", provider)
        body = {"received": True, "error": "Processing failed"}
    return jsonify(body), 200
