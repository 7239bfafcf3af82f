# Overview: Invoice lookups and payment/refund settlement.

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from ..errors import NotFoundError
from ..extensions import db
from ..models import Invoice
from ..time_utils import utcnow

logger = logging.getLogger(__name__)

REFUND_METHODS = ("square", "stripe", "paypal")


def find_by_id(invoice_id: int, company_id: int) -> Invoice | None:
    return db.session.query(Invoice).filter(
        Invoice.id == invoice_id,
        Invoice.company_id == company_id,
        Invoice.deleted_at.is_(None),
    ).first()


def find_by_id_unscoped(invoice_id) -> Invoice | None:
    """
    Lookup without a company filter.

    Only for processor callbacks, where the invoice id is the thing that
    tells us which company the event belongs to.
    """
    try:
        invoice_id = int(invoice_id)
    except (TypeError, ValueError):
        return None
    return db.session.query(Invoice).filter(
        Invoice.id == invoice_id,
        Invoice.deleted_at.is_(None),
    ).first()


def find_by_payment_reference(transaction_id: str, company_id: int) -> Invoice | None:
    return db.session.query(Invoice).filter(
        Invoice.payment_reference == transaction_id,
        Invoice.company_id == company_id,
        Invoice.deleted_at.is_(None),
    ).first()


def mark_invoice_as_paid(
    invoice_id: int,
    *,
    payment_method: str,
    payment_reference: str | None,
    company_id: int,
    paid_date: datetime | None = None,
    notes: str | None = None,
) -> Invoice:
    """
    Set an invoice to paid.

    Every field is overwritten rather than accumulated, so applying the same
    payment twice (a replayed webhook) leaves the invoice as it was. Caller
    commits.
    """
    invoice = find_by_id(invoice_id, company_id)
    if not invoice:
        raise NotFoundError("Invoice not found")

    invoice.status = "paid"
    invoice.paid_date = paid_date or utcnow()
    invoice.payment_method = payment_method
    invoice.payment_reference = payment_reference or None
    if notes:
        invoice.notes = notes
    db.session.flush()
    return invoice


def _refund_method(payment_method: str | None) -> str:
    lowered = (payment_method or "").lower()
    for method in REFUND_METHODS:
        if method in lowered:
            return method
    return "manual"


def record_refund(
    transaction_id: str,
    amount,
    company_id: int,
    refund_id: str | None = None,
) -> Invoice:
    """
    Annotate the invoice paid by `transaction_id` with a processor refund.

    Refunds accumulate in refund_amount; the invoice stays "paid" even when
    fully refunded. Caller commits.
    """
    invoice = find_by_payment_reference(transaction_id, company_id)
    if not invoice:
        raise NotFoundError(f"Invoice not found for transaction {transaction_id}")

    invoice.refund_amount = Decimal(invoice.refund_amount or 0) + Decimal(str(amount))
    invoice.refund_date = utcnow()
    invoice.refund_reason = f"Payment provider refund: {refund_id}" if refund_id else None
    invoice.refund_method = _refund_method(invoice.payment_method)
    db.session.flush()
    return invoice
