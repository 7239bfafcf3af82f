from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


INVOICE_STATUSES = ("draft", "issued", "paid", "overdue", "cancelled")


class Customer(db.Model):
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "email": self.email,
        }


class Invoice(db.Model):
    """
    Customer invoice.

    PAYMENT: payment_method / payment_reference are set when the invoice is
    marked paid (synchronously after a charge, or from a processor webhook).
    Refunds are annotations on a paid invoice; they never move it back out
    of "paid".
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("company_id", "invoice_number", name="uq_invoices_company_number"),
        db.Index("ix_invoices_company_status", "company_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    invoice_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="draft")
    total_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    paid_date = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_method = db.Column(db.String(100), nullable=True)
    payment_reference = db.Column(db.String(255), nullable=True, index=True)

    refund_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    refund_date = db.Column(db.DateTime(timezone=True), nullable=True)
    refund_reason = db.Column(db.String(255), nullable=True)
    refund_method = db.Column(db.String(32), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    customer = db.relationship("Customer")

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "customer_id": self.customer_id,
            "invoice_number": self.invoice_number,
            "status": self.status,
            "total_amount": float(self.total_amount or 0),
            "paid_date": to_utc_z(self.paid_date),
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "refund_amount": float(self.refund_amount or 0),
            "refund_date": to_utc_z(self.refund_date),
            "refund_reason": self.refund_reason,
            "refund_method": self.refund_method,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
