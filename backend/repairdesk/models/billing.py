from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


SUBSCRIPTION_STATUSES = ("none", "pending", "active", "past_due", "cancelled")
SUBSCRIPTION_PAYMENT_STATUSES = ("pending", "succeeded", "failed")


class Subscription(db.Model):
    """
    Per-company recurring billing agreement with the payment processor.

    INVARIANTS:
    - At most one subscription per company (unique company_id).
    - Never hard-deleted; status moves to "cancelled" instead.
    - monthly_amount is a cached copy of the location billing calculation.
    - billing_day is fixed when the subscription is created.
    """
    __tablename__ = "subscriptions"
    __table_args__ = (
        db.UniqueConstraint("company_id", name="uq_subscriptions_company"),
        db.Index("ix_subscriptions_status_billing_day", "status", "billing_day"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False)

    external_subscription_id = db.Column(db.String(255), nullable=True, index=True)
    external_customer_id = db.Column(db.String(255), nullable=True)
    external_card_id = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending")
    monthly_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    billing_day = db.Column(db.Integer, nullable=False, default=1)
    autopay_enabled = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    company = db.relationship("Company", backref=db.backref("subscription", uselist=False, lazy=True))

    def __repr__(self) -> str:
        return f"<Subscription id={self.id} company_id={self.company_id} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "external_subscription_id": self.external_subscription_id,
            "external_customer_id": self.external_customer_id,
            "external_card_id": self.external_card_id,
            "status": self.status,
            "monthly_amount": float(self.monthly_amount or 0),
            "billing_day": self.billing_day,
            "autopay_enabled": self.autopay_enabled,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class SubscriptionPayment(db.Model):
    """
    Append-only billing ledger: one row per subscription per billing period.

    IDEMPOTENCY: (subscription_id, billing_period_start) is unique, so a
    re-run of the billing job for the same month can never create a second
    row; the conflicting insert is treated as "already billed".
    """
    __tablename__ = "subscription_payments"
    __table_args__ = (
        db.UniqueConstraint(
            "subscription_id", "billing_period_start",
            name="uq_subscription_payments_subscription_period",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    subscription_id = db.Column(db.Integer, db.ForeignKey("subscriptions.id"), nullable=False, index=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    external_payment_id = db.Column(db.String(255), nullable=True)

    amount = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    billing_period_start = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    billing_period_end = db.Column(db.DateTime(timezone=True), nullable=False)
    location_count = db.Column(db.Integer, nullable=False, default=0)
    failure_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    subscription = db.relationship("Subscription", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "subscription_id": self.subscription_id,
            "company_id": self.company_id,
            "external_payment_id": self.external_payment_id,
            "amount": float(self.amount or 0),
            "status": self.status,
            "billing_period_start": to_utc_z(self.billing_period_start),
            "billing_period_end": to_utc_z(self.billing_period_end),
            "location_count": self.location_count,
            "failure_reason": self.failure_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
