# Overview: Per-location subscription billing: amount calculation, autopay lifecycle, monthly ledger.

"""
Subscription billing.

WHY: Each company pays a flat monthly amount per billable (non-free)
location. The card is stored with the payment processor, which runs the
actual recurring charge; this module keeps the local subscription record
and writes one SubscriptionPayment row per billing period for the
processor's webhook to settle later.

IDEMPOTENCY:
- (subscription_id, billing_period_start) is unique in the database.
- process_subscription_billing checks for an existing row first and then
  inserts behind the constraint, so overlapping scheduler runs resolve to
  "already billed" instead of a second charge record.
- process_subscription_billing only flushes; process_monthly_billing
  commits once per subscription so one failure cannot undo another's row.

KNOWN GAPS (logged, not compensated):
- The processor call can succeed and the local write fail; nothing
  reconciles that automatically.
- Toggling a location's free flag changes the local amount only; the
  processor's subscription keeps charging the old plan until updated by
  hand.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import case, func

from ..errors import BadRequestError, ConfigurationError, NotFoundError, PaymentError
from ..extensions import db
from ..integrations.payment import PaymentAdapter, PaymentProviderError, get_payment_adapter
from ..integrations.payment.types import CustomerRequest, SubscriptionRequest, SubscriptionUpdate
from ..models import Location, Subscription, SubscriptionPayment
from ..time_utils import month_bounds, now_ms, utcnow
from . import credential_service
from .concurrency import commit_with_retry, insert_unless_conflict
from .tenant_service import find_location, first_location_id, require_company

logger = logging.getLogger(__name__)

BILLABLE_SUBSCRIPTION_STATUSES = ("active", "pending")
MANUAL_PAYMENT_REASON = "Autopay not enabled"


@dataclass
class MonthlyAmount:
    amount: Decimal
    location_count: int
    free_location_count: int

    def to_dict(self) -> dict:
        return {
            "amount": float(self.amount),
            "locationCount": self.location_count,
            "freeLocationCount": self.free_location_count,
        }


def unit_price() -> Decimal:
    return Decimal(str(current_app.config.get("BILLING_AMOUNT_PER_LOCATION", "50")))


def calculate_monthly_amount(company_id: int) -> MonthlyAmount:
    """
    Billable locations x unit price, recomputed from the locations table.

    Soft-deleted locations are excluded from both counts.
    """
    billable, free = db.session.query(
        func.coalesce(func.sum(case((Location.is_free.is_(False), 1), else_=0)), 0),
        func.coalesce(func.sum(case((Location.is_free.is_(True), 1), else_=0)), 0),
    ).filter(
        Location.company_id == company_id,
        Location.deleted_at.is_(None),
    ).one()

    billable = int(billable or 0)
    return MonthlyAmount(
        amount=(unit_price() * billable).quantize(Decimal("0.01")),
        location_count=billable,
        free_location_count=int(free or 0),
    )


def get_subscription(company_id: int) -> Subscription | None:
    return db.session.query(Subscription).filter(
        Subscription.company_id == company_id,
        Subscription.deleted_at.is_(None),
    ).first()


def external_status(status: str | None) -> str:
    """Processor subscription status to the local vocabulary."""
    status = (status or "").upper()
    if status == "ACTIVE":
        return "active"
    if status in ("CANCELED", "DEACTIVATED"):
        return "cancelled"
    return "pending"


def _payment_adapter(company_id: int) -> PaymentAdapter:
    config = credential_service.get_integration(company_id, "payment")
    if not config or not config.enabled:
        raise ConfigurationError("Payment integration not configured")
    return get_payment_adapter(config)


def _plan_id(company) -> str:
    plan_id = current_app.config.get("SQUARE_SUBSCRIPTION_PLAN_ID") or (company.settings or {}).get("squarePlanId")
    if not plan_id or not isinstance(plan_id, str):
        raise ConfigurationError(
            "Subscription plan ID not configured. Create a subscription plan with the payment "
            "processor and set SQUARE_SUBSCRIPTION_PLAN_ID."
        )
    return plan_id


def create_or_update_subscription(company_id: int, card_token: str) -> Subscription:
    """
    Store a card with the processor and attach it to the company's subscription.

    Creates the processor customer and subscription on first use; later
    calls only swap the card. Caller commits.

    Raises:
        ConfigurationError: no enabled payment integration, no billable
            locations, no billing location id, or no plan id.
        PaymentError: the processor rejected one of the calls.
    """
    if not card_token:
        raise BadRequestError("cardToken is required")

    adapter = _payment_adapter(company_id)
    company = require_company(company_id)

    amount = calculate_monthly_amount(company_id)
    if amount.amount == 0:
        raise ConfigurationError("No billable locations found")

    existing = get_subscription(company_id)

    try:
        if existing and existing.external_customer_id:
            customer_id = existing.external_customer_id
        else:
            email = company.email or f"{'-'.join(company.name.lower().split())}@example.com"
            customer_id = adapter.create_customer(
                CustomerRequest(email=email, company_name=company.name)
            ).customer_id

        card_id = adapter.save_card_for_customer(customer_id, card_token)

        location_handle = adapter.credentials().get("locationId")
        if not location_handle:
            raise ConfigurationError("Billing location ID not configured for the payment integration")
        plan_id = _plan_id(company)

        if existing and existing.external_subscription_id:
            adapter.update_subscription(SubscriptionUpdate(
                subscription_id=existing.external_subscription_id,
                card_id=card_id,
            ))
            existing.external_customer_id = customer_id
            existing.external_card_id = card_id
            existing.autopay_enabled = True
            existing.monthly_amount = amount.amount
            db.session.flush()
            logger.info("Updated card on subscription %s for company %s", existing.id, company_id)
            return existing

        created = adapter.create_subscription(SubscriptionRequest(
            customer_id=customer_id,
            card_id=card_id,
            plan_id=plan_id,
            location_id=location_handle,
            idempotency_key=f"{company_id}-{now_ms()}",
        ))
    except PaymentProviderError as exc:
        raise PaymentError(f"Autopay setup failed: {exc.message}") from exc

    subscription = existing or Subscription(
        company_id=company_id,
        billing_day=int(current_app.config.get("BILLING_DAY_OF_MONTH", 1)),
    )
    subscription.external_subscription_id = created.subscription_id
    subscription.external_customer_id = customer_id
    subscription.external_card_id = card_id
    subscription.status = external_status(created.status)
    subscription.monthly_amount = amount.amount
    subscription.autopay_enabled = True
    db.session.add(subscription)
    db.session.flush()
    logger.info(
        "Created subscription %s for company %s (external %s)",
        subscription.id, company_id, created.subscription_id,
    )
    return subscription


def enable_autopay(company_id: int, card_token: str) -> Subscription:
    return create_or_update_subscription(company_id, card_token)


def disable_autopay(company_id: int) -> Subscription:
    """
    Turn autopay off locally.

    The processor-side subscription is left running; cancelling it there is
    a manual step.
    """
    subscription = get_subscription(company_id)
    if not subscription:
        raise NotFoundError("Subscription not found")
    subscription.autopay_enabled = False
    db.session.flush()
    return subscription


def toggle_location_billing(location_id: int, company_id: int, is_free: bool) -> MonthlyAmount:
    """Flip a location's free flag and refresh the cached subscription amount."""
    location = find_location(location_id, company_id)
    if not location:
        raise NotFoundError("Location not found")
    if not is_free and location.id == first_location_id(company_id):
        raise BadRequestError("The first location is always free")

    location.is_free = bool(is_free)
    db.session.flush()

    amount = calculate_monthly_amount(company_id)
    subscription = get_subscription(company_id)
    if subscription:
        subscription.monthly_amount = amount.amount
        db.session.flush()
        if subscription.external_subscription_id:
            config = credential_service.get_integration(company_id, "payment")
            if config and config.enabled:
                logger.warning(
                    "Subscription amount changed for company %s to %s; processor subscription %s may need manual update",
                    company_id, amount.amount, subscription.external_subscription_id,
                )
    return amount


def get_billing_history(company_id: int) -> list[SubscriptionPayment]:
    return db.session.query(SubscriptionPayment).filter(
        SubscriptionPayment.company_id == company_id,
    ).order_by(SubscriptionPayment.created_at.desc(), SubscriptionPayment.id.desc()).all()


def handle_payment_failure(company_id: int, reason: str) -> None:
    """Mark the subscription past_due. Access is not restricted. Caller commits."""
    subscription = get_subscription(company_id)
    if not subscription:
        return
    subscription.status = "past_due"
    db.session.flush()
    logger.warning("Payment failure for company %s: %s", company_id, reason)


def billing_period(now: datetime) -> tuple[datetime, datetime]:
    return month_bounds(now)


def _period_already_billed(subscription_id: int, period_start: datetime) -> bool:
    return db.session.query(SubscriptionPayment.id).filter(
        SubscriptionPayment.subscription_id == subscription_id,
        SubscriptionPayment.billing_period_start == period_start,
    ).first() is not None


def process_subscription_billing(subscription: Subscription, now: datetime | None = None) -> SubscriptionPayment | None:
    """
    Write this month's ledger row for one subscription.

    Returns the new row, or None when the period was already billed. With
    autopay and a processor subscription the row waits for the processor's
    charge webhook; otherwise it records that manual payment is required.
    """
    now = now or utcnow()
    amount = calculate_monthly_amount(subscription.company_id)
    period_start, period_end = billing_period(now)

    if _period_already_billed(subscription.id, period_start):
        logger.info(
            "Payment already processed for subscription %s for period %s",
            subscription.id, period_start.isoformat(),
        )
        return None

    autopay = bool(subscription.autopay_enabled and subscription.external_subscription_id)
    subscription_id = subscription.id
    payment = SubscriptionPayment(
        subscription_id=subscription_id,
        company_id=subscription.company_id,
        amount=amount.amount,
        status="pending",
        billing_period_start=period_start,
        billing_period_end=period_end,
        location_count=amount.location_count,
        failure_reason=None if autopay else MANUAL_PAYMENT_REASON,
    )
    if not insert_unless_conflict(payment):
        logger.info(
            "Payment already processed for subscription %s for period %s",
            subscription_id, period_start.isoformat(),
        )
        return None

    if autopay:
        logger.info("Created pending payment record for subscription %s", subscription_id)
    else:
        logger.warning("Manual payment required for subscription %s - autopay not enabled", subscription_id)
    return payment


def process_monthly_billing(now: datetime | None = None) -> int:
    """
    Daily billing pass. Returns the number of ledger rows written.

    Runs only when today is the configured billing day, and then only for
    subscriptions whose own billing_day is today. One company's failure is
    logged and recorded as past_due without stopping the others.
    """
    now = now or utcnow()
    today = now.day
    if today != int(current_app.config.get("BILLING_DAY_OF_MONTH", 1)):
        logger.debug("Day %s is not the billing day, skipping", today)
        return 0

    due = db.session.query(Subscription.id, Subscription.company_id).filter(
        Subscription.status.in_(BILLABLE_SUBSCRIPTION_STATUSES),
        Subscription.billing_day == today,
        Subscription.deleted_at.is_(None),
    ).order_by(Subscription.id).all()

    logger.info("Processing billing for %s subscriptions", len(due))

    created = 0
    for subscription_id, company_id in due:
        try:
            subscription = db.session.get(Subscription, subscription_id)
            if process_subscription_billing(subscription, now=now):
                created += 1
            commit_with_retry()
        except Exception as exc:
            db.session.rollback()
            logger.exception("Failed to process billing for subscription %s", subscription_id)
            try:
                handle_payment_failure(company_id, str(exc) or exc.__class__.__name__)
                commit_with_retry()
            except Exception:
                db.session.rollback()
                logger.exception("Could not record billing failure for company %s", company_id)
    return created
