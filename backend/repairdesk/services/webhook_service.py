# Overview: Reconciles processor webhook callbacks against invoices and the billing ledger.

"""
Webhook reconciliation.

The processor calls us without authentication and retries anything that is
not a 2xx, so handle_webhook() always produces a 200-shaped body:
{"received": true} or {"received": true, "error": "..."}. Failures are
logged and absorbed here.

Every event is safe to replay:
- an invoice already paid with the same reference is left untouched;
- a billing ledger row already settled is left untouched.

Recognized events
- Square payment completed: data.object.payment {id, reference_id, status}
- Square terminal checkout completed: data.object.checkout {payment_ids, reference_id, status}
- Square subscription charge: type invoice.payment_made / invoice.scheduled_charge_failed,
  data.object.invoice.subscription_id
- Stripe payment_intent.succeeded: data.object {id, metadata.invoiceId}
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass

import stripe
from flask import current_app

from ..extensions import db
from ..models import Subscription, SubscriptionPayment
from . import billing_service, invoice_service
from .concurrency import commit_with_retry

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("square", "stripe")
SQUARE_SIGNATURE_HEADER = "x-square-hmacsha256-signature"
STRIPE_SIGNATURE_HEADER = "Stripe-Signature"

SUBSCRIPTION_CHARGE_SUCCEEDED = "invoice.payment_made"
SUBSCRIPTION_CHARGE_FAILED = "invoice.scheduled_charge_failed"


class WebhookSignatureError(Exception):
    pass


@dataclass
class InvoicePaymentEvent:
    invoice_id: str
    transaction_id: str | None


@dataclass
class SubscriptionChargeEvent:
    external_subscription_id: str
    external_payment_id: str | None
    succeeded: bool


def verify_square_signature(raw_body: bytes, signature: str | None, key: str, url: str) -> bool:
    """Square signs base64(HMAC-SHA256(key, notification_url + body))."""
    if not signature:
        return False
    digest = hmac.new(key.encode("utf-8"), url.encode("utf-8") + raw_body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected, signature)


def _square_payload(raw_body: bytes, headers, url: str) -> dict:
    key = current_app.config.get("SQUARE_WEBHOOK_SIGNATURE_KEY")
    if key:
        notification_url = current_app.config.get("SQUARE_WEBHOOK_URL") or url
        if not verify_square_signature(raw_body, headers.get(SQUARE_SIGNATURE_HEADER), key, notification_url):
            raise WebhookSignatureError("Invalid signature")
    return json.loads(raw_body or b"{}")


def _stripe_payload(raw_body: bytes, headers) -> dict:
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if secret:
        signature = headers.get(STRIPE_SIGNATURE_HEADER)
        if not signature:
            raise WebhookSignatureError("Invalid signature")
        try:
            stripe.Webhook.construct_event(raw_body, signature, secret)
        except stripe.SignatureVerificationError as exc:
            raise WebhookSignatureError("Invalid signature") from exc
    return json.loads(raw_body or b"{}")


def extract_invoice_payment(provider: str, payload: dict) -> InvoicePaymentEvent | None:
    """Pull (invoice id, transaction id) out of a completed-payment event, if it is one."""
    obj = ((payload or {}).get("data") or {}).get("object") or {}

    if provider == "stripe":
        if payload.get("type") != "payment_intent.succeeded":
            return None
        invoice_id = (obj.get("metadata") or {}).get("invoiceId")
        if invoice_id and obj.get("id"):
            return InvoicePaymentEvent(str(invoice_id), obj["id"])
        return None

    event = None
    payment = obj.get("payment")
    if isinstance(payment, dict) and payment.get("status") == "COMPLETED" and payment.get("reference_id"):
        event = InvoicePaymentEvent(str(payment["reference_id"]), payment.get("id"))

    checkout = obj.get("checkout") or obj.get("terminalCheckout")
    if isinstance(checkout, dict) and checkout.get("status") == "COMPLETED":
        payment_ids = checkout.get("payment_ids") or []
        if payment_ids and checkout.get("reference_id"):
            event = InvoicePaymentEvent(str(checkout["reference_id"]), payment_ids[0])
    return event


def extract_subscription_charge(payload: dict) -> SubscriptionChargeEvent | None:
    event_type = (payload or {}).get("type")
    if event_type not in (SUBSCRIPTION_CHARGE_SUCCEEDED, SUBSCRIPTION_CHARGE_FAILED):
        return None
    invoice = (((payload.get("data") or {}).get("object") or {}).get("invoice")) or {}
    subscription_id = invoice.get("subscription_id")
    if not subscription_id:
        return None
    return SubscriptionChargeEvent(
        external_subscription_id=subscription_id,
        external_payment_id=invoice.get("id"),
        succeeded=event_type == SUBSCRIPTION_CHARGE_SUCCEEDED,
    )


def settle_invoice(provider: str, event: InvoicePaymentEvent) -> bool:
    """Mark the referenced invoice paid. Returns False when nothing changed."""
    invoice = invoice_service.find_by_id_unscoped(event.invoice_id)
    if not invoice:
        logger.warning("Webhook from %s references unknown invoice %s", provider, event.invoice_id)
        return False
    if invoice.status == "paid" and invoice.payment_reference == event.transaction_id:
        logger.info("Invoice %s already paid with %s, ignoring replay", invoice.id, event.transaction_id)
        return False

    invoice_service.mark_invoice_as_paid(
        invoice.id,
        payment_method=provider,
        payment_reference=event.transaction_id,
        company_id=invoice.company_id,
    )
    commit_with_retry()
    logger.info("Invoice %s marked as paid via %s webhook", invoice.id, provider)
    return True


def settle_subscription_charge(event: SubscriptionChargeEvent) -> bool:
    """Settle the oldest pending ledger row of the subscription."""
    subscription = db.session.query(Subscription).filter(
        Subscription.external_subscription_id == event.external_subscription_id,
        Subscription.deleted_at.is_(None),
    ).first()
    if not subscription:
        logger.warning("Webhook references unknown subscription %s", event.external_subscription_id)
        return False

    if event.external_payment_id:
        settled = db.session.query(SubscriptionPayment.id).filter(
            SubscriptionPayment.subscription_id == subscription.id,
            SubscriptionPayment.external_payment_id == event.external_payment_id,
        ).first()
        if settled:
            logger.info("Subscription charge %s already recorded, ignoring replay", event.external_payment_id)
            return False

    payment = db.session.query(SubscriptionPayment).filter(
        SubscriptionPayment.subscription_id == subscription.id,
        SubscriptionPayment.status == "pending",
    ).order_by(SubscriptionPayment.billing_period_start.asc()).first()
    if not payment:
        logger.info("No pending billing record for subscription %s", subscription.id)
        return False

    payment.external_payment_id = event.external_payment_id
    if event.succeeded:
        payment.status = "succeeded"
        payment.failure_reason = None
        subscription.status = "active"
        logger.info("Subscription payment %s settled for subscription %s", payment.id, subscription.id)
    else:
        payment.status = "failed"
        payment.failure_reason = "Scheduled charge failed"
        billing_service.handle_payment_failure(subscription.company_id, payment.failure_reason)
    commit_with_retry()
    return True


def handle_webhook(provider: str, raw_body: bytes, headers, url: str = "") -> dict:
    """
    Process one webhook delivery and return the JSON body to send back.

    Never raises; the route always answers 200.
    """
    logger.info("Webhook received from %s", provider)
    if provider not in SUPPORTED_PROVIDERS:
        logger.warning("Webhook from unsupported provider %s", provider)
        return {"received": True, "error": "Unsupported provider"}

    try:
        if provider == "square":
            payload = _square_payload(raw_body, headers, url)
        else:
            payload = _stripe_payload(raw_body, headers)
    except WebhookSignatureError:
        logger.warning("Rejected %s webhook with invalid signature", provider)
        return {"received": True, "error": "Invalid signature"}
    except ValueError:
        logger.warning("Rejected %s webhook with malformed body", provider)
        return {"received": True, "error": "Invalid payload"}

    try:
        invoice_event = extract_invoice_payment(provider, payload)
        if invoice_event:
            settle_invoice(provider, invoice_event)

        charge_event = extract_subscription_charge(payload) if provider == "square" else None
        if charge_event:
            settle_subscription_charge(charge_event)
    except Exception:
        db.session.rollback()
        logger.exception("Error processing webhook from %s", provider)
        return {"received": True, "error": "Processing failed"}

    return {"received": True}
