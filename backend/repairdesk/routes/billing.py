# Overview: Flask API routes for the company's own subscription billing.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..errors import AppError, BadRequestError
from ..extensions import db
from ..services import billing_service
from ..services.concurrency import commit_with_retry


billing_bp = Blueprint("billing", __name__, url_prefix="/api/billing")


def _error(e: AppError):
    db.session.rollback()
    return jsonify(e.to_dict()), e.status_code


def _unexpected(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


@billing_bp.get("/subscription")
@require_tenant
def get_subscription_route():
    """Current subscription (or null) plus the live monthly amount."""
    try:
        subscription = billing_service.get_subscription(g.company_id)
        amount = billing_service.calculate_monthly_amount(g.company_id)
        return jsonify({
            "subscription": subscription.to_dict() if subscription else None,
            "billing": amount.to_dict(),
        })
    except AppError as e:
        return _error(e)
    except Exception:
        return _unexpected("Failed to load subscription")


@billing_bp.get("/amount")
@require_tenant
def get_amount_route():
    try:
        return jsonify(billing_service.calculate_monthly_amount(g.company_id).to_dict())
    except AppError as e:
        return _error(e)
    except Exception:
        return _unexpected("Failed to calculate billing amount")


@billing_bp.post("/autopay")
@require_tenant
def enable_autopay_route():
    """
    Enable autopay with a card token from the processor's web SDK.

    Request body: {"cardToken": "cnon:..."}

    Returns:
        200: Subscription
        400: Integration/plan/location not configured, no billable
             locations, processor failure
    """
    try:
        data = request.get_json(silent=True) or {}
        card_token = (data.get("cardToken") or "").strip()
        if not card_token:
            raise BadRequestError("cardToken is required")

        subscription = billing_service.enable_autopay(g.company_id, card_token)
        commit_with_retry()
        return jsonify(subscription.to_dict())
    except AppError as e:
        return _error(e)
    except Exception:
        return _unexpected("Failed to enable autopay")


@billing_bp.delete("/autopay")
@require_tenant
def disable_autopay_route():
    """Turn autopay off locally. The processor subscription is not cancelled."""
    try:
        subscription = billing_service.disable_autopay(g.company_id)
        commit_with_retry()
        return jsonify(subscription.to_dict())
    except AppError as e:
        return _error(e)
    except Exception:
        return _unexpected("Failed to disable autopay")


@billing_bp.patch("/locations/<int:location_id>")
@require_tenant
def toggle_location_billing_route(location_id: int):
    """
    Mark a location free or billable.

    Request body: {"isFree": true}
    """
    try:
        data = request.get_json(silent=True) or {}
        is_free = data.get("isFree")
        if not isinstance(is_free, bool):
            raise BadRequestError("isFree must be a boolean")

        amount = billing_service.toggle_location_billing(location_id, g.company_id, is_free)
        commit_with_retry()
        return jsonify(amount.to_dict())
    except AppError as e:
        return _error(e)
    except Exception:
        return _unexpected("Failed to update location billing")


@billing_bp.get("/history")
@require_tenant
def billing_history_route():
    try:
        payments = billing_service.get_billing_history(g.company_id)
        return jsonify({"payments": [p.to_dict() for p in payments]})
    except AppError as e:
        return _error(e)
    except Exception:
        return _unexpected("Failed to load billing history")
