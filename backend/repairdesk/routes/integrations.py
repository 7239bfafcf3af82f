# Overview: Flask API routes for the company's payment processor integration.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..errors import AppError, BadRequestError, NotFoundError
from ..extensions import db
from ..services import credential_service
from ..services.concurrency import commit_with_retry


integrations_bp = Blueprint("integrations", __name__, url_prefix="/api/integrations")


@integrations_bp.get("/payment")
@require_tenant
def get_payment_integration():
    """Stored payment integration with credentials masked, or null."""
    try:
        config = credential_service.get_integration(g.company_id, "payment")
        return jsonify({"integration": config.to_public_dict() if config else None})
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load payment integration")
        return jsonify({"error": "Internal server error"}), 500


@integrations_bp.put("/payment")
@require_tenant
def save_payment_integration():
    """
    Create or replace the payment integration.

    Request body:
    {
        "provider": "square" | "stripe" | "paypal",
        "enabled": true,
        "credentials": {"accessToken": "...", "applicationId": "...", "locationId": "..."},
        "settings": {"testMode": true}
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        provider = (data.get("provider") or "").strip().lower()
        if not provider:
            raise BadRequestError("provider is required")
        credentials = data.get("credentials") or {}
        if not isinstance(credentials, dict):
            raise BadRequestError("credentials must be an object")

        config = credential_service.save_integration(
            g.company_id,
            "payment",
            provider=provider,
            credentials=credentials,
            settings=data.get("settings") or {},
            enabled=bool(data.get("enabled", True)),
        )
        commit_with_retry()
        return jsonify({"integration": config.to_public_dict()})
    except AppError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to save payment integration")
        return jsonify({"error": "Internal server error"}), 500


@integrations_bp.delete("/payment")
@require_tenant
def delete_payment_integration():
    try:
        credential_service.delete_integration(g.company_id, "payment")
        commit_with_retry()
        return jsonify({"deleted": True})
    except AppError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete payment integration")
        return jsonify({"error": "Internal server error"}), 500


@integrations_bp.post("/payment/test")
@require_tenant
def test_payment_integration():
    """Run the provider's connection check and store the outcome."""
    try:
        if not credential_service.get_integration(g.company_id, "payment"):
            raise NotFoundError("Integration payment not found")
        result = credential_service.test_integration(g.company_id, "payment")
        commit_with_retry()
        return jsonify(result.to_dict())
    except AppError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Payment integration test failed")
        return jsonify({"error": "Internal server error"}), 500
