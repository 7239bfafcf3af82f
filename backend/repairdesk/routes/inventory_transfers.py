# backend/repairdesk/routes/inventory_transfers.py
"""
Inventory transfer API routes.

Stock is reserved at the source when a transfer is created, credited to
the destination on complete, and returned to the source on cancel.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..errors import AppError, BadRequestError, NotFoundError
from ..extensions import db
from ..services import inventory_transfer_service
from ..services.concurrency import commit_with_retry


inventory_transfers_bp = Blueprint("inventory_transfers", __name__, url_prefix="/api/inventory-transfers")


def _int_arg(name: str) -> int | None:
    value = request.args.get(name)
    if value in (None, ""):
        return None
    try:
        return int(value)
    except ValueError:
        raise BadRequestError(f"{name} must be an integer")


def parse_quantity(value) -> int:
    """Whole-unit quantity from a JSON body; 2.9, true and "2.5" are rejected."""
    if isinstance(value, bool):
        raise BadRequestError("Quantity must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise BadRequestError("Quantity must be an integer")


@inventory_transfers_bp.route("", methods=["GET"])
@require_tenant
def list_transfers():
    """
    List transfers.

    Query params: status, from_location_id, to_location_id
    """
    try:
        transfers = inventory_transfer_service.find_all(
            g.company_id,
            status=request.args.get("status") or None,
            from_location_id=_int_arg("from_location_id"),
            to_location_id=_int_arg("to_location_id"),
        )
        return jsonify({"transfers": [t.to_dict() for t in transfers]})
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list inventory transfers")
        return jsonify({"error": "Internal server error"}), 500


@inventory_transfers_bp.route("/<int:transfer_id>", methods=["GET"])
@require_tenant
def get_transfer(transfer_id: int):
    try:
        transfer = inventory_transfer_service.find_by_id(transfer_id, g.company_id)
        if not transfer:
            raise NotFoundError("Inventory transfer not found")
        return jsonify(transfer.to_dict())
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load inventory transfer")
        return jsonify({"error": "Internal server error"}), 500


@inventory_transfers_bp.route("", methods=["POST"])
@require_tenant
def create_transfer():
    """
    Create a pending transfer and reserve stock at the source.

    Request body:
    {
        "from_location_id": int,
        "to_location_id": int,
        "inventory_item_id": int,
        "quantity": int,
        "notes": str (optional)
    }

    Returns:
        201: Transfer created
        400: Invalid request or insufficient quantity
    """
    data = request.get_json(silent=True) or {}

    try:
        quantity = parse_quantity(data["quantity"])

        transfer = inventory_transfer_service.create(
            from_location_id=int(data["from_location_id"]),
            to_location_id=int(data["to_location_id"]),
            inventory_item_id=int(data["inventory_item_id"]),
            quantity=quantity,
            company_id=g.company_id,
            user_id=g.user_id,
            notes=data.get("notes"),
        )

        commit_with_retry()

        return jsonify(transfer.to_dict()), 201

    except KeyError as e:
        db.session.rollback()
        return jsonify({"error": f"Missing required field: {e}"}), 400
    except (TypeError, ValueError):
        db.session.rollback()
        return jsonify({"error": "Location and item ids must be integers"}), 400
    except AppError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create inventory transfer")
        return jsonify({"error": "Internal server error"}), 500


@inventory_transfers_bp.route("/<int:transfer_id>/complete", methods=["POST"])
@require_tenant
def complete_transfer(transfer_id: int):
    """
    Complete a pending transfer (credits the destination).

    Returns:
        200: Transfer completed
        400: Transfer not pending
        404: Transfer not found
    """
    try:
        transfer = inventory_transfer_service.complete(transfer_id, g.company_id)
        commit_with_retry()
        return jsonify(transfer.to_dict())
    except AppError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to complete inventory transfer")
        return jsonify({"error": "Internal server error"}), 500


@inventory_transfers_bp.route("/<int:transfer_id>/cancel", methods=["POST"])
@require_tenant
def cancel_transfer(transfer_id: int):
    """
    Cancel a pending transfer (returns stock to the source).

    Returns:
        200: Transfer cancelled
        400: Transfer not pending
        404: Transfer not found
    """
    try:
        transfer = inventory_transfer_service.cancel(transfer_id, g.company_id)
        commit_with_retry()
        return jsonify(transfer.to_dict())
    except AppError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel inventory transfer")
        return jsonify({"error": "Internal server error"}), 500
