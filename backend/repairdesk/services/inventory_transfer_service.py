# backend/repairdesk/services/inventory_transfer_service.py
"""
Inventory transfers between two locations of the same company.

Reserve-then-commit protocol:
1. create: the transfer row is inserted as "pending" and the quantity is
   deducted from the source location in the same transaction (reserve).
2. complete: the destination location is credited; status "completed".
3. cancel: the reserved quantity is restored to the source; status
   "cancelled". The destination is never touched.

completed and cancelled are terminal. A pending transfer always represents
stock in transit: it is no longer available at the source and not yet
available at the destination.

The functions flush but do not commit; the caller owns the transaction.
"""
from __future__ import annotations

from sqlalchemy.orm import aliased

from ..errors import BadRequestError, NotFoundError
from ..extensions import db
from ..models import InventoryTransfer, Location
from .concurrency import lock_for_update, run_with_retry
from .inventory_service import adjust_quantity_for_location, get_quantity_for_location
from .tenant_service import require_item_in_company, require_location_in_company, find_inventory_item


TRANSFER_STATUS_PENDING = "pending"
TRANSFER_STATUS_COMPLETED = "completed"
TRANSFER_STATUS_CANCELLED = "cancelled"

TRANSFER_STATUSES = (
    TRANSFER_STATUS_PENDING,
    TRANSFER_STATUS_COMPLETED,
    TRANSFER_STATUS_CANCELLED,
)


def _scoped_query(company_id: int):
    """Transfers whose source and destination both belong to the company."""
    from_location = aliased(Location)
    to_location = aliased(Location)
    return (
        db.session.query(InventoryTransfer)
        .join(from_location, from_location.id == InventoryTransfer.from_location_id)
        .join(to_location, to_location.id == InventoryTransfer.to_location_id)
        .filter(from_location.company_id == company_id)
        .filter(to_location.company_id == company_id)
    )


def find_all(
    company_id: int,
    status: str | None = None,
    from_location_id: int | None = None,
    to_location_id: int | None = None,
) -> list[InventoryTransfer]:
    """List the company's transfers, newest first, with optional filters."""
    if status is not None and status not in TRANSFER_STATUSES:
        raise BadRequestError(f"Invalid status: {status}. Must be one of {list(TRANSFER_STATUSES)}")

    query = _scoped_query(company_id)

    if status:
        query = query.filter(InventoryTransfer.status == status)
    if from_location_id:
        query = query.filter(InventoryTransfer.from_location_id == from_location_id)
    if to_location_id:
        query = query.filter(InventoryTransfer.to_location_id == to_location_id)

    return query.order_by(InventoryTransfer.created_at.desc(), InventoryTransfer.id.desc()).all()


def find_by_id(transfer_id: int, company_id: int) -> InventoryTransfer | None:
    return _scoped_query(company_id).filter(InventoryTransfer.id == transfer_id).first()


def _get_pending_for_update(transfer_id: int, company_id: int, action: str, done: str) -> InventoryTransfer:
    transfer = lock_for_update(
        _scoped_query(company_id).filter(InventoryTransfer.id == transfer_id)
    ).first()
    if not transfer:
        raise NotFoundError("Inventory transfer not found")

    if transfer.status != TRANSFER_STATUS_PENDING:
        raise BadRequestError(
            f'Cannot {action} transfer with status "{transfer.status}". '
            f"Only pending transfers can be {done}."
        )
    return transfer


def create(
    from_location_id: int,
    to_location_id: int,
    inventory_item_id: int,
    quantity: int,
    company_id: int,
    user_id: int,
    notes: str | None = None,
) -> InventoryTransfer:
    """
    Create a pending transfer and reserve its quantity at the source.

    Raises:
        BadRequestError: same locations, non-positive quantity, location or
            item outside the company, or insufficient stock at the source.
    """
    def _op():
        if from_location_id == to_location_id:
            raise BadRequestError("From and to locations must be different")

        if quantity is None or isinstance(quantity, bool) or not isinstance(quantity, int):
            raise BadRequestError("Quantity must be an integer")
        if quantity <= 0:
            raise BadRequestError("Quantity must be greater than 0")

        if not user_id:
            raise BadRequestError("Transferring user is required")

        require_location_in_company(from_location_id, company_id, label="From location")
        require_location_in_company(to_location_id, company_id, label="To location")
        require_item_in_company(inventory_item_id, company_id)

        # Lock the source ledger row so the check below still holds at the deduction
        available = get_quantity_for_location(
            inventory_item_id, from_location_id, company_id, lock=True
        )
        if available < quantity:
            raise BadRequestError(
                f"Insufficient quantity. Available: {available}, Requested: {quantity}"
            )

        transfer = InventoryTransfer(
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            inventory_item_id=inventory_item_id,
            quantity=quantity,
            transferred_by=user_id,
            status=TRANSFER_STATUS_PENDING,
            notes=notes or None,
        )
        db.session.add(transfer)
        db.session.flush()

        # Reserve: stock leaves the source now, in the same transaction as the row
        adjust_quantity_for_location(inventory_item_id, from_location_id, -quantity, company_id)

        return transfer

    return run_with_retry(_op)


def complete(transfer_id: int, company_id: int) -> InventoryTransfer:
    """Credit the destination and mark the transfer completed."""
    def _op():
        transfer = _get_pending_for_update(transfer_id, company_id, "complete", "completed")

        if not find_inventory_item(transfer.inventory_item_id, company_id):
            raise BadRequestError("Inventory item not found")

        transfer.status = TRANSFER_STATUS_COMPLETED
        db.session.flush()

        adjust_quantity_for_location(
            transfer.inventory_item_id, transfer.to_location_id, transfer.quantity, company_id
        )
        return transfer

    return run_with_retry(_op)


def cancel(transfer_id: int, company_id: int) -> InventoryTransfer:
    """Release the reservation back to the source and mark the transfer cancelled."""
    def _op():
        transfer = _get_pending_for_update(transfer_id, company_id, "cancel", "cancelled")

        transfer.status = TRANSFER_STATUS_CANCELLED
        db.session.flush()

        adjust_quantity_for_location(
            transfer.inventory_item_id, transfer.from_location_id, transfer.quantity, company_id
        )
        return transfer

    return run_with_retry(_op)
