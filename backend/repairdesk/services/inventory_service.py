# Overview: Per-location stock ledger reads and atomic adjustments.

"""
Inventory ledger invariants

- Stock is stored per (inventory_item_id, location_id) as a signed integer.
- A missing ledger row means zero.
- Every change is a SQL-side increment (quantity = quantity + delta) so
  concurrent adjustments touching the same row cannot lose updates.
- Adjustments are flushed, not committed: callers decide the transaction
  boundary so a ledger change always lands together with the document
  (e.g. a transfer) that caused it.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import InventoryLocationQuantity
from .concurrency import lock_for_update
from .tenant_service import require_item_in_company, require_location_in_company


def _ledger_query(inventory_item_id: int, location_id: int):
    return db.session.query(InventoryLocationQuantity).filter_by(
        inventory_item_id=inventory_item_id,
        location_id=location_id,
    )


def get_quantity_for_location(
    inventory_item_id: int,
    location_id: int,
    company_id: int,
    *,
    lock: bool = False,
) -> int:
    """
    Current quantity of an item at a location (0 when no ledger row exists).

    lock=True takes a row lock so a following adjustment in the same
    transaction sees no concurrent change between check and write.
    """
    require_item_in_company(inventory_item_id, company_id)

    query = db.session.query(InventoryLocationQuantity.quantity).filter_by(
        inventory_item_id=inventory_item_id,
        location_id=location_id,
    )
    if lock:
        query = lock_for_update(query)
    row = query.first()
    return int(row.quantity) if row else 0


def adjust_quantity_for_location(
    inventory_item_id: int,
    location_id: int,
    delta: int,
    company_id: int,
) -> int:
    """
    Atomically add `delta` (may be negative) to the location ledger.

    Returns the quantity after the adjustment.
    """
    require_item_in_company(inventory_item_id, company_id)
    require_location_in_company(location_id, company_id)

    updated = _ledger_query(inventory_item_id, location_id).update(
        {InventoryLocationQuantity.quantity: InventoryLocationQuantity.quantity + delta},
        synchronize_session=False,
    )

    if not updated:
        try:
            with db.session.begin_nested():
                db.session.add(InventoryLocationQuantity(
                    inventory_item_id=inventory_item_id,
                    location_id=location_id,
                    quantity=delta,
                ))
        except IntegrityError:
            # Another writer created the row first; apply the delta to it.
            _ledger_query(inventory_item_id, location_id).update(
                {InventoryLocationQuantity.quantity: InventoryLocationQuantity.quantity + delta},
                synchronize_session=False,
            )

    db.session.flush()
    return get_quantity_for_location(inventory_item_id, location_id, company_id)


def set_quantity_for_location(
    inventory_item_id: int,
    location_id: int,
    quantity: int,
    company_id: int,
) -> int:
    """Overwrite the ledger quantity (stock counts and seeding)."""
    current = get_quantity_for_location(inventory_item_id, location_id, company_id, lock=True)
    return adjust_quantity_for_location(inventory_item_id, location_id, quantity - current, company_id)


def get_item_quantities(inventory_item_id: int, company_id: int) -> dict[int, int]:
    """Quantities of an item keyed by location id."""
    require_item_in_company(inventory_item_id, company_id)
    rows = db.session.query(
        InventoryLocationQuantity.location_id,
        InventoryLocationQuantity.quantity,
    ).filter_by(inventory_item_id=inventory_item_id).all()
    return {row.location_id: int(row.quantity) for row in rows}
