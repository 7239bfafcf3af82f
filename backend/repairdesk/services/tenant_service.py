"""
Tenant scoping helpers.

Every request is scoped to a company. Ids supplied by a client are only
trusted after they have been resolved inside the caller's company; a row
belonging to another company is reported exactly like a missing one.

USAGE:
    from repairdesk.services.tenant_service import require_location_in_company

    location = require_location_in_company(data["location_id"], g.company_id)
"""

import logging

from flask import g, has_request_context

from ..errors import BadRequestError, NotFoundError, TenantContextError
from ..extensions import db
from ..models import Company, Location, InventoryItem

logger = logging.getLogger(__name__)


def get_current_company_id() -> int:
    """
    Company id of the current request.

    Raises TenantContextError if the tenant context was never established.
    """
    if not has_request_context() or getattr(g, "company_id", None) is None:
        raise TenantContextError("Tenant context not established")
    return g.company_id


def get_company(company_id: int) -> Company | None:
    return db.session.query(Company).filter_by(id=company_id).first()


def require_company(company_id: int) -> Company:
    company = get_company(company_id)
    if not company:
        raise NotFoundError("Company not found")
    return company


def find_location(location_id: int, company_id: int) -> Location | None:
    """Non-deleted location inside the company, or None."""
    return db.session.query(Location).filter(
        Location.id == location_id,
        Location.company_id == company_id,
        Location.deleted_at.is_(None),
    ).first()


def require_location_in_company(location_id: int, company_id: int, *, label: str = "Location") -> Location:
    """
    Validate that a client-supplied location belongs to the company.

    Raises BadRequestError: the id arrived as input, so a foreign or deleted
    location is a bad reference rather than a missing resource.
    """
    location = find_location(location_id, company_id)
    if not location:
        logger.info("Rejected location %s for company %s", location_id, company_id)
        raise BadRequestError(f"{label} not found or does not belong to company")
    return location


def find_inventory_item(item_id: int, company_id: int) -> InventoryItem | None:
    return db.session.query(InventoryItem).filter(
        InventoryItem.id == item_id,
        InventoryItem.company_id == company_id,
        InventoryItem.deleted_at.is_(None),
    ).first()


def require_item_in_company(item_id: int, company_id: int) -> InventoryItem:
    item = find_inventory_item(item_id, company_id)
    if not item:
        raise BadRequestError("Inventory item not found or does not belong to company")
    return item


def create_location(company_id: int, name: str, *, is_free: bool | None = None) -> Location:
    """
    Add a location to a company.

    The company's first location is always free; later locations are
    billable unless is_free says otherwise.
    """
    require_company(company_id)
    existing = db.session.query(Location).filter_by(company_id=company_id).count()
    if existing == 0:
        is_free = True
    location = Location(company_id=company_id, name=name, is_free=bool(is_free))
    db.session.add(location)
    db.session.flush()
    return location


def first_location_id(company_id: int) -> int | None:
    row = db.session.query(Location.id).filter_by(company_id=company_id).order_by(Location.id).first()
    return row.id if row else None
