from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class InventoryItem(db.Model):
    """
    Company-wide inventory item. Stock is tracked per location in
    InventoryLocationQuantity.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.UniqueConstraint("company_id", "sku", name="uq_inventory_items_company_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<InventoryItem id={self.id} sku={self.sku!r} company_id={self.company_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "sku": self.sku,
            "name": self.name,
        }


class InventoryLocationQuantity(db.Model):
    """
    Per-location stock ledger.

    quantity is signed: it may dip below zero for backorders. Writers must
    change it with a SQL-side increment (quantity = quantity + delta), never
    by reading and writing back a Python value.
    """
    __tablename__ = "inventory_location_quantities"
    __table_args__ = (
        db.UniqueConstraint("inventory_item_id", "location_id", name="uq_inventory_location_quantities_item_location"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "inventory_item_id": self.inventory_item_id,
            "location_id": self.location_id,
            "quantity": self.quantity,
        }


class InventoryTransfer(db.Model):
    """
    Stock movement of one item between two locations of the same company.

    LIFECYCLE:
    1. pending: created; quantity already deducted from the source
    2. completed: destination credited (terminal)
    3. cancelled: deduction restored to the source (terminal)
    """
    __tablename__ = "inventory_transfers"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_inventory_transfers_quantity_positive"),
        db.CheckConstraint("from_location_id <> to_location_id", name="ck_inventory_transfers_distinct_locations"),
        db.Index("ix_inventory_transfers_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    from_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    to_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    transferred_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending")
    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    from_location = db.relationship("Location", foreign_keys=[from_location_id])
    to_location = db.relationship("Location", foreign_keys=[to_location_id])
    inventory_item = db.relationship("InventoryItem")
    transferred_by_user = db.relationship("User")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<InventoryTransfer id={self.id} item={self.inventory_item_id} "
            f"{self.from_location_id}->{self.to_location_id} status={self.status}>"
        )

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "from_location_id": self.from_location_id,
            "to_location_id": self.to_location_id,
            "inventory_item_id": self.inventory_item_id,
            "quantity": self.quantity,
            "transferred_by": self.transferred_by,
            "status": self.status,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if self.from_location is not None:
            data["from_location"] = {"id": self.from_location.id, "name": self.from_location.name}
        if self.to_location is not None:
            data["to_location"] = {"id": self.to_location.id, "name": self.to_location.name}
        if self.inventory_item is not None:
            data["inventory_item"] = {
                "id": self.inventory_item.id,
                "sku": self.inventory_item.sku,
                "name": self.inventory_item.name,
            }
        if self.transferred_by_user is not None:
            data["transferred_by_user"] = {
                "id": self.transferred_by_user.id,
                "first_name": self.transferred_by_user.first_name,
                "last_name": self.transferred_by_user.last_name,
                "email": self.transferred_by_user.email,
            }
        return data
