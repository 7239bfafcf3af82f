from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Company(db.Model):
    """
    Multi-tenant root: every tenant is a Company.

    All locations, users, customers, invoices, inventory and the billing
    subscription belong to exactly one company. Every tenant-scoped lookup
    filters by company_id, either directly or through a location.

    `settings` is a JSON document holding tenant preferences:
    - currency: ISO currency code used for processor charges
    - squarePlanId: fallback subscription plan id
    - integrations: {"payment": {...}} with encrypted credentials
    """
    __tablename__ = "companies"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    settings = db.Column(db.JSON, nullable=False, default=dict)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Company id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class User(db.Model):
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("company_id", "email", name="uq_users_company_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)
    first_name = db.Column(db.String(120), nullable=True)
    last_name = db.Column(db.String(120), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    company = db.relationship("Company", backref=db.backref("users", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
        }


class Location(db.Model):
    """
    Physical shop location within a company.

    BILLING: is_free excludes the location from the monthly subscription
    amount. A company's first location is always free.
    """
    __tablename__ = "locations"
    __table_args__ = (
        db.Index("ix_locations_company_free", "company_id", "is_free"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    is_free = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    company = db.relationship("Company", backref=db.backref("locations", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Location id={self.id} name={self.name!r} company_id={self.company_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "is_free": self.is_free,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
