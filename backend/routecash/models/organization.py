from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


MONEY = db.Numeric(18, 6)
PERCENT = db.Numeric(5, 2)


def money_str(value) -> str | None:
    """Serialize a Numeric column value for JSON without float noise."""
    if value is None:
        return None
    return format(value.normalize() if hasattr(value, "normalize") else value, "f")


class Branch(db.Model):
    """
    Sales branch (distribution point).

    Ledger entries, order numbering and cash summaries are scoped per branch;
    region is denormalized onto ledger rows for regional rollups.
    """
    __tablename__ = "branches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)
    region = db.Column(db.String(120), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "region": self.region,
            "created_at": to_utc_z(self.created_at),
        }


class User(db.Model):
    """
    Field or office user.

    Roles: booker (takes orders), salesman (delivers and collects),
    kpo (branch office approval), admin.

    max_discount_percent caps the per-line discount a booker may give;
    max_discount_amount caps the whole order's discount (0 = no cap).
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)
    role = db.Column(db.String(16), nullable=False, default="booker", index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    max_discount_percent = db.Column(PERCENT, nullable=False, default=0)
    max_discount_amount = db.Column(MONEY, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    branch = db.relationship("Branch", backref=db.backref("users", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "branch_id": self.branch_id,
            "max_discount_percent": money_str(self.max_discount_percent),
            "max_discount_amount": money_str(self.max_discount_amount),
            "is_active": self.is_active,
        }


class Shop(db.Model):
    __tablename__ = "shops"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    shop_code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    name = db.Column(db.String(160), nullable=False)
    owner_name = db.Column(db.String(120), nullable=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    booker_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    branch = db.relationship("Branch", backref=db.backref("shops", lazy=True))
    booker = db.relationship("User", foreign_keys=[booker_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_code": self.shop_code,
            "name": self.name,
            "owner_name": self.owner_name,
            "branch_id": self.branch_id,
            "booker_id": self.booker_id,
            "is_active": self.is_active,
        }


class Product(db.Model):
    """
    Catalog product. Reference data only: orders snapshot the unit price and
    discount ceiling at the time the line is priced.
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(160), nullable=False)
    category = db.Column(db.String(32), nullable=False, default="other", index=True)
    unit_price = db.Column(MONEY, nullable=False)
    # None = no product-specific ceiling; the category limit still applies
    max_discount_percent = db.Column(PERCENT, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "unit_price": money_str(self.unit_price),
            "max_discount_percent": money_str(self.max_discount_percent),
            "is_active": self.is_active,
        }
