from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from minisuper.money import money_json, rate_json
from minisuper.time_utils import to_utc_z

UNITS_OF_MEASURE = ("unidad", "kg", "litro", "gramo", "ml")


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Provider(db.Model):
    """Supplier a batch can be received from."""
    __tablename__ = "providers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    contact = db.Column(db.String(100), nullable=True)
    phone = db.Column(db.String(30), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "contact": self.contact,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Catalog entry. Prices are USD; VES prices are always derived from the
    rate in effect at sale time, never stored here.

    Stock is not a column: it is the sum of current_quantity over batches.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    barcode = db.Column(db.String(50), nullable=False, unique=True, index=True)
    internal_code = db.Column(db.String(20), nullable=True, unique=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)

    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("providers.id"), nullable=True, index=True)

    sale_price_usd = db.Column(db.Numeric(12, 2), nullable=False)
    cost_price_usd = db.Column(db.Numeric(12, 2), nullable=False)

    min_stock = db.Column(db.Integer, nullable=False, default=0)
    unit_of_measure = db.Column(db.String(16), nullable=False, default="unidad")

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    provider = db.relationship("Provider", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} barcode={self.barcode!r} name={self.name!r}>"

    def to_dict(self, rate: Decimal | None = None) -> dict:
        data = {
            "id": self.id,
            "barcode": self.barcode,
            "internal_code": self.internal_code,
            "name": self.name,
            "description": self.description,
            "category_id": self.category_id,
            "provider_id": self.provider_id,
            "sale_price_usd": money_json(self.sale_price_usd),
            "cost_price_usd": money_json(self.cost_price_usd),
            "min_stock": self.min_stock,
            "unit_of_measure": self.unit_of_measure,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if rate is not None:
            data["sale_price_ves"] = money_json(Decimal(self.sale_price_usd) * rate)
            data["cost_price_ves"] = money_json(Decimal(self.cost_price_usd) * rate)
        return data

    def price_dict(self, rate: Decimal) -> dict:
        """Sale and cost prices in both currencies at the given VES/USD rate."""
        sale_usd = Decimal(self.sale_price_usd)
        cost_usd = Decimal(self.cost_price_usd)
        margin = (sale_usd - cost_usd) / sale_usd * 100 if sale_usd > 0 else Decimal("0")
        return {
            "usd": {"sale": money_json(sale_usd), "cost": money_json(cost_usd)},
            "ves": {"sale": money_json(sale_usd * rate), "cost": money_json(cost_usd * rate)},
            "margin_percent": money_json(margin),
            "exchange_rate": rate_json(rate),
        }
