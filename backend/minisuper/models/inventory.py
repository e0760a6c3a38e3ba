from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from ..extensions import db
from minisuper.money import money_json, rate_json, round_money
from minisuper.time_utils import to_utc_z, to_iso_date


class InventoryBatch(db.Model):
    """
    A lot of one product received at one point in time.

    INVARIANT: 0 <= current_quantity <= initial_quantity
    - current_quantity only goes down through sale allocation
    - it only goes up through cancellation restore or a count adjustment
    - batches are never deleted (sale lines reference them for cost/margin)

    intake_rate is the VES/USD rate snapshot taken when the lot was received.
    """
    __tablename__ = "inventory_batches"
    __table_args__ = (
        db.CheckConstraint("current_quantity >= 0", name="ck_batches_current_non_negative"),
        # Allocation scan: product, then expiry, then intake time
        db.Index("ix_batches_product_expiry_received", "product_id", "expiry_date", "received_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("providers.id"), nullable=True, index=True)

    lot_number = db.Column(db.String(50), nullable=True)

    initial_quantity = db.Column(db.Integer, nullable=False)
    current_quantity = db.Column(db.Integer, nullable=False)

    unit_cost_usd = db.Column(db.Numeric(12, 2), nullable=False)
    intake_rate = db.Column(db.Numeric(12, 4), nullable=False)

    expiry_date = db.Column(db.Date, nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    received_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", backref=db.backref("batches", lazy=True))
    provider = db.relationship("Provider", backref=db.backref("batches", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, today: date | None = None, warning_days: int = 30) -> dict:
        today = today or date.today()
        return {
            "id": self.id,
            "product_id": self.product_id,
            "provider_id": self.provider_id,
            "lot_number": self.lot_number,
            "initial_quantity": self.initial_quantity,
            "current_quantity": self.current_quantity,
            "unit_cost_usd": money_json(self.unit_cost_usd),
            "unit_cost_ves": money_json(unit_cost_ves(self)),
            "intake_rate": rate_json(self.intake_rate),
            "stock_value_usd": money_json(stock_value_usd(self)),
            "stock_value_ves": money_json(stock_value_ves(self)),
            "expiry_date": to_iso_date(self.expiry_date),
            "is_expired": is_expired(self, today),
            "is_expiring_soon": is_expiring_soon(self, today, warning_days),
            "received_at": to_utc_z(self.received_at),
            "received_by_user_id": self.received_by_user_id,
            "version_id": self.version_id,
        }


# Derived batch figures. Computed on read from stored columns, never persisted.

def unit_cost_ves(batch: InventoryBatch) -> Decimal:
    return round_money(Decimal(batch.unit_cost_usd) * Decimal(batch.intake_rate))


def stock_value_usd(batch: InventoryBatch) -> Decimal:
    return round_money(batch.current_quantity * Decimal(batch.unit_cost_usd))


def stock_value_ves(batch: InventoryBatch) -> Decimal:
    return round_money(batch.current_quantity * unit_cost_ves(batch))


def is_expired(batch: InventoryBatch, today: date) -> bool:
    if batch.expiry_date is None:
        return False
    return batch.expiry_date < today


def is_expiring_soon(batch: InventoryBatch, today: date, days: int = 30) -> bool:
    if batch.expiry_date is None:
        return False
    return batch.expiry_date <= today + timedelta(days=days)
