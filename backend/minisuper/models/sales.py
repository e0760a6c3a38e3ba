from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from minisuper.money import money_json, rate_json, round_money
from minisuper.time_utils import to_utc_z

SALE_COMPLETED = "COMPLETED"
SALE_CANCELLED = "CANCELLED"

PAYMENT_METHODS = ("efectivo_usd", "efectivo_ves", "tarjeta", "transferencia", "pago_movil")
PAYMENT_MIXED = "mixed"


class Sale(db.Model):
    """
    Completed sale transaction.

    Immutable once written except for the cancellation fields. Money columns
    keep the historical values even after cancellation; exchange_rate is the
    rate snapshot used to price every line.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("sale_number", name="uq_sales_sale_number"),
        # Composite index for day/status report queries
        db.Index("ix_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # YYYYMMDDNNNN
    sale_number = db.Column(db.String(16), nullable=False)

    register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    cash_session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=True, index=True)

    subtotal_usd = db.Column(db.Numeric(12, 2), nullable=False)
    subtotal_ves = db.Column(db.Numeric(14, 2), nullable=False)
    discount_usd = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    discount_ves = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    tax_usd = db.Column(db.Numeric(12, 2), nullable=False)
    tax_ves = db.Column(db.Numeric(14, 2), nullable=False)
    total_usd = db.Column(db.Numeric(12, 2), nullable=False)
    total_ves = db.Column(db.Numeric(14, 2), nullable=False)

    exchange_rate = db.Column(db.Numeric(12, 4), nullable=False)

    # Single method name, or "mixed" when splits use more than one
    payment_method = db.Column(db.String(20), nullable=False, index=True)
    received_usd = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    received_ves = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    change_usd = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    change_ves = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))

    status = db.Column(db.String(16), nullable=False, default=SALE_COMPLETED, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    # Cancellation audit trail
    cancel_reason = db.Column(db.String(500), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    register = db.relationship("CashRegister")
    user = db.relationship("User", foreign_keys=[user_id])
    cash_session = db.relationship("CashSession", backref=db.backref("sales", lazy=True))

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "sale_number": self.sale_number,
            "register_id": self.register_id,
            "user_id": self.user_id,
            "cash_session_id": self.cash_session_id,
            "subtotal_usd": money_json(self.subtotal_usd),
            "subtotal_ves": money_json(self.subtotal_ves),
            "discount_usd": money_json(self.discount_usd),
            "discount_ves": money_json(self.discount_ves),
            "tax_usd": money_json(self.tax_usd),
            "tax_ves": money_json(self.tax_ves),
            "total_usd": money_json(self.total_usd),
            "total_ves": money_json(self.total_ves),
            "exchange_rate": rate_json(self.exchange_rate),
            "payment_method": self.payment_method,
            "received_usd": money_json(self.received_usd),
            "received_ves": money_json(self.received_ves),
            "change_usd": money_json(self.change_usd),
            "change_ves": money_json(self.change_ves),
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "cancel_reason": self.cancel_reason,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
            data["payments"] = [split.to_dict() for split in self.payments]
        return data


class SaleLine(db.Model):
    """One batch segment of one cart item. A cart item split across N batches yields N lines."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("inventory_batches.id"), nullable=True, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_usd = db.Column(db.Numeric(12, 2), nullable=False)
    unit_price_ves = db.Column(db.Numeric(14, 2), nullable=False)
    subtotal_usd = db.Column(db.Numeric(12, 2), nullable=False)
    subtotal_ves = db.Column(db.Numeric(14, 2), nullable=False)

    # Set once the line's quantity has been returned to its batch
    restored_at = db.Column(db.DateTime(timezone=True), nullable=True)

    sale = db.relationship("Sale", backref=db.backref("lines", lazy=True, order_by="SaleLine.id"))
    product = db.relationship("Product")
    batch = db.relationship("InventoryBatch")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "batch_id": self.batch_id,
            "quantity": self.quantity,
            "unit_price_usd": money_json(self.unit_price_usd),
            "unit_price_ves": money_json(self.unit_price_ves),
            "subtotal_usd": money_json(self.subtotal_usd),
            "subtotal_ves": money_json(self.subtotal_ves),
            "restored_at": to_utc_z(self.restored_at) if self.restored_at else None,
        }


class PaymentSplit(db.Model):
    """
    One tender contribution to a sale.

    A sale has 1..N splits. Either amount may be zero but not both.
    """
    __tablename__ = "payment_splits"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    method = db.Column(db.String(20), nullable=False)
    amount_usd = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    amount_ves = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))

    reference = db.Column(db.String(100), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("payments", lazy=True, order_by="PaymentSplit.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "method": self.method,
            "amount_usd": money_json(self.amount_usd),
            "amount_ves": money_json(self.amount_ves),
            "reference": self.reference,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }


# Line profitability, computed on read against the batch cost.

def line_unit_profit_usd(line: SaleLine) -> Decimal:
    cost = Decimal(line.batch.unit_cost_usd) if line.batch is not None else Decimal("0")
    return round_money(Decimal(line.unit_price_usd) - cost)


def line_total_profit_usd(line: SaleLine) -> Decimal:
    return round_money(line_unit_profit_usd(line) * line.quantity)


def line_margin_percent(line: SaleLine) -> Decimal:
    price = Decimal(line.unit_price_usd)
    if price == 0:
        return Decimal("0")
    return round_money(line_unit_profit_usd(line) / price * 100)
