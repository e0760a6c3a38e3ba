from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from minisuper.money import money_json, rate_json, round_money
from minisuper.time_utils import to_utc_z

SESSION_OPEN = "OPEN"
SESSION_CLOSED = "CLOSED"


class CashRegister(db.Model):
    """
    Physical register (caja). Persistent; deactivated rather than deleted.
    """
    __tablename__ = "cash_registers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    register_number = db.Column(db.Integer, nullable=False, unique=True)
    name = db.Column(db.String(100), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "register_number": self.register_number,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class CashSession(db.Model):
    """
    One user's occupancy of one register (cierre de caja).

    LIFECYCLE:
    - OPEN: sales may be recorded against it
    - CLOSED: terminal; a new occupancy is a new row

    At most one OPEN row per user and per register (partial unique indexes).
    total_sales_usd / transaction_count are running aggregates changed only
    by relative SQL updates from the sale engine.
    """
    __tablename__ = "cash_sessions"
    __table_args__ = (
        db.Index(
            "uq_cash_sessions_open_user",
            "user_id",
            unique=True,
            sqlite_where=db.text("status = 'OPEN'"),
            postgresql_where=db.text("status = 'OPEN'"),
        ),
        db.Index(
            "uq_cash_sessions_open_register",
            "register_id",
            unique=True,
            sqlite_where=db.text("status = 'OPEN'"),
            postgresql_where=db.text("status = 'OPEN'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=SESSION_OPEN, index=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Declared cash in drawer
    opening_usd = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    opening_ves = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    closing_usd = db.Column(db.Numeric(12, 2), nullable=True)
    closing_ves = db.Column(db.Numeric(14, 2), nullable=True)

    # Running aggregates
    total_sales_usd = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    transaction_count = db.Column(db.Integer, nullable=False, default=0)

    # Rate snapshots
    opening_rate = db.Column(db.Numeric(12, 4), nullable=True)
    closing_rate = db.Column(db.Numeric(12, 4), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    register = db.relationship("CashRegister", backref=db.backref("sessions", lazy=True))
    user = db.relationship("User", backref=db.backref("cash_sessions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "register_id": self.register_id,
            "register_name": self.register.name if self.register else None,
            "user_id": self.user_id,
            "status": self.status,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "opening_usd": money_json(self.opening_usd),
            "opening_ves": money_json(self.opening_ves),
            "closing_usd": money_json(self.closing_usd),
            "closing_ves": money_json(self.closing_ves),
            "total_sales_usd": money_json(self.total_sales_usd),
            "transaction_count": self.transaction_count,
            "average_sale_usd": money_json(average_sale_usd(self)),
            "cash_difference_usd": money_json(cash_difference_usd(self)),
            "duration_minutes": duration_minutes(self),
            "opening_rate": rate_json(self.opening_rate),
            "closing_rate": rate_json(self.closing_rate),
            "notes": self.notes,
        }


def cash_difference_usd(session: CashSession) -> Decimal | None:
    """Declared close minus expected drawer (opening + sales). None while open."""
    if session.closing_usd is None:
        return None
    expected = Decimal(session.opening_usd or 0) + Decimal(session.total_sales_usd or 0)
    return round_money(Decimal(session.closing_usd) - expected)


def average_sale_usd(session: CashSession) -> Decimal:
    if not session.transaction_count:
        return Decimal("0")
    return round_money(Decimal(session.total_sales_usd) / session.transaction_count)


def duration_minutes(session: CashSession) -> int:
    if session.closed_at is None or session.opened_at is None:
        return 0
    return int((session.closed_at - session.opened_at).total_seconds() // 60)
