from __future__ import annotations

from ..extensions import db
from minisuper.money import rate_json
from minisuper.time_utils import to_iso_date, to_utc_z

SOURCE_PYDOLAR = "pydolar"
SOURCE_MANUAL = "manual"


class ExchangeRate(db.Model):
    """
    Daily VES-per-USD rate. One row per calendar day.

    bcv_rate is the official rate used for pricing; parallel_rate is kept for
    reference only.
    """
    __tablename__ = "exchange_rates"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    rate_date = db.Column(db.Date, nullable=False, unique=True, index=True)
    bcv_rate = db.Column(db.Numeric(12, 4), nullable=False)
    parallel_rate = db.Column(db.Numeric(12, 4), nullable=True)
    source = db.Column(db.String(20), nullable=False, default=SOURCE_MANUAL)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "rate_date": to_iso_date(self.rate_date),
            "bcv_rate": rate_json(self.bcv_rate),
            "parallel_rate": rate_json(self.parallel_rate),
            "source": self.source,
            "created_at": to_utc_z(self.created_at),
        }
