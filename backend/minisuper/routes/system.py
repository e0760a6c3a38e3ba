# backend/minisuper/routes/system.py
"""
System health endpoint.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..models import CashSession, ExchangeRate
from ..models.registers import SESSION_OPEN
from ..responses import failure, success
from minisuper.time_utils import to_iso_date, to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Round-trip a trivial query and report latency."""
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        open_sessions = db.session.query(CashSession).filter_by(status=SESSION_OPEN).count()
        latest_rate = db.session.query(ExchangeRate).order_by(ExchangeRate.rate_date.desc()).first()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "open_cash_sessions": open_sessions,
                "latest_rate_date": to_iso_date(latest_rate.rate_date) if latest_rate else None,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    data = {
        "status": database["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }
    if database["status"] != "healthy":
        return failure("Service unhealthy", 503, details=data)
    return success(data)
