# Overview: Flask API routes for exchange rates; parses input and returns JSON responses.

"""
Currency API Routes

- GET  /api/currency/current    today's rate (fetched or stored)
- PUT  /api/currency/rate       manual rate for a day (admin)
- POST /api/currency/refresh    force a PyDolar fetch for today (admin)
- GET  /api/currency/history    stored rates in a date range
- GET  /api/currency/convert    amount conversion at the current rate
"""

from datetime import timedelta

from flask import Blueprint, request, current_app

from ..decorators import require_auth, require_role
from ..errors import POSError, RateUnavailable, ValidationError
from ..extensions import db
from ..models.auth import ROLE_ADMIN
from ..responses import error_response, internal_error, success
from ..services.container import get_services
from ..services.currency_service import RateFetchError
from minisuper.money import money_json, rate_json, to_decimal
from minisuper.time_utils import local_today, parse_iso_date, to_iso_date, to_utc_z


currency_bp = Blueprint("currency", __name__, url_prefix="/api/currency")


@currency_bp.get("/current")
@require_auth
def current_rate_route():
    try:
        currency = get_services().currency
        rate = currency.get_current_rate()
        latest = currency.get_latest_rate()
        return success({
            "rate": rate_json(rate),
            "rate_date": to_iso_date(latest.rate_date) if latest else None,
            "source": latest.source if latest else None,
            "updated_at": to_utc_z(latest.created_at) if latest else None,
            "parallel_rate": rate_json(latest.parallel_rate) if latest else None,
        })
    except POSError as e:
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to get current rate")
        return internal_error()


@currency_bp.put("/rate")
@require_auth
@require_role(ROLE_ADMIN)
def set_rate_route():
    """Request body: {"rate_date": "2026-10-19", "bcv_rate": 36.5, "parallel_rate": 38.2}"""
    try:
        data = request.get_json(silent=True) or {}
        if data.get("bcv_rate") is None:
            raise ValidationError("bcv_rate is required")
        try:
            day = parse_iso_date(data.get("rate_date")) or local_today()
        except ValueError:
            raise ValidationError("rate_date must be YYYY-MM-DD")

        row = get_services().currency.set_manual_rate(day, data.get("bcv_rate"), data.get("parallel_rate"))
        current_app.logger.info("Manual exchange rate for %s set to %s", day, row.bcv_rate)
        return success({"rate": row.to_dict()}, message="Exchange rate updated")
    except POSError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to set exchange rate")
        return internal_error()


@currency_bp.post("/refresh")
@require_auth
@require_role(ROLE_ADMIN)
def refresh_rate_route():
    try:
        row = get_services().currency.refresh_rate()
        return success({"rate": row.to_dict()}, message="Exchange rate refreshed from PyDolar")
    except RateFetchError as e:
        current_app.logger.warning("Manual rate refresh failed: %s", e)
        return error_response(RateUnavailable(f"Rate source unavailable: {e}"))
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to refresh exchange rate")
        return internal_error()


@currency_bp.get("/history")
@require_auth
def history_route():
    """Query params: start_date, end_date (YYYY-MM-DD). Defaults to the last 30 days."""
    try:
        end = parse_iso_date(request.args.get("end_date")) or local_today()
        start = parse_iso_date(request.args.get("start_date")) or end - timedelta(days=30)
    except ValueError:
        return error_response(ValidationError("start_date/end_date must be YYYY-MM-DD"))
    if start > end:
        return error_response(ValidationError("start_date must not be after end_date"))

    rows = get_services().currency.get_rate_history(start, end)
    return success({
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "rates": [r.to_dict() for r in rows],
    })


@currency_bp.get("/convert")
@require_auth
def convert_route():
    """Query params: amount, from (usd|ves)."""
    try:
        direction = (request.args.get("from") or "usd").lower()
        if direction not in ("usd", "ves"):
            raise ValidationError("from must be usd or ves")
        try:
            amount = to_decimal(request.args.get("amount"), "amount")
        except ValueError as e:
            raise ValidationError(str(e))
        if amount < 0:
            raise ValidationError("amount cannot be negative")

        currency = get_services().currency
        rate = currency.get_current_rate()
        if direction == "usd":
            converted = {"usd": money_json(amount), "ves": money_json(currency.convert_usd_to_ves(amount, rate))}
        else:
            converted = {"usd": money_json(currency.convert_ves_to_usd(amount, rate)), "ves": money_json(amount)}

        return success({"from": direction, "rate": rate_json(rate), **converted})
    except POSError as e:
        return error_response(e)
