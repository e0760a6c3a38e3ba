# Overview: Flask API routes for reports; parses input and returns JSON responses.

from flask import Blueprint, request

from ..decorators import require_auth, require_role
from ..errors import POSError, ValidationError
from ..extensions import db
from ..models.auth import ROLE_ADMIN
from ..responses import error_response, success
from ..services import reporting_service
from minisuper.time_utils import local_today, parse_iso_date


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/daily-sales")
@require_auth
def daily_sales_route():
    """Query params: date (YYYY-MM-DD, defaults to today)."""
    try:
        day = parse_iso_date(request.args.get("date")) or local_today()
    except ValueError:
        return error_response(ValidationError("date must be YYYY-MM-DD"))
    return success(reporting_service.daily_sales_summary(db.session, day))


@reports_bp.get("/sessions/<int:session_id>")
@require_auth
def session_report_route(session_id: int):
    try:
        return success(reporting_service.session_summary(db.session, session_id))
    except POSError as e:
        return error_response(e)


def _date_range():
    try:
        start = parse_iso_date(request.args.get("start_date"))
        end = parse_iso_date(request.args.get("end_date"))
    except ValueError:
        raise ValidationError("start_date and end_date must be YYYY-MM-DD")
    if start and end and start > end:
        raise ValidationError("start_date cannot be after end_date")
    return start, end


@reports_bp.get("/products")
@require_auth
def product_sales_route():
    """Query params: start_date, end_date, product_id, category_id, limit (default 50)."""
    try:
        start, end = _date_range()
        return success(reporting_service.product_sales_report(
            db.session,
            start_date=start,
            end_date=end,
            product_id=request.args.get("product_id", type=int),
            category_id=request.args.get("category_id", type=int),
            limit=request.args.get("limit", 50, type=int),
        ))
    except POSError as e:
        return error_response(e)


@reports_bp.get("/cashiers")
@require_auth
@require_role(ROLE_ADMIN)
def cashier_report_route():
    """Query params: start_date, end_date, user_id."""
    try:
        start, end = _date_range()
        return success(reporting_service.cashier_report(
            db.session,
            start_date=start,
            end_date=end,
            user_id=request.args.get("user_id", type=int),
        ))
    except POSError as e:
        return error_response(e)
