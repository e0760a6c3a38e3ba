# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

"""
Sales API Routes

- POST /api/sales                 create and complete a sale in one call
- GET  /api/sales                 list with filters
- GET  /api/sales/<id>            sale with lines, payments and profit analysis
- GET  /api/sales/<id>/receipt    receipt data (JSON only)
- PUT  /api/sales/<id>/cancel     cancel and restore stock
"""

from flask import Blueprint, request, current_app, g

from ..decorators import require_auth
from ..errors import POSError, ValidationError
from ..extensions import db
from ..responses import error_response, internal_error, success
from ..services import reporting_service
from ..services.container import get_services
from ..services.reporting_service import SaleFilter
from ..validation import parse_cancel_reason, parse_sale_request
from minisuper.money import money_json, rate_json
from minisuper.time_utils import parse_iso_date


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@sales_bp.post("/")
@require_auth
def create_sale_route():
    """
    Request body:
    {
        "register_id": 1,
        "items": [{"product_id": 3, "quantity": 2}],
        "payments": [
            {"method": "efectivo_usd", "amount_usd": 5, "amount_ves": 0},
            {"method": "pago_movil", "amount_usd": 0, "amount_ves": 80, "reference": "0412..."}
        ],
        "discount_usd": 0,
        "discount_ves": 0
    }
    """
    try:
        req = parse_sale_request(request.get_json(silent=True))
        result = get_services().sales.create_sale(
            user_id=g.current_user.id,
            register_id=req.register_id,
            items=req.items,
            payments=req.payments,
            discount_usd=req.discount_usd,
            discount_ves=req.discount_ves,
        )
        return success(
            {
                "sale": result.sale.to_dict(include_lines=True),
                "change": {
                    "usd": money_json(result.change_usd),
                    "ves": money_json(result.change_ves),
                },
                "exchange_rate": rate_json(result.rate),
            },
            message="Sale completed",
            status=201,
        )
    except POSError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create sale")
        return internal_error()


@sales_bp.get("")
@sales_bp.get("/")
@require_auth
def list_sales_route():
    """
    Query params: start_date, end_date (YYYY-MM-DD), payment_method, status,
    user_id, register_id, page, per_page
    """
    try:
        spec = SaleFilter(
            start_date=parse_iso_date(request.args.get("start_date")),
            end_date=parse_iso_date(request.args.get("end_date")),
            payment_method=request.args.get("payment_method"),
            status=request.args.get("status"),
            user_id=request.args.get("user_id", type=int),
            register_id=request.args.get("register_id", type=int),
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 20, type=int),
        )
    except ValueError:
        return error_response(ValidationError("start_date/end_date must be YYYY-MM-DD"))

    result = reporting_service.list_sales(db.session, spec)
    return success({
        "sales": [s.to_dict() for s in result["items"]],
        "stats": result["stats"],
        "pagination": result["pagination"],
    })


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    try:
        sale = get_services().sales.get_sale(sale_id)
        return success({
            "sale": sale.to_dict(include_lines=True),
            "profit_analysis": reporting_service.sale_profit_analysis(sale),
        })
    except POSError as e:
        return error_response(e)


@sales_bp.get("/<int:sale_id>/receipt")
@require_auth
def sale_receipt_route(sale_id: int):
    try:
        sale = get_services().sales.get_sale(sale_id)
        return success(reporting_service.receipt_payload(sale, current_app.config))
    except POSError as e:
        return error_response(e)


@sales_bp.put("/<int:sale_id>/cancel")
@require_auth
def cancel_sale_route(sale_id: int):
    """Request body: {"reason": "Cliente devolvio los productos"} (10-500 characters)"""
    try:
        reason = parse_cancel_reason(request.get_json(silent=True))
        result = get_services().sales.cancel_sale(sale_id, g.current_user.id, reason)
        return success(
            {
                "sale": result.sale.to_dict(include_lines=True),
                "restored_lines": result.restored_lines,
                "restored_quantity": result.restored_quantity,
            },
            message="Sale cancelled",
        )
    except POSError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel sale")
        return internal_error()
