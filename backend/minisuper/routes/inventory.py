# Overview: Flask API routes for inventory batches; parses input and returns JSON responses.

"""
Inventory API Routes

- POST /api/inventory/batches                 receive one batch (admin)
- POST /api/inventory/batches/bulk            receive many, all or nothing (admin)
- GET  /api/inventory/products/<id>/stock     stock summary with batches
- PUT  /api/inventory/batches/<id>/adjust     physical-count correction (admin)
- GET  /api/inventory/batches                 batch listing
- GET  /api/inventory/stock                   stock position of every product
- GET  /api/inventory/expiring                in-stock batches near or past expiry
"""

from flask import Blueprint, request, current_app, g

from ..decorators import require_auth, require_role
from ..errors import POSError, ValidationError
from ..extensions import db
from ..models.auth import ROLE_ADMIN
from ..responses import error_response, internal_error, success
from ..services.container import get_services
from ..validation import parse_batch_intake, parse_non_negative_int


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/batches")
@require_auth
@require_role(ROLE_ADMIN)
def receive_batch_route():
    """
    Request body:
    {
        "product_id": 1,
        "quantity": 24,
        "unit_cost_usd": 1.10,
        "intake_rate": 36.5,         (optional, defaults to the current rate)
        "provider_id": 2,            (optional)
        "lot_number": "L-2291",      (optional)
        "expiry_date": "2026-03-01"  (optional, must be in the future)
    }
    """
    try:
        intake = parse_batch_intake(request.get_json(silent=True))
        batch = get_services().ledger.receive_batch(intake, user_id=g.current_user.id)
        return success({"batch": batch.to_dict()}, message="Batch received", status=201)
    except POSError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to receive batch")
        return internal_error()


@inventory_bp.post("/batches/bulk")
@require_auth
@require_role(ROLE_ADMIN)
def receive_batches_route():
    """Request body: {"batches": [<batch>, ...]}. Every row is checked before any is created."""
    try:
        data = request.get_json(silent=True) or {}
        rows = data.get("batches")
        if not isinstance(rows, list) or not rows:
            raise ValidationError("batches must contain at least one batch")

        errors: list[str] = []
        intakes = []
        for index, row in enumerate(rows):
            intake = parse_batch_intake(row, errors, prefix=f"batches[{index}].")
            if intake is not None:
                intakes.append(intake)
        if errors:
            raise ValidationError("Invalid batch data", errors=errors)

        batches = get_services().ledger.receive_batches(intakes, user_id=g.current_user.id)
        return success(
            {"batches": [b.to_dict() for b in batches], "count": len(batches)},
            message=f"{len(batches)} batches received",
            status=201,
        )
    except POSError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to receive batches")
        return internal_error()


@inventory_bp.get("/products/<int:product_id>/stock")
@require_auth
def product_stock_route(product_id: int):
    try:
        return success(get_services().ledger.get_product_stock(product_id))
    except POSError as e:
        return error_response(e)


@inventory_bp.put("/batches/<int:batch_id>/adjust")
@require_auth
@require_role(ROLE_ADMIN)
def adjust_batch_route(batch_id: int):
    """Request body: {"current_quantity": 7, "reason": "Conteo fisico"}"""
    try:
        data = request.get_json(silent=True) or {}
        new_quantity = parse_non_negative_int(data.get("current_quantity"), "current_quantity")

        batch = get_services().ledger.adjust_batch(
            batch_id,
            new_quantity,
            data.get("reason") or "",
            user_id=g.current_user.id,
        )
        return success({"batch": batch.to_dict()}, message="Batch adjusted")
    except POSError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to adjust batch")
        return internal_error()


@inventory_bp.get("/batches")
@require_auth
def list_batches_route():
    """Query params: product_id, provider_id, in_stock (true/false), page, per_page"""
    result = get_services().ledger.list_batches(
        product_id=request.args.get("product_id", type=int),
        provider_id=request.args.get("provider_id", type=int),
        in_stock_only=request.args.get("in_stock", "false").lower() == "true",
        page=request.args.get("page", 1, type=int),
        per_page=request.args.get("per_page", 50, type=int),
    )
    return success(result)


@inventory_bp.get("/stock")
@require_auth
def overall_stock_route():
    """Query params: search, category_id, low_stock_only (true/false)"""
    result = get_services().ledger.overall_stock(
        search=request.args.get("search"),
        category_id=request.args.get("category_id", type=int),
        low_stock_only=request.args.get("low_stock_only", "false").lower() == "true",
    )
    return success(result)


@inventory_bp.get("/expiring")
@require_auth
def expiring_batches_route():
    """Query params: days (defaults to EXPIRY_WARNING_DAYS)"""
    try:
        return success(get_services().ledger.expiring_batches(request.args.get("days", type=int)))
    except POSError as e:
        return error_response(e)
