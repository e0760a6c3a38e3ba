# Overview: Flask API routes for the catalog (categories, providers, products).

"""
Catalog API Routes

Reads are open to any authenticated user; writes require the admin role.
Product payloads carry VES prices computed with the current rate when one
can be obtained.
"""

from decimal import Decimal

from flask import Blueprint, request, current_app

from ..decorators import require_auth, require_role
from ..errors import POSError, ValidationError
from ..extensions import db
from ..models.auth import ROLE_ADMIN
from ..responses import error_response, internal_error, success
from ..services.catalog_service import ProductFilter
from ..services.container import get_services
from minisuper.money import rate_json
from minisuper.time_utils import local_today, parse_iso_date, to_iso_date


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api")


def _current_rate_or_none():
    try:
        return get_services().currency.get_current_rate()
    except POSError:
        return None


# =============================================================================
# CATEGORIES
# =============================================================================

@catalog_bp.get("/categories")
@require_auth
def list_categories_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    categories = get_services().catalog.list_categories(active_only=not include_inactive)
    return success({"categories": [c.to_dict() for c in categories]})


@catalog_bp.post("/categories")
@require_auth
@require_role(ROLE_ADMIN)
def create_category_route():
    try:
        category = get_services().catalog.create_category(request.get_json(silent=True))
        return success({"category": category.to_dict()}, message="Category created", status=201)
    except POSError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create category")
        return internal_error()


@catalog_bp.get("/categories/<int:category_id>")
@require_auth
def get_category_route(category_id: int):
    try:
        category = get_services().catalog.get_category(category_id)
        return success({"category": category.to_dict()})
    except POSError as e:
        return error_response(e)


@catalog_bp.put("/categories/<int:category_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_category_route(category_id: int):
    try:
        category = get_services().catalog.update_category(category_id, request.get_json(silent=True))
        return success({"category": category.to_dict()}, message="Category updated")
    except POSError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update category")
        return internal_error()


@catalog_bp.delete("/categories/<int:category_id>")
@require_auth
@require_role(ROLE_ADMIN)
def deactivate_category_route(category_id: int):
    try:
        category = get_services().catalog.deactivate_category(category_id)
        return success({"category": category.to_dict()}, message="Category deactivated")
    except POSError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to deactivate category")
        return internal_error()


# =============================================================================
# PROVIDERS
# =============================================================================

@catalog_bp.get("/providers")
@require_auth
def list_providers_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    providers = get_services().catalog.list_providers(active_only=not include_inactive)
    return success({"providers": [p.to_dict() for p in providers]})


@catalog_bp.post("/providers")
@require_auth
@require_role(ROLE_ADMIN)
def create_provider_route():
    try:
        provider = get_services().catalog.create_provider(request.get_json(silent=True))
        return success({"provider": provider.to_dict()}, message="Provider created", status=201)
    except POSError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create provider")
        return internal_error()


@catalog_bp.get("/providers/<int:provider_id>")
@require_auth
def get_provider_route(provider_id: int):
    try:
        provider = get_services().catalog.get_provider(provider_id)
        return success({"provider": provider.to_dict()})
    except POSError as e:
        return error_response(e)


@catalog_bp.put("/providers/<int:provider_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_provider_route(provider_id: int):
    try:
        provider = get_services().catalog.update_provider(provider_id, request.get_json(silent=True))
        return success({"provider": provider.to_dict()}, message="Provider updated")
    except POSError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update provider")
        return internal_error()


@catalog_bp.delete("/providers/<int:provider_id>")
@require_auth
@require_role(ROLE_ADMIN)
def deactivate_provider_route(provider_id: int):
    try:
        provider = get_services().catalog.deactivate_provider(provider_id)
        return success({"provider": provider.to_dict()}, message="Provider deactivated")
    except POSError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to deactivate provider")
        return internal_error()


# =============================================================================
# PRODUCTS
# =============================================================================

@catalog_bp.get("/products")
@require_auth
def list_products_route():
    """
    Query params: search, category_id, provider_id, include_inactive, page, per_page
    """
    spec = ProductFilter(
        search=request.args.get("search"),
        category_id=request.args.get("category_id", type=int),
        provider_id=request.args.get("provider_id", type=int),
        active_only=request.args.get("include_inactive", "false").lower() != "true",
        page=request.args.get("page", 1, type=int),
        per_page=request.args.get("per_page", 20, type=int),
    )
    services = get_services()
    result = services.catalog.list_products(spec)
    rate = _current_rate_or_none()
    stock = services.ledger.stock_by_product([p.id for p in result["items"]])

    items = []
    for product in result["items"]:
        data = product.to_dict(rate=rate)
        data["stock"] = stock.get(product.id, 0)
        items.append(data)

    return success({
        "products": items,
        "exchange_rate": float(rate) if rate is not None else None,
        "pagination": result["pagination"],
    })


@catalog_bp.post("/products")
@require_auth
@require_role(ROLE_ADMIN)
def create_product_route():
    try:
        product = get_services().catalog.create_product(request.get_json(silent=True))
        return success({"product": product.to_dict()}, message="Product created", status=201)
    except POSError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create product")
        return internal_error()


# Registered before /products/<int:product_id> so "low-stock" never reaches the int converter
@catalog_bp.get("/products/low-stock")
@require_auth
def low_stock_route():
    rows = get_services().catalog.low_stock_products()
    items = []
    for product, stock in rows:
        data = product.to_dict()
        data["stock"] = stock
        data["shortfall"] = product.min_stock - stock
        items.append(data)
    return success({"products": items, "count": len(items)})


@catalog_bp.get("/products/barcode/<string:barcode>")
@require_auth
def product_by_barcode_route(barcode: str):
    try:
        services = get_services()
        product = services.catalog.get_by_barcode(barcode)
        data = product.to_dict(rate=_current_rate_or_none())
        data["stock"] = services.ledger.stock_by_product([product.id]).get(product.id, 0)
        return success({"product": data})
    except POSError as e:
        return error_response(e)


@catalog_bp.get("/products/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        services = get_services()
        product = services.catalog.get_product(product_id)
        data = product.to_dict(rate=_current_rate_or_none())
        data["stock"] = services.ledger.stock_by_product([product.id]).get(product.id, 0)
        return success({"product": data})
    except POSError as e:
        return error_response(e)


@catalog_bp.put("/products/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_product_route(product_id: int):
    try:
        product = get_services().catalog.update_product(product_id, request.get_json(silent=True))
        return success({"product": product.to_dict()}, message="Product updated")
    except POSError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update product")
        return internal_error()


@catalog_bp.delete("/products/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN)
def deactivate_product_route(product_id: int):
    try:
        product = get_services().catalog.deactivate_product(product_id)
        return success({"product": product.to_dict()}, message="Product deactivated")
    except POSError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to deactivate product")
        return internal_error()


@catalog_bp.get("/products/pos")
@require_auth
def products_for_pos_route():
    """
    Sellable products for the register screen.

    Query params: search, limit (default 20, max 100)
    """
    try:
        services = get_services()
        rate = services.currency.get_current_rate()
        rows = services.catalog.products_for_pos(
            search=request.args.get("search"),
            limit=request.args.get("limit", 20, type=int),
        )
        products = []
        for product, batches in rows:
            products.append({
                "id": product.id,
                "barcode": product.barcode,
                "internal_code": product.internal_code,
                "name": product.name,
                "unit_of_measure": product.unit_of_measure,
                "stock": sum(b.current_quantity for b in batches),
                "batches": [
                    {
                        "id": b.id,
                        "current_quantity": b.current_quantity,
                        "expiry_date": to_iso_date(b.expiry_date),
                    }
                    for b in batches
                ],
                "prices": product.price_dict(rate),
            })
        return success({"products": products, "exchange_rate": rate_json(rate)})
    except POSError as e:
        return error_response(e)


@catalog_bp.get("/products/<int:product_id>/prices")
@require_auth
def product_prices_route(product_id: int):
    """
    USD and VES prices of a product.

    Query params: date (YYYY-MM-DD). Uses that day's stored rate when one
    exists, otherwise the current rate.
    """
    try:
        try:
            day = parse_iso_date(request.args.get("date"))
        except ValueError:
            raise ValidationError("date must be YYYY-MM-DD")

        services = get_services()
        product = services.catalog.find_active_product(product_id)
        stored = services.currency.get_rate_for_date(day) if day is not None else None
        rate = Decimal(stored.bcv_rate) if stored is not None else services.currency.get_current_rate()

        return success({
            "product_id": product.id,
            "name": product.name,
            "barcode": product.barcode,
            "prices": product.price_dict(rate),
            "date": (day or local_today()).isoformat(),
        })
    except POSError as e:
        return error_response(e)
