# Overview: Service-layer operations for reporting; read-only queries over sales and sessions.

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import func

from ..errors import NotFoundError
from ..models import CashSession, Category, Product, Sale, SaleLine
from ..models.sales import (
    PAYMENT_METHODS,
    PAYMENT_MIXED,
    SALE_CANCELLED,
    SALE_COMPLETED,
    line_margin_percent,
    line_total_profit_usd,
    line_unit_profit_usd,
)
from minisuper.money import money_json, rate_json
from minisuper.time_utils import local_day_bounds, to_local_date, to_utc_z, utcnow


ZERO = Decimal("0")


@dataclass(frozen=True)
class SaleFilter:
    """Explicit optional filters for sale listings. Dates are store calendar days, inclusive."""
    start_date: date | None = None
    end_date: date | None = None
    payment_method: str | None = None
    status: str | None = None
    user_id: int | None = None
    register_id: int | None = None
    page: int = 1
    per_page: int = 20


def _sum(values) -> Decimal:
    return sum((Decimal(v) for v in values), ZERO)


def list_sales(session, spec: SaleFilter) -> dict:
    query = session.query(Sale)
    if spec.start_date is not None:
        query = query.filter(Sale.created_at >= local_day_bounds(spec.start_date)[0])
    if spec.end_date is not None:
        query = query.filter(Sale.created_at < local_day_bounds(spec.end_date)[1])
    if spec.payment_method:
        query = query.filter(Sale.payment_method == spec.payment_method)
    if spec.status:
        query = query.filter(Sale.status == spec.status)
    if spec.user_id is not None:
        query = query.filter(Sale.user_id == spec.user_id)
    if spec.register_id is not None:
        query = query.filter(Sale.register_id == spec.register_id)

    per_page = min(max(spec.per_page, 1), 100)
    page = max(spec.page, 1)
    total = query.count()
    sales = (
        query.order_by(Sale.created_at.desc(), Sale.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )

    page_total_usd = _sum(s.total_usd for s in sales)
    return {
        "items": sales,
        "stats": {
            "total_usd": money_json(page_total_usd),
            "total_ves": money_json(_sum(s.total_ves for s in sales)),
            "average_sale_usd": money_json(page_total_usd / len(sales)) if sales else 0.0,
        },
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": math.ceil(total / per_page) if total else 0,
        },
    }


def daily_sales_summary(session, day: date) -> dict:
    """
    Totals for one store calendar day. Only COMPLETED sales count toward
    money figures; cancellations are reported separately.
    """
    start, end = local_day_bounds(day)
    sales = (
        session.query(Sale)
        .filter(Sale.created_at >= start, Sale.created_at < end)
        .order_by(Sale.created_at.asc())
        .all()
    )
    completed = [s for s in sales if s.status == SALE_COMPLETED]
    cancelled = [s for s in sales if s.status == SALE_CANCELLED]

    by_method = {}
    for method in PAYMENT_METHODS + (PAYMENT_MIXED,):
        matching = [s for s in completed if s.payment_method == method]
        by_method[method] = {
            "count": len(matching),
            "total_usd": money_json(_sum(s.total_usd for s in matching)),
        }

    completed_ids = [s.id for s in completed]
    products = []
    items_sold = 0
    if completed_ids:
        rows = (
            session.query(
                Product.id,
                Product.barcode,
                Product.name,
                Category.name,
                func.sum(SaleLine.quantity),
                func.sum(SaleLine.subtotal_usd),
                func.count(func.distinct(SaleLine.sale_id)),
            )
            .join(SaleLine, SaleLine.product_id == Product.id)
            .outerjoin(Category, Category.id == Product.category_id)
            .filter(SaleLine.sale_id.in_(completed_ids))
            .group_by(Product.id, Product.barcode, Product.name, Category.name)
            .order_by(func.sum(SaleLine.quantity).desc(), Product.name.asc())
            .all()
        )
        for product_id, barcode, name, category, quantity, amount, transactions in rows:
            items_sold += int(quantity or 0)
            products.append({
                "product_id": product_id,
                "barcode": barcode,
                "name": name,
                "category": category,
                "quantity_sold": int(quantity or 0),
                "total_usd": money_json(Decimal(amount or 0)),
                "transactions": int(transactions or 0),
            })

    total_usd = _sum(s.total_usd for s in completed)
    return {
        "date": day.isoformat(),
        "sales_count": len(completed),
        "cancelled_count": len(cancelled),
        "subtotal_usd": money_json(_sum(s.subtotal_usd for s in completed)),
        "discount_usd": money_json(_sum(s.discount_usd for s in completed)),
        "tax_usd": money_json(_sum(s.tax_usd for s in completed)),
        "total_usd": money_json(total_usd),
        "total_ves": money_json(_sum(s.total_ves for s in completed)),
        "average_sale_usd": money_json(total_usd / len(completed)) if completed else 0.0,
        "items_sold": items_sold,
        "by_payment_method": by_method,
        "products": products,
    }


def session_summary(session, cash_session_id: int) -> dict:
    cash_session = session.get(CashSession, cash_session_id)
    if cash_session is None:
        raise NotFoundError("Cash session not found", details={"session_id": cash_session_id})

    sales = session.query(Sale).filter(Sale.cash_session_id == cash_session_id).all()
    completed = [s for s in sales if s.status == SALE_COMPLETED]

    methods: dict[str, dict] = {}
    for sale in completed:
        entry = methods.setdefault(sale.payment_method, {"count": 0, "total_usd": ZERO})
        entry["count"] += 1
        entry["total_usd"] += Decimal(sale.total_usd)

    return {
        "session": cash_session.to_dict(),
        "sales_count": len(completed),
        "cancelled_count": len(sales) - len(completed),
        "received_usd": money_json(_sum(s.received_usd for s in completed)),
        "received_ves": money_json(_sum(s.received_ves for s in completed)),
        "change_usd": money_json(_sum(s.change_usd for s in completed)),
        "by_payment_method": {
            method: {"count": entry["count"], "total_usd": money_json(entry["total_usd"])}
            for method, entry in sorted(methods.items())
        },
    }


def _completed_sales_query(session, start_date: date | None, end_date: date | None):
    query = session.query(Sale).filter(Sale.status == SALE_COMPLETED)
    if start_date is not None:
        query = query.filter(Sale.created_at >= local_day_bounds(start_date)[0])
    if end_date is not None:
        query = query.filter(Sale.created_at < local_day_bounds(end_date)[1])
    return query


def _period(start_date: date | None, end_date: date | None) -> dict:
    return {
        "start_date": start_date.isoformat() if start_date else None,
        "end_date": end_date.isoformat() if end_date else None,
    }


def product_sales_report(
    session,
    start_date: date | None = None,
    end_date: date | None = None,
    product_id: int | None = None,
    category_id: int | None = None,
    limit: int = 50,
) -> dict:
    """
    Units, revenue and profit per product over completed sales, best sellers
    first. Profit uses the cost of the batch each line was taken from.
    """
    query = (
        session.query(SaleLine)
        .join(Sale, Sale.id == SaleLine.sale_id)
        .join(Product, Product.id == SaleLine.product_id)
        .filter(Sale.status == SALE_COMPLETED)
    )
    if start_date is not None:
        query = query.filter(Sale.created_at >= local_day_bounds(start_date)[0])
    if end_date is not None:
        query = query.filter(Sale.created_at < local_day_bounds(end_date)[1])
    if product_id is not None:
        query = query.filter(SaleLine.product_id == product_id)
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)

    rows: dict[int, dict] = {}
    for line in query.all():
        entry = rows.get(line.product_id)
        if entry is None:
            product = line.product
            entry = rows[line.product_id] = {
                "product_id": product.id,
                "barcode": product.barcode,
                "name": product.name,
                "category": product.category.name if product.category else None,
                "provider": product.provider.name if product.provider else None,
                "quantity_sold": 0,
                "revenue_usd": ZERO,
                "revenue_ves": ZERO,
                "profit_usd": ZERO,
                "sale_ids": set(),
                "first_sale": line.sale.created_at,
                "last_sale": line.sale.created_at,
            }
        entry["quantity_sold"] += line.quantity
        entry["revenue_usd"] += Decimal(line.subtotal_usd)
        entry["revenue_ves"] += Decimal(line.subtotal_ves)
        entry["profit_usd"] += line_total_profit_usd(line)
        entry["sale_ids"].add(line.sale_id)
        entry["first_sale"] = min(entry["first_sale"], line.sale.created_at)
        entry["last_sale"] = max(entry["last_sale"], line.sale.created_at)

    ranked = sorted(rows.values(), key=lambda e: (-e["quantity_sold"], e["name"]))[: max(limit, 1)]
    products = []
    for entry in ranked:
        quantity = entry["quantity_sold"]
        revenue = entry["revenue_usd"]
        products.append({
            "product_id": entry["product_id"],
            "barcode": entry["barcode"],
            "name": entry["name"],
            "category": entry["category"],
            "provider": entry["provider"],
            "quantity_sold": quantity,
            "revenue_usd": money_json(revenue),
            "revenue_ves": money_json(entry["revenue_ves"]),
            "profit_usd": money_json(entry["profit_usd"]),
            "margin_percent": money_json(entry["profit_usd"] / revenue * 100) if revenue else 0.0,
            "average_price_usd": money_json(revenue / quantity) if quantity else 0.0,
            "transactions": len(entry["sale_ids"]),
            "first_sale": to_utc_z(entry["first_sale"]),
            "last_sale": to_utc_z(entry["last_sale"]),
        })

    return {"products": products, "period": _period(start_date, end_date)}


def cashier_report(
    session,
    start_date: date | None = None,
    end_date: date | None = None,
    user_id: int | None = None,
) -> dict:
    """Completed-sale totals per cashier, highest revenue first."""
    query = _completed_sales_query(session, start_date, end_date)
    if user_id is not None:
        query = query.filter(Sale.user_id == user_id)

    rows: dict[int, dict] = {}
    for sale in query.order_by(Sale.created_at.asc()).all():
        entry = rows.setdefault(sale.user_id, {
            "user_id": sale.user_id,
            "cashier": sale.user.full_name if sale.user else None,
            "username": sale.user.username if sale.user else None,
            "sales": [],
        })
        entry["sales"].append(sale)

    cashiers = []
    for entry in rows.values():
        sales = entry.pop("sales")
        total_usd = _sum(s.total_usd for s in sales)
        entry.update({
            "sales_count": len(sales),
            "total_usd": money_json(total_usd),
            "total_ves": money_json(_sum(s.total_ves for s in sales)),
            "average_sale_usd": money_json(total_usd / len(sales)),
            "first_sale": to_utc_z(sales[0].created_at),
            "last_sale": to_utc_z(sales[-1].created_at),
            "days_worked": len({to_local_date(s.created_at) for s in sales}),
        })
        cashiers.append(entry)

    cashiers.sort(key=lambda e: (-e["total_usd"], e["user_id"]))
    return {"cashiers": cashiers, "period": _period(start_date, end_date)}


def sale_profit_analysis(sale: Sale) -> dict:
    """Per-line profit against the cost of the batch each line came from."""
    lines = []
    for line in sale.lines:
        lines.append({
            "sale_line_id": line.id,
            "product_id": line.product_id,
            "product_name": line.product.name if line.product else None,
            "quantity": line.quantity,
            "unit_price_usd": money_json(line.unit_price_usd),
            "unit_cost_usd": money_json(line.batch.unit_cost_usd) if line.batch else None,
            "unit_profit_usd": money_json(line_unit_profit_usd(line)),
            "total_profit_usd": money_json(line_total_profit_usd(line)),
            "margin_percent": money_json(line_margin_percent(line)),
        })

    total_profit = _sum(line_total_profit_usd(line) for line in sale.lines)
    margins = [line_margin_percent(line) for line in sale.lines]
    return {
        "total_profit_usd": money_json(total_profit),
        "total_profit_ves": money_json(total_profit * Decimal(sale.exchange_rate)),
        "average_margin_percent": money_json(_sum(margins) / len(margins)) if margins else 0.0,
        "lines": lines,
    }


def receipt_payload(sale: Sale, store: dict) -> dict:
    """Receipt data only; formatting and printing are up to the client."""
    return {
        "store": {
            "name": store.get("STORE_NAME"),
            "address": store.get("STORE_ADDRESS"),
            "phone": store.get("STORE_PHONE"),
            "rif": store.get("STORE_RIF"),
        },
        "sale": {
            "number": sale.sale_number,
            "date": to_utc_z(sale.created_at),
            "cashier": sale.user.full_name if sale.user else None,
            "register": sale.register.name if sale.register else None,
            "status": sale.status,
        },
        "items": [
            {
                "barcode": line.product.barcode if line.product else None,
                "name": line.product.name if line.product else None,
                "quantity": line.quantity,
                "unit_price_usd": money_json(line.unit_price_usd),
                "unit_price_ves": money_json(line.unit_price_ves),
                "subtotal_usd": money_json(line.subtotal_usd),
                "subtotal_ves": money_json(line.subtotal_ves),
            }
            for line in sale.lines
        ],
        "totals": {
            "subtotal_usd": money_json(sale.subtotal_usd),
            "subtotal_ves": money_json(sale.subtotal_ves),
            "discount_usd": money_json(sale.discount_usd),
            "discount_ves": money_json(sale.discount_ves),
            "tax_usd": money_json(sale.tax_usd),
            "tax_ves": money_json(sale.tax_ves),
            "total_usd": money_json(sale.total_usd),
            "total_ves": money_json(sale.total_ves),
        },
        "payment": {
            "method": sale.payment_method,
            "received_usd": money_json(sale.received_usd),
            "received_ves": money_json(sale.received_ves),
            "change_usd": money_json(sale.change_usd),
            "change_ves": money_json(sale.change_ves),
            "exchange_rate": rate_json(sale.exchange_rate),
            "splits": [split.to_dict() for split in sale.payments],
        },
        "footer": {
            "message": "Gracias por su compra",
            "generated_at": to_utc_z(utcnow()),
        },
    }
