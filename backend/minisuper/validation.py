from __future__ import annotations
from datetime import date
from decimal import Decimal
from minisuper.time_utils import parse_iso_date

from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy import Boolean, Integer, Numeric, String, Text, Date
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .models.catalog import UNITS_OF_MEASURE
from .models.sales import PAYMENT_METHODS
from .money import CENT, to_decimal


# Maximum price/amount: $9,999,999.99
MAX_AMOUNT = Decimal("9999999.99")

CANCEL_REASON_MIN = 10
CANCEL_REASON_MAX = 500


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_decimal(key: str, value: Any) -> Decimal:
    try:
        return to_decimal(value, key)
    except ValueError as e:
        raise ValidationError(str(e))


def _coerce_date(key: str, value: Any) -> date:
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            parsed = parse_iso_date(value)
        except ValueError:
            raise ValidationError(f"{key} must be an ISO-8601 date")
        if parsed is None:
            raise ValidationError(f"{key} must be an ISO-8601 date")
        return parsed
    raise ValidationError(f"{key} must be a date")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    if isinstance(coltype, Numeric):
        return _coerce_decimal(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be true or false")

    if isinstance(coltype, Date):
        return _coerce_date(col.key, value)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    """
    for field in ("sale_price_usd", "cost_price_usd"):
        if field in patch and patch[field] is not None:
            price = patch[field]
            if price <= 0:
                raise ValidationError(f"{field} must be > 0")
            if price > MAX_AMOUNT:
                raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT}")

    if "min_stock" in patch and patch["min_stock"] is not None and patch["min_stock"] < 0:
        raise ValidationError("min_stock must be >= 0")

    if "unit_of_measure" in patch and patch["unit_of_measure"] not in UNITS_OF_MEASURE:
        raise ValidationError(f"unit_of_measure must be one of: {', '.join(UNITS_OF_MEASURE)}")

    if "barcode" in patch and patch["barcode"] is not None and len(patch["barcode"]) < 8:
        raise ValidationError("barcode must be at least 8 characters")


# =============================================================================
# SALE REQUESTS
# =============================================================================

@dataclass(frozen=True)
class CartItem:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class PaymentInput:
    method: str
    amount_usd: Decimal = Decimal("0")
    amount_ves: Decimal = Decimal("0")
    reference: str | None = None
    note: str | None = None


@dataclass(frozen=True)
class SaleRequest:
    register_id: int
    items: list[CartItem]
    payments: list[PaymentInput]
    discount_usd: Decimal = Decimal("0")
    discount_ves: Decimal = Decimal("0")


def _positive_int(errors: list[str], key: str, value: Any) -> int | None:
    if value is None:
        errors.append(f"{key} is required")
        return None
    try:
        number = _coerce_int(key, value)
    except ValidationError as e:
        errors.append(e.message)
        return None
    if number <= 0:
        errors.append(f"{key} must be > 0")
        return None
    return number


def _check_amount(errors: list[str], key: str, amount: Decimal) -> None:
    if amount < 0:
        errors.append(f"{key} cannot be negative")
    elif amount > MAX_AMOUNT * 1000:
        errors.append(f"{key} is too large")
    elif amount != amount.quantize(CENT):
        errors.append(f"{key} cannot have more than 2 decimal places")


def _non_negative_amount(errors: list[str], key: str, value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    try:
        amount = _coerce_decimal(key, value)
    except ValidationError as e:
        errors.append(e.message)
        return Decimal("0")
    _check_amount(errors, key, amount)
    return amount


def _optional_text(errors: list[str], key: str, value: Any, max_length: int) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if len(text) > max_length:
        errors.append(f"{key} exceeds max length {max_length}")
    return text or None


def coerce_items(raw_items: Iterable, errors: list[str] | None = None) -> list[CartItem]:
    """Accept CartItem instances or {product_id, quantity} mappings."""
    own_errors = errors if errors is not None else []
    items: list[CartItem] = []
    for index, raw in enumerate(raw_items):
        if isinstance(raw, CartItem):
            items.append(raw)
            continue
        if not isinstance(raw, dict):
            own_errors.append(f"items[{index}] must be an object")
            continue
        product_id = _positive_int(own_errors, f"items[{index}].product_id", raw.get("product_id"))
        quantity = _positive_int(own_errors, f"items[{index}].quantity", raw.get("quantity"))
        if product_id is not None and quantity is not None:
            items.append(CartItem(product_id=product_id, quantity=quantity))
    if errors is None and own_errors:
        raise ValidationError("Invalid sale items", errors=own_errors)
    return items


def coerce_payments(raw_payments: Iterable, errors: list[str] | None = None) -> list[PaymentInput]:
    """Accept PaymentInput instances or payment mappings."""
    own_errors = errors if errors is not None else []
    payments: list[PaymentInput] = []
    for index, raw in enumerate(raw_payments):
        if isinstance(raw, PaymentInput):
            _check_amount(own_errors, f"payments[{index}].amount_usd", Decimal(raw.amount_usd))
            _check_amount(own_errors, f"payments[{index}].amount_ves", Decimal(raw.amount_ves))
            payments.append(raw)
            continue
        if not isinstance(raw, dict):
            own_errors.append(f"payments[{index}] must be an object")
            continue
        method = raw.get("method")
        if method not in PAYMENT_METHODS:
            own_errors.append(f"payments[{index}].method must be one of: {', '.join(PAYMENT_METHODS)}")
        amount_usd = _non_negative_amount(own_errors, f"payments[{index}].amount_usd", raw.get("amount_usd"))
        amount_ves = _non_negative_amount(own_errors, f"payments[{index}].amount_ves", raw.get("amount_ves"))
        payments.append(PaymentInput(
            method=method,
            amount_usd=amount_usd,
            amount_ves=amount_ves,
            reference=_optional_text(own_errors, f"payments[{index}].reference", raw.get("reference"), 100),
            note=_optional_text(own_errors, f"payments[{index}].note", raw.get("note"), 255),
        ))
    if errors is None and own_errors:
        raise ValidationError("Invalid payments", errors=own_errors)
    return payments


def parse_sale_request(payload: Any) -> SaleRequest:
    """
    Parse POST /api/sales body. Collects every field problem before raising.

    {
        "register_id": 1,
        "items": [{"product_id": 3, "quantity": 2}],
        "payments": [{"method": "efectivo_usd", "amount_usd": 10, "amount_ves": 0}],
        "discount_usd": 0,
        "discount_ves": 0
    }
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    errors: list[str] = []
    register_id = _positive_int(errors, "register_id", payload.get("register_id"))

    raw_items = payload.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        errors.append("items must contain at least one product")
        items = []
    else:
        items = coerce_items(raw_items, errors)

    raw_payments = payload.get("payments")
    if not isinstance(raw_payments, list) or not raw_payments:
        errors.append("payments must contain at least one payment")
        payments = []
    else:
        payments = coerce_payments(raw_payments, errors)

    discount_usd = _non_negative_amount(errors, "discount_usd", payload.get("discount_usd"))
    discount_ves = _non_negative_amount(errors, "discount_ves", payload.get("discount_ves"))

    if errors:
        raise ValidationError("Invalid sale data", errors=errors)

    return SaleRequest(
        register_id=register_id,
        items=items,
        payments=payments,
        discount_usd=discount_usd,
        discount_ves=discount_ves,
    )


def parse_cancel_reason(payload: Any) -> str:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    reason = payload.get("reason")
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError("reason is required")
    reason = reason.strip()
    if len(reason) < CANCEL_REASON_MIN:
        raise ValidationError(f"reason must be at least {CANCEL_REASON_MIN} characters")
    if len(reason) > CANCEL_REASON_MAX:
        raise ValidationError(f"reason cannot exceed {CANCEL_REASON_MAX} characters")
    return reason


# =============================================================================
# INVENTORY INTAKE
# =============================================================================

@dataclass(frozen=True)
class BatchIntake:
    product_id: int
    quantity: int
    unit_cost_usd: Decimal
    intake_rate: Decimal | None = None
    provider_id: int | None = None
    lot_number: str | None = None
    expiry_date: date | None = None


def parse_batch_intake(payload: Any, errors: list[str] | None = None, prefix: str = "") -> BatchIntake | None:
    """
    Parse one batch intake row. With an `errors` list, problems are appended
    (prefixed) and None is returned; without one, ValidationError is raised.
    """
    own_errors: list[str] = []
    if not isinstance(payload, dict):
        own_errors.append(f"{prefix.rstrip('.') or 'payload'} must be an object")
        payload = {}

    product_id = _positive_int(own_errors, f"{prefix}product_id", payload.get("product_id"))
    quantity = _positive_int(own_errors, f"{prefix}quantity", payload.get("quantity"))

    unit_cost = None
    if payload.get("unit_cost_usd") is None:
        own_errors.append(f"{prefix}unit_cost_usd is required")
    else:
        unit_cost = _non_negative_amount(own_errors, f"{prefix}unit_cost_usd", payload.get("unit_cost_usd"))
        if unit_cost == 0:
            own_errors.append(f"{prefix}unit_cost_usd must be > 0")

    intake_rate = None
    if payload.get("intake_rate") is not None:
        intake_rate = _non_negative_amount(own_errors, f"{prefix}intake_rate", payload.get("intake_rate"))
        if intake_rate == 0:
            own_errors.append(f"{prefix}intake_rate must be > 0")

    provider_id = None
    if payload.get("provider_id") is not None:
        provider_id = _positive_int(own_errors, f"{prefix}provider_id", payload.get("provider_id"))

    expiry_date = None
    if payload.get("expiry_date"):
        try:
            expiry_date = _coerce_date(f"{prefix}expiry_date", payload.get("expiry_date"))
        except ValidationError as e:
            own_errors.append(e.message)

    lot_number = _optional_text(own_errors, f"{prefix}lot_number", payload.get("lot_number"), 50)

    if own_errors:
        if errors is None:
            raise ValidationError("Invalid batch data", errors=own_errors)
        errors.extend(own_errors)
        return None

    return BatchIntake(
        product_id=product_id,
        quantity=quantity,
        unit_cost_usd=unit_cost,
        intake_rate=intake_rate,
        provider_id=provider_id,
        lot_number=lot_number,
        expiry_date=expiry_date,
    )


def parse_amount(payload: dict, key: str, required: bool = False) -> Decimal:
    """Single non-negative amount from a JSON body (cash open/close, conversions)."""
    errors: list[str] = []
    if payload.get(key) is None and required:
        raise ValidationError(f"{key} is required")
    amount = _non_negative_amount(errors, key, payload.get(key))
    if errors:
        raise ValidationError(errors[0], errors=errors)
    return amount


def parse_int(value: Any, key: str) -> int:
    errors: list[str] = []
    number = _positive_int(errors, key, value)
    if errors:
        raise ValidationError(errors[0], errors=errors)
    return number


def parse_non_negative_int(value: Any, key: str) -> int:
    if value is None:
        raise ValidationError(f"{key} is required")
    number = _coerce_int(key, value)
    if number < 0:
        raise ValidationError(f"{key} cannot be negative")
    return number
