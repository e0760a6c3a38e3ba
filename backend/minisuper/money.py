# Overview: Decimal helpers for USD/VES amounts and exchange rates.

"""
Money conventions:
- Amounts (USD and VES) are Decimal, rounded half-up to 2 places when stored.
- Exchange rates are VES per 1 USD, Decimal with 4 places.
- Floats never enter arithmetic; they are converted through str() first.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

CENT = Decimal("0.01")
RATE_PLACES = Decimal("0.0001")
ZERO = Decimal("0")

# IVA applied to every sale
TAX_RATE = Decimal("0.16")


def to_decimal(value, field: str = "amount") -> Decimal:
    """Coerce int/str/float/Decimal to Decimal. Raises ValueError on junk."""
    if value is None:
        return ZERO
    if isinstance(value, bool):
        raise ValueError(f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"{field} must be a number")
    else:
        raise ValueError(f"{field} must be a number")
    if not result.is_finite():
        raise ValueError(f"{field} must be a finite number")
    return result


def round_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_rate(value: Decimal) -> Decimal:
    return Decimal(value).quantize(RATE_PLACES, rounding=ROUND_HALF_UP)


def usd_to_ves(amount_usd: Decimal, rate: Decimal) -> Decimal:
    return round_money(amount_usd * rate)


def ves_to_usd(amount_ves: Decimal, rate: Decimal) -> Decimal:
    if rate <= 0:
        raise ValueError("rate must be > 0")
    return round_money(amount_ves / rate)


def money_json(value: Decimal | None) -> float | None:
    """JSON number rounded to cents (API responses only, never arithmetic)."""
    if value is None:
        return None
    return float(round_money(value))


def rate_json(value: Decimal | None) -> float | None:
    if value is None:
        return None
    return float(round_rate(value))
