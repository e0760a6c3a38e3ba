# Overview: Service-layer operations for sale numbers; encapsulates business logic and database work.

from __future__ import annotations

from datetime import date
from typing import Callable

from sqlalchemy import func

from ..errors import SaleNumbersExhausted
from ..models import Sale
from minisuper.time_utils import local_today


SEQUENCE_DIGITS = 4
MAX_SEQUENCE = 10 ** SEQUENCE_DIGITS - 1


class SaleNumberGenerator:
    """
    Sale numbers are YYYYMMDDNNNN: the store's calendar day plus a 4-digit
    sequence that restarts at 0001 every day.

    The next sequence is derived from the greatest existing number with
    today's prefix. That read is not atomic with the insert, so
    sales.sale_number is UNIQUE and the sale engine retries its whole unit
    of work when the insert collides.

    After 9999 sales in one day, next() raises SaleNumbersExhausted.
    """

    def __init__(self, session, today: Callable[[], date] = local_today):
        self.session = session
        self.today = today

    def next(self) -> str:
        prefix = self.today().strftime("%Y%m%d")

        # Longest first: text ordering alone would put ...9999 above ...10000
        latest = (
            self.session.query(Sale.sale_number)
            .filter(Sale.sale_number.like(f"{prefix}%"))
            .order_by(func.length(Sale.sale_number).desc(), Sale.sale_number.desc())
            .limit(1)
            .scalar()
        )

        sequence = 1
        if latest:
            suffix = latest[len(prefix):]
            if suffix.isdigit():
                sequence = int(suffix) + 1

        if sequence > MAX_SEQUENCE:
            raise SaleNumbersExhausted(prefix, MAX_SEQUENCE)

        return f"{prefix}{sequence:0{SEQUENCE_DIGITS}d}"
