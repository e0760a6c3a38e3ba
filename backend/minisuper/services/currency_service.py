# Overview: Service-layer operations for exchange rates; encapsulates business logic and database work.

"""
Exchange Rate Service (VES per USD)

RATE RESOLUTION (get_current_rate):
1. Today's stored rate, if any (manual or fetched)
2. Otherwise fetch the BCV rate from PyDolar and store it as today's row
3. If the fetch fails, fall back to the most recent stored rate
4. If nothing is stored at all, raise RateUnavailable

The remote API is hit at most once per calendar day on the happy path.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Callable

import httpx
from sqlalchemy.exc import IntegrityError

from ..errors import RateUnavailable, ValidationError
from ..models import ExchangeRate
from ..models.currency import SOURCE_MANUAL, SOURCE_PYDOLAR
from minisuper.money import round_rate, to_decimal, usd_to_ves, ves_to_usd
from minisuper.time_utils import local_today, utcnow


USER_AGENT = "MiniSuper-System/1.0"


class RateFetchError(Exception):
    """Remote rate source unreachable or returned something unusable."""


def parse_pydolar_payload(payload) -> tuple[Decimal, Decimal | None]:
    """
    Extract (bcv, parallel) from a PyDolar /dollar response:

        {"datetime": ..., "monitors": {"bcv": {"price": 36.5}, "dolartoday": {"price": 38.1}}}
    """
    try:
        monitors = payload["monitors"]
        bcv = to_decimal(monitors["bcv"]["price"], "bcv")
    except (KeyError, TypeError, ValueError) as e:
        raise RateFetchError(f"Invalid PyDolar response: {e}")
    if bcv <= 0:
        raise RateFetchError("Invalid PyDolar response: bcv price must be > 0")

    parallel = None
    dolartoday = monitors.get("dolartoday") if isinstance(monitors, dict) else None
    if isinstance(dolartoday, dict) and dolartoday.get("price"):
        try:
            parallel = to_decimal(dolartoday["price"], "dolartoday")
        except ValueError:
            parallel = None
    return round_rate(bcv), round_rate(parallel) if parallel else None


class CurrencyService:
    """CurrencyProvider backed by the exchange_rates table and PyDolar."""

    def __init__(
        self,
        session,
        api_url: str,
        timeout: float = 10.0,
        *,
        transport: httpx.BaseTransport | None = None,
        logger: logging.Logger | None = None,
        today: Callable[[], date] = local_today,
    ):
        self.session = session
        self.api_url = api_url
        self.timeout = timeout
        self.transport = transport
        self.logger = logger or logging.getLogger(__name__)
        self.today = today

    # =========================================================================
    # CURRENT RATE
    # =========================================================================

    def get_current_rate(self) -> Decimal:
        stored = self.get_rate_for_date(self.today())
        if stored is not None:
            return Decimal(stored.bcv_rate)

        try:
            return Decimal(self.refresh_rate().bcv_rate)
        except RateFetchError as e:
            self.logger.warning("Exchange rate fetch failed: %s", e)

        latest = self.get_latest_rate()
        if latest is None:
            raise RateUnavailable("Exchange rate could not be obtained and no stored rate exists")

        self.logger.warning(
            "Using last stored exchange rate %s from %s", latest.bcv_rate, latest.rate_date
        )
        return Decimal(latest.bcv_rate)

    def fetch_remote_rate(self) -> tuple[Decimal, Decimal | None]:
        """GET the PyDolar endpoint. Raises RateFetchError on any transport or format problem."""
        try:
            with httpx.Client(
                timeout=self.timeout,
                transport=self.transport,
                headers={"User-Agent": USER_AGENT},
            ) as client:
                response = client.get(self.api_url)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as e:
            raise RateFetchError(str(e)) from e
        except ValueError as e:
            raise RateFetchError(f"Invalid JSON from rate source: {e}") from e
        return parse_pydolar_payload(payload)

    def refresh_rate(self) -> ExchangeRate:
        """
        Fetch from PyDolar and upsert today's row (source pydolar).

        Raises RateFetchError if the remote source fails.
        """
        bcv, parallel = self.fetch_remote_rate()
        row = self._upsert(self.today(), bcv, parallel, SOURCE_PYDOLAR)
        self.logger.info("Exchange rate refreshed from PyDolar: %s", bcv)
        return row

    # =========================================================================
    # STORED RATES
    # =========================================================================

    def set_manual_rate(self, day: date, bcv_rate, parallel_rate=None) -> ExchangeRate:
        """Admin override for one day. Keeps the previous parallel rate when none is given."""
        try:
            bcv = to_decimal(bcv_rate, "bcv_rate")
            parallel = to_decimal(parallel_rate, "parallel_rate") if parallel_rate is not None else None
        except ValueError as e:
            raise ValidationError(str(e))
        if bcv <= 0:
            raise ValidationError("bcv_rate must be > 0")
        if parallel is not None and parallel <= 0:
            raise ValidationError("parallel_rate must be > 0")

        return self._upsert(day, round_rate(bcv), round_rate(parallel) if parallel else None, SOURCE_MANUAL)

    def get_rate_for_date(self, day: date) -> ExchangeRate | None:
        return self.session.query(ExchangeRate).filter_by(rate_date=day).first()

    def get_latest_rate(self) -> ExchangeRate | None:
        return self.session.query(ExchangeRate).order_by(ExchangeRate.rate_date.desc()).first()

    def get_rate_history(self, start: date, end: date) -> list[ExchangeRate]:
        return (
            self.session.query(ExchangeRate)
            .filter(ExchangeRate.rate_date >= start, ExchangeRate.rate_date <= end)
            .order_by(ExchangeRate.rate_date.desc())
            .all()
        )

    # =========================================================================
    # CONVERSION
    # =========================================================================

    def convert_usd_to_ves(self, amount_usd: Decimal, rate: Decimal | None = None) -> Decimal:
        return usd_to_ves(amount_usd, rate or self.get_current_rate())

    def convert_ves_to_usd(self, amount_ves: Decimal, rate: Decimal | None = None) -> Decimal:
        return ves_to_usd(amount_ves, rate or self.get_current_rate())

    def _upsert(self, day: date, bcv: Decimal, parallel: Decimal | None, source: str) -> ExchangeRate:
        row = self.get_rate_for_date(day)
        if row is None:
            row = ExchangeRate(rate_date=day, bcv_rate=bcv, parallel_rate=parallel, source=source, created_at=utcnow())
            self.session.add(row)
        else:
            row.bcv_rate = bcv
            if parallel is not None:
                row.parallel_rate = parallel
            row.source = source
            row.created_at = utcnow()

        try:
            self.session.commit()
        except IntegrityError:
            # Another request stored today's rate first; keep theirs
            self.session.rollback()
            row = self.get_rate_for_date(day)
        return row
