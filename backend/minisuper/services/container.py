# Overview: Service wiring; builds the sale engine and its collaborators explicitly.

"""
Every service takes its SQLAlchemy session and collaborators as arguments.
This module is the only place that decides which concrete objects are used:

- routes call get_services() (one set per request, on flask.g)
- CLI commands and tests call build_services() with their own session and
  may pass a replacement currency provider
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

from flask import current_app, g

from ..extensions import db
from .cash_session_service import CashSessionTracker
from .catalog_service import CatalogService
from .currency_service import CurrencyService
from .inventory_service import InventoryLedger
from .sale_number_service import SaleNumberGenerator
from .sales_service import SaleTransactionEngine


@dataclass(frozen=True)
class Services:
    currency: object
    catalog: CatalogService
    ledger: InventoryLedger
    cash_sessions: CashSessionTracker
    numbers: SaleNumberGenerator
    sales: SaleTransactionEngine


def build_currency(session, config: Mapping, logger: logging.Logger | None = None) -> CurrencyService:
    return CurrencyService(
        session,
        config.get("EXCHANGE_RATE_API_URL"),
        config.get("EXCHANGE_RATE_TIMEOUT", 10.0),
        transport=config.get("EXCHANGE_RATE_TRANSPORT"),
        logger=logger,
    )


def build_services(
    session,
    config: Mapping,
    *,
    logger: logging.Logger | None = None,
    currency=None,
) -> Services:
    if currency is None:
        currency = build_currency(session, config, logger)

    catalog = CatalogService(session)
    ledger = InventoryLedger(
        session,
        currency,
        logger=logger,
        expiry_warning_days=config.get("EXPIRY_WARNING_DAYS", 30),
    )
    cash_sessions = CashSessionTracker(session, currency, logger=logger)
    numbers = SaleNumberGenerator(session)
    sales = SaleTransactionEngine(
        session,
        ledger=ledger,
        cash_sessions=cash_sessions,
        currency=currency,
        numbers=numbers,
        catalog=catalog,
        logger=logger,
        attempts=config.get("SALE_RETRY_ATTEMPTS", 3),
    )
    return Services(
        currency=currency,
        catalog=catalog,
        ledger=ledger,
        cash_sessions=cash_sessions,
        numbers=numbers,
        sales=sales,
    )


def get_services() -> Services:
    """Per-request services bound to db.session and the app config."""
    if "services" not in g:
        g.services = build_services(db.session, current_app.config, logger=current_app.logger)
    return g.services
