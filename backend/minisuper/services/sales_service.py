# Overview: Service-layer operations for sales; the sale transaction engine.

"""
Sale Transaction Engine

create_sale() runs one unit of work:
 1. caller's OPEN session on the register (NoOpenSession)
 2. current rate (RateUnavailable propagates)
 3. payment splits: each needs amount_usd > 0 or amount_ves > 0
 4. per cart item, in order: active product, FIFO allocation
 5. per allocated segment: unit prices in both currencies, line subtotals
 6. net = subtotal - discount (DiscountExceedsSubtotal if negative)
 7. tax = net * 16%
 8. total = net + tax
 9. received = paid_usd + paid_ves / rate, must cover total_usd (InsufficientPayment)
10. change_usd = received - total_usd, change_ves = change_usd * rate
11. payment method summary: the single method, or "mixed"
12. sale number, Sale + SaleLines + PaymentSplits
13. session aggregates by relative SQL update
14. commit

Any failure rolls the whole unit back: no stock decrement, sale row or
session delta survives. Sale-number collisions and optimistic-lock
conflicts re-run the unit from step 1.

Rounding: persisted money is rounded half-up to cents. The payment check
runs on the stored cent amounts of each split (sub-cent amounts are
rejected by validation) against the persisted total, so
sum(usd) + sum(ves) / rate >= total_usd holds for every committed sale.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import (
    AlreadyCancelled,
    DiscountExceedsSubtotal,
    InsufficientPayment,
    NoOpenSession,
    RateUnavailable,
    SaleNotFound,
    ValidationError,
)
from ..models import PaymentSplit, Sale, SaleLine
from ..models.sales import PAYMENT_MIXED, SALE_CANCELLED, SALE_COMPLETED
from ..validation import coerce_items, coerce_payments
from minisuper.money import TAX_RATE, ZERO, round_money, round_rate, to_decimal
from minisuper.time_utils import utcnow
from .concurrency import SaleNumberConflict, lock_for_update, run_with_retry


@dataclass(frozen=True)
class SaleResult:
    sale: Sale
    change_usd: Decimal
    change_ves: Decimal
    rate: Decimal


@dataclass(frozen=True)
class CancelResult:
    sale: Sale
    restored_lines: int
    restored_quantity: int


def summarize_payment_methods(methods: Iterable[str]) -> str:
    unique = list(dict.fromkeys(methods))
    if len(unique) == 1:
        return unique[0]
    return PAYMENT_MIXED


class SaleTransactionEngine:
    """
    Orchestrates a sale across inventory, cash session and currency.

    Collaborators are passed in; see services/container.py for the wiring.
    """

    def __init__(
        self,
        session,
        *,
        ledger,
        cash_sessions,
        currency,
        numbers,
        catalog,
        logger: logging.Logger | None = None,
        attempts: int = 3,
        backoff_base: float = 0.05,
    ):
        self.session = session
        self.ledger = ledger
        self.cash_sessions = cash_sessions
        self.currency = currency
        self.numbers = numbers
        self.catalog = catalog
        self.logger = logger or logging.getLogger(__name__)
        self.attempts = attempts
        self.backoff_base = backoff_base

    # =========================================================================
    # CREATE
    # =========================================================================

    def create_sale(
        self,
        user_id: int,
        register_id: int,
        items,
        payments,
        discount_usd=ZERO,
        discount_ves=ZERO,
    ) -> SaleResult:
        items = coerce_items(items)
        payments = coerce_payments(payments)
        if not items:
            raise ValidationError("At least one item is required")
        if not payments:
            raise ValidationError("At least one payment is required")

        try:
            discount_usd = to_decimal(discount_usd, "discount_usd")
            discount_ves = to_decimal(discount_ves, "discount_ves")
        except ValueError as e:
            raise ValidationError(str(e))
        if discount_usd < 0 or discount_ves < 0:
            raise ValidationError("Discounts cannot be negative")

        def _op() -> SaleResult:
            return self._create_sale_once(user_id, register_id, items, payments, discount_usd, discount_ves)

        result = run_with_retry(
            self.session, _op, attempts=self.attempts, backoff_base=self.backoff_base
        )

        self.logger.info(
            "Sale %s completed: total %s USD, %s lines, method %s",
            result.sale.sale_number,
            result.sale.total_usd,
            len(result.sale.lines),
            result.sale.payment_method,
        )
        return result

    def _create_sale_once(self, user_id, register_id, items, payments, discount_usd, discount_ves) -> SaleResult:
        cash_session = self.cash_sessions.get_open_session_for_register(user_id, register_id)
        if cash_session is None:
            raise NoOpenSession("You have no open cash session on this register")

        rate = Decimal(self.currency.get_current_rate())
        if rate <= 0:
            raise RateUnavailable("Exchange rate must be greater than zero")

        paid_usd = ZERO
        paid_ves = ZERO
        for split in payments:
            amount_usd = round_money(split.amount_usd)
            amount_ves = round_money(split.amount_ves)
            if amount_usd <= 0 and amount_ves <= 0:
                raise ValidationError("Each payment must have an amount greater than 0")
            paid_usd += amount_usd
            paid_ves += amount_ves

        lines: list[SaleLine] = []
        subtotal_usd = ZERO
        subtotal_ves = ZERO
        for item in items:
            product = self.catalog.find_active_product(item.product_id)
            allocations = self.ledger.allocate(product.id, item.quantity, product=product)

            unit_price_usd = Decimal(product.sale_price_usd)
            unit_price_ves = unit_price_usd * rate
            for allocation in allocations:
                line_usd = unit_price_usd * allocation.quantity
                line_ves = unit_price_ves * allocation.quantity
                lines.append(SaleLine(
                    product_id=product.id,
                    batch_id=allocation.batch.id,
                    quantity=allocation.quantity,
                    unit_price_usd=round_money(unit_price_usd),
                    unit_price_ves=round_money(unit_price_ves),
                    subtotal_usd=round_money(line_usd),
                    subtotal_ves=round_money(line_ves),
                ))
                subtotal_usd += line_usd
                subtotal_ves += line_ves

        net_usd = subtotal_usd - discount_usd
        net_ves = subtotal_ves - discount_ves
        if net_usd < 0:
            raise DiscountExceedsSubtotal("USD", round_money(discount_usd), round_money(subtotal_usd))
        if net_ves < 0:
            raise DiscountExceedsSubtotal("VES", round_money(discount_ves), round_money(subtotal_ves))

        tax_usd = net_usd * TAX_RATE
        tax_ves = net_ves * TAX_RATE
        total_usd = round_money(net_usd + tax_usd)
        total_ves = round_money(net_ves + tax_ves)

        received_usd = paid_usd + paid_ves / rate
        if received_usd < total_usd:
            raise InsufficientPayment(total_usd, round_money(received_usd))

        change_usd = round_money(received_usd - total_usd)
        change_ves = round_money(change_usd * rate)

        sale = Sale(
            sale_number=self.numbers.next(),
            register_id=register_id,
            user_id=user_id,
            cash_session_id=cash_session.id,
            subtotal_usd=round_money(subtotal_usd),
            subtotal_ves=round_money(subtotal_ves),
            discount_usd=round_money(discount_usd),
            discount_ves=round_money(discount_ves),
            tax_usd=round_money(tax_usd),
            tax_ves=round_money(tax_ves),
            total_usd=total_usd,
            total_ves=total_ves,
            exchange_rate=round_rate(rate),
            payment_method=summarize_payment_methods(split.method for split in payments),
            received_usd=round_money(paid_usd),
            received_ves=round_money(paid_ves),
            change_usd=change_usd,
            change_ves=change_ves,
            status=SALE_COMPLETED,
            created_at=utcnow(),
        )
        self.session.add(sale)
        try:
            self.session.flush()
        except IntegrityError as e:
            raise SaleNumberConflict(sale.sale_number) from e

        for line in lines:
            line.sale_id = sale.id
            self.session.add(line)
        for split in payments:
            self.session.add(PaymentSplit(
                sale_id=sale.id,
                method=split.method,
                amount_usd=round_money(split.amount_usd),
                amount_ves=round_money(split.amount_ves),
                reference=split.reference,
                note=split.note,
                created_at=sale.created_at,
            ))

        self.cash_sessions.record_sale(cash_session.id, total_usd)

        self.session.commit()
        return SaleResult(sale=sale, change_usd=change_usd, change_ves=change_ves, rate=rate)

    # =========================================================================
    # CANCEL
    # =========================================================================

    def cancel_sale(self, sale_id: int, user_id: int, reason: str) -> CancelResult:
        """
        Cancel a completed sale: restore stock line by line, flip status,
        take the sale out of its session totals. One unit of work.

        Each line is restored at most once (restored_at guard).
        """
        if not reason or not reason.strip():
            raise ValidationError("reason is required")

        def _op() -> CancelResult:
            return self._cancel_sale_once(sale_id, user_id, reason.strip())

        result = run_with_retry(
            self.session, _op, attempts=self.attempts, backoff_base=self.backoff_base
        )

        self.logger.info(
            "Sale %s cancelled by user %s: %s units restored",
            result.sale.sale_number, user_id, result.restored_quantity,
        )
        return result

    def _cancel_sale_once(self, sale_id: int, user_id: int, reason: str) -> CancelResult:
        sale = lock_for_update(self.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise SaleNotFound(sale_id)
        if sale.status == SALE_CANCELLED:
            raise AlreadyCancelled(sale_id)

        now = utcnow()

        # Conditional flip: a concurrent cancel that got here first wins
        flipped = self.session.execute(
            update(Sale)
            .where(Sale.id == sale_id, Sale.status == SALE_COMPLETED)
            .values(
                status=SALE_CANCELLED,
                cancel_reason=reason,
                cancelled_at=now,
                cancelled_by_user_id=user_id,
            )
            .execution_options(synchronize_session="fetch")
        )
        if flipped.rowcount != 1:
            raise AlreadyCancelled(sale_id)

        restored_lines = 0
        restored_quantity = 0
        for line in sale.lines:
            if line.batch_id is None:
                continue
            claimed = self.session.execute(
                update(SaleLine)
                .where(SaleLine.id == line.id, SaleLine.restored_at.is_(None))
                .values(restored_at=now)
                .execution_options(synchronize_session="fetch")
            )
            if claimed.rowcount != 1:
                continue
            self.ledger.restore(line.batch_id, line.quantity)
            restored_lines += 1
            restored_quantity += line.quantity

        if sale.cash_session_id is not None:
            self.cash_sessions.reverse_sale(sale.cash_session_id, Decimal(sale.total_usd))

        self.session.commit()
        return CancelResult(sale=sale, restored_lines=restored_lines, restored_quantity=restored_quantity)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_sale(self, sale_id: int) -> Sale:
        sale = self.session.get(Sale, sale_id)
        if sale is None:
            raise SaleNotFound(sale_id)
        return sale
