# Overview: Service-layer operations for inventory batches; encapsulates business logic and database work.

"""
Minisuper Inventory Invariants (authoritative)

Inventory model:
- Stock lives in InventoryBatch rows; a product's stock is SUM(current_quantity).
- 0 <= current_quantity <= initial_quantity after every committed operation.
- Batches are never deleted.

Allocation order (FIFO with expiry first):
1. batches that have an expiry date before batches that don't
2. earliest expiry date
3. earliest received_at
4. lowest id

Concurrency:
- allocate() reads candidate rows with SELECT ... FOR UPDATE and decrements
  them through the ORM, so the version_id check rejects a lost update with
  StaleDataError (the caller's unit of work is then retried).
- restore() is a relative SQL increment, safe against concurrent allocations.
- Nothing here commits except intake and adjustment, which are their own
  units of work; allocate/restore run inside the caller's transaction.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable

from sqlalchemy import func, update

from ..errors import BatchNotFound, InsufficientStock, ProductNotFound, ValidationError
from ..models import InventoryBatch, Product
from ..models.inventory import is_expired, is_expiring_soon, stock_value_usd, stock_value_ves
from ..validation import BatchIntake
from minisuper.money import money_json, round_money, round_rate
from minisuper.time_utils import local_today, utcnow
from .concurrency import lock_for_update


@dataclass(frozen=True)
class BatchAllocation:
    batch: InventoryBatch
    quantity: int


class InventoryLedger:
    """Owns batch quantities: intake, FIFO allocation, restoration, count corrections."""

    def __init__(
        self,
        session,
        currency=None,
        *,
        logger: logging.Logger | None = None,
        today: Callable[[], date] = local_today,
        expiry_warning_days: int = 30,
    ):
        self.session = session
        self.currency = currency
        self.logger = logger or logging.getLogger(__name__)
        self.today = today
        self.expiry_warning_days = expiry_warning_days

    # =========================================================================
    # ALLOCATION
    # =========================================================================

    def allocatable_batches(self, product_id: int, *, lock: bool = False) -> list[InventoryBatch]:
        """Batches with stock left, in allocation order."""
        query = (
            self.session.query(InventoryBatch)
            .filter(
                InventoryBatch.product_id == product_id,
                InventoryBatch.current_quantity > 0,
            )
            .order_by(
                InventoryBatch.expiry_date.is_(None),
                InventoryBatch.expiry_date.asc(),
                InventoryBatch.received_at.asc(),
                InventoryBatch.id.asc(),
            )
        )
        if lock:
            query = lock_for_update(query)
        return query.all()

    def allocate(self, product_id: int, quantity: int, product: Product | None = None) -> list[BatchAllocation]:
        """
        Take `quantity` units of a product from its batches in allocation order.

        Raises ProductNotFound for a missing or inactive product and
        InsufficientStock before any batch is touched. Decrements are left
        pending in the session for the caller to flush/commit.
        """
        if quantity <= 0:
            raise ValidationError("quantity must be > 0")

        if product is None:
            product = self.session.query(Product).filter_by(id=product_id, is_active=True).first()
        if product is None or not product.is_active:
            raise ProductNotFound(product_id)

        batches = self.allocatable_batches(product_id, lock=True)
        available = sum(b.current_quantity for b in batches)
        if available < quantity:
            raise InsufficientStock(product_id, available, quantity, product_name=product.name)

        allocations: list[BatchAllocation] = []
        remaining = quantity
        for batch in batches:
            if remaining <= 0:
                break
            take = min(remaining, batch.current_quantity)
            batch.current_quantity = batch.current_quantity - take
            allocations.append(BatchAllocation(batch=batch, quantity=take))
            remaining -= take

        self.session.flush()
        return allocations

    def restore(self, batch_id: int, quantity: int) -> None:
        """
        Return units to a batch (cancellation). Unconditional relative
        increment; callers guard against restoring the same line twice.
        """
        self.session.execute(
            update(InventoryBatch)
            .where(InventoryBatch.id == batch_id)
            .values(
                current_quantity=InventoryBatch.current_quantity + quantity,
                version_id=InventoryBatch.version_id + 1,
            )
            .execution_options(synchronize_session="fetch")
        )

    # =========================================================================
    # INTAKE
    # =========================================================================

    def _check_intake(self, intake: BatchIntake, prefix: str = "") -> list[str]:
        errors = []
        product = self.session.get(Product, intake.product_id)
        if product is None:
            errors.append(f"{prefix}product {intake.product_id} not found")
        if intake.quantity <= 0:
            errors.append(f"{prefix}quantity must be > 0")
        if intake.unit_cost_usd <= 0:
            errors.append(f"{prefix}unit_cost_usd must be > 0")
        if intake.intake_rate is not None and intake.intake_rate <= 0:
            errors.append(f"{prefix}intake_rate must be > 0")
        if intake.expiry_date is not None and intake.expiry_date <= self.today():
            errors.append(f"{prefix}expiry_date must be in the future")
        return errors

    def _build_batch(self, intake: BatchIntake, rate: Decimal, user_id: int | None) -> InventoryBatch:
        return InventoryBatch(
            product_id=intake.product_id,
            provider_id=intake.provider_id,
            lot_number=intake.lot_number,
            initial_quantity=intake.quantity,
            current_quantity=intake.quantity,
            unit_cost_usd=round_money(intake.unit_cost_usd),
            intake_rate=round_rate(intake.intake_rate or rate),
            expiry_date=intake.expiry_date,
            received_at=utcnow(),
            received_by_user_id=user_id,
        )

    def _default_rate(self, intakes: list[BatchIntake]) -> Decimal | None:
        if all(i.intake_rate is not None for i in intakes):
            return None
        if self.currency is None:
            raise ValidationError("intake_rate is required")
        return self.currency.get_current_rate()

    def receive_batch(self, intake: BatchIntake, user_id: int | None = None) -> InventoryBatch:
        errors = self._check_intake(intake)
        if errors:
            raise ValidationError(errors[0], errors=errors)

        rate = self._default_rate([intake])
        batch = self._build_batch(intake, rate, user_id)
        self.session.add(batch)
        self.session.commit()

        self.logger.info(
            "Batch %s received: product %s qty %s", batch.id, batch.product_id, batch.initial_quantity
        )
        return batch

    def receive_batches(self, intakes: list[BatchIntake], user_id: int | None = None) -> list[InventoryBatch]:
        """All rows are validated first; either every batch is created or none is."""
        if not intakes:
            raise ValidationError("At least one batch is required")

        errors: list[str] = []
        for index, intake in enumerate(intakes):
            errors.extend(self._check_intake(intake, prefix=f"batches[{index}]: "))
        if errors:
            raise ValidationError("Invalid batch data", errors=errors)

        rate = self._default_rate(intakes)
        batches = [self._build_batch(intake, rate, user_id) for intake in intakes]
        try:
            self.session.add_all(batches)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self.logger.info("%s batches received", len(batches))
        return batches

    # =========================================================================
    # ADJUSTMENT
    # =========================================================================

    def adjust_batch(self, batch_id: int, new_quantity: int, reason: str, user_id: int | None = None) -> InventoryBatch:
        """Physical-count correction. new_quantity must stay within 0..initial_quantity."""
        if not reason or not reason.strip():
            raise ValidationError("reason is required")

        batch = lock_for_update(self.session.query(InventoryBatch).filter_by(id=batch_id)).first()
        if batch is None:
            raise BatchNotFound(batch_id)

        if new_quantity < 0 or new_quantity > batch.initial_quantity:
            raise ValidationError(
                f"current_quantity must be between 0 and {batch.initial_quantity}",
                details={"initial_quantity": batch.initial_quantity},
            )

        previous = batch.current_quantity
        batch.current_quantity = new_quantity
        self.session.commit()

        self.logger.info(
            "Batch %s adjusted %s -> %s by user %s: %s",
            batch.id, previous, new_quantity, user_id, reason.strip(),
        )
        return batch

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_product_stock(self, product_id: int) -> dict:
        """Stock summary over all batches of a product."""
        product = self.session.get(Product, product_id)
        if product is None:
            raise ProductNotFound(product_id)

        batches = (
            self.session.query(InventoryBatch)
            .filter(InventoryBatch.product_id == product_id)
            .order_by(
                InventoryBatch.expiry_date.is_(None),
                InventoryBatch.expiry_date.asc(),
                InventoryBatch.received_at.asc(),
                InventoryBatch.id.asc(),
            )
            .all()
        )
        today = self.today()
        in_stock = [b for b in batches if b.current_quantity > 0]
        total = sum(b.current_quantity for b in in_stock)

        return {
            "product_id": product.id,
            "product_name": product.name,
            "min_stock": product.min_stock,
            "total_quantity": total,
            "is_low_stock": total < product.min_stock,
            "batch_count": len(in_stock),
            "expired_quantity": sum(b.current_quantity for b in in_stock if is_expired(b, today)),
            "expiring_soon_quantity": sum(
                b.current_quantity
                for b in in_stock
                if is_expiring_soon(b, today, self.expiry_warning_days) and not is_expired(b, today)
            ),
            "stock_value_usd": money_json(sum((stock_value_usd(b) for b in in_stock), Decimal("0"))),
            "stock_value_ves": money_json(sum((stock_value_ves(b) for b in in_stock), Decimal("0"))),
            "batches": [b.to_dict(today, self.expiry_warning_days) for b in batches],
        }

    def stock_by_product(self, product_ids: list[int] | None = None) -> dict[int, int]:
        query = self.session.query(
            InventoryBatch.product_id,
            func.coalesce(func.sum(InventoryBatch.current_quantity), 0),
        ).group_by(InventoryBatch.product_id)
        if product_ids is not None:
            query = query.filter(InventoryBatch.product_id.in_(product_ids))
        return {product_id: int(total) for product_id, total in query.all()}

    def list_batches(
        self,
        product_id: int | None = None,
        provider_id: int | None = None,
        in_stock_only: bool = False,
        page: int = 1,
        per_page: int = 50,
    ) -> dict:
        """All batches, optionally narrowed to a product/provider, in allocation order."""
        query = self.session.query(InventoryBatch)
        if product_id is not None:
            query = query.filter(InventoryBatch.product_id == product_id)
        if provider_id is not None:
            query = query.filter(InventoryBatch.provider_id == provider_id)
        if in_stock_only:
            query = query.filter(InventoryBatch.current_quantity > 0)

        per_page = min(max(per_page, 1), 200)
        page = max(page, 1)
        total = query.count()
        batches = (
            query.order_by(
                InventoryBatch.expiry_date.is_(None),
                InventoryBatch.expiry_date.asc(),
                InventoryBatch.received_at.asc(),
                InventoryBatch.id.asc(),
            )
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all()
        )
        today = self.today()
        return {
            "batches": [b.to_dict(today, self.expiry_warning_days) for b in batches],
            "pagination": {
                "page": page,
                "per_page": per_page,
                "total": total,
                "total_pages": math.ceil(total / per_page) if total else 0,
            },
        }

    def overall_stock(
        self,
        search: str | None = None,
        category_id: int | None = None,
        low_stock_only: bool = False,
    ) -> dict:
        """Stock position of every active product, with totals across the store."""
        query = self.session.query(Product).filter(Product.is_active.is_(True))
        if category_id is not None:
            query = query.filter(Product.category_id == category_id)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(
                Product.name.ilike(pattern)
                | Product.barcode.ilike(pattern)
                | Product.internal_code.ilike(pattern)
            )
        products = query.order_by(Product.name.asc(), Product.id.asc()).all()

        batches_by_product: dict[int, list[InventoryBatch]] = {}
        if products:
            rows = (
                self.session.query(InventoryBatch)
                .filter(
                    InventoryBatch.product_id.in_([p.id for p in products]),
                    InventoryBatch.current_quantity > 0,
                )
                .all()
            )
            for batch in rows:
                batches_by_product.setdefault(batch.product_id, []).append(batch)

        today = self.today()
        items = []
        for product in products:
            batches = batches_by_product.get(product.id, [])
            total = sum(b.current_quantity for b in batches)
            if low_stock_only and total >= product.min_stock:
                continue
            items.append({
                "product_id": product.id,
                "barcode": product.barcode,
                "name": product.name,
                "category_id": product.category_id,
                "min_stock": product.min_stock,
                "total_quantity": total,
                "is_low_stock": total < product.min_stock,
                "batch_count": len(batches),
                "expired_batches": sum(1 for b in batches if is_expired(b, today)),
                "stock_value_usd": sum((stock_value_usd(b) for b in batches), Decimal("0")),
                "stock_value_ves": sum((stock_value_ves(b) for b in batches), Decimal("0")),
            })

        summary = {
            "product_count": len(items),
            "low_stock_count": sum(1 for i in items if i["is_low_stock"]),
            "out_of_stock_count": sum(1 for i in items if i["total_quantity"] == 0),
            "total_units": sum(i["total_quantity"] for i in items),
            "stock_value_usd": money_json(sum((i["stock_value_usd"] for i in items), Decimal("0"))),
            "stock_value_ves": money_json(sum((i["stock_value_ves"] for i in items), Decimal("0"))),
        }
        for item in items:
            item["stock_value_usd"] = money_json(item["stock_value_usd"])
            item["stock_value_ves"] = money_json(item["stock_value_ves"])
        return {"products": items, "summary": summary}

    def expiring_batches(self, days: int | None = None) -> dict:
        """
        In-stock batches expiring within `days` (default: the warning window),
        grouped by urgency: already expired, within 7 days, later.
        """
        days = self.expiry_warning_days if days is None else days
        if days < 0:
            raise ValidationError("days must be >= 0")

        today = self.today()
        limit = today + timedelta(days=days)
        week = today + timedelta(days=7)
        batches = (
            self.session.query(InventoryBatch)
            .filter(
                InventoryBatch.expiry_date.isnot(None),
                InventoryBatch.expiry_date <= limit,
                InventoryBatch.current_quantity > 0,
            )
            .order_by(InventoryBatch.expiry_date.asc(), InventoryBatch.id.asc())
            .all()
        )

        expired, this_week, later = [], [], []
        for batch in batches:
            data = batch.to_dict(today, self.expiry_warning_days)
            data["product_name"] = batch.product.name if batch.product else None
            data["days_to_expiry"] = (batch.expiry_date - today).days
            if batch.expiry_date < today:
                expired.append(data)
            elif batch.expiry_date <= week:
                this_week.append(data)
            else:
                later.append(data)

        return {
            "days": days,
            "limit_date": limit.isoformat(),
            "summary": {
                "batch_count": len(batches),
                "expired": len(expired),
                "this_week": len(this_week),
                "later": len(later),
                "value_at_risk_usd": money_json(sum((stock_value_usd(b) for b in batches), Decimal("0"))),
                "value_at_risk_ves": money_json(sum((stock_value_ves(b) for b in batches), Decimal("0"))),
            },
            "expired": expired,
            "this_week": this_week,
            "later": later,
        }
