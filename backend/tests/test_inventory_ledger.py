"""
Batch inventory tests: FIFO-by-expiry allocation, restoration, intake and
count adjustments.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from minisuper.errors import BatchNotFound, InsufficientStock, ProductNotFound, ValidationError
from minisuper.models import InventoryBatch
from minisuper.time_utils import local_today
from minisuper.validation import BatchIntake, parse_batch_intake


class TestAllocation:
    def test_earliest_expiry_is_consumed_first(self, services, db_session, product, make_batch):
        late = make_batch(product, 5, expires_in_days=60)
        early = make_batch(product, 5, expires_in_days=10, received_offset_minutes=5)

        allocations = services.ledger.allocate(product.id, 3)
        db_session.commit()

        assert [(a.batch.id, a.quantity) for a in allocations] == [(early.id, 3)]
        assert db_session.get(InventoryBatch, early.id).current_quantity == 2
        assert db_session.get(InventoryBatch, late.id).current_quantity == 5

    def test_allocation_spans_batches_and_no_expiry_goes_last(self, services, db_session, product, make_batch):
        no_expiry = make_batch(product, 10)
        b1 = make_batch(product, 2, expires_in_days=10)
        b2 = make_batch(product, 3, expires_in_days=20)

        allocations = services.ledger.allocate(product.id, 7)
        db_session.commit()

        assert [(a.batch.id, a.quantity) for a in allocations] == [
            (b1.id, 2),
            (b2.id, 3),
            (no_expiry.id, 2),
        ]
        assert db_session.get(InventoryBatch, b1.id).current_quantity == 0
        assert db_session.get(InventoryBatch, b2.id).current_quantity == 0
        assert db_session.get(InventoryBatch, no_expiry.id).current_quantity == 8

    def test_same_expiry_uses_oldest_intake(self, services, db_session, product, make_batch):
        newer = make_batch(product, 4, expires_in_days=30, received_offset_minutes=10)
        older = make_batch(product, 4, expires_in_days=30)

        allocations = services.ledger.allocate(product.id, 1)

        assert allocations[0].batch.id == older.id
        assert newer.current_quantity == 4

    def test_insufficient_stock_leaves_batches_untouched(self, services, db_session, product, make_batch):
        batch = make_batch(product, 2, expires_in_days=10)

        with pytest.raises(InsufficientStock) as exc_info:
            services.ledger.allocate(product.id, 5)

        assert exc_info.value.available == 2
        assert exc_info.value.requested == 5
        db_session.rollback()
        assert db_session.get(InventoryBatch, batch.id).current_quantity == 2

    def test_inactive_product_cannot_be_allocated(self, services, db_session, product, make_batch):
        make_batch(product, 5)
        product.is_active = False
        db_session.commit()

        with pytest.raises(ProductNotFound):
            services.ledger.allocate(product.id, 1)

    def test_restore_adds_back_to_same_batch(self, services, db_session, product, make_batch):
        batch = make_batch(product, 5)
        services.ledger.allocate(product.id, 4)
        db_session.commit()

        services.ledger.restore(batch.id, 4)
        db_session.commit()

        assert db_session.get(InventoryBatch, batch.id).current_quantity == 5


class TestIntake:
    def test_receive_batch_uses_current_rate_when_missing(self, services, db_session, product, rate_provider):
        intake = BatchIntake(
            product_id=product.id,
            quantity=24,
            unit_cost_usd=Decimal("1.50"),
            expiry_date=local_today() + timedelta(days=90),
            lot_number="L-001",
        )

        batch = services.ledger.receive_batch(intake)

        assert batch.current_quantity == 24
        assert batch.initial_quantity == 24
        assert batch.intake_rate == Decimal("36.0000")
        assert rate_provider.calls == 1

    def test_past_expiry_is_rejected(self, services, product):
        intake = BatchIntake(
            product_id=product.id,
            quantity=1,
            unit_cost_usd=Decimal("1.00"),
            intake_rate=Decimal("36"),
            expiry_date=local_today(),
        )
        with pytest.raises(ValidationError, match="expiry_date"):
            services.ledger.receive_batch(intake)

    def test_bulk_intake_is_all_or_nothing(self, services, db_session, product):
        good = BatchIntake(product_id=product.id, quantity=5, unit_cost_usd=Decimal("1"), intake_rate=Decimal("36"))
        bad = BatchIntake(product_id=9999, quantity=5, unit_cost_usd=Decimal("1"), intake_rate=Decimal("36"))

        with pytest.raises(ValidationError) as exc_info:
            services.ledger.receive_batches([good, bad])

        assert any(e.startswith("batches[1]: ") for e in exc_info.value.errors)
        assert db_session.query(InventoryBatch).count() == 0

    def test_parse_batch_intake_collects_field_errors(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_batch_intake({"product_id": 0, "quantity": "x"})

        errors = exc_info.value.errors
        assert "product_id must be > 0" in errors
        assert "unit_cost_usd is required" in errors


class TestAdjustAndStock:
    def test_adjust_within_initial_quantity(self, services, product, make_batch):
        batch = make_batch(product, 10)

        adjusted = services.ledger.adjust_batch(batch.id, 7, "Conteo fisico semanal")

        assert adjusted.current_quantity == 7

    def test_adjust_above_initial_is_rejected(self, services, product, make_batch):
        batch = make_batch(product, 10)

        with pytest.raises(ValidationError):
            services.ledger.adjust_batch(batch.id, 11, "Conteo fisico semanal")

    def test_adjust_unknown_batch(self, services):
        with pytest.raises(BatchNotFound):
            services.ledger.adjust_batch(12345, 1, "Conteo fisico semanal")

    def test_stock_summary_flags_low_and_expiring(self, services, product, make_batch):
        make_batch(product, 2, expires_in_days=5, unit_cost="2.00")
        make_batch(product, 1, expires_in_days=200, unit_cost="2.50")

        stock = services.ledger.get_product_stock(product.id)

        assert stock["total_quantity"] == 3
        assert stock["is_low_stock"] is True
        assert stock["batch_count"] == 2
        assert stock["expiring_soon_quantity"] == 2
        assert stock["expired_quantity"] == 0
        assert stock["stock_value_usd"] == 6.5


class TestStockListings:
    def test_expiring_batches_grouped_by_urgency(self, services, db_session, product, make_batch):
        expired = make_batch(product, 4, expires_in_days=-2)
        soon = make_batch(product, 3, expires_in_days=3)
        later = make_batch(product, 2, expires_in_days=20)
        make_batch(product, 5, expires_in_days=60)
        make_batch(product, 6)
        sold_out = make_batch(product, 1, expires_in_days=1)
        sold_out.current_quantity = 0
        db_session.commit()

        report = services.ledger.expiring_batches()

        assert report["days"] == 30
        assert [b["id"] for b in report["expired"]] == [expired.id]
        assert report["expired"][0]["days_to_expiry"] == -2
        assert report["expired"][0]["product_name"] == "Harina PAN 1kg"
        assert [b["id"] for b in report["this_week"]] == [soon.id]
        assert [b["id"] for b in report["later"]] == [later.id]
        assert report["summary"]["batch_count"] == 3
        assert report["summary"]["value_at_risk_usd"] == 18.0
        assert report["summary"]["value_at_risk_ves"] == 648.0

    def test_expiring_window_can_be_widened(self, services, product, make_batch):
        make_batch(product, 5, expires_in_days=60)

        assert services.ledger.expiring_batches(days=90)["summary"]["later"] == 1
        with pytest.raises(ValidationError):
            services.ledger.expiring_batches(days=-1)

    def test_overall_stock_covers_products_without_batches(self, services, db_session, product, make_batch):
        from minisuper.models import Product

        empty = Product(barcode="7591002000022", name="Arroz 1kg", sale_price_usd=Decimal("1.50"),
                        cost_price_usd=Decimal("1.00"), min_stock=2, is_active=True)
        db_session.add(empty)
        db_session.commit()
        make_batch(product, 8, expires_in_days=-1)
        make_batch(product, 4)

        result = services.ledger.overall_stock()

        rows = {row["product_id"]: row for row in result["products"]}
        assert rows[product.id]["total_quantity"] == 12
        assert rows[product.id]["expired_batches"] == 1
        assert rows[product.id]["stock_value_usd"] == 24.0
        assert rows[empty.id]["total_quantity"] == 0
        assert rows[empty.id]["is_low_stock"] is True
        assert result["summary"]["out_of_stock_count"] == 1
        assert result["summary"]["total_units"] == 12

        low_only = services.ledger.overall_stock(low_stock_only=True)
        assert [row["product_id"] for row in low_only["products"]] == [empty.id]

    def test_list_batches_in_allocation_order(self, services, db_session, product, make_batch):
        no_expiry = make_batch(product, 3)
        late = make_batch(product, 2, expires_in_days=40)
        early = make_batch(product, 1, expires_in_days=4)
        early.current_quantity = 0
        db_session.commit()

        everything = services.ledger.list_batches(product_id=product.id)
        in_stock = services.ledger.list_batches(product_id=product.id, in_stock_only=True)

        assert [b["id"] for b in everything["batches"]] == [early.id, late.id, no_expiry.id]
        assert everything["pagination"]["total"] == 3
        assert [b["id"] for b in in_stock["batches"]] == [late.id, no_expiry.id]
