"""
Sale transaction engine tests.

Prices: Harina PAN at $3.00, rate 36 VES/USD, IVA 16%.
"""

from decimal import Decimal

import pytest

from minisuper.errors import (
    AlreadyCancelled,
    DiscountExceedsSubtotal,
    InsufficientPayment,
    InsufficientStock,
    NoOpenSession,
    ProductNotFound,
    SaleNotFound,
    ValidationError,
)
from minisuper.models import CashSession, InventoryBatch, PaymentSplit, Sale, SaleLine
from minisuper.models.sales import SALE_CANCELLED, SALE_COMPLETED
from minisuper.services.sales_service import summarize_payment_methods
from minisuper.validation import CartItem, PaymentInput


CANCEL_REASON = "Cliente devolvio los productos"


@pytest.fixture
def open_session(services, cashier_user, register):
    return services.cash_sessions.open(cashier_user.id, register.id, Decimal("20"), Decimal("0"))


def cash_usd(amount):
    return PaymentInput(method="efectivo_usd", amount_usd=Decimal(amount))


def sell(services, user, register, items, payments, **kwargs):
    return services.sales.create_sale(
        user_id=user.id,
        register_id=register.id,
        items=items,
        payments=payments,
        **kwargs,
    )


class TestCreateSale:
    def test_happy_path_totals_change_and_stock(self, services, db_session, cashier_user, register,
                                                product, make_batch, open_session):
        batch = make_batch(product, 10, expires_in_days=30)

        result = sell(services, cashier_user, register, [CartItem(product.id, 2)], [cash_usd("10")])
        sale = result.sale

        assert sale.status == SALE_COMPLETED
        assert sale.subtotal_usd == Decimal("6.00")
        assert sale.tax_usd == Decimal("0.96")
        assert sale.total_usd == Decimal("6.96")
        assert sale.subtotal_ves == Decimal("216.00")
        assert sale.total_ves == Decimal("250.56")
        assert sale.exchange_rate == Decimal("36.0000")
        assert sale.payment_method == "efectivo_usd"
        assert result.change_usd == Decimal("3.04")
        assert result.change_ves == Decimal("109.44")
        assert len(sale.sale_number) == 12

        assert db_session.get(InventoryBatch, batch.id).current_quantity == 8
        line = db_session.query(SaleLine).filter_by(sale_id=sale.id).one()
        assert line.batch_id == batch.id
        assert line.quantity == 2
        assert line.unit_price_ves == Decimal("108.00")

        cash_session = db_session.get(CashSession, open_session.id)
        assert cash_session.total_sales_usd == Decimal("6.96")
        assert cash_session.transaction_count == 1
        assert sale.cash_session_id == open_session.id

    def test_mixed_payment_covers_total_exactly(self, services, db_session, cashier_user, register,
                                                product, make_batch, open_session):
        make_batch(product, 10)
        payments = [
            cash_usd("5"),
            PaymentInput(method="pago_movil", amount_ves=Decimal("70.56"), reference="0412-555"),
        ]

        result = sell(services, cashier_user, register, [CartItem(product.id, 2)], payments)

        assert result.sale.payment_method == "mixed"
        assert result.change_usd == Decimal("0.00")
        splits = db_session.query(PaymentSplit).filter_by(sale_id=result.sale.id).all()
        assert sorted(s.method for s in splits) == ["efectivo_usd", "pago_movil"]

    def test_cash_and_card_split_is_summarized_as_mixed(self, services, db_session, cashier_user, register,
                                                       product, make_batch, open_session):
        make_batch(product, 10)
        payments = [cash_usd("5"), PaymentInput(method="tarjeta", amount_usd=Decimal("1.96"))]

        result = sell(services, cashier_user, register, [CartItem(product.id, 2)], payments)

        assert result.sale.payment_method == "mixed"
        assert result.change_usd == Decimal("0.00")
        assert db_session.query(Sale).filter_by(payment_method="mixed").count() == 1

    def test_change_ves_follows_rounded_change_usd(self, services, cashier_user, register,
                                                   product, make_batch, open_session):
        make_batch(product, 10)
        # 0.10 VES is 0.0028 USD: no change in USD, so none in VES either
        payments = [cash_usd("6.96"), PaymentInput(method="efectivo_ves", amount_ves=Decimal("0.10"))]

        result = sell(services, cashier_user, register, [CartItem(product.id, 2)], payments)

        assert result.change_usd == Decimal("0.00")
        assert result.change_ves == Decimal("0.00")
        assert result.sale.change_ves == Decimal("0.00")

    def test_dict_payloads_are_accepted(self, services, cashier_user, register, product, make_batch, open_session):
        make_batch(product, 10)

        result = sell(
            services, cashier_user, register,
            [{"product_id": product.id, "quantity": 1}],
            [{"method": "tarjeta", "amount_usd": "3.48"}],
        )

        assert result.sale.total_usd == Decimal("3.48")
        assert result.change_usd == Decimal("0.00")

    def test_allocation_spanning_batches_creates_one_line_per_batch(
        self, services, db_session, cashier_user, register, product, make_batch, open_session
    ):
        b1 = make_batch(product, 2, expires_in_days=10)
        b2 = make_batch(product, 3, expires_in_days=20)
        b3 = make_batch(product, 10)

        result = sell(services, cashier_user, register, [CartItem(product.id, 7)], [cash_usd("30")])

        lines = db_session.query(SaleLine).filter_by(sale_id=result.sale.id).order_by(SaleLine.id).all()
        assert [(line.batch_id, line.quantity) for line in lines] == [(b1.id, 2), (b2.id, 3), (b3.id, 2)]
        assert result.sale.subtotal_usd == Decimal("21.00")

    def test_discount_is_applied_before_tax(self, services, cashier_user, register, product, make_batch, open_session):
        make_batch(product, 10)

        result = sell(
            services, cashier_user, register, [CartItem(product.id, 2)], [cash_usd("10")],
            discount_usd=Decimal("1.00"), discount_ves=Decimal("36.00"),
        )

        assert result.sale.tax_usd == Decimal("0.80")
        assert result.sale.total_usd == Decimal("5.80")
        assert result.sale.total_ves == Decimal("208.80")


class TestSaleFailures:
    def test_insufficient_payment_changes_nothing(self, services, db_session, cashier_user, register,
                                                  product, make_batch, open_session):
        batch = make_batch(product, 10)

        with pytest.raises(InsufficientPayment) as exc_info:
            sell(services, cashier_user, register, [CartItem(product.id, 2)], [cash_usd("5")])

        assert exc_info.value.required == Decimal("6.96")
        assert exc_info.value.received == Decimal("5.00")
        assert db_session.get(InventoryBatch, batch.id).current_quantity == 10
        assert db_session.query(Sale).count() == 0
        assert db_session.get(CashSession, open_session.id).transaction_count == 0

    def test_insufficient_stock_on_later_item_rolls_back_earlier_items(
        self, services, db_session, cashier_user, register, product, make_batch, open_session
    ):
        from minisuper.models import Product

        other = Product(barcode="7591002000022", name="Arroz 1kg", sale_price_usd=Decimal("1.50"),
                        cost_price_usd=Decimal("1.00"), min_stock=0, is_active=True)
        db_session.add(other)
        db_session.commit()
        first_batch = make_batch(product, 10)
        make_batch(other, 2)

        with pytest.raises(InsufficientStock) as exc_info:
            sell(services, cashier_user, register,
                 [CartItem(product.id, 3), CartItem(other.id, 5)], [cash_usd("50")])

        assert exc_info.value.product_id == other.id
        assert exc_info.value.available == 2
        assert exc_info.value.requested == 5
        assert db_session.get(InventoryBatch, first_batch.id).current_quantity == 10
        assert db_session.query(Sale).count() == 0

    def test_no_open_session(self, services, cashier_user, register, product, make_batch):
        make_batch(product, 10)

        with pytest.raises(NoOpenSession):
            sell(services, cashier_user, register, [CartItem(product.id, 1)], [cash_usd("10")])

    def test_session_on_another_register_does_not_count(self, services, cashier_user, register,
                                                        second_register, product, make_batch, open_session):
        make_batch(product, 10)

        with pytest.raises(NoOpenSession):
            sell(services, cashier_user, second_register, [CartItem(product.id, 1)], [cash_usd("10")])

    def test_unknown_product(self, services, cashier_user, register, open_session):
        with pytest.raises(ProductNotFound):
            sell(services, cashier_user, register, [CartItem(4242, 1)], [cash_usd("10")])

    def test_discount_larger_than_subtotal(self, services, cashier_user, register, product, make_batch, open_session):
        make_batch(product, 10)

        with pytest.raises(DiscountExceedsSubtotal):
            sell(services, cashier_user, register, [CartItem(product.id, 1)], [cash_usd("10")],
                 discount_usd=Decimal("5.00"))

    def test_zero_amount_payment_is_rejected(self, services, cashier_user, register, product, make_batch, open_session):
        make_batch(product, 10)

        with pytest.raises(ValidationError):
            sell(services, cashier_user, register, [CartItem(product.id, 1)],
                 [cash_usd("10"), PaymentInput(method="tarjeta")])

    def test_sub_cent_payment_amounts_are_rejected(self, services, db_session, cashier_user, register,
                                                   product, make_batch, open_session):
        batch = make_batch(product, 10)
        payments = [
            cash_usd("6.954"),
            PaymentInput(method="tarjeta", amount_usd=Decimal("0.004")),
            PaymentInput(method="pago_movil", amount_usd=Decimal("0.004")),
        ]

        with pytest.raises(ValidationError) as exc_info:
            sell(services, cashier_user, register, [CartItem(product.id, 2)], payments)

        assert "payments[0].amount_usd cannot have more than 2 decimal places" in exc_info.value.errors
        assert len(exc_info.value.errors) == 3
        assert db_session.query(Sale).count() == 0
        assert db_session.query(PaymentSplit).count() == 0
        assert db_session.get(InventoryBatch, batch.id).current_quantity == 10

    def test_sub_cent_amount_in_payload_is_rejected(self, services, db_session, cashier_user, register,
                                                    product, make_batch, open_session):
        make_batch(product, 10)

        with pytest.raises(ValidationError) as exc_info:
            sell(services, cashier_user, register, [{"product_id": product.id, "quantity": 1}],
                 [{"method": "efectivo_ves", "amount_ves": "125.275"}])

        assert exc_info.value.errors == ["payments[0].amount_ves cannot have more than 2 decimal places"]
        assert db_session.query(Sale).count() == 0

    def test_committed_splits_cover_the_total(self, services, db_session, cashier_user, register,
                                              product, make_batch, open_session):
        make_batch(product, 10)
        payments = [cash_usd("3.50"), PaymentInput(method="pago_movil", amount_ves=Decimal("124.56"))]

        sale = sell(services, cashier_user, register, [CartItem(product.id, 2)], payments).sale

        splits = db_session.query(PaymentSplit).filter_by(sale_id=sale.id).all()
        paid = sum(Decimal(s.amount_usd) for s in splits) + sum(Decimal(s.amount_ves) for s in splits) / Decimal("36")
        assert paid >= sale.total_usd

    def test_empty_cart_is_rejected(self, services, cashier_user, register, open_session):
        with pytest.raises(ValidationError):
            sell(services, cashier_user, register, [], [cash_usd("10")])


class TestCancelSale:
    def test_cancel_restores_stock_and_session_totals(self, services, db_session, cashier_user, register,
                                                      product, make_batch, open_session):
        batch = make_batch(product, 10)
        sale = sell(services, cashier_user, register, [CartItem(product.id, 3)], [cash_usd("20")]).sale

        result = services.sales.cancel_sale(sale.id, cashier_user.id, CANCEL_REASON)

        assert result.sale.status == SALE_CANCELLED
        assert result.sale.cancel_reason == CANCEL_REASON
        assert result.restored_lines == 1
        assert result.restored_quantity == 3
        assert db_session.get(InventoryBatch, batch.id).current_quantity == 10

        cash_session = db_session.get(CashSession, open_session.id)
        assert cash_session.total_sales_usd == Decimal("0.00")
        assert cash_session.transaction_count == 0

    def test_second_cancel_is_rejected_and_restores_nothing(self, services, db_session, cashier_user, register,
                                                            product, make_batch, open_session):
        batch = make_batch(product, 10)
        sale = sell(services, cashier_user, register, [CartItem(product.id, 3)], [cash_usd("20")]).sale
        services.sales.cancel_sale(sale.id, cashier_user.id, CANCEL_REASON)

        with pytest.raises(AlreadyCancelled):
            services.sales.cancel_sale(sale.id, cashier_user.id, CANCEL_REASON)

        assert db_session.get(InventoryBatch, batch.id).current_quantity == 10

    def test_cancel_after_session_closed_still_adjusts_its_totals(
        self, services, db_session, cashier_user, register, product, make_batch, open_session
    ):
        make_batch(product, 10)
        sale = sell(services, cashier_user, register, [CartItem(product.id, 1)], [cash_usd("5")]).sale
        services.cash_sessions.close(cashier_user.id, Decimal("23.48"), Decimal("0"))

        services.sales.cancel_sale(sale.id, cashier_user.id, CANCEL_REASON)

        cash_session = db_session.get(CashSession, open_session.id)
        assert cash_session.total_sales_usd == Decimal("0.00")
        assert cash_session.transaction_count == 0

    def test_cancel_unknown_sale(self, services, cashier_user):
        with pytest.raises(SaleNotFound):
            services.sales.cancel_sale(999, cashier_user.id, CANCEL_REASON)


def test_summarize_payment_methods():
    assert summarize_payment_methods(["efectivo_ves"]) == "efectivo_ves"
    assert summarize_payment_methods(["tarjeta", "tarjeta"]) == "tarjeta"
    assert summarize_payment_methods(["tarjeta", "efectivo_usd"]) == "mixed"
