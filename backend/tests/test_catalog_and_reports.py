"""
Catalog maintenance (categories, providers, product deactivation, register
product lookup) and the per-product / per-cashier sales reports.
"""

from decimal import Decimal

import pytest

from minisuper.errors import CatalogInUse, DuplicateEntry, NotFoundError, ProductNotFound
from minisuper.models import Category, Product, Provider
from minisuper.services import reporting_service
from minisuper.time_utils import local_today
from minisuper.validation import CartItem, PaymentInput


@pytest.fixture
def category(db_session):
    row = Category(name="Viveres", is_active=True)
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture
def provider(db_session):
    row = Provider(name="Alimentos Polar", is_active=True)
    db_session.add(row)
    db_session.commit()
    return row


def add_product(db_session, barcode, name, price="1.50", cost="1.00", **kwargs):
    row = Product(barcode=barcode, name=name, sale_price_usd=Decimal(price), cost_price_usd=Decimal(cost),
                  min_stock=0, is_active=True, **kwargs)
    db_session.add(row)
    db_session.commit()
    return row


class TestCategoriesAndProviders:
    def test_update_category(self, services, category):
        updated = services.catalog.update_category(category.id, {"description": "Alimentos secos"})

        assert updated.description == "Alimentos secos"
        assert services.catalog.get_category(category.id).name == "Viveres"

    def test_rename_to_existing_name_conflicts(self, services, db_session, category):
        other = Category(name="Bebidas", is_active=True)
        db_session.add(other)
        db_session.commit()

        with pytest.raises(DuplicateEntry):
            services.catalog.update_category(other.id, {"name": "viveres"})

    def test_category_in_use_cannot_be_deactivated(self, services, db_session, category):
        rice = add_product(db_session, "7591002000022", "Arroz 1kg", category_id=category.id)

        with pytest.raises(CatalogInUse) as exc_info:
            services.catalog.deactivate_category(category.id)
        assert exc_info.value.details["product_count"] == 1

        services.catalog.deactivate_product(rice.id)
        assert services.catalog.deactivate_category(category.id).is_active is False
        assert category.id not in [c.id for c in services.catalog.list_categories()]

    def test_unknown_category(self, services, db_session):
        with pytest.raises(NotFoundError):
            services.catalog.get_category(404)

    def test_update_and_deactivate_provider(self, services, db_session, provider):
        updated = services.catalog.update_provider(provider.id, {"phone": "0212-5550000"})
        assert updated.phone == "0212-5550000"

        add_product(db_session, "7591002000022", "Arroz 1kg", provider_id=provider.id)
        with pytest.raises(CatalogInUse):
            services.catalog.deactivate_provider(provider.id)

    def test_deactivate_unused_provider(self, services, provider):
        assert services.catalog.deactivate_provider(provider.id).is_active is False
        assert services.catalog.list_providers() == []


class TestProductsForRegister:
    def test_deactivated_product_cannot_be_sold(self, services, product):
        services.catalog.deactivate_product(product.id)

        with pytest.raises(ProductNotFound):
            services.catalog.find_active_product(product.id)

    def test_only_in_stock_products_with_fefo_batches(self, services, db_session, product, make_batch):
        empty = add_product(db_session, "7591002000022", "Arroz 1kg")
        sold_out = add_product(db_session, "7591003000033", "Azucar 1kg")
        batch = make_batch(sold_out, 1)
        batch.current_quantity = 0
        db_session.commit()
        later = make_batch(product, 4, expires_in_days=50)
        sooner = make_batch(product, 2, expires_in_days=5)

        rows = services.catalog.products_for_pos()

        assert [p.id for p, _ in rows] == [product.id]
        assert [b.id for b in rows[0][1]] == [sooner.id, later.id]
        assert empty.id not in [p.id for p, _ in rows]

    def test_search_matches_barcode(self, services, db_session, product, make_batch):
        rice = add_product(db_session, "7591002000022", "Arroz 1kg")
        make_batch(product, 1)
        make_batch(rice, 1)

        rows = services.catalog.products_for_pos(search="759100200")

        assert [p.id for p, _ in rows] == [rice.id]

    def test_price_dict(self, product):
        prices = product.price_dict(Decimal("36.5"))

        assert prices["usd"] == {"sale": 3.0, "cost": 2.0}
        assert prices["ves"] == {"sale": 109.5, "cost": 73.0}
        assert prices["margin_percent"] == 33.33
        assert prices["exchange_rate"] == 36.5


@pytest.fixture
def sales_history(services, cashier_user, other_cashier, register, second_register, product, make_batch):
    """Cashier sells 2 units, the other cashier 1; a third sale is cancelled."""
    make_batch(product, 20)
    services.cash_sessions.open(cashier_user.id, register.id)
    services.cash_sessions.open(other_cashier.id, second_register.id)

    def sell(user, reg, quantity):
        return services.sales.create_sale(
            user_id=user.id,
            register_id=reg.id,
            items=[CartItem(product.id, quantity)],
            payments=[PaymentInput(method="efectivo_usd", amount_usd=Decimal("10"))],
        ).sale

    sell(cashier_user, register, 2)
    sell(other_cashier, second_register, 1)
    cancelled = sell(cashier_user, register, 1)
    services.sales.cancel_sale(cancelled.id, cashier_user.id, "Error de cobro")


class TestSalesReports:
    def test_product_sales_report(self, db_session, product, sales_history):
        report = reporting_service.product_sales_report(db_session, start_date=local_today(), end_date=local_today())

        assert len(report["products"]) == 1
        row = report["products"][0]
        assert row["product_id"] == product.id
        assert row["quantity_sold"] == 3
        assert row["revenue_usd"] == 9.0
        assert row["revenue_ves"] == 324.0
        assert row["profit_usd"] == 3.0
        assert row["margin_percent"] == 33.33
        assert row["average_price_usd"] == 3.0
        assert row["transactions"] == 2
        assert report["period"]["start_date"] == local_today().isoformat()

    def test_product_sales_report_category_filter(self, db_session, category, sales_history):
        report = reporting_service.product_sales_report(db_session, category_id=category.id)

        assert report["products"] == []

    def test_cashier_report(self, db_session, cashier_user, other_cashier, sales_history):
        report = reporting_service.cashier_report(db_session)

        assert [row["user_id"] for row in report["cashiers"]] == [cashier_user.id, other_cashier.id]
        first = report["cashiers"][0]
        assert first["sales_count"] == 1
        assert first["total_usd"] == 6.96
        assert first["total_ves"] == 250.56
        assert first["days_worked"] == 1
        assert report["cashiers"][1]["total_usd"] == 3.48

    def test_cashier_report_for_one_user(self, db_session, other_cashier, sales_history):
        report = reporting_service.cashier_report(db_session, user_id=other_cashier.id)

        assert [row["username"] for row in report["cashiers"]] == ["cajero2"]
