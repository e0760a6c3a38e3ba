"""
HTTP API tests: response envelope, authentication, role checks and the
register -> sale -> cancel flow through the Flask test client.
"""

import pytest

from minisuper.models import InventoryBatch
from minisuper.time_utils import local_today


@pytest.fixture
def opened_register(client, cashier_headers, register, today_rate):
    resp = client.post(
        "/api/cash-registers/open",
        json={"register_id": register.id, "opening_usd": 20, "opening_ves": 0},
        headers=cashier_headers,
    )
    assert resp.status_code == 201
    return resp.get_json()["data"]["session"]


def sale_body(register, product, quantity=2, amount_usd=10):
    return {
        "register_id": register.id,
        "items": [{"product_id": product.id, "quantity": quantity}],
        "payments": [{"method": "efectivo_usd", "amount_usd": amount_usd}],
    }


class TestSystemAndAuth:
    def test_health(self, client, db_session):
        resp = client.get("/health")

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["success"] is True
        assert body["data"]["checks"]["database"]["status"] == "healthy"

    def test_login_and_me(self, client, cashier_user):
        resp = client.post("/api/auth/login", json={"username": "cajero", "password": "cajero123"})
        assert resp.status_code == 200
        token = resp.get_json()["data"]["token"]

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.get_json()["data"]["user"]["role"] == "cashier"

    def test_login_with_wrong_password(self, client, cashier_user):
        resp = client.post("/api/auth/login", json={"username": "cajero", "password": "wrong-pass1"})

        assert resp.status_code == 401
        assert resp.get_json() == {"success": False, "message": "Invalid credentials"}

    def test_logout_revokes_token(self, client, cashier_headers):
        assert client.post("/api/auth/logout", headers=cashier_headers).status_code == 200
        assert client.get("/api/auth/me", headers=cashier_headers).status_code == 401

    def test_missing_token(self, client, db_session):
        resp = client.get("/api/products")

        assert resp.status_code == 401
        assert resp.get_json()["success"] is False


class TestCatalogApi:
    def test_cashier_cannot_create_products(self, client, cashier_headers):
        resp = client.post(
            "/api/products",
            json={"barcode": "7590000000001", "name": "Queso", "sale_price_usd": 4, "cost_price_usd": 3},
            headers=cashier_headers,
        )
        assert resp.status_code == 403

    def test_admin_creates_product_and_duplicate_barcode_conflicts(self, client, admin_headers, today_rate):
        body = {"barcode": "7590000000001", "name": "Queso blanco", "sale_price_usd": 4, "cost_price_usd": 3}

        created = client.post("/api/products", json=body, headers=admin_headers)
        assert created.status_code == 201
        product_id = created.get_json()["data"]["product"]["id"]

        duplicate = client.post("/api/products", json=body, headers=admin_headers)
        assert duplicate.status_code == 409
        assert duplicate.get_json()["details"]["kind"] == "state_conflict"

        fetched = client.get(f"/api/products/{product_id}", headers=admin_headers).get_json()["data"]["product"]
        assert fetched["sale_price_ves"] == 144.0
        assert fetched["stock"] == 0

    def test_invalid_price_is_rejected(self, client, admin_headers):
        resp = client.post(
            "/api/products",
            json={"barcode": "7590000000002", "name": "Pan", "sale_price_usd": 0, "cost_price_usd": 1},
            headers=admin_headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["details"]["kind"] == "validation"

    def test_low_stock_listing(self, client, cashier_headers, product, make_batch):
        make_batch(product, 2)

        resp = client.get("/api/products/low-stock", headers=cashier_headers)

        products = resp.get_json()["data"]["products"]
        assert [p["id"] for p in products] == [product.id]
        assert products[0]["shortfall"] == 3


class TestInventoryApi:
    def test_admin_receives_batch(self, client, db_session, admin_headers, product, today_rate):
        resp = client.post(
            "/api/inventory/batches",
            json={"product_id": product.id, "quantity": 12, "unit_cost_usd": 1.75, "lot_number": "A-7"},
            headers=admin_headers,
        )

        assert resp.status_code == 201
        stock = client.get(f"/api/inventory/products/{product.id}/stock", headers=admin_headers)
        assert stock.get_json()["data"]["total_quantity"] == 12

    def test_cashier_cannot_receive(self, client, cashier_headers, product):
        resp = client.post(
            "/api/inventory/batches",
            json={"product_id": product.id, "quantity": 1, "unit_cost_usd": 1},
            headers=cashier_headers,
        )
        assert resp.status_code == 403


class TestSaleFlow:
    def test_sale_receipt_and_cancel(self, client, db_session, cashier_headers, register, product,
                                     make_batch, opened_register):
        batch = make_batch(product, 10)

        created = client.post("/api/sales", json=sale_body(register, product), headers=cashier_headers)
        assert created.status_code == 201
        data = created.get_json()["data"]
        assert data["sale"]["total_usd"] == 6.96
        assert data["change"] == {"usd": 3.04, "ves": 109.44}
        sale_id = data["sale"]["id"]

        detail = client.get(f"/api/sales/{sale_id}", headers=cashier_headers).get_json()["data"]
        assert detail["profit_analysis"]["total_profit_usd"] == 2.0

        receipt = client.get(f"/api/sales/{sale_id}/receipt", headers=cashier_headers).get_json()["data"]
        assert receipt["sale"]["number"] == data["sale"]["sale_number"]

        short_reason = client.put(f"/api/sales/{sale_id}/cancel", json={"reason": "error"}, headers=cashier_headers)
        assert short_reason.status_code == 400

        cancelled = client.put(
            f"/api/sales/{sale_id}/cancel",
            json={"reason": "Producto equivocado en caja"},
            headers=cashier_headers,
        )
        assert cancelled.status_code == 200
        assert cancelled.get_json()["data"]["restored_quantity"] == 2
        assert db_session.get(InventoryBatch, batch.id).current_quantity == 10

        again = client.put(
            f"/api/sales/{sale_id}/cancel",
            json={"reason": "Producto equivocado en caja"},
            headers=cashier_headers,
        )
        assert again.status_code == 409

    def test_insufficient_payment_envelope(self, client, cashier_headers, register, product, make_batch,
                                           opened_register):
        make_batch(product, 10)

        resp = client.post("/api/sales", json=sale_body(register, product, amount_usd=5), headers=cashier_headers)

        assert resp.status_code == 400
        body = resp.get_json()
        assert body["success"] is False
        assert body["details"] == {"required_usd": "6.96", "received_usd": "5.00", "kind": "payment"}

    def test_insufficient_stock_envelope(self, client, cashier_headers, register, product, make_batch,
                                         opened_register):
        make_batch(product, 2)

        resp = client.post("/api/sales", json=sale_body(register, product, quantity=5, amount_usd=50),
                           headers=cashier_headers)

        assert resp.status_code == 400
        details = resp.get_json()["details"]
        assert details["available"] == 2
        assert details["requested"] == 5
        assert details["kind"] == "resource"

    def test_sale_without_open_session(self, client, cashier_headers, register, product, make_batch, today_rate):
        make_batch(product, 10)

        resp = client.post("/api/sales", json=sale_body(register, product), headers=cashier_headers)

        assert resp.status_code == 409

    def test_malformed_sale_collects_errors(self, client, cashier_headers, register):
        resp = client.post(
            "/api/sales",
            json={"register_id": register.id, "items": [{"product_id": "x", "quantity": 0}], "payments": []},
            headers=cashier_headers,
        )

        assert resp.status_code == 400
        assert len(resp.get_json()["errors"]) == 3

    def test_close_register_reports_difference(self, client, cashier_headers, register, product, make_batch,
                                               opened_register):
        make_batch(product, 10)
        client.post("/api/sales", json=sale_body(register, product), headers=cashier_headers)

        resp = client.post("/api/cash-registers/close", json={"closing_usd": 26.96}, headers=cashier_headers)

        assert resp.status_code == 200
        assert resp.get_json()["data"]["cash_difference_usd"] == 0.0


class TestCurrencyAndReports:
    def test_current_rate(self, client, cashier_headers, today_rate):
        data = client.get("/api/currency/current", headers=cashier_headers).get_json()["data"]

        assert data["rate"] == 36.0
        assert data["rate_date"] == local_today().isoformat()

    def test_only_admin_sets_rate(self, client, cashier_headers, admin_headers, today_rate):
        body = {"bcv_rate": 36.8}

        assert client.put("/api/currency/rate", json=body, headers=cashier_headers).status_code == 403

        resp = client.put("/api/currency/rate", json=body, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["data"]["rate"]["bcv_rate"] == 36.8

    def test_convert(self, client, cashier_headers, today_rate):
        resp = client.get("/api/currency/convert?amount=2.50&from=usd", headers=cashier_headers)

        assert resp.get_json()["data"]["ves"] == 90.0

    def test_rate_unavailable_without_any_rate(self, client, cashier_headers):
        resp = client.get("/api/currency/current", headers=cashier_headers)

        assert resp.status_code == 503
        assert resp.get_json()["details"]["kind"] == "upstream"

    def test_daily_sales_report(self, client, cashier_headers, register, product, make_batch, opened_register):
        make_batch(product, 10)
        client.post("/api/sales", json=sale_body(register, product), headers=cashier_headers)

        data = client.get("/api/reports/daily-sales", headers=cashier_headers).get_json()["data"]

        assert data["sales_count"] == 1
        assert data["total_usd"] == 6.96
        assert data["by_payment_method"]["efectivo_usd"]["count"] == 1
        assert data["products"][0]["quantity_sold"] == 2


class TestCatalogMaintenanceApi:
    def test_category_get_update_and_deactivate(self, client, admin_headers, cashier_headers):
        created = client.post("/api/categories", json={"name": "Lacteos"}, headers=admin_headers)
        category_id = created.get_json()["data"]["category"]["id"]

        fetched = client.get(f"/api/categories/{category_id}", headers=cashier_headers)
        assert fetched.get_json()["data"]["category"]["name"] == "Lacteos"

        assert client.put(f"/api/categories/{category_id}", json={"name": "Quesos"},
                          headers=cashier_headers).status_code == 403
        updated = client.put(f"/api/categories/{category_id}", json={"name": "Quesos"}, headers=admin_headers)
        assert updated.get_json()["data"]["category"]["name"] == "Quesos"

        deleted = client.delete(f"/api/categories/{category_id}", headers=admin_headers)
        assert deleted.status_code == 200
        assert deleted.get_json()["data"]["category"]["is_active"] is False

    def test_unknown_provider_is_404(self, client, cashier_headers):
        resp = client.get("/api/providers/999", headers=cashier_headers)

        assert resp.status_code == 404
        assert resp.get_json()["details"]["kind"] == "resource"

    def test_provider_in_use_cannot_be_deactivated(self, client, admin_headers):
        provider_id = client.post("/api/providers", json={"name": "Polar"},
                                  headers=admin_headers).get_json()["data"]["provider"]["id"]
        client.post(
            "/api/products",
            json={"barcode": "7590000000003", "name": "Malta", "sale_price_usd": 1, "cost_price_usd": 0.6,
                  "provider_id": provider_id},
            headers=admin_headers,
        )

        resp = client.delete(f"/api/providers/{provider_id}", headers=admin_headers)

        assert resp.status_code == 409
        assert resp.get_json()["details"]["product_count"] == 1

    def test_deactivated_product_disappears_from_register(self, client, admin_headers, cashier_headers,
                                                          product, make_batch, today_rate):
        make_batch(product, 3, expires_in_days=10)

        pos = client.get("/api/products/pos", headers=cashier_headers).get_json()["data"]
        assert [p["id"] for p in pos["products"]] == [product.id]
        assert pos["products"][0]["stock"] == 3
        assert pos["products"][0]["prices"]["ves"]["sale"] == 108.0
        assert pos["exchange_rate"] == 36.0

        assert client.delete(f"/api/products/{product.id}", headers=admin_headers).status_code == 200
        pos = client.get("/api/products/pos", headers=cashier_headers).get_json()["data"]
        assert pos["products"] == []

    def test_product_prices_for_a_date(self, client, db_session, cashier_headers, product, today_rate):
        from datetime import timedelta

        from minisuper.models import ExchangeRate
        from minisuper.time_utils import utcnow

        yesterday = local_today() - timedelta(days=1)
        db_session.add(ExchangeRate(rate_date=yesterday, bcv_rate=35, source="manual", created_at=utcnow()))
        db_session.commit()

        current = client.get(f"/api/products/{product.id}/prices", headers=cashier_headers).get_json()["data"]
        past = client.get(f"/api/products/{product.id}/prices?date={yesterday.isoformat()}",
                          headers=cashier_headers).get_json()["data"]

        assert current["prices"]["ves"]["sale"] == 108.0
        assert past["prices"]["ves"]["sale"] == 105.0
        assert past["date"] == yesterday.isoformat()


class TestInventoryListingsApi:
    def test_expiring_and_overall_stock(self, client, cashier_headers, product, make_batch):
        make_batch(product, 2, expires_in_days=-1)
        make_batch(product, 5, expires_in_days=100)

        expiring = client.get("/api/inventory/expiring", headers=cashier_headers).get_json()["data"]
        assert expiring["summary"]["expired"] == 1
        assert expiring["summary"]["batch_count"] == 1

        stock = client.get("/api/inventory/stock", headers=cashier_headers).get_json()["data"]
        assert stock["products"][0]["total_quantity"] == 7
        assert stock["summary"]["product_count"] == 1

        batches = client.get(f"/api/inventory/batches?product_id={product.id}",
                             headers=cashier_headers).get_json()["data"]
        assert batches["pagination"]["total"] == 2

    def test_negative_days_is_rejected(self, client, cashier_headers):
        resp = client.get("/api/inventory/expiring?days=-3", headers=cashier_headers)

        assert resp.status_code == 400


class TestPaymentAmountsApi:
    def test_sub_cent_amount_is_rejected(self, client, db_session, cashier_headers, register, product,
                                         make_batch, opened_register):
        from minisuper.models import Sale

        make_batch(product, 10)
        body = sale_body(register, product, amount_usd="6.954")

        resp = client.post("/api/sales", json=body, headers=cashier_headers)

        assert resp.status_code == 400
        assert resp.get_json()["errors"] == ["payments[0].amount_usd cannot have more than 2 decimal places"]
        assert db_session.query(Sale).count() == 0


class TestSalesReportsApi:
    def test_product_and_cashier_reports(self, client, cashier_headers, admin_headers, register, product,
                                         make_batch, opened_register):
        make_batch(product, 10)
        client.post("/api/sales", json=sale_body(register, product), headers=cashier_headers)
        today = local_today().isoformat()

        products = client.get(f"/api/reports/products?start_date={today}&end_date={today}",
                              headers=cashier_headers).get_json()["data"]
        assert products["products"][0]["quantity_sold"] == 2
        assert products["products"][0]["profit_usd"] == 2.0

        assert client.get("/api/reports/cashiers", headers=cashier_headers).status_code == 403
        cashiers = client.get("/api/reports/cashiers", headers=admin_headers).get_json()["data"]
        assert cashiers["cashiers"][0]["username"] == "cajero"
        assert cashiers["cashiers"][0]["total_usd"] == 6.96

    def test_inverted_range_is_rejected(self, client, cashier_headers):
        resp = client.get("/api/reports/products?start_date=2026-02-01&end_date=2026-01-01",
                          headers=cashier_headers)

        assert resp.status_code == 400
