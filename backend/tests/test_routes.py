"""
JSON API tests.

Verifies:
- Health endpoint reports database status
- Requests without a valid X-User-Id header return 401
- Business errors map to their HTTP status with a typed JSON body
- Invoice, purchase-order, inventory and report endpoints end to end
"""

import pytest

from pharmacy_pos.services import inventory_service, staff_service

from conftest import user_headers


def _line(product_unit, quantity, unit_price):
    return {
        "product_id": product_unit.product_id,
        "product_unit_id": product_unit.id,
        "quantity": quantity,
        "unit_price": unit_price,
    }


def _po_item(product_unit, quantity, cost_price, **extra):
    item = {
        "product_id": product_unit.product_id,
        "product_unit_id": product_unit.id,
        "quantity": quantity,
        "cost_price": cost_price,
    }
    item.update(extra)
    return item


# =============================================================================
# SYSTEM & ACCESS
# =============================================================================


class TestSystem:
    def test_health(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "ok"
        assert body["checks"]["database"]["status"] == "healthy"


class TestActingUser:
    @pytest.mark.parametrize(
        "method,path",
        [
            ("POST", "/api/invoices/"),
            ("GET", "/api/invoices/next-code"),
            ("GET", "/api/invoices/1"),
            ("POST", "/api/purchase-orders/"),
            ("POST", "/api/purchase-orders/1/payments"),
            ("POST", "/api/inventory/receive"),
            ("GET", "/api/inventory/lots"),
            ("GET", "/api/reports/summary"),
        ],
    )
    def test_requires_user_header(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_unknown_user(self, client, db_session):
        resp = client.get("/api/inventory/lots", headers={"X-User-Id": "999"})
        assert resp.status_code == 401

    def test_deactivated_user(self, client, cashier):
        staff_service.set_active(cashier.id, False)
        resp = client.get("/api/inventory/lots", headers=user_headers(cashier))
        assert resp.status_code == 401


# =============================================================================
# INVOICES
# =============================================================================


class TestInvoiceRoutes:
    def test_create_get_and_cancel(self, client, admin, catalog, stock):
        stock(catalog.a_tablet, 10)
        headers = user_headers(admin)

        resp = client.post(
            "/api/invoices/",
            json={
                "code": "HD202601150001",
                "payment_method": "CASH",
                "discount": 200,
                "lines": [_line(catalog.a_tablet, 2, 1000)],
            },
            headers=headers,
        )
        assert resp.status_code == 201
        invoice = resp.get_json()["invoice"]
        assert invoice["final_amount"] == 1800
        assert invoice["items"][0]["amount"] == 2000

        resp = client.get(f"/api/invoices/{invoice['id']}", headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()["invoice"]["code"] == "HD202601150001"

        resp = client.post(f"/api/invoices/{invoice['id']}/cancel", json={"reason": "Wrong item"}, headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()["invoice"]["status"] == "CANCELLED"

    @pytest.mark.parametrize("restock, expected_quantity", [
        ("false", 8),
        ("0", 8),
        (False, 8),
        ("true", 10),
        (True, 10),
    ])
    def test_cancel_restock_flag(self, client, admin, catalog, stock, restock, expected_quantity):
        lot = stock(catalog.a_tablet, 10)
        lot_id = lot.id
        headers = user_headers(admin)
        invoice = client.post(
            "/api/invoices/",
            json={"code": "HD-RESTOCK", "payment_method": "CASH", "lines": [_line(catalog.a_tablet, 2, 1000)]},
            headers=headers,
        ).get_json()["invoice"]

        resp = client.post(f"/api/invoices/{invoice['id']}/cancel", json={"restock": restock}, headers=headers)

        assert resp.status_code == 200
        assert inventory_service.get_lot(lot_id).quantity == expected_quantity

    def test_cancel_rejects_non_boolean_restock(self, client, admin, catalog, stock):
        stock(catalog.a_tablet, 10)
        headers = user_headers(admin)
        invoice = client.post(
            "/api/invoices/",
            json={"code": "HD-RESTOCK", "payment_method": "CASH", "lines": [_line(catalog.a_tablet, 2, 1000)]},
            headers=headers,
        ).get_json()["invoice"]

        resp = client.post(f"/api/invoices/{invoice['id']}/cancel", json={"restock": "maybe"}, headers=headers)

        assert resp.status_code == 400
        assert resp.get_json()["details"]["field"] == "restock"
        assert client.get(f"/api/invoices/{invoice['id']}", headers=headers).get_json()["invoice"]["status"] == "COMPLETED"

    def test_insufficient_stock_is_422(self, client, admin, catalog, stock):
        stock(catalog.a_tablet, 1)

        resp = client.post(
            "/api/invoices/",
            json={"code": "HD-X", "payment_method": "CASH", "lines": [_line(catalog.a_tablet, 5, 1000)]},
            headers=user_headers(admin),
        )

        assert resp.status_code == 422
        assert resp.get_json()["type"] == "InsufficientStockError"

    def test_validation_error_is_400(self, client, admin, catalog):
        resp = client.post(
            "/api/invoices/",
            json={"code": "HD-X", "payment_method": "CASH", "lines": []},
            headers=user_headers(admin),
        )
        assert resp.status_code == 400
        assert resp.get_json()["type"] == "ValidationError"

    def test_duplicate_code_is_409(self, client, admin, catalog, stock):
        stock(catalog.a_tablet, 10)
        payload = {"code": "HD-DUP", "payment_method": "CASH", "lines": [_line(catalog.a_tablet, 1, 1000)]}

        assert client.post("/api/invoices/", json=payload, headers=user_headers(admin)).status_code == 201
        resp = client.post("/api/invoices/", json=payload, headers=user_headers(admin))
        assert resp.status_code == 409

    def test_unknown_invoice_is_404(self, client, admin):
        resp = client.get("/api/invoices/999", headers=user_headers(admin))
        assert resp.status_code == 404

    def test_next_code(self, client, admin):
        first = client.get("/api/invoices/next-code", headers=user_headers(admin)).get_json()["code"]
        second = client.get("/api/invoices/next-code", headers=user_headers(admin)).get_json()["code"]

        assert first.startswith("HD")
        assert len(first) == len("HD202601150001")
        assert int(second[-4:]) == int(first[-4:]) + 1


# =============================================================================
# PURCHASE ORDERS
# =============================================================================


class TestPurchaseOrderRoutes:
    def _create(self, client, admin, catalog, **extra):
        payload = {
            "code": "PO-202601-0001",
            "supplier_id": catalog.supplier.id,
            "payment_method": "TRANSFER",
            "items": [_po_item(catalog.a_box, 10, 10000, batch_number="PA01", expiry_date="2027-01-31")],
        }
        payload.update(extra)
        return client.post("/api/purchase-orders/", json=payload, headers=user_headers(admin))

    def test_payment_flow(self, client, admin, catalog):
        resp = self._create(client, admin, catalog)
        assert resp.status_code == 201
        order = resp.get_json()["purchase_order"]
        assert order["total_amount"] == 100000
        assert order["remaining"] == 100000
        path = f"/api/purchase-orders/{order['id']}/payments"

        resp = client.post(path, json={"amount": 60000, "payment_method": "CASH"}, headers=user_headers(admin))
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["transaction"]["type"] == "EXPENSE"
        assert body["summary"]["payment_status"] == "PARTIAL"
        assert body["summary"]["remaining"] == 40000

        resp = client.post(path, json={"amount": 50000, "payment_method": "CASH"}, headers=user_headers(admin))
        assert resp.status_code == 422
        assert resp.get_json()["type"] == "OverpaymentError"

        resp = client.post(path, json={"amount": 40000, "payment_method": "CASH"}, headers=user_headers(admin))
        assert resp.get_json()["summary"]["payment_status"] == "PAID"

        resp = client.post(path, json={"amount": 1, "payment_method": "CASH"}, headers=user_headers(admin))
        assert resp.status_code == 409
        assert resp.get_json()["type"] == "OrderLockedError"

    def test_item_edits(self, client, admin, catalog):
        order = self._create(client, admin, catalog).get_json()["purchase_order"]

        resp = client.post(
            f"/api/purchase-orders/{order['id']}/items",
            json=_po_item(catalog.b_tablet, 10, 2500),
            headers=user_headers(admin),
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["purchase_order"]["total_amount"] == 125000

        resp = client.delete(
            f"/api/purchase-orders/{order['id']}/items/{body['item']['id']}",
            headers=user_headers(admin),
        )
        assert resp.status_code == 200
        assert resp.get_json()["purchase_order"]["total_amount"] == 100000

        resp = client.get(f"/api/purchase-orders/{order['id']}", headers=user_headers(admin))
        assert len(resp.get_json()["purchase_order"]["items"]) == 1

    def test_unknown_supplier_is_404(self, client, admin, catalog):
        resp = self._create(client, admin, catalog, supplier_id=999)
        assert resp.status_code == 404


# =============================================================================
# INVENTORY & REPORTS
# =============================================================================


class TestInventoryRoutes:
    def test_receive_list_and_total(self, client, admin, catalog):
        headers = user_headers(admin)
        resp = client.post(
            "/api/inventory/receive",
            json={
                "product_id": catalog.product_a.id,
                "product_unit_id": catalog.a_box.id,
                "quantity": 3,
                "batch_number": "ADJ1",
                "expiry_date": "2027-05-31",
            },
            headers=headers,
        )
        assert resp.status_code == 201
        assert resp.get_json()["lot"]["expiry_date"] == "2027-05-31"

        resp = client.get(f"/api/inventory/lots?product_id={catalog.product_a.id}", headers=headers)
        assert resp.get_json()["count"] == 1

        resp = client.get(f"/api/inventory/products/{catalog.product_a.id}/total", headers=headers)
        assert resp.get_json()["total_quantity"] == 30.0

    def test_receive_rejects_bad_quantity(self, client, admin, catalog):
        resp = client.post(
            "/api/inventory/receive",
            json={"product_id": catalog.product_a.id, "product_unit_id": catalog.a_box.id, "quantity": 0},
            headers=user_headers(admin),
        )
        assert resp.status_code == 400


class TestReportRoutes:
    def test_summary(self, client, admin, catalog):
        resp = client.get("/api/reports/summary", headers=user_headers(admin))
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["ledger"] == {"income": 0, "expense": 0, "net": 0}
        assert {row["code"] for row in body["low_stock"]} == {"PARA500", "AMOX250"}

    def test_summary_rejects_bad_range(self, client, admin):
        resp = client.get("/api/reports/summary?start=2026-02-01&end=2026-01-01", headers=user_headers(admin))
        assert resp.status_code == 400
