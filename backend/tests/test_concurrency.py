"""
Concurrent writers against a file-backed SQLite database.

Each worker thread runs in its own app context (own session and
connection), so payments and lot decrements really race for the write
lock. Losers must fail with a business error, never a lost update.
"""

import threading
from types import SimpleNamespace

import pytest

from pharmacy_pos import create_app
from pharmacy_pos.errors import PharmacyError
from pharmacy_pos.extensions import db
from pharmacy_pos.models import Category, InventoryItem, Product, ProductUnit, Supplier, Transaction, Unit
from pharmacy_pos.models.auth import ROLE_ADMIN
from pharmacy_pos.services import inventory_service, purchase_service, staff_service
from pharmacy_pos.services.inventory_service import LotSelector


WORKERS = 4


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30}},
        'BCRYPT_ROUNDS': 4,
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def seeded(file_app):
    """A 10-tablet lot and an unpaid purchase order of 100,000."""
    with file_app.app_context():
        admin = staff_service.create_staff(
            username="admin", password="Password123", full_name="Administrator", role=ROLE_ADMIN,
        )
        tablet = Unit(name="Tablet")
        category = Category(name="Analgesics")
        supplier = Supplier(name="Central Pharma")
        db.session.add_all([tablet, category, supplier])
        db.session.flush()

        product = Product(code="PARA500", name="Paracetamol 500mg", category_id=category.id)
        product.units = [
            ProductUnit(unit_id=tablet.id, conversion_factor=1.0, cost_price=500,
                        selling_price=1000, is_base_unit=True),
        ]
        db.session.add(product)
        db.session.commit()
        product_unit_id = product.units[0].id

        lot = inventory_service.receive_stock(
            product_id=product.id, product_unit_id=product_unit_id, quantity=10,
        )
        order = purchase_service.create_purchase_order(
            code="PO-202601-0001",
            supplier_id=supplier.id,
            user_id=admin.id,
            payment_method="TRANSFER",
            items=[{
                "product_id": product.id,
                "product_unit_id": product_unit_id,
                "quantity": 10,
                "cost_price": 10000,
                "batch_number": "PO-LOT",
            }],
        )

        seed = SimpleNamespace(
            user_id=admin.id,
            product_id=product.id,
            product_unit_id=product_unit_id,
            lot_id=lot.id,
            order_id=order.id,
        )
        db.session.remove()
    return seed


def _race(app, operation):
    """Run operation in WORKERS threads released together; return each outcome."""
    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(WORKERS)

    def worker():
        with app.app_context():
            try:
                barrier.wait()
                operation()
                outcome = "ok"
            except PharmacyError as exc:
                outcome = type(exc).__name__
            except Exception as exc:
                outcome = exc
            finally:
                db.session.remove()
            with lock:
                results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(WORKERS)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


class TestConcurrentPayments:
    def test_parallel_payments_never_exceed_total(self, file_app, seeded):
        results = _race(file_app, lambda: purchase_service.record_payment(
            seeded.order_id, amount=40000, payment_method="CASH", user_id=seeded.user_id,
        ))

        assert sorted(map(str, results)) == ["OverpaymentError", "OverpaymentError", "ok", "ok"]
        with file_app.app_context():
            paid = purchase_service.total_paid(seeded.order_id)
            order = purchase_service.get_purchase_order(seeded.order_id)
            assert paid == 80000
            assert paid <= order.total_amount
            assert order.payment_status == "PARTIAL"
            assert db.session.query(Transaction).filter_by(purchase_order_id=seeded.order_id).count() == 2
            db.session.remove()


class TestConcurrentConsumption:
    def test_parallel_sales_from_one_lot_never_oversell(self, file_app, seeded):
        results = _race(file_app, lambda: inventory_service.consume_stock(
            product_id=seeded.product_id,
            product_unit_id=seeded.product_unit_id,
            quantity=3,
            selector=LotSelector.by_id(seeded.lot_id),
        ))

        assert sorted(map(str, results)) == ["InsufficientStockError", "ok", "ok", "ok"]
        with file_app.app_context():
            lot = db.session.get(InventoryItem, seeded.lot_id)
            assert lot.quantity == 1
            assert lot.quantity >= 0
            db.session.remove()
