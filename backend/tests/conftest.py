"""
Pytest fixtures for pharmacy POS backend tests.

Provides the application on an in-memory database, a per-test clean
session, staff users, a small catalog (two products, a supplier) and
helpers for stocking lots and building request headers.
"""

from datetime import date
from types import SimpleNamespace

import pytest

from pharmacy_pos import create_app
from pharmacy_pos.extensions import db
from pharmacy_pos.models import Category, Product, ProductUnit, Supplier, Unit, User
from pharmacy_pos.models.auth import ROLE_ADMIN, ROLE_STAFF
from pharmacy_pos.services import inventory_service, staff_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'INVOICE_CANCEL_RESTOCK': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        db.session.remove()
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        db.session.remove()


@pytest.fixture(scope='function')
def admin(db_session):
    return staff_service.create_staff(
        username="admin",
        password="Password123",
        full_name="Administrator",
        role=ROLE_ADMIN,
    )


@pytest.fixture(scope='function')
def cashier(db_session):
    return staff_service.create_staff(
        username="cashier",
        password="Password123",
        full_name="Counter Staff",
        role=ROLE_STAFF,
    )


@pytest.fixture(scope='function')
def catalog(db_session):
    """
    Two products sold by the tablet (base) and the box of 10.

    Returns a namespace with product_a, product_b, their ProductUnits
    (a_tablet, a_box, b_tablet, b_box) and a supplier.
    """
    tablet = Unit(name="Tablet")
    box = Unit(name="Box")
    category = Category(name="Analgesics")
    supplier = Supplier(name="Central Pharma", phone="0901234567")
    db_session.add_all([tablet, box, category, supplier])
    db_session.flush()

    def _product(code: str, name: str, tablet_price: int, box_price: int) -> Product:
        product = Product(code=code, name=name, category_id=category.id)
        product.units = [
            ProductUnit(unit_id=tablet.id, conversion_factor=1.0, cost_price=tablet_price // 2,
                        selling_price=tablet_price, is_base_unit=True),
            ProductUnit(unit_id=box.id, conversion_factor=10.0, cost_price=box_price // 2,
                        selling_price=box_price, is_base_unit=False),
        ]
        db_session.add(product)
        return product

    product_a = _product("PARA500", "Paracetamol 500mg", 1000, 9500)
    product_b = _product("AMOX250", "Amoxicillin 250mg", 5000, 48000)
    db_session.commit()

    return SimpleNamespace(
        tablet=tablet,
        box=box,
        category=category,
        supplier=supplier,
        product_a=product_a,
        product_b=product_b,
        a_tablet=product_a.units[0],
        a_box=product_a.units[1],
        b_tablet=product_b.units[0],
        b_box=product_b.units[1],
    )


@pytest.fixture(scope='function')
def stock(db_session):
    """Helper: receive a lot and return it."""
    def _stock(product_unit: ProductUnit, quantity: int, batch_number=None, expiry_date=None):
        return inventory_service.receive_stock(
            product_id=product_unit.product_id,
            product_unit_id=product_unit.id,
            quantity=quantity,
            batch_number=batch_number,
            expiry_date=expiry_date,
        )
    return _stock


def user_headers(user: User) -> dict:
    """Helper to create the acting-user header."""
    return {'X-User-Id': str(user.id)}


EXPIRY_EARLY = date(2026, 3, 31)
EXPIRY_LATE = date(2027, 6, 30)
