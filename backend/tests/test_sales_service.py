"""Invoice creation and cancellation: totals, lot decrements, ledger entries and atomicity."""

import pytest

from pharmacy_pos.errors import (
    DuplicateCodeError,
    InsufficientStockError,
    LotNotFoundError,
    NotFoundError,
    ValidationError,
)
from pharmacy_pos.extensions import db
from pharmacy_pos.models import InventoryItem, Invoice, InvoiceItem, Transaction
from pharmacy_pos.services import inventory_service, sales_service

from conftest import EXPIRY_EARLY, EXPIRY_LATE


def _line(product_unit, quantity, unit_price, **extra):
    line = {
        "product_id": product_unit.product_id,
        "product_unit_id": product_unit.id,
        "quantity": quantity,
        "unit_price": unit_price,
    }
    line.update(extra)
    return line


class TestCreateInvoice:
    def test_two_line_sale_with_discount(self, admin, catalog, stock):
        lot_a = stock(catalog.a_tablet, 20)
        lot_b = stock(catalog.b_tablet, 5)

        invoice = sales_service.create_invoice(
            code="HD202601150001",
            user_id=admin.id,
            payment_method="CASH",
            discount=500,
            lines=[
                _line(catalog.a_tablet, 3, 1000),
                _line(catalog.b_tablet, 1, 5000),
            ],
        )

        assert invoice.total_amount == 8000
        assert invoice.final_amount == 7500
        assert invoice.status == "COMPLETED"
        assert [item.amount for item in invoice.items] == [3000, 5000]

        income = db.session.query(Transaction).filter_by(invoice_id=invoice.id).all()
        assert len(income) == 1
        assert income[0].type == "INCOME"
        assert income[0].amount == 7500
        assert income[0].related_type == "INVOICE"

        assert db.session.get(InventoryItem, lot_a.id).quantity == 17
        assert db.session.get(InventoryItem, lot_b.id).quantity == 4

    def test_client_amount_is_ignored(self, admin, catalog, stock):
        stock(catalog.a_tablet, 10)

        invoice = sales_service.create_invoice(
            code="HD-AMOUNT",
            user_id=admin.id,
            payment_method="CASH",
            lines=[_line(catalog.a_tablet, 2, 1000, amount=1)],
        )

        assert invoice.items[0].amount == 2000
        assert invoice.total_amount == 2000

    def test_discount_larger_than_total_floors_at_zero_without_ledger_entry(self, admin, catalog, stock):
        stock(catalog.a_tablet, 10)

        invoice = sales_service.create_invoice(
            code="HD-FREE",
            user_id=admin.id,
            payment_method="CASH",
            discount=99999,
            lines=[_line(catalog.a_tablet, 1, 1000)],
        )

        assert invoice.final_amount == 0
        assert db.session.query(Transaction).count() == 0

    def test_items_record_the_consumed_lot(self, admin, catalog, stock):
        stock(catalog.a_tablet, 10, "LATE", EXPIRY_LATE)
        early = stock(catalog.a_tablet, 10, "EARLY", EXPIRY_EARLY)

        invoice = sales_service.create_invoice(
            code="HD-FEFO",
            user_id=admin.id,
            payment_method="TRANSFER",
            lines=[_line(catalog.a_tablet, 4, 1000)],
        )

        item = invoice.items[0]
        assert item.inventory_item_id == early.id
        assert item.batch_number == "EARLY"
        assert item.expiry_date == EXPIRY_EARLY

    def test_line_can_pin_batch(self, admin, catalog, stock):
        late = stock(catalog.a_tablet, 10, "LATE", EXPIRY_LATE)
        stock(catalog.a_tablet, 10, "EARLY", EXPIRY_EARLY)

        sales_service.create_invoice(
            code="HD-PIN",
            user_id=admin.id,
            payment_method="CASH",
            lines=[_line(catalog.a_tablet, 4, 1000, batch_number="LATE", expiry_date="2027-06-30")],
        )

        assert db.session.get(InventoryItem, late.id).quantity == 6

    def test_duplicate_code(self, admin, catalog, stock):
        stock(catalog.a_tablet, 10)
        sales_service.create_invoice(
            code="HD-DUP", user_id=admin.id, payment_method="CASH",
            lines=[_line(catalog.a_tablet, 1, 1000)],
        )

        with pytest.raises(DuplicateCodeError):
            sales_service.create_invoice(
                code="HD-DUP", user_id=admin.id, payment_method="CASH",
                lines=[_line(catalog.a_tablet, 1, 1000)],
            )

        assert db.session.query(Invoice).count() == 1
        assert inventory_quantity(catalog.a_tablet) == 9

    @pytest.mark.parametrize("field, value", [
        ("code", ""),
        ("payment_method", "BITCOIN"),
        ("discount", -1),
        ("lines", []),
    ])
    def test_header_validation(self, admin, catalog, stock, field, value):
        stock(catalog.a_tablet, 10)
        kwargs = {
            "code": "HD-VAL",
            "user_id": admin.id,
            "payment_method": "CASH",
            "discount": 0,
            "lines": [_line(catalog.a_tablet, 1, 1000)],
        }
        kwargs[field] = value

        with pytest.raises(ValidationError):
            sales_service.create_invoice(**kwargs)
        assert db.session.query(Invoice).count() == 0

    @pytest.mark.parametrize("quantity, unit_price", [(0, 1000), (-1, 1000), (1, -5)])
    def test_line_validation(self, admin, catalog, stock, quantity, unit_price):
        stock(catalog.a_tablet, 10)

        with pytest.raises(ValidationError) as excinfo:
            sales_service.create_invoice(
                code="HD-LINE", user_id=admin.id, payment_method="CASH",
                lines=[_line(catalog.a_tablet, 1, 1000), _line(catalog.a_tablet, quantity, unit_price)],
            )

        assert excinfo.value.details["index"] == 1
        assert inventory_quantity(catalog.a_tablet) == 10

    def test_unknown_user(self, catalog, stock):
        stock(catalog.a_tablet, 10)
        with pytest.raises(NotFoundError):
            sales_service.create_invoice(
                code="HD-USER", user_id=4242, payment_method="CASH",
                lines=[_line(catalog.a_tablet, 1, 1000)],
            )


class TestAtomicity:
    def test_failing_third_line_persists_nothing(self, admin, catalog, stock):
        stock(catalog.a_tablet, 10)
        stock(catalog.b_tablet, 10)
        stock(catalog.a_box, 1)

        with pytest.raises(InsufficientStockError) as excinfo:
            sales_service.create_invoice(
                code="HD-ATOMIC",
                user_id=admin.id,
                payment_method="CASH",
                lines=[
                    _line(catalog.a_tablet, 2, 1000),
                    _line(catalog.b_tablet, 2, 5000),
                    _line(catalog.a_box, 5, 9500),
                    _line(catalog.b_tablet, 1, 5000),
                    _line(catalog.a_tablet, 1, 1000),
                ],
            )

        assert "Paracetamol" in str(excinfo.value)
        assert db.session.query(Invoice).count() == 0
        assert db.session.query(InvoiceItem).count() == 0
        assert db.session.query(Transaction).count() == 0
        assert inventory_quantity(catalog.a_tablet) == 10
        assert inventory_quantity(catalog.b_tablet) == 10
        assert inventory_quantity(catalog.a_box) == 1

    def test_missing_lot_persists_nothing(self, admin, catalog, stock):
        stock(catalog.a_tablet, 10)

        with pytest.raises(LotNotFoundError):
            sales_service.create_invoice(
                code="HD-NOLOT",
                user_id=admin.id,
                payment_method="CASH",
                lines=[_line(catalog.a_tablet, 2, 1000), _line(catalog.b_box, 1, 48000)],
            )

        assert db.session.query(Invoice).count() == 0
        assert inventory_quantity(catalog.a_tablet) == 10

    def test_same_lot_on_two_lines_is_checked_cumulatively(self, admin, catalog, stock):
        stock(catalog.a_tablet, 5)

        with pytest.raises(InsufficientStockError):
            sales_service.create_invoice(
                code="HD-TWICE",
                user_id=admin.id,
                payment_method="CASH",
                lines=[_line(catalog.a_tablet, 3, 1000), _line(catalog.a_tablet, 3, 1000)],
            )

        assert inventory_quantity(catalog.a_tablet) == 5


class TestCancelInvoice:
    def _sale(self, admin, catalog, stock):
        stock(catalog.a_tablet, 10, "B1", EXPIRY_EARLY)
        return sales_service.create_invoice(
            code="HD-CANCEL",
            user_id=admin.id,
            payment_method="CASH",
            lines=[_line(catalog.a_tablet, 4, 1000)],
        )

    def test_cancel_reverses_income_without_restock_by_default(self, admin, cashier, catalog, stock):
        invoice = self._sale(admin, catalog, stock)

        cancelled = sales_service.cancel_invoice(invoice.id, user_id=cashier.id, reason="Customer returned")

        assert cancelled.status == "CANCELLED"
        assert cancelled.cancelled_by_user_id == cashier.id
        assert cancelled.cancelled_at is not None
        entries = db.session.query(Transaction).filter_by(invoice_id=invoice.id).order_by(Transaction.id).all()
        assert [(t.type, t.amount) for t in entries] == [("INCOME", 4000), ("EXPENSE", 4000)]
        assert inventory_quantity(catalog.a_tablet) == 6

    def test_cancel_with_restock_returns_quantity_to_same_lot(self, admin, catalog, stock):
        invoice = self._sale(admin, catalog, stock)

        sales_service.cancel_invoice(invoice.id, user_id=admin.id, restock=True)

        lots = db.session.query(InventoryItem).all()
        assert len(lots) == 1
        assert lots[0].batch_number == "B1"
        assert lots[0].quantity == 10

    def test_restock_policy_from_config(self, app, admin, catalog, stock):
        invoice = self._sale(admin, catalog, stock)
        app.config["INVOICE_CANCEL_RESTOCK"] = True
        try:
            sales_service.cancel_invoice(invoice.id, user_id=admin.id)
        finally:
            app.config["INVOICE_CANCEL_RESTOCK"] = False

        assert inventory_quantity(catalog.a_tablet) == 10

    def test_only_completed_invoices_can_be_cancelled(self, admin, catalog, stock):
        invoice = self._sale(admin, catalog, stock)
        sales_service.cancel_invoice(invoice.id, user_id=admin.id)

        with pytest.raises(ValidationError):
            sales_service.cancel_invoice(invoice.id, user_id=admin.id)
        assert db.session.query(Transaction).filter_by(type="EXPENSE").count() == 1

    def test_long_reason_is_kept_and_ledger_description_truncated(self, admin, catalog, stock):
        invoice = self._sale(admin, catalog, stock)
        reason = "x" * 250

        cancelled = sales_service.cancel_invoice(invoice.id, user_id=admin.id, reason=reason)

        assert cancelled.cancel_reason == reason
        expense = db.session.query(Transaction).filter_by(invoice_id=invoice.id, type="EXPENSE").one()
        assert len(expense.description) == 255
        assert expense.description.startswith("Cancel sale HD-CANCEL: xxx")
        assert expense.description.endswith("...")

    def test_cancel_unknown_invoice(self, admin):
        with pytest.raises(NotFoundError):
            sales_service.cancel_invoice(999, user_id=admin.id)


class TestReads:
    def test_list_invoices_by_status(self, admin, catalog, stock):
        stock(catalog.a_tablet, 10)
        first = sales_service.create_invoice(
            code="HD-1", user_id=admin.id, payment_method="CASH", lines=[_line(catalog.a_tablet, 1, 1000)],
        )
        sales_service.create_invoice(
            code="HD-2", user_id=admin.id, payment_method="CASH", lines=[_line(catalog.a_tablet, 1, 1000)],
        )
        sales_service.cancel_invoice(first.id, user_id=admin.id)

        assert [i.code for i in sales_service.list_invoices(status="COMPLETED")] == ["HD-2"]
        assert [i.code for i in sales_service.list_invoices(status="CANCELLED")] == ["HD-1"]
        assert sales_service.get_invoice(first.id).code == "HD-1"


def inventory_quantity(product_unit) -> int:
    return inventory_service.available_quantity(product_unit.product_id, product_unit.id)
