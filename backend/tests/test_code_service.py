"""Document code allocation: formats, per-period sequences and collision skipping."""

from datetime import date, datetime

import pytest

from pharmacy_pos.errors import ValidationError
from pharmacy_pos.extensions import db
from pharmacy_pos.models import DocumentSequence
from pharmacy_pos.services import code_service, sales_service


class TestFormats:
    def test_invoice_code_format(self):
        assert code_service.format_invoice_code(date(2026, 1, 15), 7) == "HD202601150007"

    def test_purchase_order_code_format(self):
        assert code_service.format_purchase_order_code(date(2026, 1, 15), 12) == "PO-202601-0012"

    def test_number_must_be_positive(self):
        with pytest.raises(ValidationError):
            code_service.format_invoice_code(date(2026, 1, 15), 0)


class TestAllocation:
    def test_invoice_codes_increase_within_a_day(self, db_session):
        day = date(2026, 1, 15)
        codes = [code_service.next_invoice_code(day) for _ in range(3)]

        assert codes == ["HD202601150001", "HD202601150002", "HD202601150003"]

    def test_invoice_sequence_restarts_each_day(self, db_session):
        code_service.next_invoice_code(date(2026, 1, 15))
        code_service.next_invoice_code(date(2026, 1, 15))

        assert code_service.next_invoice_code(date(2026, 1, 16)) == "HD202601160001"

    def test_purchase_order_sequence_is_monthly(self, db_session):
        assert code_service.next_purchase_order_code(date(2026, 1, 1)) == "PO-202601-0001"
        assert code_service.next_purchase_order_code(datetime(2026, 1, 31, 23, 0)) == "PO-202601-0002"
        assert code_service.next_purchase_order_code(date(2026, 2, 1)) == "PO-202602-0001"

    def test_invoice_and_purchase_sequences_are_independent(self, db_session):
        code_service.next_invoice_code(date(2026, 1, 15))

        assert code_service.next_purchase_order_code(date(2026, 1, 15)) == "PO-202601-0001"
        assert db_session.query(DocumentSequence).count() == 2

    def test_skips_codes_already_used(self, admin, catalog, stock):
        stock(catalog.a_tablet, 5)
        sales_service.create_invoice(
            code="HD202601150001",
            user_id=admin.id,
            payment_method="CASH",
            lines=[{
                "product_id": catalog.product_a.id,
                "product_unit_id": catalog.a_tablet.id,
                "quantity": 1,
                "unit_price": 1000,
            }],
        )

        assert code_service.next_invoice_code(date(2026, 1, 15)) == "HD202601150002"

    def test_allocation_is_committed(self, db_session):
        code_service.next_invoice_code(date(2026, 1, 15))
        db.session.rollback()

        seq = db_session.query(DocumentSequence).filter_by(document_type="INVOICE").one()
        assert seq.period == "20260115"
        assert seq.next_number == 2
