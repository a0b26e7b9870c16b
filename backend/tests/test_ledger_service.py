"""Ledger entry validation and range totals."""

from datetime import datetime

import pytest

from pharmacy_pos.errors import NotFoundError, ValidationError
from pharmacy_pos.services import ledger_service


class TestEntries:
    def test_manual_entry(self, admin):
        tx = ledger_service.record_manual_entry(
            type="EXPENSE", amount=2500000, user_id=admin.id, description="Rent", payment_method="TRANSFER",
        )

        assert tx.related_type == "OTHER"
        assert ledger_service.list_transactions(type="EXPENSE")[0].description == "Rent"

    @pytest.mark.parametrize("kwargs", [
        {"type": "REFUND", "amount": 1},
        {"type": "INCOME", "amount": 0},
        {"type": "INCOME", "amount": 1, "related_type": "INVOICE"},
        {"type": "EXPENSE", "amount": 1, "related_type": "PURCHASE"},
    ])
    def test_invalid_entries(self, admin, kwargs):
        with pytest.raises(ValidationError):
            ledger_service.append_transaction(user_id=admin.id, **kwargs)

    def test_unknown_user(self, db_session):
        with pytest.raises(NotFoundError):
            ledger_service.append_transaction(type="INCOME", amount=1, user_id=999)


class TestSummary:
    def test_inclusive_range(self, admin):
        for day, kind, amount in [(1, "INCOME", 100), (15, "EXPENSE", 30), (31, "INCOME", 50)]:
            ledger_service.record_manual_entry(
                type=kind, amount=amount, user_id=admin.id, date=datetime(2026, 1, day, 12),
            )

        assert ledger_service.summary() == {"income": 150, "expense": 30, "net": 120}
        assert ledger_service.summary(datetime(2026, 1, 2), datetime(2026, 1, 31, 12)) == {
            "income": 50, "expense": 30, "net": 20,
        }
