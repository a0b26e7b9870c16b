# Overview: Service-layer operations for the income/expense ledger; append-only Transaction rows.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import func

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Transaction, User
from ..models.ledger import (
    RELATED_INVOICE,
    RELATED_OTHER,
    RELATED_PURCHASE,
    TRANSACTION_EXPENSE,
    TRANSACTION_INCOME,
    VALID_RELATED_TYPES,
    VALID_TRANSACTION_TYPES,
)
from ..time_utils import utcnow
from ..validation import choice, optional_text, positive_int
"""
Income/Expense Ledger Invariants (authoritative)

- Append-only: rows are never updated or deleted. Corrections are new rows.
- amount > 0 always; the type (INCOME/EXPENSE) carries the sign.
- Entries are written inside the same DB transaction as the invoice or
  purchase-order change they record (flush only, never commit).
- related_type INVOICE requires invoice_id, PURCHASE requires purchase_order_id.
"""


def append_transaction(
    *,
    type: str,
    amount,
    user_id: int,
    description: Optional[str] = None,
    payment_method: Optional[str] = None,
    related_type: str = RELATED_OTHER,
    invoice_id: int | None = None,
    purchase_order_id: int | None = None,
    date: Optional[datetime] = None,
) -> Transaction:
    """
    Append one ledger entry.

    - No commit here; the calling workflow owns the transaction.
    - date defaults to server time.
    """
    choice("type", type, VALID_TRANSACTION_TYPES)
    choice("related_type", related_type, VALID_RELATED_TYPES)
    amount = positive_int("amount", amount)

    if related_type == RELATED_INVOICE and not invoice_id:
        raise ValidationError("invoice_id is required for INVOICE entries", {"field": "invoice_id"})
    if related_type == RELATED_PURCHASE and not purchase_order_id:
        raise ValidationError(
            "purchase_order_id is required for PURCHASE entries", {"field": "purchase_order_id"}
        )

    if db.session.get(User, user_id) is None:
        raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})

    tx = Transaction(
        date=date or utcnow(),
        type=type,
        amount=amount,
        description=optional_text("description", description),
        payment_method=payment_method,
        user_id=user_id,
        related_type=related_type,
        invoice_id=invoice_id,
        purchase_order_id=purchase_order_id,
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def record_manual_entry(
    *,
    type: str,
    amount,
    user_id: int,
    description: Optional[str] = None,
    payment_method: Optional[str] = None,
    date: Optional[datetime] = None,
) -> Transaction:
    """Standalone OTHER entry (rent, utilities, misc income). Commits."""
    tx = append_transaction(
        type=type,
        amount=amount,
        user_id=user_id,
        description=description,
        payment_method=payment_method,
        related_type=RELATED_OTHER,
        date=date,
    )
    db.session.commit()
    return tx


def _sum(query) -> int:
    return int(query.with_entities(func.coalesce(func.sum(Transaction.amount), 0)).scalar() or 0)


def total_paid_for_purchase(purchase_order_id: int) -> int:
    """Sum of EXPENSE entries recorded against a purchase order."""
    q = db.session.query(Transaction).filter(
        Transaction.purchase_order_id == purchase_order_id,
        Transaction.related_type == RELATED_PURCHASE,
        Transaction.type == TRANSACTION_EXPENSE,
    )
    return _sum(q)


def list_transactions(
    *,
    type: str | None = None,
    related_type: str | None = None,
    invoice_id: int | None = None,
    purchase_order_id: int | None = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> list[Transaction]:
    q = db.session.query(Transaction)
    if type:
        q = q.filter(Transaction.type == type)
    if related_type:
        q = q.filter(Transaction.related_type == related_type)
    if invoice_id is not None:
        q = q.filter(Transaction.invoice_id == invoice_id)
    if purchase_order_id is not None:
        q = q.filter(Transaction.purchase_order_id == purchase_order_id)
    if start is not None:
        q = q.filter(Transaction.date >= start)
    if end is not None:
        q = q.filter(Transaction.date <= end)
    return q.order_by(Transaction.date.asc(), Transaction.id.asc()).all()


def summary(start: Optional[datetime] = None, end: Optional[datetime] = None) -> dict:
    """
    Income/expense totals over an inclusive date range.

    net = income - expense.
    """
    q = db.session.query(Transaction)
    if start is not None:
        q = q.filter(Transaction.date >= start)
    if end is not None:
        q = q.filter(Transaction.date <= end)

    income = _sum(q.filter(Transaction.type == TRANSACTION_INCOME))
    expense = _sum(q.filter(Transaction.type == TRANSACTION_EXPENSE))
    return {
        "income": income,
        "expense": expense,
        "net": income - expense,
    }
