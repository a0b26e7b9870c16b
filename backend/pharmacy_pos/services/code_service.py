# Overview: Service-layer operations for document codes; allocates invoice and purchase-order codes.

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ValidationError
from ..models import DocumentSequence, Invoice, PurchaseOrder
from ..time_utils import utcnow
from .concurrency import run_with_retry


DOC_INVOICE = "INVOICE"
DOC_PURCHASE_ORDER = "PURCHASE_ORDER"

INVOICE_PREFIX = "HD"
PURCHASE_ORDER_PREFIX = "PO"


def _allocate(document_type: str, period: str) -> int:
    """
    Atomically take the next number for (document_type, period).

    The increment is a single UPDATE. The first allocation of a period
    inserts the row; losing that insert to a concurrent writer rolls back
    and falls back to the UPDATE path. Callers own no open work when this runs.
    """
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    def _current() -> int:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type, period=period)
            .scalar()
        )
        return current - 1

    result = db.session.execute(stmt)
    if result.rowcount:
        db.session.flush()
        return _current()

    db.session.add(DocumentSequence(document_type=document_type, period=period, next_number=2))
    try:
        db.session.flush()
        return 1
    except IntegrityError:
        db.session.rollback()
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise
        db.session.flush()
        return _current()


def _next_code(document_type: str, period: str, fmt, model) -> str:
    """Allocate numbers until one yields a code no document already uses."""
    while True:
        code = fmt(_allocate(document_type, period))
        exists = db.session.query(model.id).filter(model.code == code).first()
        if exists is None:
            return code


def format_invoice_code(day: date, number: int) -> str:
    if number <= 0:
        raise ValidationError("number must be positive", {"field": "number"})
    return f"{INVOICE_PREFIX}{day:%Y%m%d}{number:04d}"


def format_purchase_order_code(day: date, number: int) -> str:
    if number <= 0:
        raise ValidationError("number must be positive", {"field": "number"})
    return f"{PURCHASE_ORDER_PREFIX}-{day:%Y%m}-{number:04d}"


def next_invoice_code(on: date | datetime | None = None) -> str:
    """
    Next free invoice code for the given day, e.g. "HD202601150001".

    The sequence restarts every day. Commits the allocation.
    """
    day = on or utcnow()
    if isinstance(day, datetime):
        day = day.date()

    def _op() -> str:
        code = _next_code(
            DOC_INVOICE,
            f"{day:%Y%m%d}",
            lambda n: format_invoice_code(day, n),
            Invoice,
        )
        db.session.commit()
        return code

    return run_with_retry(_op)


def next_purchase_order_code(on: date | datetime | None = None) -> str:
    """Next free purchase-order code for the given month, e.g. "PO-202601-0007"."""
    day = on or utcnow()
    if isinstance(day, datetime):
        day = day.date()

    def _op() -> str:
        code = _next_code(
            DOC_PURCHASE_ORDER,
            f"{day:%Y%m}",
            lambda n: format_purchase_order_code(day, n),
            PurchaseOrder,
        )
        db.session.commit()
        return code

    return run_with_retry(_op)
