"""
Sales Transaction Engine

Turns a cart into an Invoice, its InvoiceItems, one lot decrement per line
and one INCOME ledger entry, as a single database transaction. Either all
of it is visible afterwards or none of it is.

Codes are allocated by code_service; this module only enforces uniqueness.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import DuplicateCodeError, InsufficientStockError, LotNotFoundError, NotFoundError, ValidationError
from ..models import Invoice, InvoiceItem, User
from ..models.ledger import RELATED_INVOICE, TRANSACTION_EXPENSE, TRANSACTION_INCOME
from ..models.sales import INVOICE_STATUS_CANCELLED, INVOICE_STATUS_COMPLETED, VALID_PAYMENT_METHODS
from ..time_utils import utcnow
from ..validation import (
    choice,
    non_negative_int,
    optional_datetime,
    optional_text,
    positive_int,
    required_text,
)
from . import inventory_service
from .concurrency import lock_for_update, run_atomic
from .ledger_service import append_transaction


@dataclass(frozen=True)
class CartLine:
    """A validated cart line. amount is always quantity * unit_price."""
    product_id: int
    product_unit_id: int
    quantity: int
    unit_price: int
    selector: inventory_service.LotSelector

    @property
    def amount(self) -> int:
        return self.quantity * self.unit_price


def _parse_lines(lines) -> list[CartLine]:
    if not lines:
        raise ValidationError("Invoice must have at least one line", {"field": "lines"})
    if not isinstance(lines, (list, tuple)):
        raise ValidationError("lines must be a list", {"field": "lines"})

    parsed = []
    for index, line in enumerate(lines):
        if not isinstance(line, dict):
            raise ValidationError("Each line must be an object", {"field": "lines", "index": index})
        try:
            parsed.append(CartLine(
                product_id=positive_int("product_id", line.get("product_id")),
                product_unit_id=positive_int("product_unit_id", line.get("product_unit_id")),
                quantity=positive_int("quantity", line.get("quantity")),
                unit_price=non_negative_int("unit_price", line.get("unit_price")),
                selector=inventory_service.LotSelector.from_line(line),
            ))
        except ValidationError as exc:
            exc.details["index"] = index
            raise
    return parsed


def _ensure_user(user_id) -> int:
    user_id = positive_int("user_id", user_id)
    if db.session.get(User, user_id) is None:
        raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})
    return user_id


# Ledger descriptions are capped at the Transaction column width
DESCRIPTION_MAX_LENGTH = 255


def _cancel_description(code: str, reason: Optional[str]) -> str:
    description = f"Cancel sale {code}" + (f": {reason}" if reason else "")
    if len(description) > DESCRIPTION_MAX_LENGTH:
        description = description[: DESCRIPTION_MAX_LENGTH - 3] + "..."
    return description


def _ensure_code_free(code: str) -> None:
    exists = db.session.query(Invoice.id).filter(Invoice.code == code).first()
    if exists is not None:
        raise DuplicateCodeError(f"Invoice code {code} already exists", {"code": code})


def create_invoice(
    *,
    code,
    user_id,
    payment_method,
    lines,
    discount=0,
    customer_name: Optional[str] = None,
    customer_phone: Optional[str] = None,
    invoice_date: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> Invoice:
    """
    Record a sale atomically.

    - Line amounts and totals are computed here; client amounts are ignored.
    - final_amount = max(0, total_amount - discount).
    - Each line consumes exactly one lot (explicit lot, batch/expiry, or FEFO).
    - An INCOME transaction for final_amount is appended when it is positive.
    """
    code = required_text("code", code, 64)
    payment_method = choice("payment_method", payment_method, VALID_PAYMENT_METHODS)
    discount = non_negative_int("discount", discount)
    cart = _parse_lines(lines)
    invoice_date = optional_datetime("invoice_date", invoice_date) or utcnow()
    customer_name = optional_text("customer_name", customer_name)
    customer_phone = optional_text("customer_phone", customer_phone, 32)
    notes = optional_text("notes", notes, 2000)

    total_amount = sum(line.amount for line in cart)
    final_amount = max(0, total_amount - discount)

    def _op() -> Invoice:
        acting_user_id = _ensure_user(user_id)
        _ensure_code_free(code)

        invoice = Invoice(
            code=code,
            customer_name=customer_name,
            customer_phone=customer_phone,
            user_id=acting_user_id,
            invoice_date=invoice_date,
            total_amount=total_amount,
            discount=discount,
            final_amount=final_amount,
            payment_method=payment_method,
            status=INVOICE_STATUS_COMPLETED,
            notes=notes,
        )
        db.session.add(invoice)
        try:
            db.session.flush()
        except IntegrityError:
            raise DuplicateCodeError(f"Invoice code {code} already exists", {"code": code})

        for line in cart:
            lot = inventory_service.consume_stock(
                product_id=line.product_id,
                product_unit_id=line.product_unit_id,
                quantity=line.quantity,
                selector=line.selector,
                commit=False,
            )
            db.session.add(InvoiceItem(
                invoice_id=invoice.id,
                product_id=line.product_id,
                product_unit_id=line.product_unit_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
                amount=line.amount,
                inventory_item_id=lot.id,
                batch_number=lot.batch_number,
                expiry_date=lot.expiry_date,
            ))

        if final_amount > 0:
            append_transaction(
                type=TRANSACTION_INCOME,
                amount=final_amount,
                user_id=acting_user_id,
                description=f"Sale {code}",
                payment_method=payment_method,
                related_type=RELATED_INVOICE,
                invoice_id=invoice.id,
                date=invoice_date,
            )

        db.session.flush()
        return invoice

    try:
        invoice = run_atomic(_op)
    except (DuplicateCodeError, InsufficientStockError, LotNotFoundError) as exc:
        current_app.logger.warning("Invoice %s rejected: %s", code, exc)
        raise

    current_app.logger.info(
        "Invoice %s created: %s lines, final amount %s", invoice.code, len(cart), invoice.final_amount
    )
    return invoice


def cancel_invoice(
    invoice_id: int,
    *,
    user_id,
    reason: Optional[str] = None,
    restock: Optional[bool] = None,
) -> Invoice:
    """
    Cancel a COMPLETED invoice.

    Appends an EXPENSE entry reversing final_amount. When restock is enabled
    (argument, else INVOICE_CANCEL_RESTOCK), each line's quantity goes back
    to the lot keyed by its batch/expiry snapshot.
    """
    reason = optional_text("reason", reason)
    if restock is None:
        restock = bool(current_app.config.get("INVOICE_CANCEL_RESTOCK", False))

    def _op() -> Invoice:
        acting_user_id = _ensure_user(user_id)
        invoice = lock_for_update(db.session.query(Invoice).filter(Invoice.id == invoice_id)).first()
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found", {"invoice_id": invoice_id})
        if invoice.status != INVOICE_STATUS_COMPLETED:
            raise ValidationError(
                f"Only COMPLETED invoices can be cancelled (status is {invoice.status})",
                {"invoice_id": invoice_id, "status": invoice.status},
            )

        now = utcnow()
        invoice.status = INVOICE_STATUS_CANCELLED
        invoice.cancelled_at = now
        invoice.cancelled_by_user_id = acting_user_id
        invoice.cancel_reason = reason

        if restock:
            for item in invoice.items:
                inventory_service.restock(
                    product_id=item.product_id,
                    product_unit_id=item.product_unit_id,
                    quantity=item.quantity,
                    batch_number=item.batch_number,
                    expiry_date=item.expiry_date,
                    commit=False,
                )

        if invoice.final_amount > 0:
            append_transaction(
                type=TRANSACTION_EXPENSE,
                amount=invoice.final_amount,
                user_id=acting_user_id,
                description=_cancel_description(invoice.code, reason),
                payment_method=invoice.payment_method,
                related_type=RELATED_INVOICE,
                invoice_id=invoice.id,
                date=now,
            )

        db.session.flush()
        return invoice

    invoice = run_atomic(_op)
    current_app.logger.info("Invoice %s cancelled (restock=%s)", invoice.code, restock)
    return invoice


def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found", {"invoice_id": invoice_id})
    return invoice


def list_invoices(
    *,
    status: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> list[Invoice]:
    q = db.session.query(Invoice)
    if status:
        q = q.filter(Invoice.status == choice("status", status, [INVOICE_STATUS_COMPLETED, INVOICE_STATUS_CANCELLED]))
    if start is not None:
        q = q.filter(Invoice.invoice_date >= start)
    if end is not None:
        q = q.filter(Invoice.invoice_date <= end)
    return q.order_by(Invoice.invoice_date.desc(), Invoice.id.desc()).all()
