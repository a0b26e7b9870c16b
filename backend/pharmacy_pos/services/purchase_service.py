# Overview: Service-layer operations for purchase orders; receipt, item edits and incremental payments.

"""
Purchase & Payment Engine

DESIGN PRINCIPLES:
- Receipt is immediate: creating an order (or adding an item) increases stock
  in the same transaction. There is no separate goods-received step.
- total_amount is derived: recomputed from the item set after every item
  change, inside the same transaction.
- Payments are EXPENSE ledger entries linked to the order; total_paid and
  remaining are aggregates over them, never stored.
- payment_status moves UNPAID -> PARTIAL -> PAID and never backwards.
  Only payments advance it. A PAID order is locked.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    DuplicateCodeError,
    NotFoundError,
    OrderLockedError,
    OverpaymentError,
    ValidationError,
)
from ..models import PurchaseOrder, PurchaseOrderItem, Supplier, Transaction, User
from ..models.ledger import RELATED_PURCHASE, TRANSACTION_EXPENSE
from ..models.purchasing import (
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PARTIAL,
    PAYMENT_STATUS_UNPAID,
    VALID_PAYMENT_STATUSES,
)
from ..models.sales import VALID_PAYMENT_METHODS
from ..time_utils import utcnow
from ..validation import (
    choice,
    non_negative_int,
    optional_date,
    optional_datetime,
    optional_text,
    positive_int,
    required_text,
)
from . import inventory_service
from .concurrency import lock_for_update, run_atomic
from .ledger_service import append_transaction, list_transactions, total_paid_for_purchase


# =============================================================================
# HELPERS
# =============================================================================

def _parse_item(item, index: int | None = None) -> dict:
    if not isinstance(item, dict):
        raise ValidationError("Each item must be an object", {"field": "items", "index": index})
    try:
        return {
            "product_id": positive_int("product_id", item.get("product_id")),
            "product_unit_id": positive_int("product_unit_id", item.get("product_unit_id")),
            "quantity": positive_int("quantity", item.get("quantity")),
            "cost_price": non_negative_int("cost_price", item.get("cost_price")),
            "batch_number": optional_text("batch_number", item.get("batch_number"), 64),
            "expiry_date": optional_date("expiry_date", item.get("expiry_date")),
        }
    except ValidationError as exc:
        if index is not None:
            exc.details["index"] = index
        raise


def _ensure_user(user_id) -> int:
    user_id = positive_int("user_id", user_id)
    if db.session.get(User, user_id) is None:
        raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})
    return user_id


def _get_locked(purchase_order_id: int) -> PurchaseOrder:
    order = lock_for_update(
        db.session.query(PurchaseOrder).filter(PurchaseOrder.id == purchase_order_id)
    ).first()
    if order is None:
        raise NotFoundError(
            f"Purchase order {purchase_order_id} not found",
            {"purchase_order_id": purchase_order_id},
        )
    return order


def _ensure_unlocked(order: PurchaseOrder, action: str) -> None:
    if order.payment_status == PAYMENT_STATUS_PAID:
        raise OrderLockedError(
            f"Cannot {action} on fully paid purchase order {order.code}",
            {"purchase_order_id": order.id, "payment_status": order.payment_status},
        )


def _receive_item(item: PurchaseOrderItem) -> None:
    inventory_service.receive_stock(
        product_id=item.product_id,
        product_unit_id=item.product_unit_id,
        quantity=item.quantity,
        batch_number=item.batch_number,
        expiry_date=item.expiry_date,
        commit=False,
    )


def _recompute_total(order: PurchaseOrder) -> int:
    """Re-derive total_amount from the persisted item set."""
    db.session.flush()
    items = db.session.query(PurchaseOrderItem).filter(
        PurchaseOrderItem.purchase_order_id == order.id
    ).all()
    order.total_amount = sum(item.quantity * item.cost_price for item in items)
    return order.total_amount


def derive_payment_status(current_status: str, total_amount: int, paid_after: int) -> str:
    """
    Status after a payment brings the paid sum to paid_after.

    PAID when nothing remains, PARTIAL otherwise. Never moves backwards.
    """
    if paid_after <= 0:
        return current_status
    if total_amount - paid_after == 0:
        return PAYMENT_STATUS_PAID
    if current_status == PAYMENT_STATUS_PAID:
        return PAYMENT_STATUS_PAID
    return PAYMENT_STATUS_PARTIAL


def _check_payment(order: PurchaseOrder, amount: int, paid_so_far: int) -> int:
    _ensure_unlocked(order, "record a payment")
    remaining_before = order.total_amount - paid_so_far
    if amount > remaining_before:
        raise OverpaymentError(
            f"Payment {amount} exceeds remaining balance {remaining_before} of purchase order {order.code}",
            {
                "purchase_order_id": order.id,
                "amount": amount,
                "remaining": remaining_before,
            },
        )
    return remaining_before - amount


def _pay_locked(
    order: PurchaseOrder,
    *,
    amount: int,
    payment_method: str,
    user_id: int,
    description: Optional[str] = None,
    date: Optional[datetime] = None,
) -> Transaction:
    paid_so_far = total_paid_for_purchase(order.id)
    _check_payment(order, amount, paid_so_far)

    tx = append_transaction(
        type=TRANSACTION_EXPENSE,
        amount=amount,
        user_id=user_id,
        description=description or f"Payment for purchase order {order.code}",
        payment_method=payment_method,
        related_type=RELATED_PURCHASE,
        purchase_order_id=order.id,
        date=date,
    )

    order.payment_status = derive_payment_status(
        order.payment_status, order.total_amount, paid_so_far + amount
    )
    # Always write the order row so a concurrent payment fails its version check
    order.updated_at = utcnow()
    db.session.flush()
    return tx


# =============================================================================
# ORDER CREATION
# =============================================================================

def create_purchase_order(
    *,
    code,
    supplier_id,
    user_id,
    payment_method,
    items,
    order_date=None,
    notes: Optional[str] = None,
    payment_status: Optional[str] = None,
    initial_payment=None,
) -> PurchaseOrder:
    """
    Create a purchase order and receive all of its items into inventory.

    Initial status:
    - default UNPAID
    - PAID: a full-payment EXPENSE entry is recorded
    - PARTIAL: initial_payment is required with 0 < amount < total
    - initial_payment alone: status derived as record_payment would
    """
    code = required_text("code", code, 64)
    payment_method = choice("payment_method", payment_method, VALID_PAYMENT_METHODS)
    order_date = optional_datetime("order_date", order_date) or utcnow()
    notes = optional_text("notes", notes, 2000)
    if payment_status is not None:
        payment_status = choice("payment_status", payment_status, VALID_PAYMENT_STATUSES)
    if initial_payment is not None:
        initial_payment = positive_int("initial_payment", initial_payment)

    if not items:
        raise ValidationError("Purchase order must have at least one item", {"field": "items"})
    if not isinstance(items, (list, tuple)):
        raise ValidationError("items must be a list", {"field": "items"})
    parsed = [_parse_item(item, index) for index, item in enumerate(items)]
    total_amount = sum(item["quantity"] * item["cost_price"] for item in parsed)

    if payment_status == PAYMENT_STATUS_PARTIAL and initial_payment is None:
        raise ValidationError(
            "initial_payment is required for a PARTIAL purchase order", {"field": "initial_payment"}
        )
    if payment_status == PAYMENT_STATUS_UNPAID and initial_payment is not None:
        raise ValidationError(
            "initial_payment is not allowed for an UNPAID purchase order", {"field": "initial_payment"}
        )
    if payment_status == PAYMENT_STATUS_PARTIAL and initial_payment >= total_amount:
        raise ValidationError(
            "initial_payment must be less than the order total for a PARTIAL purchase order",
            {"field": "initial_payment", "total_amount": total_amount},
        )
    if payment_status == PAYMENT_STATUS_PAID and initial_payment is not None and initial_payment != total_amount:
        raise ValidationError(
            "initial_payment must equal the order total for a PAID purchase order",
            {"field": "initial_payment", "total_amount": total_amount},
        )

    def _op() -> PurchaseOrder:
        acting_user_id = _ensure_user(user_id)

        supplier = db.session.get(Supplier, positive_int("supplier_id", supplier_id))
        if supplier is None:
            raise NotFoundError(f"Supplier {supplier_id} not found", {"supplier_id": supplier_id})

        exists = db.session.query(PurchaseOrder.id).filter(PurchaseOrder.code == code).first()
        if exists is not None:
            raise DuplicateCodeError(f"Purchase order code {code} already exists", {"code": code})

        order = PurchaseOrder(
            code=code,
            supplier_id=supplier.id,
            user_id=acting_user_id,
            order_date=order_date,
            total_amount=0,
            payment_status=PAYMENT_STATUS_UNPAID,
            payment_method=payment_method,
            notes=notes,
        )
        db.session.add(order)
        try:
            db.session.flush()
        except IntegrityError:
            raise DuplicateCodeError(f"Purchase order code {code} already exists", {"code": code})

        for data in parsed:
            item = PurchaseOrderItem(purchase_order_id=order.id, **data)
            db.session.add(item)
            _receive_item(item)

        _recompute_total(order)

        payment = initial_payment
        if payment_status == PAYMENT_STATUS_PAID and payment is None:
            payment = order.total_amount
        if payment:
            _pay_locked(
                order,
                amount=payment,
                payment_method=payment_method,
                user_id=acting_user_id,
                description=f"Initial payment for purchase order {code}",
                date=order_date,
            )
        elif payment_status == PAYMENT_STATUS_PAID:
            # Zero-total order declared paid; nothing to record in the ledger
            order.payment_status = PAYMENT_STATUS_PAID

        db.session.flush()
        return order

    try:
        order = run_atomic(_op)
    except (DuplicateCodeError, OverpaymentError) as exc:
        current_app.logger.warning("Purchase order %s rejected: %s", code, exc)
        raise

    current_app.logger.info(
        "Purchase order %s created: %s items, total %s, status %s",
        order.code, len(parsed), order.total_amount, order.payment_status,
    )
    return order


# =============================================================================
# ITEM EDITS
# =============================================================================

def add_item(purchase_order_id: int, item) -> PurchaseOrderItem:
    """Add an item to an unpaid/partial order, receive its stock and recompute the total."""
    data = _parse_item(item)

    def _op() -> PurchaseOrderItem:
        order = _get_locked(purchase_order_id)
        _ensure_unlocked(order, "add items")

        new_item = PurchaseOrderItem(purchase_order_id=order.id, **data)
        db.session.add(new_item)
        _receive_item(new_item)
        _recompute_total(order)
        db.session.flush()
        return new_item

    new_item = run_atomic(_op)
    current_app.logger.info("Item %s added to purchase order %s", new_item.id, purchase_order_id)
    return new_item


def remove_item(purchase_order_id: int, item_id: int) -> PurchaseOrder:
    """
    Remove an item from an unpaid/partial order and recompute the total.

    Received stock is left in inventory. A removal that would leave the
    order total at or below the amount already paid is rejected.
    """
    def _op() -> PurchaseOrder:
        order = _get_locked(purchase_order_id)
        _ensure_unlocked(order, "remove items")

        item = db.session.query(PurchaseOrderItem).filter(
            PurchaseOrderItem.id == item_id,
            PurchaseOrderItem.purchase_order_id == order.id,
        ).first()
        if item is None:
            raise NotFoundError(
                f"Item {item_id} not found on purchase order {order.code}",
                {"purchase_order_id": order.id, "item_id": item_id},
            )

        paid = total_paid_for_purchase(order.id)
        new_total = order.total_amount - item.line_total
        if paid > 0 and new_total <= paid:
            raise ValidationError(
                "Removing this item would leave the order total at or below the amount already paid",
                {"purchase_order_id": order.id, "total_paid": paid, "new_total": new_total},
            )

        order.items.remove(item)
        _recompute_total(order)
        db.session.flush()
        return order

    order = run_atomic(_op)
    current_app.logger.info(
        "Item %s removed from purchase order %s; total now %s", item_id, order.code, order.total_amount
    )
    return order


# =============================================================================
# PAYMENTS
# =============================================================================

def record_payment(
    purchase_order_id: int,
    *,
    amount,
    payment_method,
    user_id,
    description: Optional[str] = None,
) -> Transaction:
    """
    Record one payment against a purchase order.

    Raises OrderLockedError when already PAID and OverpaymentError when the
    amount exceeds what remains. No ledger row is written on failure.
    """
    amount = positive_int("amount", amount)
    payment_method = choice("payment_method", payment_method, VALID_PAYMENT_METHODS)
    description = optional_text("description", description)

    def _op() -> Transaction:
        acting_user_id = _ensure_user(user_id)
        order = _get_locked(purchase_order_id)
        return _pay_locked(
            order,
            amount=amount,
            payment_method=payment_method,
            user_id=acting_user_id,
            description=description,
        )

    try:
        tx = run_atomic(_op)
    except (OrderLockedError, OverpaymentError) as exc:
        current_app.logger.warning("Payment on purchase order %s rejected: %s", purchase_order_id, exc)
        raise

    current_app.logger.info("Payment of %s recorded on purchase order %s", amount, purchase_order_id)
    return tx


# =============================================================================
# READS
# =============================================================================

def get_purchase_order(purchase_order_id: int) -> PurchaseOrder:
    order = db.session.get(PurchaseOrder, purchase_order_id)
    if order is None:
        raise NotFoundError(
            f"Purchase order {purchase_order_id} not found",
            {"purchase_order_id": purchase_order_id},
        )
    return order


def list_purchase_orders(
    *,
    supplier_id: int | None = None,
    payment_status: str | None = None,
) -> list[PurchaseOrder]:
    q = db.session.query(PurchaseOrder)
    if supplier_id is not None:
        q = q.filter(PurchaseOrder.supplier_id == supplier_id)
    if payment_status:
        q = q.filter(PurchaseOrder.payment_status == choice("payment_status", payment_status, VALID_PAYMENT_STATUSES))
    return q.order_by(PurchaseOrder.order_date.desc(), PurchaseOrder.id.desc()).all()


def total_paid(purchase_order_id: int) -> int:
    get_purchase_order(purchase_order_id)
    return total_paid_for_purchase(purchase_order_id)


def remaining(purchase_order_id: int) -> int:
    order = get_purchase_order(purchase_order_id)
    return order.total_amount - total_paid_for_purchase(purchase_order_id)


def get_payment_summary(purchase_order_id: int) -> dict:
    order = get_purchase_order(purchase_order_id)
    paid = total_paid_for_purchase(order.id)
    payments = list_transactions(
        related_type=RELATED_PURCHASE,
        purchase_order_id=order.id,
        type=TRANSACTION_EXPENSE,
    )
    return {
        "purchase_order_id": order.id,
        "code": order.code,
        "total_amount": order.total_amount,
        "total_paid": paid,
        "remaining": order.total_amount - paid,
        "payment_status": order.payment_status,
        "payments": [tx.to_dict() for tx in payments],
    }
