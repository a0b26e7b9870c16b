# Overview: Service-layer operations for stock lots; the only writer of InventoryItem.quantity.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import InsufficientStockError, LotNotFoundError, NotFoundError, ValidationError
from ..models import InventoryItem, Product, ProductUnit
from ..validation import optional_date, optional_text, positive_int
from .concurrency import lock_for_update, run_atomic
"""
Inventory Ledger Invariants (authoritative)

Lots:
- A lot is one InventoryItem row keyed by (product_id, product_unit_id,
  batch_number, expiry_date). NULL batch/expiry match only NULL.
- Receiving into an existing key increments that row; any other key creates
  a new row. Rows are never merged across keys.

Quantity:
- quantity >= 0 after every operation. A consume that would go negative
  fails before anything is written.
- A lot that reaches zero is kept; delete_empty_lot removes it on request.

Transactions:
- Every mutating function takes commit=True for standalone use. The sales
  and purchase engines pass commit=False so the lot change lands in their
  own atomic workflow.
"""


SELECT_LOT = "LOT"
SELECT_EXACT = "EXACT"
SELECT_FEFO = "FEFO"


@dataclass(frozen=True)
class LotSelector:
    """
    Which lot a consume targets.

    - LOT:   a specific InventoryItem id (cart line carries the lot)
    - EXACT: exact (batch_number, expiry_date) match, NULLs included
    - FEFO:  earliest-expiring lot that can cover the whole quantity
    """
    mode: str = SELECT_FEFO
    lot_id: int | None = None
    batch_number: str | None = None
    expiry_date: date | None = None

    @classmethod
    def by_id(cls, lot_id: int) -> "LotSelector":
        return cls(mode=SELECT_LOT, lot_id=lot_id)

    @classmethod
    def exact(cls, batch_number: str | None = None, expiry_date=None) -> "LotSelector":
        return cls(
            mode=SELECT_EXACT,
            batch_number=optional_text("batch_number", batch_number, 64),
            expiry_date=optional_date("expiry_date", expiry_date),
        )

    @classmethod
    def fefo(cls) -> "LotSelector":
        return cls(mode=SELECT_FEFO)

    @classmethod
    def from_line(cls, line: dict) -> "LotSelector":
        """Build a selector from a cart line's optional lot_id/batch_number/expiry_date."""
        if line.get("lot_id"):
            return cls.by_id(positive_int("lot_id", line["lot_id"]))
        if line.get("batch_number") or line.get("expiry_date"):
            return cls.exact(line.get("batch_number"), line.get("expiry_date"))
        return cls.fefo()


def _ensure_product_unit(product_id: int, product_unit_id: int) -> ProductUnit:
    product_unit = db.session.get(ProductUnit, product_unit_id)
    if product_unit is None:
        raise NotFoundError(
            f"Product unit {product_unit_id} not found",
            {"product_unit_id": product_unit_id},
        )
    if product_unit.product_id != product_id:
        raise ValidationError(
            "Product unit does not belong to product",
            {"product_id": product_id, "product_unit_id": product_unit_id},
        )
    return product_unit


def _product_label(product_id: int) -> str:
    product = db.session.get(Product, product_id)
    return product.name if product else f"#{product_id}"


def _lot_query(product_id: int, product_unit_id: int, batch_number, expiry_date):
    q = db.session.query(InventoryItem).filter(
        InventoryItem.product_id == product_id,
        InventoryItem.product_unit_id == product_unit_id,
    )
    if batch_number is None:
        q = q.filter(InventoryItem.batch_number.is_(None))
    else:
        q = q.filter(InventoryItem.batch_number == batch_number)
    if expiry_date is None:
        q = q.filter(InventoryItem.expiry_date.is_(None))
    else:
        q = q.filter(InventoryItem.expiry_date == expiry_date)
    return q.order_by(InventoryItem.id.asc())


# =============================================================================
# READS
# =============================================================================

def find_lot(
    product_id: int,
    product_unit_id: int,
    batch_number: str | None = None,
    expiry_date=None,
    *,
    lock: bool = False,
) -> InventoryItem | None:
    """Exact match on all key fields, including NULL-matching for absent batch/expiry."""
    batch_number = optional_text("batch_number", batch_number, 64)
    expiry_date = optional_date("expiry_date", expiry_date)

    q = _lot_query(product_id, product_unit_id, batch_number, expiry_date)
    if lock:
        q = lock_for_update(q)
    return q.first()


def get_lot(lot_id: int) -> InventoryItem:
    lot = db.session.get(InventoryItem, lot_id)
    if lot is None:
        raise LotNotFoundError(f"Lot {lot_id} not found", {"lot_id": lot_id})
    return lot


def list_lots(
    *,
    product_id: int | None = None,
    product_unit_id: int | None = None,
    include_empty: bool = False,
) -> list[InventoryItem]:
    q = db.session.query(InventoryItem)
    if product_id is not None:
        q = q.filter(InventoryItem.product_id == product_id)
    if product_unit_id is not None:
        q = q.filter(InventoryItem.product_unit_id == product_unit_id)
    if not include_empty:
        q = q.filter(InventoryItem.quantity > 0)
    return q.order_by(
        InventoryItem.product_id.asc(),
        InventoryItem.expiry_date.is_(None),
        InventoryItem.expiry_date.asc(),
        InventoryItem.id.asc(),
    ).all()


def available_quantity(product_id: int, product_unit_id: int) -> int:
    """On-hand quantity for one product unit, summed across its lots."""
    total = db.session.query(
        func.coalesce(func.sum(InventoryItem.quantity), 0)
    ).filter(
        InventoryItem.product_id == product_id,
        InventoryItem.product_unit_id == product_unit_id,
    ).scalar()
    return int(total or 0)


def total_quantity(product_id: int) -> float:
    """
    On-hand quantity across all lots and units, in base-unit equivalents.

    Each lot contributes quantity * conversion_factor of its product unit.
    """
    total = db.session.query(
        func.coalesce(func.sum(InventoryItem.quantity * ProductUnit.conversion_factor), 0)
    ).join(
        ProductUnit, ProductUnit.id == InventoryItem.product_unit_id
    ).filter(
        InventoryItem.product_id == product_id,
    ).scalar()
    return float(total or 0)


# =============================================================================
# RECEIVE
# =============================================================================

def _receive_locked(
    *,
    product_id: int,
    product_unit_id: int,
    quantity,
    batch_number: str | None = None,
    expiry_date=None,
) -> InventoryItem:
    """Core receive logic without transaction handling or commit."""
    product_id = positive_int("product_id", product_id)
    product_unit_id = positive_int("product_unit_id", product_unit_id)
    quantity = positive_int("quantity", quantity)
    batch_number = optional_text("batch_number", batch_number, 64)
    expiry_date = optional_date("expiry_date", expiry_date)

    _ensure_product_unit(product_id, product_unit_id)

    lot = find_lot(product_id, product_unit_id, batch_number, expiry_date, lock=True)
    if lot is None:
        lot = InventoryItem(
            product_id=product_id,
            product_unit_id=product_unit_id,
            quantity=quantity,
            batch_number=batch_number,
            expiry_date=expiry_date,
        )
        db.session.add(lot)
    else:
        lot.quantity = lot.quantity + quantity

    db.session.flush()
    return lot


def receive_stock(
    *,
    product_id: int,
    product_unit_id: int,
    quantity,
    batch_number: str | None = None,
    expiry_date=None,
    commit: bool = True,
) -> InventoryItem:
    """
    Add quantity to the lot identified by (product, unit, batch, expiry).

    Increments the matching lot or creates it. quantity must be > 0.
    """
    def _op():
        return _receive_locked(
            product_id=product_id,
            product_unit_id=product_unit_id,
            quantity=quantity,
            batch_number=batch_number,
            expiry_date=expiry_date,
        )

    if not commit:
        return _op()

    lot = run_atomic(_op)
    current_app.logger.info(
        "Received %s of product %s unit %s into lot %s", quantity, product_id, product_unit_id, lot.id
    )
    return lot


def restock(
    *,
    product_id: int,
    product_unit_id: int,
    quantity,
    batch_number: str | None = None,
    expiry_date=None,
    commit: bool = True,
) -> InventoryItem:
    """Return sold quantity to the lot keyed by the sale line's batch/expiry snapshot."""
    return receive_stock(
        product_id=product_id,
        product_unit_id=product_unit_id,
        quantity=quantity,
        batch_number=batch_number,
        expiry_date=expiry_date,
        commit=commit,
    )


# =============================================================================
# CONSUME
# =============================================================================

def _resolve_lot(product_id: int, product_unit_id: int, quantity: int, selector: LotSelector) -> InventoryItem:
    if selector.mode == SELECT_LOT:
        lot = lock_for_update(
            db.session.query(InventoryItem).filter(InventoryItem.id == selector.lot_id)
        ).first()
        if lot is None or lot.product_id != product_id or lot.product_unit_id != product_unit_id:
            raise LotNotFoundError(
                f"Lot {selector.lot_id} not found for {_product_label(product_id)}",
                {"product_id": product_id, "product_unit_id": product_unit_id, "lot_id": selector.lot_id},
            )
        return lot

    if selector.mode == SELECT_EXACT:
        lot = find_lot(product_id, product_unit_id, selector.batch_number, selector.expiry_date, lock=True)
        if lot is None:
            raise LotNotFoundError(
                f"No lot of {_product_label(product_id)} matches batch/expiry",
                {
                    "product_id": product_id,
                    "product_unit_id": product_unit_id,
                    "batch_number": selector.batch_number,
                    "expiry_date": selector.expiry_date.isoformat() if selector.expiry_date else None,
                },
            )
        return lot

    candidates = lock_for_update(
        db.session.query(InventoryItem).filter(
            InventoryItem.product_id == product_id,
            InventoryItem.product_unit_id == product_unit_id,
        ).order_by(
            InventoryItem.expiry_date.is_(None),
            InventoryItem.expiry_date.asc(),
            InventoryItem.id.asc(),
        )
    ).all()
    if not candidates:
        raise LotNotFoundError(
            f"No stock lot for {_product_label(product_id)}",
            {"product_id": product_id, "product_unit_id": product_unit_id},
        )
    for lot in candidates:
        if lot.quantity >= quantity:
            return lot

    # No single lot covers the request; report against the first FEFO lot
    return candidates[0]


def _consume_locked(
    *,
    product_id: int,
    product_unit_id: int,
    quantity,
    selector: LotSelector | None = None,
) -> InventoryItem:
    """Core consume logic without transaction handling or commit."""
    product_id = positive_int("product_id", product_id)
    product_unit_id = positive_int("product_unit_id", product_unit_id)
    quantity = positive_int("quantity", quantity)
    selector = selector or LotSelector.fefo()

    _ensure_product_unit(product_id, product_unit_id)

    lot = _resolve_lot(product_id, product_unit_id, quantity, selector)
    if lot.quantity < quantity:
        raise InsufficientStockError(
            f"Insufficient stock for {_product_label(product_id)}: "
            f"requested {quantity}, available {lot.quantity}",
            {
                "product_id": product_id,
                "product_unit_id": product_unit_id,
                "lot_id": lot.id,
                "requested_quantity": quantity,
                "available_quantity": lot.quantity,
            },
        )

    lot.quantity = lot.quantity - quantity
    db.session.flush()
    return lot


def consume_stock(
    *,
    product_id: int,
    product_unit_id: int,
    quantity,
    selector: LotSelector | None = None,
    commit: bool = True,
) -> InventoryItem:
    """
    Remove quantity from one resolved lot.

    Raises LotNotFoundError when no lot matches the selector and
    InsufficientStockError when the resolved lot holds less than requested.
    The lot row is kept even when it reaches zero.
    """
    def _op():
        return _consume_locked(
            product_id=product_id,
            product_unit_id=product_unit_id,
            quantity=quantity,
            selector=selector,
        )

    if not commit:
        return _op()

    return run_atomic(_op)


# =============================================================================
# ADMINISTRATION
# =============================================================================

def delete_empty_lot(lot_id: int) -> None:
    """Administrative removal of a lot; only allowed once it holds nothing."""
    def _op():
        lot = lock_for_update(
            db.session.query(InventoryItem).filter(InventoryItem.id == lot_id)
        ).first()
        if lot is None:
            raise LotNotFoundError(f"Lot {lot_id} not found", {"lot_id": lot_id})
        if lot.quantity != 0:
            raise ValidationError(
                "Only empty lots can be deleted",
                {"lot_id": lot_id, "quantity": lot.quantity},
            )
        db.session.delete(lot)

    run_atomic(_op)
