# Overview: Service-layer operations for reporting; read-only aggregates over sales, ledger and stock.

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import ValidationError
from ..models import InventoryItem, Invoice, InvoiceItem, Product, ProductUnit
from ..models.sales import INVOICE_STATUS_COMPLETED
from ..time_utils import parse_iso_datetime, to_iso_date, to_utc_z, today
from . import ledger_service


def _parse_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    try:
        start_dt = parse_iso_datetime(start) if start else None
        end_dt = parse_iso_datetime(end) if end else None
    except ValueError:
        raise ValidationError("start/end must be ISO-8601 datetimes", {"field": "start/end"})
    if start_dt and end_dt and start_dt > end_dt:
        raise ValidationError("start must not be after end", {"field": "start"})
    return start_dt, end_dt


def sales_summary(start: datetime | None = None, end: datetime | None = None) -> dict:
    """Completed invoices only; cancelled sales are excluded."""
    q = db.session.query(
        func.count(Invoice.id),
        func.coalesce(func.sum(Invoice.total_amount), 0),
        func.coalesce(func.sum(Invoice.discount), 0),
        func.coalesce(func.sum(Invoice.final_amount), 0),
    ).filter(Invoice.status == INVOICE_STATUS_COMPLETED)
    if start is not None:
        q = q.filter(Invoice.invoice_date >= start)
    if end is not None:
        q = q.filter(Invoice.invoice_date <= end)
    count, gross, discount, revenue = q.one()

    count = int(count or 0)
    revenue = int(revenue or 0)
    return {
        "invoice_count": count,
        "gross_amount": int(gross or 0),
        "discount": int(discount or 0),
        "revenue": revenue,
        "average_invoice": round(revenue / count) if count else 0,
    }


def top_products(start: datetime | None = None, end: datetime | None = None, limit: int = 10) -> list[dict]:
    q = db.session.query(
        InvoiceItem.product_id,
        Product.name,
        func.coalesce(func.sum(InvoiceItem.amount), 0).label("revenue"),
    ).join(
        Invoice, Invoice.id == InvoiceItem.invoice_id
    ).join(
        Product, Product.id == InvoiceItem.product_id
    ).filter(Invoice.status == INVOICE_STATUS_COMPLETED)
    if start is not None:
        q = q.filter(Invoice.invoice_date >= start)
    if end is not None:
        q = q.filter(Invoice.invoice_date <= end)

    rows = q.group_by(InvoiceItem.product_id, Product.name).order_by(func.sum(InvoiceItem.amount).desc()).limit(limit).all()
    return [
        {"product_id": row.product_id, "name": row.name, "revenue": int(row.revenue or 0)}
        for row in rows
    ]


def expiring_lots(days: int | None = None, on=None) -> list[dict]:
    """Non-empty lots whose expiry falls within the warning window (expired lots included)."""
    if days is None:
        days = current_app.config.get("EXPIRY_WARNING_DAYS", 90)
    cutoff = (on or today()) + timedelta(days=days)

    lots = db.session.query(InventoryItem).filter(
        InventoryItem.quantity > 0,
        InventoryItem.expiry_date.isnot(None),
        InventoryItem.expiry_date <= cutoff,
    ).order_by(InventoryItem.expiry_date.asc(), InventoryItem.id.asc()).all()

    reference = on or today()
    return [
        {
            "lot_id": lot.id,
            "product_id": lot.product_id,
            "product_unit_id": lot.product_unit_id,
            "batch_number": lot.batch_number,
            "expiry_date": to_iso_date(lot.expiry_date),
            "quantity": lot.quantity,
            "expired": lot.expiry_date < reference,
        }
        for lot in lots
    ]


def low_stock_products(threshold: float | None = None) -> list[dict]:
    """Active products whose base-unit total is below the threshold, including products with no stock."""
    if threshold is None:
        threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 10)

    totals = dict(
        db.session.query(
            InventoryItem.product_id,
            func.sum(InventoryItem.quantity * ProductUnit.conversion_factor),
        ).join(
            ProductUnit, ProductUnit.id == InventoryItem.product_unit_id
        ).group_by(InventoryItem.product_id).all()
    )

    result = []
    for product in db.session.query(Product).filter(Product.is_active.is_(True)).order_by(Product.name.asc()):
        on_hand = float(totals.get(product.id) or 0)
        if on_hand < threshold:
            result.append({
                "product_id": product.id,
                "code": product.code,
                "name": product.name,
                "total_quantity": on_hand,
            })
    return result


def summary(start: str | None = None, end: str | None = None) -> dict:
    """Combined dashboard payload: ledger totals, sales figures and stock alerts."""
    start_dt, end_dt = _parse_range(start, end)
    return {
        "start": to_utc_z(start_dt) if start_dt else None,
        "end": to_utc_z(end_dt) if end_dt else None,
        "ledger": ledger_service.summary(start_dt, end_dt),
        "sales": sales_summary(start_dt, end_dt),
        "top_products": top_products(start_dt, end_dt),
        "expiring_lots": expiring_lots(),
        "low_stock": low_stock_products(),
    }
