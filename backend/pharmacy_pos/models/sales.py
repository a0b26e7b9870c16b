from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z


INVOICE_STATUS_COMPLETED = "COMPLETED"
INVOICE_STATUS_CANCELLED = "CANCELLED"

PAYMENT_METHOD_CASH = "CASH"
PAYMENT_METHOD_TRANSFER = "TRANSFER"
PAYMENT_METHOD_CREDIT = "CREDIT"

VALID_PAYMENT_METHODS = [
    PAYMENT_METHOD_CASH,
    PAYMENT_METHOD_TRANSFER,
    PAYMENT_METHOD_CREDIT,
]


class Invoice(db.Model):
    """
    A completed (or cancelled) sale.

    total_amount = sum of line amounts before discount;
    final_amount = max(0, total_amount - discount).
    Both are computed server-side in sales_service.create_invoice.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_invoices_code"),
        db.Index("ix_invoices_status_date", "status", "invoice_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable code (e.g., "HD202601150001")
    code = db.Column(db.String(64), nullable=False)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    invoice_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    total_amount = db.Column(db.Integer, nullable=False, default=0)
    discount = db.Column(db.Integer, nullable=False, default=0)
    final_amount = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=INVOICE_STATUS_COMPLETED, index=True)
    notes = db.Column(db.Text, nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", foreign_keys=[user_id])
    cancelled_by = db.relationship("User", foreign_keys=[cancelled_by_user_id])
    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        order_by="InvoiceItem.id",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} code={self.code!r} status={self.status}>"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "code": self.code,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "user_id": self.user_id,
            "invoice_date": to_utc_z(self.invoice_date),
            "total_amount": self.total_amount,
            "discount": self.discount,
            "final_amount": self.final_amount,
            "payment_method": self.payment_method,
            "status": self.status,
            "notes": self.notes,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancel_reason": self.cancel_reason,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class InvoiceItem(db.Model):
    """Individual line on an invoice, linked to the lot it was sold from."""
    __tablename__ = "invoice_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_unit_id = db.Column(db.Integer, db.ForeignKey("product_units.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Integer, nullable=False)
    amount = db.Column(db.Integer, nullable=False)

    # Lot the quantity was consumed from (snapshot of batch/expiry at sale time)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=True)
    batch_number = db.Column(db.String(64), nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)

    invoice = db.relationship("Invoice", back_populates="items")
    product = db.relationship("Product")
    product_unit = db.relationship("ProductUnit")
    inventory_item = db.relationship("InventoryItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "product_unit_id": self.product_unit_id,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "amount": self.amount,
            "inventory_item_id": self.inventory_item_id,
            "batch_number": self.batch_number,
            "expiry_date": to_iso_date(self.expiry_date),
        }
