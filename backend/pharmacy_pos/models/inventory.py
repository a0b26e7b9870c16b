from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z


class InventoryItem(db.Model):
    """
    A stock lot: quantity on hand for one (product, product unit, batch, expiry).

    Lots with different batch/expiry are never merged. Receiving into an
    identical (product, unit, batch, expiry) tuple increments the existing
    row. Quantity never drops below zero, and a lot that reaches zero is
    kept until an administrator deletes it.

    Only services/inventory_service.py mutates quantity.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_inventory_items_quantity_non_negative"),
        db.Index("ix_inventory_items_product_unit", "product_id", "product_unit_id"),
        db.Index("ix_inventory_items_expiry", "expiry_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_unit_id = db.Column(db.Integer, db.ForeignKey("product_units.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    batch_number = db.Column(db.String(64), nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("inventory_items", lazy=True))
    product_unit = db.relationship("ProductUnit")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<InventoryItem id={self.id} product_id={self.product_id} "
            f"unit={self.product_unit_id} batch={self.batch_number!r} qty={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_unit_id": self.product_unit_id,
            "quantity": self.quantity,
            "batch_number": self.batch_number,
            "expiry_date": to_iso_date(self.expiry_date),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
