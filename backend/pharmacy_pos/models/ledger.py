from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


TRANSACTION_INCOME = "INCOME"
TRANSACTION_EXPENSE = "EXPENSE"
VALID_TRANSACTION_TYPES = [TRANSACTION_INCOME, TRANSACTION_EXPENSE]

RELATED_INVOICE = "INVOICE"
RELATED_PURCHASE = "PURCHASE"
RELATED_OTHER = "OTHER"
VALID_RELATED_TYPES = [RELATED_INVOICE, RELATED_PURCHASE, RELATED_OTHER]


class Transaction(db.Model):
    """
    Append-only income/expense ledger entry.

    One INCOME entry per invoice, one EXPENSE entry per purchase-order
    payment event. Rows are never updated or deleted; corrections are new
    entries.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        db.Index("ix_transactions_type_date", "type", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    type = db.Column(db.String(16), nullable=False)
    amount = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)
    payment_method = db.Column(db.String(16), nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    related_type = db.Column(db.String(16), nullable=False, default=RELATED_OTHER, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User")
    invoice = db.relationship("Invoice", backref=db.backref("transactions", lazy=True))
    purchase_order = db.relationship("PurchaseOrder", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": to_utc_z(self.date),
            "type": self.type,
            "amount": self.amount,
            "description": self.description,
            "payment_method": self.payment_method,
            "user_id": self.user_id,
            "related_type": self.related_type,
            "invoice_id": self.invoice_id,
            "purchase_order_id": self.purchase_order_id,
            "created_at": to_utc_z(self.created_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic per-period document sequences.

    WHY: Prevent two cashiers from being offered the same invoice code.
    period is "YYYYMMDD" for invoices and "YYYYMM" for purchase orders.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "period", name="uq_doc_sequences_type_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    period = db.Column(db.String(16), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "period": self.period,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
