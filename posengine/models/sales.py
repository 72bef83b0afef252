from __future__ import annotations

from ..extensions import db
from posengine.time_utils import to_utc_z

TRANSACTION_STATUS_COMPLETED = "completed"
TRANSACTION_STATUS_VOID = "void"

# Whether every stock line of the sale reached the ledger
STOCK_STATUS_POSTED = "POSTED"
STOCK_STATUS_PARTIAL = "PARTIAL"


class Transaction(db.Model):
    """
    Sale header. Immutable once created except for the void fields.

    invoice_number is unique per outlet; it doubles as the idempotency key
    for sale creation (a replayed request carrying the same number is
    rejected as already processed).
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("outlet_id", "invoice_number", name="uq_transactions_outlet_invoice"),
        db.Index("ix_transactions_outlet_created", "outlet_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False, index=True)
    invoice_number = db.Column(db.String(64), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=True)
    cashier_id = db.Column(db.String(64), nullable=True)

    # All amounts in the smallest currency unit
    subtotal = db.Column(db.Integer, nullable=False)
    discount = db.Column(db.Integer, nullable=False, default=0)
    tax = db.Column(db.Integer, nullable=False, default=0)
    total_amount = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(32), nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default="paid")
    status = db.Column(db.String(16), nullable=False, default=TRANSACTION_STATUS_COMPLETED, index=True)
    stock_status = db.Column(db.String(16), nullable=False, default=STOCK_STATUS_POSTED)
    earned_points = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by = db.Column(db.String(64), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship(
        "TransactionItem",
        backref="transaction",
        lazy=True,
        order_by="TransactionItem.line_number",
    )
    payments = db.relationship("TransactionPayment", backref="transaction", lazy=True)

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} invoice={self.invoice_number!r} status={self.status}>"

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "outlet_id": self.outlet_id,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "cashier_id": self.cashier_id,
            "subtotal": self.subtotal,
            "discount": self.discount,
            "tax": self.tax,
            "total_amount": self.total_amount,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "status": self.status,
            "stock_status": self.stock_status,
            "earned_points": self.earned_points,
            "notes": self.notes,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "voided_by": self.voided_by,
            "void_reason": self.void_reason,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class TransactionItem(db.Model):
    """Line snapshot: name/sku/price/cost as they were at sale time."""
    __tablename__ = "transaction_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    # Nullable: custom lines are sold without a catalog product
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    variant_id = db.Column(db.Integer, nullable=True)
    product_name = db.Column(db.String(255), nullable=False)
    product_sku = db.Column(db.String(64), nullable=True)
    variant_name = db.Column(db.String(128), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Integer, nullable=False)
    cost_price = db.Column(db.Integer, nullable=True)
    discount = db.Column(db.Integer, nullable=False, default=0)
    total = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "variant_name": self.variant_name,
            "quantity": self.quantity,
            "price": self.price,
            "cost_price": self.cost_price,
            "discount": self.discount,
            "total": self.total,
        }


class TransactionPayment(db.Model):
    __tablename__ = "transaction_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    payment_method = db.Column(db.String(32), nullable=False)
    amount = db.Column(db.Integer, nullable=False)
    reference_number = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "payment_method": self.payment_method,
            "amount": self.amount,
            "reference_number": self.reference_number,
            "created_at": to_utc_z(self.created_at),
        }
