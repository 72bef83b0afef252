from __future__ import annotations

from ..extensions import db
from posengine.time_utils import to_utc_z

PO_STATUS_DRAFT = "draft"
PO_STATUS_ORDERED = "ordered"
PO_STATUS_RECEIVED = "received"
PO_STATUS_CANCELLED = "cancelled"

PO_TERMINAL_STATUSES = {PO_STATUS_RECEIVED, PO_STATUS_CANCELLED}


class PurchaseOrder(db.Model):
    """
    Supplier order.

    LIFECYCLE:
        draft --mark_ordered--> ordered --receive--> received
        draft --cancel--> cancelled

    received and cancelled are terminal. Stock moves only on the transition
    into received, and the status flip is the last write of that unit of
    work, so a failure before it leaves the order retryable in ordered.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.UniqueConstraint("outlet_id", "invoice_number", name="uq_purchase_orders_outlet_invoice"),
        db.Index("ix_purchase_orders_outlet_status", "outlet_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    invoice_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=PO_STATUS_DRAFT, index=True)
    total_amount = db.Column(db.Integer, nullable=False, default=0)

    order_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expected_date = db.Column(db.DateTime(timezone=True), nullable=True)
    received_date = db.Column(db.DateTime(timezone=True), nullable=True)
    ordered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(64), nullable=True)
    received_by = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    supplier = db.relationship("Supplier", backref=db.backref("purchase_orders", lazy=True))
    items = db.relationship(
        "PurchaseOrderItem",
        backref="purchase_order",
        lazy=True,
        order_by="PurchaseOrderItem.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<PurchaseOrder id={self.id} invoice={self.invoice_number!r} status={self.status}>"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "outlet_id": self.outlet_id,
            "supplier_id": self.supplier_id,
            "invoice_number": self.invoice_number,
            "status": self.status,
            "total_amount": self.total_amount,
            "order_date": to_utc_z(self.order_date),
            "expected_date": to_utc_z(self.expected_date) if self.expected_date else None,
            "received_date": to_utc_z(self.received_date) if self.received_date else None,
            "ordered_at": to_utc_z(self.ordered_at) if self.ordered_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "notes": self.notes,
            "created_by": self.created_by,
            "received_by": self.received_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class PurchaseOrderItem(db.Model):
    __tablename__ = "purchase_order_items"
    __table_args__ = (
        # One line per SKU so the receipt idempotency key stays unambiguous
        db.UniqueConstraint("purchase_order_id", "product_id", "variant_key", name="uq_po_items_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)
    variant_key = db.Column(db.Integer, nullable=False, default=0)

    quantity = db.Column(db.Integer, nullable=False)
    cost_price = db.Column(db.Integer, nullable=False)
    subtotal = db.Column(db.Integer, nullable=False)

    stock_adjustment_id = db.Column(db.Integer, db.ForeignKey("stock_adjustments.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "cost_price": self.cost_price,
            "subtotal": self.subtotal,
            "stock_adjustment_id": self.stock_adjustment_id,
            "created_at": to_utc_z(self.created_at),
        }
