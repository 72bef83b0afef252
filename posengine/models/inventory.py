from __future__ import annotations

from ..extensions import db
from posengine.time_utils import to_utc_z

"""
Stock invariants (authoritative)

- StockItem.quantity is a cache of SUM(StockAdjustment.applied_delta) for the SKU.
- quantity >= 0 always; enforced by a CHECK constraint and by the ledger's
  conditional UPDATE.
- StockAdjustment rows are append-only and retained forever.
- (outlet_id, reason, source_id, product_id, variant_key) is the idempotency
  key: a second adjustment with the same key is never applied.
- variant_key is variant_id or 0, because NULLs never collide in a UNIQUE
  constraint.
"""

REASON_SALE = "sale"
REASON_SALE_VOID = "sale-void"
REASON_PURCHASE_RECEIPT = "purchase-receipt"
REASON_OPNAME_CORRECTION = "opname-correction"
REASON_MANUAL = "manual"

ADJUSTMENT_REASONS = {
    REASON_SALE,
    REASON_SALE_VOID,
    REASON_PURCHASE_RECEIPT,
    REASON_OPNAME_CORRECTION,
    REASON_MANUAL,
}

OUTCOME_APPLIED = "APPLIED"
OUTCOME_FLOORED = "FLOORED"
OUTCOME_NOT_TRACKED = "NOT_TRACKED"


def variant_key_for(variant_id: int | None) -> int:
    return variant_id or 0


class StockItem(db.Model):
    """
    Authoritative per-SKU quantity for one outlet.

    Created lazily on first reference to (outlet, product, variant).
    quantity is only ever written by StockLedger through a single-statement
    conditional UPDATE; callers never assign it.
    """
    __tablename__ = "stock_items"
    __table_args__ = (
        db.UniqueConstraint("outlet_id", "product_id", "variant_key", name="uq_stock_items_sku"),
        db.CheckConstraint("quantity >= 0", name="ck_stock_items_quantity_nonneg"),
        db.Index("ix_stock_items_outlet_quantity", "outlet_id", "quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)
    variant_key = db.Column(db.Integer, nullable=False, default=0)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    tracks_stock = db.Column(db.Boolean, nullable=False, default=True)

    # Bumped by every quantity UPDATE
    row_version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")
    variant = db.relationship("ProductVariant")

    def __repr__(self) -> str:
        return (
            f"<StockItem id={self.id} outlet_id={self.outlet_id} product_id={self.product_id} "
            f"variant_id={self.variant_id} quantity={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "outlet_id": self.outlet_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "tracks_stock": self.tracks_stock,
            "row_version": self.row_version,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockAdjustment(db.Model):
    """
    Immutable, reason-tagged stock movement.

    delta is what the caller asked for. applied_delta is what actually moved
    the number (differs when the move was floored at zero or the item does not
    track stock). Replaying applied_delta in id order reproduces quantity.
    """
    __tablename__ = "stock_adjustments"
    __table_args__ = (
        db.UniqueConstraint(
            "outlet_id", "reason", "source_id", "product_id", "variant_key",
            name="uq_stock_adjustments_idempotency",
        ),
        db.Index("ix_stock_adj_item_id", "stock_item_id", "id"),
        db.Index("ix_stock_adj_source", "reason", "source_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False, index=True)
    stock_item_id = db.Column(db.Integer, db.ForeignKey("stock_items.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)
    variant_key = db.Column(db.Integer, nullable=False, default=0)

    reason = db.Column(db.String(32), nullable=False, index=True)
    source_id = db.Column(db.String(64), nullable=False)

    delta = db.Column(db.Integer, nullable=False)
    applied_delta = db.Column(db.Integer, nullable=False, default=0)
    quantity_after = db.Column(db.Integer, nullable=False, default=0)
    outcome = db.Column(db.String(16), nullable=False, default=OUTCOME_APPLIED)

    note = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    stock_item = db.relationship("StockItem", backref=db.backref("adjustments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "outlet_id": self.outlet_id,
            "stock_item_id": self.stock_item_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "reason": self.reason,
            "source_id": self.source_id,
            "delta": self.delta,
            "applied_delta": self.applied_delta,
            "quantity_after": self.quantity_after,
            "outcome": self.outcome,
            "note": self.note,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
