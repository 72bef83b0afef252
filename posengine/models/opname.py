from __future__ import annotations

from ..extensions import db
from posengine.time_utils import to_utc_z

OPNAME_STATUS_DRAFT = "draft"
OPNAME_STATUS_COMPLETED = "completed"
OPNAME_STATUS_CANCELLED = "cancelled"


class OpnameSession(db.Model):
    """
    Physical stock count.

    system_stock on each item is a snapshot taken at creation. Finalizing
    posts difference (actual - system) as a correction, so sales recorded
    between snapshot and finalize are preserved rather than overwritten.
    """
    __tablename__ = "opname_sessions"
    __table_args__ = (
        db.Index("ix_opname_sessions_outlet_status", "outlet_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=OPNAME_STATUS_DRAFT, index=True)
    date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    notes = db.Column(db.Text, nullable=True)
    scope_category_id = db.Column(db.Integer, nullable=True)

    created_by = db.Column(db.String(64), nullable=True)
    finalized_by = db.Column(db.String(64), nullable=True)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    adjustments_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OpnameItem",
        backref="session",
        lazy=True,
        order_by="OpnameItem.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "outlet_id": self.outlet_id,
            "status": self.status,
            "date": to_utc_z(self.date),
            "notes": self.notes,
            "scope_category_id": self.scope_category_id,
            "created_by": self.created_by,
            "finalized_by": self.finalized_by,
            "finalized_at": to_utc_z(self.finalized_at) if self.finalized_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "adjustments_count": self.adjustments_count,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OpnameItem(db.Model):
    __tablename__ = "opname_items"
    __table_args__ = (
        db.UniqueConstraint("session_id", "product_id", "variant_key", name="uq_opname_items_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("opname_sessions.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)
    variant_key = db.Column(db.Integer, nullable=False, default=0)

    system_stock = db.Column(db.Integer, nullable=False, default=0)
    # None means not counted yet
    actual_stock = db.Column(db.Integer, nullable=True)
    difference = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    stock_adjustment_id = db.Column(db.Integer, db.ForeignKey("stock_adjustments.id"), nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "system_stock": self.system_stock,
            "actual_stock": self.actual_stock,
            "difference": self.difference,
            "notes": self.notes,
            "stock_adjustment_id": self.stock_adjustment_id,
            "product": {
                "name": self.product.name if self.product else "",
                "sku": self.product.sku if self.product else "",
            },
        }
