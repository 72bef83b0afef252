from __future__ import annotations

from ..extensions import db
from posengine.time_utils import to_utc_z

POINT_TYPE_EARN = "earn"
POINT_TYPE_REDEEM = "redeem"
POINT_TYPE_ADJUST = "adjust"


class LoyaltySettings(db.Model):
    """Per-outlet point policy. Absent row means defaults from config."""
    __tablename__ = "loyalty_settings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False, unique=True)
    points_per_amount = db.Column(db.Integer, nullable=False, default=1)
    amount_per_point = db.Column(db.Integer, nullable=False, default=1000)
    redemption_rate = db.Column(db.Integer, nullable=False, default=100)
    redemption_value = db.Column(db.Integer, nullable=False, default=10000)
    is_enabled = db.Column(db.Boolean, nullable=False, default=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "outlet_id": self.outlet_id,
            "points_per_amount": self.points_per_amount,
            "amount_per_point": self.amount_per_point,
            "redemption_rate": self.redemption_rate,
            "redemption_value": self.redemption_value,
            "is_enabled": self.is_enabled,
            "updated_at": to_utc_z(self.updated_at),
        }


class MemberTier(db.Model):
    __tablename__ = "member_tiers"
    __table_args__ = (
        db.Index("ix_member_tiers_outlet_min_points", "outlet_id", "min_points"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    min_points = db.Column(db.Integer, nullable=False, default=0)
    discount_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    point_multiplier = db.Column(db.Numeric(4, 2), nullable=False, default=1)
    color = db.Column(db.String(16), nullable=True, default="#6b7280")
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<MemberTier id={self.id} name={self.name!r} min_points={self.min_points}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "outlet_id": self.outlet_id,
            "name": self.name,
            "min_points": self.min_points,
            "discount_percent": str(self.discount_percent) if self.discount_percent is not None else None,
            "point_multiplier": str(self.point_multiplier) if self.point_multiplier is not None else None,
            "color": self.color,
            "is_default": self.is_default,
            "created_at": to_utc_z(self.created_at),
        }


class Customer(db.Model):
    """
    Loyalty subject.

    points is a cache of SUM(PointTransaction.points) for the customer; it is
    only changed by LoyaltyEngine with an atomic increment, in the same unit
    of work that appends the ledger row.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.CheckConstraint("points >= 0", name="ck_customers_points_nonneg"),
        db.Index("ix_customers_outlet_tier", "outlet_id", "tier_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False, index=True)
    tier_id = db.Column(db.Integer, db.ForeignKey("member_tiers.id"), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)

    points = db.Column(db.Integer, nullable=False, default=0)
    total_spent = db.Column(db.Integer, nullable=False, default=0)

    member_since = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    tier = db.relationship("MemberTier")

    def __repr__(self) -> str:
        return f"<Customer id={self.id} name={self.name!r} points={self.points}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "outlet_id": self.outlet_id,
            "tier_id": self.tier_id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "points": self.points,
            "total_spent": self.total_spent,
            "member_since": to_utc_z(self.member_since),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PointTransaction(db.Model):
    """
    Append-only ledger of point movements.

    TYPES:
    - earn: points from a completed sale (at most one per sale)
    - redeem: points spent by the customer (negative)
    - adjust: manual correction or sale-void reversal (signed)
    """
    __tablename__ = "point_transactions"
    __table_args__ = (
        db.UniqueConstraint("customer_id", "transaction_id", "type", name="uq_point_txns_sale_type"),
        db.Index("ix_point_txns_customer_id", "customer_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)
    outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False, index=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    points = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("point_transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "outlet_id": self.outlet_id,
            "transaction_id": self.transaction_id,
            "type": self.type,
            "points": self.points,
            "balance_after": self.balance_after,
            "description": self.description,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
