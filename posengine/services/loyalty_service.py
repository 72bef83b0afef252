# Overview: Loyalty accrual engine; point ledger, balances and tier membership.

"""
Loyalty Invariants (authoritative)

- Customer.points == SUM(PointTransaction.points) for the customer. Every
  balance change is one atomic UPDATE (points = points + d WHERE
  points + d >= 0) plus one appended PointTransaction, in the same unit of
  work. Nothing else writes Customer.points.
- Points never go below zero.
- A sale earns at most once: (customer, transaction, 'earn') is unique.
- Tier is recomputed after every balance change: the highest tier whose
  min_points <= points. Under the 'sticky' policy a recompute never moves a
  customer to a lower tier.

Engine methods that take part in a sale (accrue_for_transaction,
reverse_for_transaction) run inside the caller's transaction. The manual
operations (redeem, adjust, settings, tiers) commit their own unit of work.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..errors import NotFound, ValidationError
from ..models import Customer, LoyaltySettings, MemberTier, PointTransaction, Transaction
from ..models.loyalty import POINT_TYPE_ADJUST, POINT_TYPE_EARN, POINT_TYPE_REDEEM
from .audit_service import append_audit_event
from .concurrency import run_with_retry

logger = logging.getLogger(__name__)

TIER_POLICY_RECALCULATE = "recalculate"
TIER_POLICY_STICKY = "sticky"
TIER_POLICIES = {TIER_POLICY_RECALCULATE, TIER_POLICY_STICKY}

SETTINGS_FIELDS = ("points_per_amount", "amount_per_point", "redemption_rate", "redemption_value", "is_enabled")

ADJUST_ADD = "add"
ADJUST_SUBTRACT = "subtract"


def compute_points(total_amount: int, *, amount_per_point: int, points_per_amount: int, is_enabled: bool) -> int:
    """floor(total / amount_per_point) * points_per_amount; 0 when disabled or misconfigured."""
    if not is_enabled or amount_per_point <= 0 or total_amount <= 0:
        return 0
    return (total_amount // amount_per_point) * points_per_amount


class LoyaltyEngine:
    def __init__(
        self,
        session,
        *,
        tier_policy: str = TIER_POLICY_RECALCULATE,
        defaults: dict | None = None,
        retry_attempts: int = 3,
        retry_backoff: float = 0.1,
    ):
        if tier_policy not in TIER_POLICIES:
            raise ValueError(f"Unknown tier policy: {tier_policy}")
        self.session = session
        self.tier_policy = tier_policy
        self.defaults = {
            "points_per_amount": 1,
            "amount_per_point": 1000,
            "redemption_rate": 100,
            "redemption_value": 10000,
            "is_enabled": True,
        }
        if defaults:
            self.defaults.update(defaults)
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    def _run(self, op):
        return run_with_retry(self.session, op, attempts=self.retry_attempts, backoff_base=self.retry_backoff)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_settings(self, outlet_id: int) -> dict:
        """Outlet policy, or the configured defaults when none is stored."""
        row = self.session.query(LoyaltySettings).filter_by(outlet_id=outlet_id).one_or_none()
        if row is None:
            return {"id": None, "outlet_id": outlet_id, **self.defaults, "updated_at": None}
        return row.to_dict()

    def upsert_settings(self, outlet_id: int, values: dict, *, actor_id: str | None = None) -> dict:
        cleaned = {}
        for key in SETTINGS_FIELDS:
            if key not in values or values[key] is None:
                continue
            value = values[key]
            if key == "is_enabled":
                cleaned[key] = bool(value)
                continue
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValidationError(f"{key} must be a non-negative integer", details={"field": key})
            cleaned[key] = value

        def _op() -> dict:
            row = self.session.query(LoyaltySettings).filter_by(outlet_id=outlet_id).one_or_none()
            if row is None:
                row = LoyaltySettings(outlet_id=outlet_id, **{**self.defaults, **cleaned})
                self.session.add(row)
            else:
                for key, value in cleaned.items():
                    setattr(row, key, value)
            self.session.flush()
            append_audit_event(
                self.session,
                outlet_id=outlet_id,
                event_type="loyalty.settings_updated",
                entity_type="loyalty_settings",
                entity_id=row.id,
                actor_id=actor_id,
                payload=cleaned,
            )
            self.session.commit()
            return row.to_dict()

        return self._run(_op)

    # ------------------------------------------------------------------
    # Tiers
    # ------------------------------------------------------------------

    def list_tiers(self, outlet_id: int) -> list[MemberTier]:
        return (
            self.session.query(MemberTier)
            .filter_by(outlet_id=outlet_id)
            .order_by(MemberTier.min_points.asc(), MemberTier.id.asc())
            .all()
        )

    def _tier_values(self, values: dict, *, partial: bool) -> dict:
        cleaned = {}
        if "name" in values or not partial:
            name = (values.get("name") or "").strip()
            if not name:
                raise ValidationError("Tier name is required", details={"field": "name"})
            cleaned["name"] = name
        if "min_points" in values or not partial:
            min_points = values.get("min_points", 0)
            if not isinstance(min_points, int) or isinstance(min_points, bool) or min_points < 0:
                raise ValidationError("min_points must be a non-negative integer", details={"field": "min_points"})
            cleaned["min_points"] = min_points
        for key in ("discount_percent", "point_multiplier"):
            if values.get(key) is not None:
                try:
                    cleaned[key] = Decimal(str(values[key]))
                except ArithmeticError:
                    raise ValidationError(f"{key} must be numeric", details={"field": key})
        for key in ("color", "is_default"):
            if key in values:
                cleaned[key] = values[key]
        return cleaned

    def create_tier(self, outlet_id: int, values: dict) -> MemberTier:
        cleaned = self._tier_values(values, partial=False)

        def _op() -> MemberTier:
            tier = MemberTier(outlet_id=outlet_id, **cleaned)
            self.session.add(tier)
            self.session.commit()
            return tier

        return self._run(_op)

    def update_tier(self, outlet_id: int, tier_id: int, values: dict) -> MemberTier:
        cleaned = self._tier_values(values, partial=True)

        def _op() -> MemberTier:
            tier = self._get_tier(outlet_id, tier_id)
            for key, value in cleaned.items():
                setattr(tier, key, value)
            self.session.commit()
            return tier

        return self._run(_op)

    def delete_tier(self, outlet_id: int, tier_id: int) -> None:
        """Delete a tier; its members drop to no tier until their next recompute."""
        def _op() -> None:
            tier = self._get_tier(outlet_id, tier_id)
            self.session.execute(
                update(Customer)
                .where(Customer.tier_id == tier.id)
                .values(tier_id=None)
                .execution_options(synchronize_session=False)
            )
            self.session.delete(tier)
            self.session.commit()

        self._run(_op)

    def _get_tier(self, outlet_id: int, tier_id: int) -> MemberTier:
        tier = self.session.get(MemberTier, tier_id)
        if tier is None or tier.outlet_id != outlet_id:
            raise NotFound("Tier not found", details={"tier_id": tier_id})
        return tier

    def resolve_tier(self, outlet_id: int, points: int) -> MemberTier | None:
        """Highest tier whose min_points the balance satisfies."""
        return (
            self.session.query(MemberTier)
            .filter(MemberTier.outlet_id == outlet_id, MemberTier.min_points <= points)
            .order_by(MemberTier.min_points.desc(), MemberTier.id.asc())
            .first()
        )

    def recompute_tier(self, customer: Customer) -> MemberTier | None:
        target = self.resolve_tier(customer.outlet_id, customer.points)
        current = customer.tier
        if target is None:
            # Below every threshold: sticky keeps the tier, recalculate drops it
            if current is not None and self.tier_policy != TIER_POLICY_STICKY:
                customer.tier_id = None
                customer.tier = None
                return None
            return current
        if current is not None and target.id == current.id:
            return current
        if (
            self.tier_policy == TIER_POLICY_STICKY
            and current is not None
            and target.min_points < current.min_points
        ):
            return current
        customer.tier_id = target.id
        customer.tier = target
        return target

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def create_customer(self, outlet_id: int, *, name: str, phone: str | None = None,
                        email: str | None = None) -> Customer:
        if not name or not name.strip():
            raise ValidationError("Customer name is required", details={"field": "name"})

        def _op() -> Customer:
            customer = Customer(outlet_id=outlet_id, name=name.strip(), phone=phone, email=email, points=0)
            self.session.add(customer)
            self.session.flush()
            self.recompute_tier(customer)
            self.session.commit()
            return customer

        return self._run(_op)

    def get_customer(self, outlet_id: int, customer_id: int) -> Customer:
        customer = self.session.get(Customer, customer_id)
        if customer is None or customer.outlet_id != outlet_id:
            raise NotFound("Customer not found", details={"customer_id": customer_id})
        return customer

    def point_history(self, outlet_id: int, customer_id: int, *, limit: int = 100) -> list[PointTransaction]:
        self.get_customer(outlet_id, customer_id)
        return (
            self.session.query(PointTransaction)
            .filter_by(customer_id=customer_id)
            .order_by(PointTransaction.id.desc())
            .limit(limit)
            .all()
        )

    # ------------------------------------------------------------------
    # Point movements
    # ------------------------------------------------------------------

    def _apply_points(
        self,
        customer: Customer,
        points: int,
        *,
        type: str,
        transaction_id: int | None = None,
        spent: int = 0,
        description: str | None = None,
        created_by: str | None = None,
    ) -> PointTransaction:
        stmt = (
            update(Customer)
            .where(Customer.id == customer.id, Customer.points + points >= 0)
            .values(points=Customer.points + points, total_spent=Customer.total_spent + spent)
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).rowcount != 1:
            raise ValidationError(
                "Insufficient points",
                details={"customer_id": customer.id, "requested": -points},
            )
        self.session.refresh(customer)

        entry = PointTransaction(
            customer_id=customer.id,
            outlet_id=customer.outlet_id,
            transaction_id=transaction_id,
            type=type,
            points=points,
            balance_after=customer.points,
            description=description,
            created_by=created_by,
        )
        self.session.add(entry)
        self.session.flush()
        self.recompute_tier(customer)
        return entry

    def accrue_for_transaction(self, tx: Transaction) -> int:
        """
        Earn points for a completed sale, inside the caller's transaction.

        Returns the points earned (0 when there is no customer, loyalty is
        disabled, or the sale already earned).
        """
        if tx.customer_id is None:
            return 0
        customer = self.get_customer(tx.outlet_id, tx.customer_id)
        settings = self.get_settings(tx.outlet_id)
        earned = compute_points(
            tx.total_amount,
            amount_per_point=settings["amount_per_point"],
            points_per_amount=settings["points_per_amount"],
            is_enabled=settings["is_enabled"],
        )
        if earned <= 0:
            return 0

        already = (
            self.session.query(PointTransaction.id)
            .filter_by(customer_id=customer.id, transaction_id=tx.id, type=POINT_TYPE_EARN)
            .first()
        )
        if already is not None:
            logger.info("Transaction %s already earned points; skipping", tx.id)
            return 0

        try:
            with self.session.begin_nested():
                self._apply_points(
                    customer,
                    earned,
                    type=POINT_TYPE_EARN,
                    transaction_id=tx.id,
                    spent=tx.total_amount,
                    description=f"Points from transaction {tx.invoice_number}",
                    created_by=tx.cashier_id,
                )
        except IntegrityError:
            logger.info("Transaction %s earned points concurrently; skipping", tx.id)
            return 0
        tx.earned_points = earned
        return earned

    def reverse_for_transaction(self, tx: Transaction, *, actor_id: str | None = None) -> int:
        """
        Take back what a voided sale earned, never below a zero balance.

        Returns the points actually removed.
        """
        if tx.customer_id is None or not tx.earned_points:
            return 0
        customer = self.get_customer(tx.outlet_id, tx.customer_id)
        already = (
            self.session.query(PointTransaction.id)
            .filter_by(customer_id=customer.id, transaction_id=tx.id, type=POINT_TYPE_ADJUST)
            .first()
        )
        if already is not None:
            return 0
        removable = min(tx.earned_points, customer.points)
        if removable <= 0:
            logger.warning("Customer %s has no points left to reverse for transaction %s", customer.id, tx.id)
            return 0
        self._apply_points(
            customer,
            -removable,
            type=POINT_TYPE_ADJUST,
            transaction_id=tx.id,
            spent=-tx.total_amount,
            description=f"Reversal of transaction {tx.invoice_number}",
            created_by=actor_id,
        )
        return removable

    def redeem(self, outlet_id: int, customer_id: int, points: int, *,
               description: str | None = None, actor_id: str | None = None) -> PointTransaction:
        """Spend points. Rejected with ValidationError when the balance is short."""
        if not isinstance(points, int) or isinstance(points, bool) or points <= 0:
            raise ValidationError("points must be a positive integer", details={"field": "points"})

        def _op() -> PointTransaction:
            customer = self.get_customer(outlet_id, customer_id)
            entry = self._apply_points(
                customer,
                -points,
                type=POINT_TYPE_REDEEM,
                description=description or "Points redeemed",
                created_by=actor_id,
            )
            self._audit_points(customer, entry, actor_id)
            self.session.commit()
            return entry

        return self._run(_op)

    def adjust(self, outlet_id: int, customer_id: int, action: str, points: int, *,
               description: str | None = None, actor_id: str | None = None) -> PointTransaction | None:
        """
        Manual correction. 'subtract' is clamped to the current balance.

        Returns None when there was nothing to subtract.
        """
        if action not in (ADJUST_ADD, ADJUST_SUBTRACT):
            raise ValidationError("action must be 'add' or 'subtract'", details={"field": "action"})
        if not isinstance(points, int) or isinstance(points, bool) or points <= 0:
            raise ValidationError("points must be a positive integer", details={"field": "points"})

        def _op() -> PointTransaction | None:
            customer = self.get_customer(outlet_id, customer_id)
            change = points if action == ADJUST_ADD else -min(points, customer.points)
            if change == 0:
                return None
            entry = self._apply_points(
                customer,
                change,
                type=POINT_TYPE_ADJUST,
                description=description or f"Manual {action}",
                created_by=actor_id,
            )
            self._audit_points(customer, entry, actor_id)
            self.session.commit()
            return entry

        return self._run(_op)

    def _audit_points(self, customer: Customer, entry: PointTransaction, actor_id: str | None) -> None:
        append_audit_event(
            self.session,
            outlet_id=customer.outlet_id,
            event_type="loyalty.points_adjusted",
            entity_type="customer",
            entity_id=customer.id,
            actor_id=actor_id,
            note=entry.description,
            payload={"type": entry.type, "points": entry.points, "balance_after": entry.balance_after},
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def replay_points(self, customer: Customer) -> int:
        total = (
            self.session.query(func.coalesce(func.sum(PointTransaction.points), 0))
            .filter(PointTransaction.customer_id == customer.id)
            .scalar()
        )
        return int(total)

    def reconcile_customer(self, customer: Customer) -> dict:
        replayed = self.replay_points(customer)
        drift = customer.points - replayed
        if drift:
            logger.warning(
                "Point drift on customer %s: stored=%s replayed=%s", customer.id, customer.points, replayed,
            )
        return {
            "customer_id": customer.id,
            "points": customer.points,
            "replayed_points": replayed,
            "drift": drift,
        }

    def reconcile_outlet(self, outlet_id: int) -> list[dict]:
        customers = self.session.query(Customer).filter_by(outlet_id=outlet_id).order_by(Customer.id).all()
        return [row for row in (self.reconcile_customer(c) for c in customers) if row["drift"]]
