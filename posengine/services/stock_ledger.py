# Overview: Stock ledger; the only writer of StockItem.quantity.

"""
Stock Ledger Invariants (authoritative)

- quantity moves only through apply_adjustment, which appends a
  StockAdjustment and changes the StockItem row with one conditional UPDATE
  (quantity = quantity + delta WHERE quantity + delta >= 0). There is no
  read-then-write window, so concurrent writers cannot lose updates.
- quantity never goes below zero. A strict adjustment that would is refused
  with InsufficientStock; a non-strict one floors at zero and records
  outcome FLOORED with the delta that was actually applied.
- (outlet, reason, source_id, product, variant) is the idempotency key. The
  second application of a key returns the first one's result unchanged.
- Items that do not track stock record the adjustment (NOT_TRACKED,
  applied_delta 0) and leave quantity alone.
- SUM(applied_delta) over an item's adjustments equals its quantity.

apply_adjustment works inside the caller's transaction (under a savepoint)
and never commits; workflows compose several adjustments into one unit of
work. adjust_manual is the only entry point that owns its commit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..errors import InsufficientStock, InternalError, ValidationError
from ..models import Product, StockAdjustment, StockItem
from ..models.inventory import (
    ADJUSTMENT_REASONS,
    OUTCOME_APPLIED,
    OUTCOME_FLOORED,
    OUTCOME_NOT_TRACKED,
    REASON_MANUAL,
    variant_key_for,
)
from .audit_service import append_audit_event
from .catalog_service import get_product, get_variant
from .concurrency import run_with_retry

logger = logging.getLogger(__name__)

_FLOOR_ATTEMPTS = 5


@dataclass
class AdjustmentResult:
    stock_item: StockItem
    adjustment: StockAdjustment
    duplicate: bool = False

    def to_dict(self) -> dict:
        return {
            "stock_item": self.stock_item.to_dict(),
            "adjustment": self.adjustment.to_dict(),
            "duplicate": self.duplicate,
        }


class StockLedger:
    def __init__(self, session, *, retry_attempts: int = 3, retry_backoff: float = 0.1):
        self.session = session
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_item(self, outlet_id: int, product_id: int, variant_id: int | None = None) -> StockItem | None:
        return (
            self.session.query(StockItem)
            .filter_by(
                outlet_id=outlet_id,
                product_id=product_id,
                variant_key=variant_key_for(variant_id),
            )
            .one_or_none()
        )

    def quantity_of(self, outlet_id: int, product_id: int, variant_id: int | None = None) -> int:
        """On-hand quantity; a SKU never adjusted has 0."""
        item = self.get_item(outlet_id, product_id, variant_id)
        return item.quantity if item else 0

    def list_items(self, outlet_id: int, *, low_stock_threshold: int | None = None) -> list[StockItem]:
        query = self.session.query(StockItem).filter(StockItem.outlet_id == outlet_id)
        if low_stock_threshold is not None:
            query = query.filter(
                StockItem.tracks_stock.is_(True),
                StockItem.quantity <= low_stock_threshold,
            )
        return query.order_by(StockItem.product_id, StockItem.variant_key).all()

    def list_adjustments(
        self,
        outlet_id: int,
        *,
        product_id: int | None = None,
        variant_id: int | None = None,
        reason: str | None = None,
        source_id: str | None = None,
        limit: int = 200,
    ) -> list[StockAdjustment]:
        query = self.session.query(StockAdjustment).filter(StockAdjustment.outlet_id == outlet_id)
        if product_id is not None:
            query = query.filter(
                StockAdjustment.product_id == product_id,
                StockAdjustment.variant_key == variant_key_for(variant_id),
            )
        if reason:
            query = query.filter(StockAdjustment.reason == reason)
        if source_id is not None:
            query = query.filter(StockAdjustment.source_id == source_id)
        return query.order_by(StockAdjustment.id.desc()).limit(limit).all()

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def apply_adjustment(
        self,
        *,
        outlet_id: int,
        product_id: int,
        variant_id: int | None,
        delta: int,
        reason: str,
        source_id: str,
        strict: bool = False,
        note: str | None = None,
        created_by: str | None = None,
    ) -> AdjustmentResult:
        """
        Apply one signed adjustment to a SKU inside the current transaction.

        Returns the resulting StockItem snapshot and the adjustment row. When
        the idempotency key was already used, nothing moves and the original
        adjustment comes back with duplicate=True.

        Raises InsufficientStock when strict and quantity + delta < 0; the
        savepoint is rolled back so neither the adjustment nor the quantity
        change survive.
        """
        if reason not in ADJUSTMENT_REASONS:
            raise ValidationError("Unknown adjustment reason", details={"reason": reason})
        if not source_id:
            raise ValidationError("source_id is required", details={"field": "source_id"})
        if not isinstance(delta, int) or isinstance(delta, bool):
            raise ValidationError("delta must be an integer", details={"delta": delta})

        source_id = str(source_id)
        item = self._get_or_create_item(outlet_id, product_id, variant_id)

        existing = self._find_adjustment(outlet_id, reason, source_id, product_id, variant_id)
        if existing is not None:
            logger.info(
                "Skipping duplicate %s adjustment source=%s product=%s variant=%s",
                reason, source_id, product_id, variant_id,
            )
            return AdjustmentResult(item, existing, duplicate=True)

        try:
            with self.session.begin_nested():
                adjustment = StockAdjustment(
                    outlet_id=outlet_id,
                    stock_item_id=item.id,
                    product_id=product_id,
                    variant_id=variant_id,
                    variant_key=variant_key_for(variant_id),
                    reason=reason,
                    source_id=source_id,
                    delta=delta,
                    applied_delta=0,
                    quantity_after=item.quantity,
                    note=note,
                    created_by=created_by,
                )
                self.session.add(adjustment)
                # Claims the idempotency key before quantity moves
                self.session.flush()

                applied, outcome = self._move(item, delta, strict=strict, reason=reason, source_id=source_id)

                self.session.refresh(item)
                adjustment.applied_delta = applied
                adjustment.outcome = outcome
                adjustment.quantity_after = item.quantity
        except IntegrityError:
            existing = self._find_adjustment(outlet_id, reason, source_id, product_id, variant_id)
            if existing is None:
                raise
            self.session.refresh(item)
            return AdjustmentResult(item, existing, duplicate=True)

        return AdjustmentResult(item, adjustment)

    def adjust_manual(
        self,
        *,
        outlet_id: int,
        product_id: int,
        variant_id: int | None,
        delta: int,
        idempotency_key: str,
        note: str | None = None,
        actor_id: str | None = None,
    ) -> AdjustmentResult:
        """
        Operator stock correction, committed as its own unit of work.

        idempotency_key is the caller's request id: replaying the same key
        returns the first result without moving stock again.
        """
        def _op() -> AdjustmentResult:
            product = get_product(self.session, outlet_id, product_id)
            get_variant(self.session, product, variant_id)
            result = self.apply_adjustment(
                outlet_id=outlet_id,
                product_id=product_id,
                variant_id=variant_id,
                delta=delta,
                reason=REASON_MANUAL,
                source_id=idempotency_key,
                note=note,
                created_by=actor_id,
            )
            if not result.duplicate:
                append_audit_event(
                    self.session,
                    outlet_id=outlet_id,
                    event_type="inventory.adjusted",
                    entity_type="stock_item",
                    entity_id=result.stock_item.id,
                    actor_id=actor_id,
                    note=note,
                    payload={
                        "delta": delta,
                        "applied_delta": result.adjustment.applied_delta,
                        "outcome": result.adjustment.outcome,
                    },
                )
            self.session.commit()
            return result

        return run_with_retry(
            self.session, _op, attempts=self.retry_attempts, backoff_base=self.retry_backoff,
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def replay_quantity(self, item: StockItem) -> int:
        """Quantity rebuilt from the adjustment history alone."""
        total = (
            self.session.query(func.coalesce(func.sum(StockAdjustment.applied_delta), 0))
            .filter(StockAdjustment.stock_item_id == item.id)
            .scalar()
        )
        return int(total)

    def reconcile(self, item: StockItem) -> dict:
        replayed = self.replay_quantity(item)
        drift = item.quantity - replayed
        if drift:
            logger.warning(
                "Stock drift on item %s: stored=%s replayed=%s", item.id, item.quantity, replayed,
            )
        return {
            "stock_item_id": item.id,
            "product_id": item.product_id,
            "variant_id": item.variant_id,
            "quantity": item.quantity,
            "replayed_quantity": replayed,
            "drift": drift,
        }

    def reconcile_outlet(self, outlet_id: int) -> list[dict]:
        """Reconciliation rows for every item whose quantity disagrees with its history."""
        return [
            row for row in (self.reconcile(item) for item in self.list_items(outlet_id))
            if row["drift"]
        ]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find_item(self, outlet_id: int, product_id: int, variant_key: int) -> StockItem | None:
        return (
            self.session.query(StockItem)
            .filter_by(outlet_id=outlet_id, product_id=product_id, variant_key=variant_key)
            .one_or_none()
        )

    def _get_or_create_item(self, outlet_id: int, product_id: int, variant_id: int | None) -> StockItem:
        key = variant_key_for(variant_id)
        item = self._find_item(outlet_id, product_id, key)
        if item is not None:
            return item

        product = self.session.get(Product, product_id)
        tracks = product.track_stock if product is not None else True
        try:
            with self.session.begin_nested():
                item = StockItem(
                    outlet_id=outlet_id,
                    product_id=product_id,
                    variant_id=variant_id,
                    variant_key=key,
                    quantity=0,
                    tracks_stock=tracks,
                    row_version=1,
                )
                self.session.add(item)
        except IntegrityError:
            # Created concurrently
            item = self._find_item(outlet_id, product_id, key)
            if item is None:
                raise
        return item

    def _find_adjustment(
        self, outlet_id: int, reason: str, source_id: str, product_id: int, variant_id: int | None,
    ) -> StockAdjustment | None:
        return (
            self.session.query(StockAdjustment)
            .filter_by(
                outlet_id=outlet_id,
                reason=reason,
                source_id=source_id,
                product_id=product_id,
                variant_key=variant_key_for(variant_id),
            )
            .one_or_none()
        )

    def _conditional_update(self, item_id: int, delta: int) -> bool:
        stmt = (
            update(StockItem)
            .where(StockItem.id == item_id, StockItem.quantity + delta >= 0)
            .values(quantity=StockItem.quantity + delta, row_version=StockItem.row_version + 1)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def _current_quantity(self, item_id: int) -> int:
        return self.session.query(StockItem.quantity).filter(StockItem.id == item_id).scalar()

    def _move(self, item: StockItem, delta: int, *, strict: bool, reason: str, source_id: str) -> tuple[int, str]:
        if not item.tracks_stock:
            return 0, OUTCOME_NOT_TRACKED
        if delta == 0:
            return 0, OUTCOME_APPLIED

        if self._conditional_update(item.id, delta):
            return delta, OUTCOME_APPLIED

        if strict:
            available = self._current_quantity(item.id)
            raise InsufficientStock([{
                "product_id": item.product_id,
                "variant_id": item.variant_id,
                "requested": -delta,
                "available": available,
            }])

        # Floor at zero: take whatever is there, retrying if it moved underneath us
        for _ in range(_FLOOR_ATTEMPTS):
            current = self._current_quantity(item.id)
            if current + delta >= 0:
                if self._conditional_update(item.id, delta):
                    return delta, OUTCOME_APPLIED
                continue
            stmt = (
                update(StockItem)
                .where(StockItem.id == item.id, StockItem.quantity == current)
                .values(quantity=0, row_version=StockItem.row_version + 1)
                .execution_options(synchronize_session=False)
            )
            if self.session.execute(stmt).rowcount == 1:
                logger.warning(
                    "Stock floored at zero: item=%s reason=%s source=%s requested=%s applied=%s",
                    item.id, reason, source_id, delta, -current,
                )
                return -current, OUTCOME_FLOORED
        raise InternalError("Stock item kept changing; retry", details={"stock_item_id": item.id})
