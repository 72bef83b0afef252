# Overview: Stock opname (physical count) sessions and their one-time correction posting.

"""
Opname Reconciler

LIFECYCLE:
    draft --finalize--> completed
    draft --cancel--> cancelled

- create_session snapshots the ledger quantity of every in-scope SKU as
  system_stock. Products that do not track stock are not counted.
- record_counts only writes the session's own rows (actual_stock,
  difference, notes); the ledger is untouched until finalize.
- finalize posts one 'opname-correction' adjustment of delta = difference
  per counted item with a non-zero difference. Uncounted items are skipped,
  never treated as zero. Posting the difference rather than overwriting the
  quantity keeps sales made between snapshot and finalize.
- finalize is all-or-nothing and flips the status last; a second finalize
  raises AlreadyFinalized.
"""

from __future__ import annotations

import logging

from ..errors import AlreadyFinalized, AlreadyProcessed, InvalidTransition, NotFound, ValidationError
from ..models import OpnameItem, OpnameSession, Product, ProductVariant
from ..models.inventory import REASON_OPNAME_CORRECTION, variant_key_for
from ..models.opname import OPNAME_STATUS_CANCELLED, OPNAME_STATUS_COMPLETED, OPNAME_STATUS_DRAFT
from ..time_utils import utcnow
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


class OpnameReconciler:
    def __init__(self, session, ledger, *, retry_attempts: int = 3, retry_backoff: float = 0.1):
        self.session = session
        self.ledger = ledger
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    def _run(self, op):
        return run_with_retry(self.session, op, attempts=self.retry_attempts, backoff_base=self.retry_backoff)

    def _scope_skus(self, outlet_id: int, product_ids, category_id) -> list[tuple[Product, ProductVariant | None]]:
        query = self.session.query(Product).filter(
            Product.outlet_id == outlet_id,
            Product.is_active.is_(True),
            Product.track_stock.is_(True),
        )
        if product_ids:
            query = query.filter(Product.id.in_(product_ids))
        if category_id is not None:
            query = query.filter(Product.category_id == category_id)

        skus = []
        for product in query.order_by(Product.id).all():
            variants = [v for v in product.variants if v.is_active]
            if variants:
                skus.extend((product, v) for v in sorted(variants, key=lambda v: v.id))
            else:
                skus.append((product, None))
        return skus

    def create_session(
        self,
        outlet_id: int,
        *,
        product_ids: list[int] | None = None,
        category_id: int | None = None,
        notes: str | None = None,
        actor_id: str | None = None,
    ) -> OpnameSession:
        """Open a draft count with a system_stock snapshot for every in-scope SKU."""
        def _op() -> OpnameSession:
            skus = self._scope_skus(outlet_id, product_ids, category_id)
            if not skus:
                raise ValidationError(
                    "No stock-tracked products in scope",
                    details={"product_ids": product_ids, "category_id": category_id},
                )

            opname = OpnameSession(
                outlet_id=outlet_id,
                status=OPNAME_STATUS_DRAFT,
                date=utcnow(),
                notes=notes,
                scope_category_id=category_id,
                created_by=actor_id,
            )
            self.session.add(opname)
            self.session.flush()

            for product, variant in skus:
                variant_id = variant.id if variant else None
                self.session.add(OpnameItem(
                    session_id=opname.id,
                    product_id=product.id,
                    variant_id=variant_id,
                    variant_key=variant_key_for(variant_id),
                    system_stock=self.ledger.quantity_of(outlet_id, product.id, variant_id),
                ))

            append_audit_event(
                self.session,
                outlet_id=outlet_id,
                event_type="opname.created",
                entity_type="opname_session",
                entity_id=opname.id,
                actor_id=actor_id,
                payload={"items": len(skus), "category_id": category_id},
            )
            self.session.commit()
            return opname

        return self._run(_op)

    def _load_locked(self, outlet_id: int, session_id: int) -> OpnameSession:
        opname = lock_for_update(
            self.session.query(OpnameSession).filter_by(id=session_id, outlet_id=outlet_id)
        ).first()
        if opname is None:
            raise NotFound("Opname session not found", details={"session_id": session_id})
        return opname

    def record_counts(self, outlet_id: int, session_id: int, counts: list[dict]) -> OpnameSession:
        """
        Record physical counts in bulk: [{item_id, actual_stock, notes?}].

        actual_stock None clears an earlier count. Only draft sessions accept
        counts.
        """
        if not counts:
            raise ValidationError("No counts given", details={"field": "items"})

        cleaned = []
        for idx, raw in enumerate(counts):
            if not isinstance(raw, dict) or raw.get("item_id") is None:
                raise ValidationError("Each count needs an item_id", details={"line": idx})
            actual = raw.get("actual_stock")
            if actual is not None and (not isinstance(actual, int) or isinstance(actual, bool) or actual < 0):
                raise ValidationError(
                    "actual_stock must be a non-negative integer",
                    details={"line": idx, "item_id": raw["item_id"]},
                )
            cleaned.append(raw)

        def _op() -> OpnameSession:
            opname = self._load_locked(outlet_id, session_id)
            if opname.status != OPNAME_STATUS_DRAFT:
                raise InvalidTransition(
                    f"Cannot record counts on a {opname.status} session",
                    details={"session_id": opname.id, "status": opname.status},
                )
            items = {item.id: item for item in opname.items}
            for raw in cleaned:
                item = items.get(raw["item_id"])
                if item is None:
                    raise NotFound(
                        "Opname item not found in session",
                        details={"session_id": opname.id, "item_id": raw["item_id"]},
                    )
                actual = raw.get("actual_stock")
                item.actual_stock = actual
                item.difference = None if actual is None else actual - item.system_stock
                if "notes" in raw:
                    item.notes = raw["notes"]
            self.session.commit()
            return opname

        return self._run(_op)

    def record_count(self, outlet_id: int, session_id: int, item_id: int, actual_stock: int | None,
                     *, notes: str | None = None) -> OpnameSession:
        count = {"item_id": item_id, "actual_stock": actual_stock}
        if notes is not None:
            count["notes"] = notes
        return self.record_counts(outlet_id, session_id, [count])

    def finalize(self, outlet_id: int, session_id: int, *, actor_id: str | None = None) -> OpnameSession:
        """Post corrections for every counted, non-zero difference and complete the session."""
        def _op() -> OpnameSession:
            opname = self._load_locked(outlet_id, session_id)
            if opname.status == OPNAME_STATUS_COMPLETED:
                raise AlreadyFinalized(
                    "Opname session already finalized",
                    details={"session_id": opname.id, "finalized_at": opname.to_dict()["finalized_at"]},
                )
            if opname.status != OPNAME_STATUS_DRAFT:
                raise InvalidTransition(
                    f"Cannot finalize a {opname.status} session",
                    details={"session_id": opname.id, "status": opname.status},
                )

            posted = 0
            for item in opname.items:
                if item.actual_stock is None or not item.difference:
                    continue
                result = self.ledger.apply_adjustment(
                    outlet_id=outlet_id,
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    delta=item.difference,
                    reason=REASON_OPNAME_CORRECTION,
                    source_id=str(opname.id),
                    note=item.notes or f"Stock opname #{opname.id}",
                    created_by=actor_id,
                )
                item.stock_adjustment_id = result.adjustment.id
                posted += 1

            # Last write of the unit of work
            opname.status = OPNAME_STATUS_COMPLETED
            opname.finalized_at = utcnow()
            opname.finalized_by = actor_id
            opname.adjustments_count = posted
            append_audit_event(
                self.session,
                outlet_id=outlet_id,
                event_type="opname.finalized",
                entity_type="opname_session",
                entity_id=opname.id,
                actor_id=actor_id,
                payload={"adjustments": posted},
            )
            self.session.commit()
            logger.info("Opname %s finalized with %d corrections", opname.id, posted)
            return opname

        return self._run(_op)

    def cancel(self, outlet_id: int, session_id: int, *, actor_id: str | None = None) -> OpnameSession:
        def _op() -> OpnameSession:
            opname = self._load_locked(outlet_id, session_id)
            if opname.status == OPNAME_STATUS_CANCELLED:
                raise AlreadyProcessed("Opname session already cancelled", details={"session_id": opname.id})
            if opname.status != OPNAME_STATUS_DRAFT:
                raise InvalidTransition(
                    f"Cannot cancel a {opname.status} session",
                    details={"session_id": opname.id, "status": opname.status},
                )
            opname.status = OPNAME_STATUS_CANCELLED
            opname.cancelled_at = utcnow()
            append_audit_event(
                self.session,
                outlet_id=outlet_id,
                event_type="opname.cancelled",
                entity_type="opname_session",
                entity_id=opname.id,
                actor_id=actor_id,
            )
            self.session.commit()
            return opname

        return self._run(_op)

    def get_session(self, outlet_id: int, session_id: int) -> OpnameSession:
        opname = self.session.query(OpnameSession).filter_by(id=session_id, outlet_id=outlet_id).first()
        if opname is None:
            raise NotFound("Opname session not found", details={"session_id": session_id})
        return opname

    def list_sessions(self, outlet_id: int, *, status: str | None = None, limit: int = 100) -> list[OpnameSession]:
        query = self.session.query(OpnameSession).filter(OpnameSession.outlet_id == outlet_id)
        if status:
            query = query.filter(OpnameSession.status == status)
        return query.order_by(OpnameSession.id.desc()).limit(limit).all()
