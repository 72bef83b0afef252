# Overview: Purchase order lifecycle; supplier orders and their one-time stock receipt.

"""
Purchase Order Lifecycle

WHY: Receiving is the only way supplier stock enters the ledger, and it has
no natural undo. It is therefore all-or-nothing: every item's
'purchase-receipt' adjustment and cost update, then the status flip, then a
single commit. A failure anywhere leaves the order in 'ordered' and safe to
retry; the per-item idempotency key (purchase-receipt, po id, sku) makes a
retried receipt unable to double-count.

TRANSITIONS:
    mark_ordered: draft -> ordered
    cancel:       draft -> cancelled
    receive:      ordered -> received

Re-issuing the action that produced the current status raises
AlreadyProcessed (safe for the caller to treat as success). Every other
move raises InvalidTransition.

COST POLICY on receipt (non-variant items only, variants share the product
cost):
    last:             product.cost_price = received cost
    weighted_average: (old_qty*old_cost + qty*cost) / (old_qty + qty),
                      rounded half-up to the smallest currency unit
"""

from __future__ import annotations

import logging
from datetime import datetime

from ..errors import AlreadyProcessed, InvalidTransition, NotFound, ValidationError
from ..models import Product, PurchaseOrder, PurchaseOrderItem
from ..models.inventory import REASON_PURCHASE_RECEIPT, variant_key_for
from ..models.purchasing import (
    PO_STATUS_CANCELLED,
    PO_STATUS_DRAFT,
    PO_STATUS_ORDERED,
    PO_STATUS_RECEIVED,
)
from ..time_utils import parse_business_time, utcnow
from .audit_service import append_audit_event
from .catalog_service import get_product, get_supplier, get_variant
from .concurrency import lock_for_update, run_with_retry
from .document_service import DOCUMENT_TYPE_PURCHASE_ORDER, next_document_number

logger = logging.getLogger(__name__)

COST_POLICY_LAST = "last"
COST_POLICY_WEIGHTED_AVERAGE = "weighted_average"
COST_POLICIES = {COST_POLICY_LAST, COST_POLICY_WEIGHTED_AVERAGE}

# action -> (required current status, resulting status)
_TRANSITIONS = {
    "mark_ordered": (PO_STATUS_DRAFT, PO_STATUS_ORDERED),
    "cancel": (PO_STATUS_DRAFT, PO_STATUS_CANCELLED),
    "receive": (PO_STATUS_ORDERED, PO_STATUS_RECEIVED),
}


def weighted_average_cost(old_qty: int, old_cost: int, received_qty: int, received_cost: int) -> int:
    old_qty = max(old_qty, 0)
    total_qty = old_qty + received_qty
    if total_qty <= 0:
        return received_cost
    numerator = old_qty * old_cost + received_qty * received_cost
    return (2 * numerator + total_qty) // (2 * total_qty)


def _parse_date(value, field: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return parse_business_time(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field}", details={"field": field})


class PurchaseOrderLifecycle:
    def __init__(
        self,
        session,
        ledger,
        *,
        cost_policy: str = COST_POLICY_LAST,
        retry_attempts: int = 3,
        retry_backoff: float = 0.1,
    ):
        if cost_policy not in COST_POLICIES:
            raise ValueError(f"Unknown cost policy: {cost_policy}")
        self.session = session
        self.ledger = ledger
        self.cost_policy = cost_policy
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    def _run(self, op):
        return run_with_retry(self.session, op, attempts=self.retry_attempts, backoff_base=self.retry_backoff)

    def _validate_items(self, outlet_id: int, items) -> list[dict]:
        if not items:
            raise ValidationError("Purchase order needs at least one item", details={"field": "items"})

        cleaned = []
        seen = set()
        for idx, raw in enumerate(items):
            if not isinstance(raw, dict):
                raise ValidationError("Each item must be an object", details={"line": idx})
            quantity = raw.get("quantity")
            cost_price = raw.get("cost_price")
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
                raise ValidationError("quantity must be a positive integer", details={"line": idx, "field": "quantity"})
            if not isinstance(cost_price, int) or isinstance(cost_price, bool) or cost_price < 0:
                raise ValidationError("cost_price must be a non-negative integer",
                                      details={"line": idx, "field": "cost_price"})
            product_id = raw.get("product_id")
            if product_id is None:
                raise ValidationError("product_id is required", details={"line": idx, "field": "product_id"})
            try:
                product = get_product(self.session, outlet_id, product_id)
                variant = get_variant(self.session, product, raw.get("variant_id"))
            except NotFound as exc:
                raise ValidationError(exc.message, details={"line": idx, **exc.details})

            key = (product.id, variant_key_for(variant.id if variant else None))
            if key in seen:
                raise ValidationError("Duplicate product in purchase order",
                                      details={"line": idx, "product_id": product.id})
            seen.add(key)
            cleaned.append({
                "product_id": product.id,
                "variant_id": variant.id if variant else None,
                "quantity": quantity,
                "cost_price": cost_price,
            })
        return cleaned

    def create(
        self,
        outlet_id: int,
        *,
        supplier_id: int,
        items: list[dict],
        order_date=None,
        expected_date=None,
        notes: str | None = None,
        actor_id: str | None = None,
    ) -> PurchaseOrder:
        """Create a draft order. totalAmount = sum(quantity * cost_price)."""
        if supplier_id is None:
            raise ValidationError("supplier_id is required", details={"field": "supplier_id"})
        order_dt = _parse_date(order_date, "order_date") or utcnow()
        expected_dt = _parse_date(expected_date, "expected_date")

        def _op() -> PurchaseOrder:
            try:
                get_supplier(self.session, outlet_id, supplier_id)
            except NotFound as exc:
                raise ValidationError(exc.message, details=exc.details)
            cleaned = self._validate_items(outlet_id, items)

            po = PurchaseOrder(
                outlet_id=outlet_id,
                supplier_id=supplier_id,
                invoice_number=next_document_number(
                    self.session,
                    outlet_id=outlet_id,
                    document_type=DOCUMENT_TYPE_PURCHASE_ORDER,
                    at=order_dt,
                ),
                status=PO_STATUS_DRAFT,
                total_amount=sum(i["quantity"] * i["cost_price"] for i in cleaned),
                order_date=order_dt,
                expected_date=expected_dt,
                notes=notes,
                created_by=actor_id,
            )
            self.session.add(po)
            self.session.flush()

            for i in cleaned:
                self.session.add(PurchaseOrderItem(
                    purchase_order_id=po.id,
                    product_id=i["product_id"],
                    variant_id=i["variant_id"],
                    variant_key=variant_key_for(i["variant_id"]),
                    quantity=i["quantity"],
                    cost_price=i["cost_price"],
                    subtotal=i["quantity"] * i["cost_price"],
                ))

            append_audit_event(
                self.session,
                outlet_id=outlet_id,
                event_type="purchase_order.created",
                entity_type="purchase_order",
                entity_id=po.id,
                actor_id=actor_id,
                payload={"invoice_number": po.invoice_number, "total_amount": po.total_amount},
            )
            self.session.commit()
            return po

        return self._run(_op)

    def _load_locked(self, outlet_id: int, po_id: int) -> PurchaseOrder:
        po = lock_for_update(
            self.session.query(PurchaseOrder).filter_by(id=po_id, outlet_id=outlet_id)
        ).first()
        if po is None:
            raise NotFound("Purchase order not found", details={"purchase_order_id": po_id})
        return po

    def _guard(self, po: PurchaseOrder, action: str) -> str:
        required, target = _TRANSITIONS[action]
        if po.status == target:
            raise AlreadyProcessed(
                f"Purchase order already {target}",
                details={"purchase_order_id": po.id, "status": po.status},
            )
        if po.status != required:
            raise InvalidTransition(
                f"Cannot {action.replace('_', ' ')} a purchase order with status {po.status}",
                details={"purchase_order_id": po.id, "status": po.status, "required_status": required},
            )
        return target

    def mark_ordered(self, outlet_id: int, po_id: int, *, actor_id: str | None = None) -> PurchaseOrder:
        def _op() -> PurchaseOrder:
            po = self._load_locked(outlet_id, po_id)
            po.status = self._guard(po, "mark_ordered")
            po.ordered_at = utcnow()
            self._audit(po, "purchase_order.ordered", actor_id)
            self.session.commit()
            return po

        return self._run(_op)

    def cancel(self, outlet_id: int, po_id: int, *, actor_id: str | None = None,
               reason: str | None = None) -> PurchaseOrder:
        def _op() -> PurchaseOrder:
            po = self._load_locked(outlet_id, po_id)
            po.status = self._guard(po, "cancel")
            po.cancelled_at = utcnow()
            self._audit(po, "purchase_order.cancelled", actor_id, note=reason)
            self.session.commit()
            return po

        return self._run(_op)

    def receive(self, outlet_id: int, po_id: int, *, actor_id: str | None = None) -> PurchaseOrder:
        """
        Receive an ordered PO: stock in for every item, then flip to received.

        Raises AlreadyProcessed when the order is already received; stock is
        not touched again.
        """
        def _op() -> PurchaseOrder:
            po = self._load_locked(outlet_id, po_id)
            target = self._guard(po, "receive")

            for item in po.items:
                result = self.ledger.apply_adjustment(
                    outlet_id=outlet_id,
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    delta=item.quantity,
                    reason=REASON_PURCHASE_RECEIPT,
                    source_id=str(po.id),
                    note=f"Received from PO {po.invoice_number}",
                    created_by=actor_id,
                )
                item.stock_adjustment_id = result.adjustment.id
                if item.variant_id is None:
                    self._update_cost(item, result)

            # Last write of the unit of work
            po.status = target
            po.received_date = utcnow()
            po.received_by = actor_id
            self._audit(po, "purchase_order.received", actor_id, payload={
                "invoice_number": po.invoice_number,
                "items": len(po.items),
                "units": sum(i.quantity for i in po.items),
            })
            self.session.commit()
            return po

        return self._run(_op)

    def _update_cost(self, item: PurchaseOrderItem, result) -> None:
        product = self.session.get(Product, item.product_id)
        if self.cost_policy == COST_POLICY_WEIGHTED_AVERAGE:
            adj = result.adjustment
            old_qty = adj.quantity_after - adj.applied_delta
            new_cost = weighted_average_cost(old_qty, product.cost_price, item.quantity, item.cost_price)
        else:
            new_cost = item.cost_price
        if new_cost != product.cost_price:
            logger.info(
                "Product %s cost %s -> %s (%s)", product.id, product.cost_price, new_cost, self.cost_policy,
            )
            product.cost_price = new_cost

    def _audit(self, po: PurchaseOrder, event_type: str, actor_id: str | None, *,
               note: str | None = None, payload: dict | None = None) -> None:
        append_audit_event(
            self.session,
            outlet_id=po.outlet_id,
            event_type=event_type,
            entity_type="purchase_order",
            entity_id=po.id,
            actor_id=actor_id,
            note=note,
            payload=payload or {"invoice_number": po.invoice_number, "status": po.status},
        )

    def get_order(self, outlet_id: int, po_id: int) -> PurchaseOrder:
        po = self.session.query(PurchaseOrder).filter_by(id=po_id, outlet_id=outlet_id).first()
        if po is None:
            raise NotFound("Purchase order not found", details={"purchase_order_id": po_id})
        return po

    def list_orders(self, outlet_id: int, *, status: str | None = None, limit: int = 100) -> list[PurchaseOrder]:
        query = self.session.query(PurchaseOrder).filter(PurchaseOrder.outlet_id == outlet_id)
        if status:
            query = query.filter(PurchaseOrder.status == status)
        return query.order_by(PurchaseOrder.id.desc()).limit(limit).all()
