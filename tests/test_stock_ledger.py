# Overview: Pytest coverage for the stock ledger (adjustments, idempotency, floors, replay).

"""
Stock Ledger Tests

Covers:
- Lazy stock item creation and quantity lookups
- Manual corrections and their idempotency key
- Strict refusal vs non-strict flooring at zero
- Items that do not track stock
- Replay of the adjustment history
"""

import pytest

from posengine.errors import InsufficientStock, NotFound, ValidationError
from posengine.models import AuditEvent, StockAdjustment
from posengine.models.inventory import (
    OUTCOME_APPLIED,
    OUTCOME_FLOORED,
    OUTCOME_NOT_TRACKED,
    REASON_MANUAL,
    REASON_SALE,
)


class TestLookups:

    def test_unknown_sku_has_zero_quantity(self, engine, outlet_a, product_a):
        assert engine.ledger.get_item(outlet_a.id, product_a.id) is None
        assert engine.ledger.quantity_of(outlet_a.id, product_a.id) == 0

    def test_variant_and_base_product_are_separate_skus(
        self, engine, outlet_a, product_a, variant_large, stock_in
    ):
        stock_in(outlet_a, product_a, 4)
        stock_in(outlet_a, product_a, 7, variant=variant_large)

        assert engine.ledger.quantity_of(outlet_a.id, product_a.id) == 4
        assert engine.ledger.quantity_of(outlet_a.id, product_a.id, variant_large.id) == 7

    def test_low_stock_filter(self, engine, outlet_a, product_a, product_b, stock_in):
        stock_in(outlet_a, product_a, 2)
        stock_in(outlet_a, product_b, 50)

        low = engine.ledger.list_items(outlet_a.id, low_stock_threshold=5)
        assert [item.product_id for item in low] == [product_a.id]


class TestManualAdjustment:

    def test_adjustment_moves_quantity_and_records_history(self, engine, db_session, outlet_a, product_a):
        result = engine.ledger.adjust_manual(
            outlet_id=outlet_a.id,
            product_id=product_a.id,
            variant_id=None,
            delta=10,
            idempotency_key="req-1",
            note="Initial count",
            actor_id="manager-1",
        )

        assert result.duplicate is False
        assert result.stock_item.quantity == 10
        assert result.adjustment.reason == REASON_MANUAL
        assert result.adjustment.applied_delta == 10
        assert result.adjustment.quantity_after == 10
        assert result.adjustment.outcome == OUTCOME_APPLIED

        events = db_session.query(AuditEvent).filter_by(event_type="inventory.adjusted").all()
        assert len(events) == 1
        assert events[0].actor_id == "manager-1"

    def test_replayed_key_is_not_applied_twice(self, engine, db_session, outlet_a, product_a):
        kwargs = dict(outlet_id=outlet_a.id, product_id=product_a.id, variant_id=None,
                      delta=5, idempotency_key="req-dup")
        first = engine.ledger.adjust_manual(**kwargs)
        second = engine.ledger.adjust_manual(**kwargs)

        assert second.duplicate is True
        assert second.adjustment.id == first.adjustment.id
        assert engine.ledger.quantity_of(outlet_a.id, product_a.id) == 5
        assert db_session.query(StockAdjustment).count() == 1
        assert db_session.query(AuditEvent).filter_by(event_type="inventory.adjusted").count() == 1

    def test_manual_decrease_floors_at_zero(self, engine, outlet_a, product_a, stock_in):
        stock_in(outlet_a, product_a, 3)

        result = engine.ledger.adjust_manual(
            outlet_id=outlet_a.id, product_id=product_a.id, variant_id=None,
            delta=-8, idempotency_key="shrinkage-1",
        )

        assert result.stock_item.quantity == 0
        assert result.adjustment.delta == -8
        assert result.adjustment.applied_delta == -3
        assert result.adjustment.outcome == OUTCOME_FLOORED

    def test_foreign_product_is_rejected(self, engine, outlet_b, product_a):
        with pytest.raises(NotFound):
            engine.ledger.adjust_manual(
                outlet_id=outlet_b.id, product_id=product_a.id, variant_id=None,
                delta=1, idempotency_key="x",
            )

    def test_non_integer_delta_is_rejected(self, engine, outlet_a, product_a):
        with pytest.raises(ValidationError):
            engine.ledger.adjust_manual(
                outlet_id=outlet_a.id, product_id=product_a.id, variant_id=None,
                delta=1.5, idempotency_key="x",
            )


class TestApplyAdjustment:

    def test_strict_refusal_leaves_no_trace(self, engine, db_session, outlet_a, product_a, stock_in):
        stock_in(outlet_a, product_a, 2)
        before = db_session.query(StockAdjustment).count()

        with pytest.raises(InsufficientStock) as exc_info:
            engine.ledger.apply_adjustment(
                outlet_id=outlet_a.id, product_id=product_a.id, variant_id=None,
                delta=-3, reason=REASON_SALE, source_id="999", strict=True,
            )
        db_session.rollback()

        assert exc_info.value.lines[0]["available"] == 2
        assert exc_info.value.lines[0]["requested"] == 3
        assert engine.ledger.quantity_of(outlet_a.id, product_a.id) == 2
        assert db_session.query(StockAdjustment).count() == before

    def test_untracked_product_records_but_does_not_move(self, engine, db_session, outlet_a, service_product):
        result = engine.ledger.apply_adjustment(
            outlet_id=outlet_a.id, product_id=service_product.id, variant_id=None,
            delta=-4, reason=REASON_SALE, source_id="1",
        )
        db_session.commit()

        assert result.adjustment.outcome == OUTCOME_NOT_TRACKED
        assert result.adjustment.applied_delta == 0
        assert result.stock_item.quantity == 0

    def test_unknown_reason_is_rejected(self, engine, outlet_a, product_a):
        with pytest.raises(ValidationError):
            engine.ledger.apply_adjustment(
                outlet_id=outlet_a.id, product_id=product_a.id, variant_id=None,
                delta=1, reason="gift", source_id="1",
            )


class TestReplay:

    def test_history_replays_to_quantity(self, engine, outlet_a, product_a, stock_in):
        stock_in(outlet_a, product_a, 10)
        stock_in(outlet_a, product_a, -4)
        stock_in(outlet_a, product_a, -20)  # floors
        stock_in(outlet_a, product_a, 7)

        item = engine.ledger.get_item(outlet_a.id, product_a.id)
        row = engine.ledger.reconcile(item)

        assert item.quantity == 7
        assert row["replayed_quantity"] == 7
        assert row["drift"] == 0
        assert engine.ledger.reconcile_outlet(outlet_a.id) == []
