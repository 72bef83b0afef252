# Overview: Pytest coverage for the purchase order lifecycle and receipt.

"""
Purchase Order Lifecycle Tests

Covers:
- Creation: totals, PO numbering, item validation
- Transitions: draft -> ordered -> received, draft -> cancelled
- Receipt: stock in once, cost update policies, replay refused,
  a failed item leaves the order untouched and receivable
"""

import pytest

from posengine.errors import AlreadyProcessed, InternalError, InvalidTransition, NotFound, ValidationError
from posengine.models import AuditEvent, Product, StockAdjustment
from posengine.models.inventory import REASON_PURCHASE_RECEIPT
from posengine.models.purchasing import PO_STATUS_CANCELLED, PO_STATUS_ORDERED, PO_STATUS_RECEIVED
from posengine.services.purchase_order_service import weighted_average_cost

from tests.conftest import make_engine


@pytest.fixture
def two_item_po(engine, outlet_a, supplier_a, product_a, product_b):
    return engine.purchase_orders.create(
        outlet_a.id,
        supplier_id=supplier_a.id,
        items=[
            {"product_id": product_a.id, "quantity": 10, "cost_price": 500},
            {"product_id": product_b.id, "quantity": 4, "cost_price": 1200},
        ],
        actor_id="buyer-1",
    )


class TestCreate:

    def test_total_and_number(self, two_item_po):
        assert two_item_po.total_amount == 9800
        assert two_item_po.invoice_number.startswith("PO-")
        assert two_item_po.status == "draft"
        assert len(two_item_po.items) == 2

    def test_numbers_are_sequential_per_outlet(self, engine, outlet_a, supplier_a, product_a):
        items = [{"product_id": product_a.id, "quantity": 1, "cost_price": 100}]
        first = engine.purchase_orders.create(outlet_a.id, supplier_id=supplier_a.id, items=items)
        second = engine.purchase_orders.create(outlet_a.id, supplier_id=supplier_a.id, items=items)

        assert int(second.invoice_number[-4:]) == int(first.invoice_number[-4:]) + 1

    def test_foreign_supplier_rejected(self, engine, outlet_b, supplier_a, product_a):
        with pytest.raises(ValidationError):
            engine.purchase_orders.create(
                outlet_b.id,
                supplier_id=supplier_a.id,
                items=[{"product_id": product_a.id, "quantity": 1, "cost_price": 100}],
            )

    @pytest.mark.parametrize("item", [
        {"quantity": 0, "cost_price": 100},
        {"quantity": 2, "cost_price": -1},
        {"quantity": "3", "cost_price": 100},
    ])
    def test_bad_items_rejected(self, engine, outlet_a, supplier_a, product_a, item):
        with pytest.raises(ValidationError):
            engine.purchase_orders.create(
                outlet_a.id, supplier_id=supplier_a.id, items=[{"product_id": product_a.id, **item}],
            )

    def test_duplicate_sku_rejected(self, engine, outlet_a, supplier_a, product_a):
        with pytest.raises(ValidationError):
            engine.purchase_orders.create(
                outlet_a.id,
                supplier_id=supplier_a.id,
                items=[
                    {"product_id": product_a.id, "quantity": 1, "cost_price": 100},
                    {"product_id": product_a.id, "quantity": 2, "cost_price": 100},
                ],
            )


class TestTransitions:

    def test_receive_requires_ordered(self, engine, outlet_a, two_item_po):
        with pytest.raises(InvalidTransition):
            engine.purchase_orders.receive(outlet_a.id, two_item_po.id)
        assert engine.ledger.quantity_of(outlet_a.id, two_item_po.items[0].product_id) == 0

    def test_cancel_draft(self, engine, db_session, outlet_a, two_item_po):
        po = engine.purchase_orders.cancel(outlet_a.id, two_item_po.id, reason="Supplier out of stock")

        assert po.status == PO_STATUS_CANCELLED
        assert po.cancelled_at is not None
        event = db_session.query(AuditEvent).filter_by(event_type="purchase_order.cancelled").one()
        assert event.note == "Supplier out of stock"

    def test_cancelled_order_cannot_be_ordered(self, engine, outlet_a, two_item_po):
        engine.purchase_orders.cancel(outlet_a.id, two_item_po.id)
        with pytest.raises(InvalidTransition):
            engine.purchase_orders.mark_ordered(outlet_a.id, two_item_po.id)

    def test_ordered_order_cannot_be_cancelled(self, engine, outlet_a, two_item_po):
        engine.purchase_orders.mark_ordered(outlet_a.id, two_item_po.id)
        with pytest.raises(InvalidTransition):
            engine.purchase_orders.cancel(outlet_a.id, two_item_po.id)

    def test_mark_ordered_twice(self, engine, outlet_a, two_item_po):
        po = engine.purchase_orders.mark_ordered(outlet_a.id, two_item_po.id)
        assert po.status == PO_STATUS_ORDERED
        with pytest.raises(AlreadyProcessed):
            engine.purchase_orders.mark_ordered(outlet_a.id, two_item_po.id)

    def test_other_outlet_cannot_see_order(self, engine, outlet_b, two_item_po):
        with pytest.raises(NotFound):
            engine.purchase_orders.get_order(outlet_b.id, two_item_po.id)


class TestReceive:

    def test_receive_stocks_in_once(self, engine, db_session, outlet_a, product_a, product_b, two_item_po):
        engine.purchase_orders.mark_ordered(outlet_a.id, two_item_po.id)

        po = engine.purchase_orders.receive(outlet_a.id, two_item_po.id, actor_id="clerk-1")

        assert po.status == PO_STATUS_RECEIVED
        assert po.received_by == "clerk-1"
        assert engine.ledger.quantity_of(outlet_a.id, product_a.id) == 10
        assert engine.ledger.quantity_of(outlet_a.id, product_b.id) == 4
        assert all(item.stock_adjustment_id is not None for item in po.items)

        with pytest.raises(AlreadyProcessed):
            engine.purchase_orders.receive(outlet_a.id, two_item_po.id)

        assert engine.ledger.quantity_of(outlet_a.id, product_a.id) == 10
        assert engine.ledger.quantity_of(outlet_a.id, product_b.id) == 4
        assert db_session.query(StockAdjustment).filter_by(reason=REASON_PURCHASE_RECEIPT).count() == 2

    def test_failed_item_leaves_order_receivable(
        self, engine, db_session, outlet_a, product_a, product_b, two_item_po, failing_ledger
    ):
        """Second item fails: status stays ordered, no stock or cost moves, a retry receives once."""
        engine.purchase_orders.mark_ordered(outlet_a.id, two_item_po.id)
        failing_ledger(2)

        with pytest.raises(InternalError):
            engine.purchase_orders.receive(outlet_a.id, two_item_po.id)

        assert engine.purchase_orders.get_order(outlet_a.id, two_item_po.id).status == PO_STATUS_ORDERED
        assert engine.ledger.quantity_of(outlet_a.id, product_a.id) == 0
        assert engine.ledger.quantity_of(outlet_a.id, product_b.id) == 0
        assert db_session.query(StockAdjustment).filter_by(reason=REASON_PURCHASE_RECEIPT).count() == 0
        assert db_session.get(Product, product_a.id).cost_price == 6000

        failing_ledger.disarm()
        po = engine.purchase_orders.receive(outlet_a.id, two_item_po.id)

        assert po.status == PO_STATUS_RECEIVED
        assert engine.ledger.quantity_of(outlet_a.id, product_a.id) == 10
        assert engine.ledger.quantity_of(outlet_a.id, product_b.id) == 4
        assert db_session.query(StockAdjustment).filter_by(reason=REASON_PURCHASE_RECEIPT).count() == 2

    def test_last_cost_policy(self, engine, db_session, outlet_a, product_a, two_item_po):
        engine.purchase_orders.mark_ordered(outlet_a.id, two_item_po.id)
        engine.purchase_orders.receive(outlet_a.id, two_item_po.id)

        assert db_session.get(Product, product_a.id).cost_price == 500

    def test_weighted_average_policy(self, app, db_session, outlet_a, supplier_a, product_a, stock_in):
        stock_in(outlet_a, product_a, 10)  # 10 on hand at cost 6000
        wac = make_engine(app, db_session, PURCHASE_COST_POLICY="weighted_average")
        po = wac.purchase_orders.create(
            outlet_a.id,
            supplier_id=supplier_a.id,
            items=[{"product_id": product_a.id, "quantity": 10, "cost_price": 500}],
        )
        wac.purchase_orders.mark_ordered(outlet_a.id, po.id)
        wac.purchase_orders.receive(outlet_a.id, po.id)

        assert db_session.get(Product, product_a.id).cost_price == 3250
        assert wac.ledger.quantity_of(outlet_a.id, product_a.id) == 20

    def test_variant_receipt_keeps_product_cost(
        self, engine, db_session, outlet_a, supplier_a, product_a, variant_large
    ):
        po = engine.purchase_orders.create(
            outlet_a.id,
            supplier_id=supplier_a.id,
            items=[{"product_id": product_a.id, "variant_id": variant_large.id, "quantity": 6, "cost_price": 900}],
        )
        engine.purchase_orders.mark_ordered(outlet_a.id, po.id)
        engine.purchase_orders.receive(outlet_a.id, po.id)

        assert engine.ledger.quantity_of(outlet_a.id, product_a.id, variant_large.id) == 6
        assert db_session.get(Product, product_a.id).cost_price == 6000


class TestWeightedAverageCost:

    def test_rounds_half_up(self):
        # (1*100 + 1*101) / 2 = 100.5
        assert weighted_average_cost(1, 100, 1, 101) == 101

    def test_empty_stock_takes_received_cost(self):
        assert weighted_average_cost(0, 9999, 5, 700) == 700

    def test_negative_on_hand_treated_as_zero(self):
        assert weighted_average_cost(-3, 9999, 5, 700) == 700
