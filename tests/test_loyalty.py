# Overview: Pytest coverage for loyalty points, tiers and settings.

"""
Loyalty Engine Tests

Covers:
- Point computation and outlet settings
- Accrual from sales (once per sale)
- Redeem and manual adjustments, never below zero
- Tier resolution under the recalculate and sticky policies
- Point ledger replay
"""

import pytest

from posengine.errors import NotFound, ValidationError
from posengine.models import Customer, PointTransaction
from posengine.services.loyalty_service import compute_points

from tests.conftest import make_engine


@pytest.fixture
def tiers(engine, outlet_a):
    return {
        "silver": engine.loyalty.create_tier(outlet_a.id, {"name": "Silver", "min_points": 0}),
        "gold": engine.loyalty.create_tier(outlet_a.id, {"name": "Gold", "min_points": 100}),
        "platinum": engine.loyalty.create_tier(outlet_a.id, {"name": "Platinum", "min_points": 500}),
    }


class TestComputePoints:

    def test_floor_of_amount(self):
        assert compute_points(25000, amount_per_point=1000, points_per_amount=1, is_enabled=True) == 25
        assert compute_points(25999, amount_per_point=1000, points_per_amount=1, is_enabled=True) == 25
        assert compute_points(999, amount_per_point=1000, points_per_amount=1, is_enabled=True) == 0

    def test_points_per_amount_multiplies(self):
        assert compute_points(5000, amount_per_point=1000, points_per_amount=3, is_enabled=True) == 15

    def test_disabled_or_misconfigured_earns_nothing(self):
        assert compute_points(25000, amount_per_point=1000, points_per_amount=1, is_enabled=False) == 0
        assert compute_points(25000, amount_per_point=0, points_per_amount=1, is_enabled=True) == 0


class TestSettings:

    def test_defaults_without_row(self, engine, outlet_a):
        settings = engine.loyalty.get_settings(outlet_a.id)
        assert settings["id"] is None
        assert settings["amount_per_point"] == 1000
        assert settings["is_enabled"] is True

    def test_upsert_and_disable(self, engine, outlet_a, product_a, stock_in):
        stock_in(outlet_a, product_a, 5)
        engine.loyalty.upsert_settings(outlet_a.id, {"is_enabled": False}, actor_id="owner")
        customer = engine.loyalty.create_customer(outlet_a.id, name="Andi")

        result = engine.sales.process_sale(
            outlet_a.id,
            items=[{"product_id": product_a.id, "quantity": 1}],
            payment_method="Cash",
            customer_id=customer.id,
        )

        assert result.earned_points == 0
        assert engine.loyalty.get_settings(outlet_a.id)["is_enabled"] is False

    def test_invalid_value(self, engine, outlet_a):
        with pytest.raises(ValidationError):
            engine.loyalty.upsert_settings(outlet_a.id, {"amount_per_point": -5})


class TestAccrual:

    def test_sale_lands_customer_in_highest_reached_tier(self, engine, db_session, outlet_a, product_a,
                                                          tiers, stock_in):
        """150 points with Silver 0 / Gold 100 / Platinum 500 resolves to Gold."""
        stock_in(outlet_a, product_a, 20)
        customer = engine.loyalty.create_customer(outlet_a.id, name="Rina")
        assert customer.tier_id == tiers["silver"].id

        engine.sales.process_sale(
            outlet_a.id,
            items=[{"product_id": product_a.id, "quantity": 15}],
            payment_method="Cash",
            customer_id=customer.id,
        )

        customer = db_session.get(Customer, customer.id)
        assert customer.points == 150
        assert customer.tier_id == tiers["gold"].id

    def test_accrual_is_once_per_sale(self, engine, db_session, outlet_a, product_a, stock_in):
        stock_in(outlet_a, product_a, 5)
        customer = engine.loyalty.create_customer(outlet_a.id, name="Tono")
        result = engine.sales.process_sale(
            outlet_a.id,
            items=[{"product_id": product_a.id, "quantity": 1}],
            payment_method="Cash",
            customer_id=customer.id,
        )

        again = engine.loyalty.accrue_for_transaction(result.transaction)
        db_session.commit()

        assert again == 0
        assert db_session.get(Customer, customer.id).points == 10
        assert db_session.query(PointTransaction).filter_by(type="earn").count() == 1


class TestRedeemAndAdjust:

    def test_redeem_within_balance(self, engine, db_session, outlet_a):
        customer = engine.loyalty.create_customer(outlet_a.id, name="Lina")
        engine.loyalty.adjust(outlet_a.id, customer.id, "add", 200)

        entry = engine.loyalty.redeem(outlet_a.id, customer.id, 120, description="Free coffee")

        assert entry.points == -120
        assert entry.balance_after == 80
        assert db_session.get(Customer, customer.id).points == 80

    def test_redeem_beyond_balance_refused(self, engine, db_session, outlet_a):
        customer = engine.loyalty.create_customer(outlet_a.id, name="Joko")
        engine.loyalty.adjust(outlet_a.id, customer.id, "add", 50)

        with pytest.raises(ValidationError):
            engine.loyalty.redeem(outlet_a.id, customer.id, 51)

        assert db_session.get(Customer, customer.id).points == 50
        assert db_session.query(PointTransaction).filter_by(type="redeem").count() == 0

    def test_subtract_is_clamped(self, engine, db_session, outlet_a):
        customer = engine.loyalty.create_customer(outlet_a.id, name="Wati")
        engine.loyalty.adjust(outlet_a.id, customer.id, "add", 30)

        entry = engine.loyalty.adjust(outlet_a.id, customer.id, "subtract", 100)

        assert entry.points == -30
        assert db_session.get(Customer, customer.id).points == 0
        assert engine.loyalty.adjust(outlet_a.id, customer.id, "subtract", 10) is None

    def test_unknown_action(self, engine, outlet_a):
        customer = engine.loyalty.create_customer(outlet_a.id, name="Eko")
        with pytest.raises(ValidationError):
            engine.loyalty.adjust(outlet_a.id, customer.id, "multiply", 2)

    def test_foreign_customer(self, engine, outlet_a, outlet_b):
        customer = engine.loyalty.create_customer(outlet_a.id, name="Fajar")
        with pytest.raises(NotFound):
            engine.loyalty.redeem(outlet_b.id, customer.id, 1)


class TestTierPolicy:

    def test_recalculate_moves_down_after_redeem(self, engine, db_session, outlet_a, tiers):
        customer = engine.loyalty.create_customer(outlet_a.id, name="Gita")
        engine.loyalty.adjust(outlet_a.id, customer.id, "add", 150)
        engine.loyalty.redeem(outlet_a.id, customer.id, 100)

        assert db_session.get(Customer, customer.id).tier_id == tiers["silver"].id

    def test_recalculate_drops_tier_below_lowest_threshold(self, engine, db_session, outlet_a):
        gold = engine.loyalty.create_tier(outlet_a.id, {"name": "Gold", "min_points": 100})
        customer = engine.loyalty.create_customer(outlet_a.id, name="Gilang")
        engine.loyalty.adjust(outlet_a.id, customer.id, "add", 150)
        assert db_session.get(Customer, customer.id).tier_id == gold.id

        engine.loyalty.redeem(outlet_a.id, customer.id, 120)

        customer = db_session.get(Customer, customer.id)
        assert customer.points == 30
        assert customer.tier_id is None

    def test_sticky_keeps_tier_below_lowest_threshold(self, app, db_session, outlet_a):
        sticky = make_engine(app, db_session, LOYALTY_TIER_POLICY="sticky")
        gold = sticky.loyalty.create_tier(outlet_a.id, {"name": "Gold", "min_points": 100})
        customer = sticky.loyalty.create_customer(outlet_a.id, name="Hana")
        sticky.loyalty.adjust(outlet_a.id, customer.id, "add", 150)

        sticky.loyalty.redeem(outlet_a.id, customer.id, 120)

        assert db_session.get(Customer, customer.id).tier_id == gold.id

    def test_sticky_keeps_tier_after_redeem(self, app, db_session, outlet_a, tiers):
        sticky = make_engine(app, db_session, LOYALTY_TIER_POLICY="sticky")
        customer = sticky.loyalty.create_customer(outlet_a.id, name="Hadi")
        sticky.loyalty.adjust(outlet_a.id, customer.id, "add", 600)
        assert db_session.get(Customer, customer.id).tier_id == tiers["platinum"].id

        sticky.loyalty.redeem(outlet_a.id, customer.id, 550)

        customer = db_session.get(Customer, customer.id)
        assert customer.points == 50
        assert customer.tier_id == tiers["platinum"].id

    def test_unknown_policy_rejected(self, app, db_session):
        with pytest.raises(ValueError):
            make_engine(app, db_session, LOYALTY_TIER_POLICY="lifetime")

    def test_deleting_tier_detaches_members(self, engine, db_session, outlet_a, tiers):
        customer = engine.loyalty.create_customer(outlet_a.id, name="Intan")
        engine.loyalty.adjust(outlet_a.id, customer.id, "add", 120)

        engine.loyalty.delete_tier(outlet_a.id, tiers["gold"].id)

        assert db_session.get(Customer, customer.id).tier_id is None
        assert [t.name for t in engine.loyalty.list_tiers(outlet_a.id)] == ["Silver", "Platinum"]


class TestReconcile:

    def test_balance_replays_from_history(self, engine, db_session, outlet_a):
        customer = engine.loyalty.create_customer(outlet_a.id, name="Kiki")
        engine.loyalty.adjust(outlet_a.id, customer.id, "add", 70)
        engine.loyalty.redeem(outlet_a.id, customer.id, 20)
        engine.loyalty.adjust(outlet_a.id, customer.id, "subtract", 5)

        customer = db_session.get(Customer, customer.id)
        row = engine.loyalty.reconcile_customer(customer)

        assert row == {"customer_id": customer.id, "points": 45, "replayed_points": 45, "drift": 0}
        assert engine.loyalty.reconcile_outlet(outlet_a.id) == []
