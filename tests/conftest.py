"""
Pytest fixtures for posengine tests.

Provides the in-memory application, a clean database per test, seeded
catalog rows and authenticated request headers.
"""

import pytest

from posengine import create_app
from posengine.access import EXTENSION_KEY, StaticAccessResolver
from posengine.config import TestingConfig
from posengine.errors import InternalError
from posengine.extensions import db
from posengine.services import build_engine
from posengine.services.catalog_service import (
    create_outlet,
    create_product,
    create_supplier,
    create_variant,
)

TOKEN_A = "token-cashier-a"
TOKEN_B = "token-cashier-b"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestingConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def engine(app, db_session):
    """Engine wired the way requests get it."""
    return build_engine(db_session, app.config)


def make_engine(app, session, **overrides):
    """Engine with config overrides (policy switches)."""
    config = dict(app.config)
    config.update(overrides)
    return build_engine(session, config)


@pytest.fixture(scope='function')
def outlet_a(db_session):
    """Create Outlet A (first tenant)."""
    outlet = create_outlet(db_session, name="Outlet A - Downtown", code="OUT-A")
    db_session.commit()
    return outlet


@pytest.fixture(scope='function')
def outlet_b(db_session):
    """Create Outlet B (second tenant)."""
    outlet = create_outlet(db_session, name="Outlet B - Airport", code="OUT-B")
    db_session.commit()
    return outlet


@pytest.fixture(scope='function')
def product_a(db_session, outlet_a):
    """Stock-tracked product in Outlet A priced at 10000."""
    product = create_product(
        db_session,
        outlet_id=outlet_a.id,
        name="Kopi Susu",
        sku="KS-001",
        price=10000,
        cost_price=6000,
        category_id=1,
    )
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_b(db_session, outlet_a):
    """Second stock-tracked product in Outlet A priced at 5000."""
    product = create_product(
        db_session,
        outlet_id=outlet_a.id,
        name="Roti Bakar",
        sku="RB-001",
        price=5000,
        cost_price=2000,
        category_id=2,
    )
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def service_product(db_session, outlet_a):
    """Product that does not track stock."""
    product = create_product(
        db_session,
        outlet_id=outlet_a.id,
        name="Gift Wrapping",
        sku="SVC-001",
        price=2000,
        track_stock=False,
    )
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def variant_large(db_session, product_a):
    variant = create_variant(db_session, product=product_a, name="Large", price_adjustment=3000)
    db_session.commit()
    return variant


@pytest.fixture(scope='function')
def supplier_a(db_session, outlet_a):
    supplier = create_supplier(db_session, outlet_id=outlet_a.id, name="PT Sumber Kopi", phone="021-555")
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def stock_in(engine):
    """Put stock on hand through the ledger: stock_in(outlet, product, qty, variant=None)."""
    counter = {"n": 0}

    def _stock_in(outlet, product, quantity, variant=None):
        counter["n"] += 1
        return engine.ledger.adjust_manual(
            outlet_id=outlet.id,
            product_id=product.id,
            variant_id=variant.id if variant else None,
            delta=quantity,
            idempotency_key=f"seed-{counter['n']}",
            note="test seed",
        )

    return _stock_in


@pytest.fixture(scope='function')
def failing_ledger(engine, monkeypatch):
    """Make the ledger raise InternalError on its nth apply_adjustment call (1-based)."""
    real_apply = engine.ledger.apply_adjustment

    def _arm(nth):
        calls = {"n": 0}

        def _apply(**kwargs):
            calls["n"] += 1
            if calls["n"] == nth:
                raise InternalError("Store went away")
            return real_apply(**kwargs)

        monkeypatch.setattr(engine.ledger, "apply_adjustment", _apply)
        return calls

    def _disarm():
        monkeypatch.setattr(engine.ledger, "apply_adjustment", real_apply)

    _arm.disarm = _disarm
    return _arm


@pytest.fixture(scope='function')
def grants(app, outlet_a, outlet_b):
    """Cashier A may act on Outlet A only; cashier B on Outlet B only."""
    previous = app.extensions[EXTENSION_KEY]
    app.extensions[EXTENSION_KEY] = StaticAccessResolver({
        TOKEN_A: {"caller_id": "cashier-a", "outlet_ids": [outlet_a.id]},
        TOKEN_B: {"caller_id": "cashier-b", "outlet_ids": [outlet_b.id]},
    })
    yield
    app.extensions[EXTENSION_KEY] = previous


@pytest.fixture(scope='function')
def auth_headers(grants, outlet_a):
    """Headers for cashier A acting on Outlet A."""
    return {
        "Authorization": f"Bearer {TOKEN_A}",
        "X-Outlet-Id": str(outlet_a.id),
    }
