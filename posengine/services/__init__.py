# Overview: Composition root wiring the engine components to one storage session.

from __future__ import annotations

from dataclasses import dataclass

from .loyalty_service import LoyaltyEngine
from .opname_service import OpnameReconciler
from .purchase_order_service import PurchaseOrderLifecycle
from .sale_service import SaleProcessor
from .stock_ledger import StockLedger


@dataclass
class Engine:
    ledger: StockLedger
    loyalty: LoyaltyEngine
    sales: SaleProcessor
    purchase_orders: PurchaseOrderLifecycle
    opname: OpnameReconciler


def build_engine(session, config) -> Engine:
    """
    Construct every component around the given session.

    config is any mapping with the application's config keys (Flask's
    app.config in production, a plain dict in tests). The caller owns the
    session's lifecycle.
    """
    retry = {
        "retry_attempts": config.get("DB_RETRY_ATTEMPTS", 3),
        "retry_backoff": config.get("DB_RETRY_BACKOFF_SECONDS", 0.1),
    }
    ledger = StockLedger(session, **retry)
    loyalty = LoyaltyEngine(
        session,
        tier_policy=config.get("LOYALTY_TIER_POLICY", "recalculate"),
        defaults={
            "amount_per_point": config.get("LOYALTY_DEFAULT_AMOUNT_PER_POINT", 1000),
            "points_per_amount": config.get("LOYALTY_DEFAULT_POINTS_PER_AMOUNT", 1),
            "redemption_rate": config.get("LOYALTY_DEFAULT_REDEMPTION_RATE", 100),
            "redemption_value": config.get("LOYALTY_DEFAULT_REDEMPTION_VALUE", 10000),
            "is_enabled": True,
        },
        **retry,
    )
    return Engine(
        ledger=ledger,
        loyalty=loyalty,
        sales=SaleProcessor(
            session,
            ledger,
            loyalty,
            tolerate_unknown_variants=config.get("TOLERATE_UNKNOWN_VARIANTS", True),
            strict_deduction=config.get("STRICT_SALE_DEDUCTION", True),
            **retry,
        ),
        purchase_orders=PurchaseOrderLifecycle(
            session,
            ledger,
            cost_policy=config.get("PURCHASE_COST_POLICY", "last"),
            **retry,
        ),
        opname=OpnameReconciler(session, ledger, **retry),
    )
