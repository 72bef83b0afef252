# posengine/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the instance by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///posengine.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Seconds to wait on a busy/locked store before surfacing a retryable error
    DB_TIMEOUT_SECONDS = float(os.environ.get("DB_TIMEOUT_SECONDS", "10"))
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
    DB_RETRY_BACKOFF_SECONDS = float(os.environ.get("DB_RETRY_BACKOFF_SECONDS", "0.1"))

    # Sale processing policies
    TOLERATE_UNKNOWN_VARIANTS = _env_bool("TOLERATE_UNKNOWN_VARIANTS", True)
    STRICT_SALE_DEDUCTION = _env_bool("STRICT_SALE_DEDUCTION", True)

    # "last" (last-cost-wins) or "weighted_average"
    PURCHASE_COST_POLICY = os.environ.get("PURCHASE_COST_POLICY", "last")

    # "recalculate" or "sticky"
    LOYALTY_TIER_POLICY = os.environ.get("LOYALTY_TIER_POLICY", "recalculate")
    LOYALTY_DEFAULT_AMOUNT_PER_POINT = 1000
    LOYALTY_DEFAULT_POINTS_PER_AMOUNT = 1
    LOYALTY_DEFAULT_REDEMPTION_RATE = 100
    LOYALTY_DEFAULT_REDEMPTION_VALUE = 10000

    # token -> {"caller_id": ..., "outlet_ids": [...]} for the static resolver
    ACCESS_GRANTS: dict = {}

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    DB_TIMEOUT_SECONDS = 30
    DB_RETRY_BACKOFF_SECONDS = 0.01
    LOG_LEVEL = "DEBUG"
