# Overview: Application factory.

from __future__ import annotations

import logging

from flask import Flask, current_app, jsonify
from sqlalchemy.exc import OperationalError
from werkzeug.exceptions import HTTPException

from .access import EXTENSION_KEY, AccessResolver, StaticAccessResolver
from .config import Config
from .errors import InternalError, PosError
from .extensions import db, install_sqlite_transaction_hooks, migrate


def _load_config(app: Flask, config) -> None:
    app.config.from_object(Config)
    if config is None:
        return
    if isinstance(config, dict):
        app.config.update(config)
    else:
        app.config.from_object(config)


def _configure_engine_options(app: Flask) -> None:
    uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if not uri.startswith("sqlite"):
        return
    options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
    connect_args = dict(options.get("connect_args") or {})
    connect_args.setdefault("timeout", app.config["DB_TIMEOUT_SECONDS"])
    connect_args.setdefault("check_same_thread", False)
    options["connect_args"] = connect_args
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = options


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(PosError)
    def handle_pos_error(err: PosError):
        db.session.rollback()
        if err.http_status >= 500:
            current_app.logger.error("%s: %s %s", err.code, err.message, err.details)
        return jsonify(err.to_dict()), err.http_status

    @app.errorhandler(OperationalError)
    def handle_operational_error(err: OperationalError):
        db.session.rollback()
        current_app.logger.exception("Storage unavailable")
        wrapped = InternalError("Storage temporarily unavailable")
        return jsonify(wrapped.to_dict()), wrapped.http_status

    @app.errorhandler(HTTPException)
    def handle_http_error(err: HTTPException):
        return jsonify({
            "error": err.description,
            "code": err.name.upper().replace(" ", "_"),
            "details": {},
            "retryable": False,
        }), err.code

    @app.errorhandler(Exception)
    def handle_unexpected(err: Exception):
        db.session.rollback()
        current_app.logger.exception("Unhandled error")
        return jsonify({
            "error": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {},
            "retryable": False,
        }), 500


def create_app(config=None, access_resolver: AccessResolver | None = None) -> Flask:
    """
    Build the application.

    config: a config class/object or a dict of overrides applied on top of
    Config. access_resolver: defaults to a StaticAccessResolver over
    ACCESS_GRANTS.
    """
    app = Flask(__name__, instance_relative_config=True)
    _load_config(app, config)
    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))
    _configure_engine_options(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    with app.app_context():
        if db.engine.dialect.name == "sqlite":
            install_sqlite_transaction_hooks(db.engine)

    app.extensions[EXTENSION_KEY] = access_resolver or StaticAccessResolver(app.config.get("ACCESS_GRANTS"))

    # Register blueprints
    from .routes.system import system_bp
    from .routes.catalog import catalog_bp
    from .routes.inventory import inventory_bp
    from .routes.sales import sales_bp
    from .routes.purchase_orders import purchase_orders_bp
    from .routes.opname import opname_bp
    from .routes.loyalty import loyalty_bp
    from .routes.audit import audit_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(purchase_orders_bp)
    app.register_blueprint(opname_bp)
    app.register_blueprint(loyalty_bp)
    app.register_blueprint(audit_bp)

    register_error_handlers(app)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
