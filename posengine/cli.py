# Overview: Flask CLI commands for bootstrap and ledger reconciliation.

"""
posengine CLI Commands

USAGE:
    flask --app posengine posengine init-db
    flask --app posengine posengine create-outlet --name "Main Outlet"
    flask --app posengine posengine reconcile-stock --outlet-id 1
    flask --app posengine posengine reconcile-points --outlet-id 1

Reconciliation commands replay the append-only ledgers (stock adjustments,
point transactions) and report every row whose cached balance disagrees.
They only read; the exit status is 1 when drift was found.
"""

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import NotFound
from .extensions import db
from .services import build_engine
from .services.catalog_service import create_outlet, get_outlet


def _require_outlet(outlet_id: int) -> None:
    try:
        get_outlet(db.session, outlet_id)
    except NotFound as exc:
        raise click.ClickException(f"{exc.message}: {outlet_id}")


@click.group("posengine")
def posengine_group():
    """Inventory and transaction engine commands."""


@posengine_group.command("init-db")
@with_appcontext
def init_db():
    """Create all tables (development; use `flask db upgrade` in production)."""
    db.create_all()
    click.echo("PASS Database schema created.")


@posengine_group.command("create-outlet")
@click.option("--name", required=True, help="Outlet name")
@click.option("--code", default=None, help="Optional unique outlet code")
@with_appcontext
def create_outlet_command(name, code):
    outlet = create_outlet(db.session, name=name, code=code)
    db.session.commit()
    click.echo(f"PASS Created outlet: {outlet.name} (ID: {outlet.id})")


@posengine_group.command("reconcile-stock")
@click.option("--outlet-id", type=int, required=True, help="Outlet to reconcile")
@with_appcontext
def reconcile_stock(outlet_id):
    """Compare every stock item's quantity with the replay of its adjustments."""
    _require_outlet(outlet_id)
    ledger = build_engine(db.session, current_app.config).ledger
    mismatches = ledger.reconcile_outlet(outlet_id)
    db.session.rollback()
    if not mismatches:
        click.echo(f"PASS Stock ledger consistent for outlet {outlet_id}.")
        return
    for row in mismatches:
        click.echo(
            f"FAIL item {row['stock_item_id']} (product {row['product_id']}, variant {row['variant_id']}): "
            f"stored={row['quantity']} replayed={row['replayed_quantity']} drift={row['drift']}"
        )
    raise SystemExit(1)


@posengine_group.command("reconcile-points")
@click.option("--outlet-id", type=int, required=True, help="Outlet to reconcile")
@with_appcontext
def reconcile_points(outlet_id):
    """Compare every customer's points with the sum of their point transactions."""
    _require_outlet(outlet_id)
    loyalty = build_engine(db.session, current_app.config).loyalty
    mismatches = loyalty.reconcile_outlet(outlet_id)
    db.session.rollback()
    if not mismatches:
        click.echo(f"PASS Point ledger consistent for outlet {outlet_id}.")
        return
    for row in mismatches:
        click.echo(
            f"FAIL customer {row['customer_id']}: stored={row['points']} "
            f"replayed={row['replayed_points']} drift={row['drift']}"
        )
    raise SystemExit(1)


def register_commands(app):
    app.cli.add_command(posengine_group)
