# Overview: Flask CLI command groups for database bootstrap, stock checks and reports.

# backend/poscore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to poscore (PowerShell: $env:FLASK_APP="poscore").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (use `flask db upgrade` for managed schemas).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Inventory:
# - python -m flask inventory low-stock [--category Beverages]
#   List products at or below their reorder threshold.
# - python -m flask inventory verify
#   Replay the ledger and report products whose cached stock disagrees.
# - python -m flask inventory history 12 --limit 20
#   Show the most recent ledger entries for a product.
#
# Reports:
# - python -m flask reports sales --start 2026-01-01 --end 2026-01-31
# - python -m flask reports valuation
# - python -m flask reports financial --start 2026-01-01 --end 2026-01-31

import json

import click
from flask.cli import with_appcontext

from .core import get_core
from .errors import PosError
from .extensions import db


def _echo_json(payload) -> None:
    click.echo(json.dumps(payload, indent=2, sort_keys=True))


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database schema created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the inventory and financial ledgers!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()
    click.echo("BUILD  Recreating schema...")
    db.create_all()
    click.echo("PASS Database reset complete")


@click.group('inventory')
def inventory_group():
    """Stock inspection commands."""


@inventory_group.command('low-stock')
@click.option('--category', default=None, help='Only products in this category')
@with_appcontext
def low_stock(category):
    """List products at or below their reorder threshold."""
    core = get_core()
    predicate = None
    if category is not None:
        predicate = lambda product: product.category == category  # noqa: E731

    found = 0
    for product_id in core.ledger.low_stock(predicate):
        product = core.catalog.get(product_id)
        click.echo(
            f"{product.id:>6}  {product.sku:<20} {product.name:<30} "
            f"stock={product.stock_quantity} threshold={product.reorder_threshold}"
        )
        found += 1

    if not found:
        click.echo("PASS No products below their reorder threshold")


@inventory_group.command('verify')
@with_appcontext
def verify_ledger():
    """Check every cached stock counter against its ledger replay."""
    mismatches = get_core().ledger.verify()
    if not mismatches:
        click.echo("PASS Stock counters match the inventory ledger")
        return

    for row in mismatches:
        click.echo(
            f"FAIL product {row['product_id']}: cached={row['stock_quantity']} "
            f"replayed={row['replayed_quantity']}"
        )
    raise SystemExit(1)


@inventory_group.command('history')
@click.argument('product_id', type=int)
@click.option('--limit', default=20, show_default=True, help='Number of entries')
@with_appcontext
def history(product_id, limit):
    """Most recent ledger entries for a product."""
    try:
        entries = get_core().ledger.list_transactions(product_id, limit=limit)
    except PosError as exc:
        raise click.ClickException(str(exc))

    for tx in entries:
        click.echo(
            f"{tx.id:>6}  {tx.kind:<10} {tx.quantity_delta:>+6}  "
            f"balance={tx.balance_after:<6} order={tx.order_id or '-'}  {tx.note or ''}"
        )


@click.group('reports')
def reports_group():
    """Read-only financial and stock reports (JSON output)."""


@reports_group.command('sales')
@click.option('--start', default=None, help='ISO date or datetime (inclusive)')
@click.option('--end', default=None, help='ISO date or datetime (inclusive)')
@with_appcontext
def sales_report(start, end):
    try:
        _echo_json(get_core().reports.sales_report(start, end))
    except PosError as exc:
        raise click.ClickException(str(exc))


@reports_group.command('valuation')
@with_appcontext
def valuation_report():
    _echo_json(get_core().reports.inventory_valuation())


@reports_group.command('financial')
@click.option('--start', default=None, help='ISO date or datetime (inclusive)')
@click.option('--end', default=None, help='ISO date or datetime (inclusive)')
@with_appcontext
def financial_report(start, end):
    try:
        _echo_json(get_core().reports.financial_report(start, end))
    except PosError as exc:
        raise click.ClickException(str(exc))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(reports_group)
