# Overview: Flask CLI command groups for bootstrap, stock inspection and integrity checks.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Create a handful of demo products with initial stock.
#
# Stock inspection/repair:
# - python -m flask stock adjust 1 --delta -2 --reason "damaged"
# - python -m flask stock adjust 1 --target 40
#   Apply a stock change through the same path as the API.
# - python -m flask stock history 1 --limit 20
#   Show the most recent history entries for a product.
# - python -m flask stock verify [--product-id 1]
#   Replay history and compare against stored stock (exit code 1 on mismatch).
# - python -m flask stock report
#   Inventory totals and low-stock products.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import StockLedgerError, InvalidState
from .models import Product, StockReason
from .services import metrics_service, stock_service
from .services.products_service import create_product


DEMO_PRODUCTS = [
    {"name": "Espresso Beans 1kg", "product_type": "COFFEE", "unit": "bag", "price_cents": 2450,
     "stock_quantity": 40, "min_stock": 10, "max_stock": 100},
    {"name": "Oat Milk 1L", "product_type": "DAIRY_ALT", "unit": "carton", "price_cents": 329,
     "stock_quantity": 8, "min_stock": 12, "max_stock": 60},
    {"name": "Paper Cups 12oz", "product_type": "SUPPLIES", "unit": "sleeve", "price_cents": 899,
     "stock_quantity": 0, "min_stock": 5, "max_stock": 50},
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for sample data.")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Create demo products (skips names that already exist)."""
    created = 0
    for item in DEMO_PRODUCTS:
        if db.session.query(Product).filter_by(name=item["name"]).first():
            click.echo(f"SKIP  {item['name']} already exists")
            continue
        product = create_product(dict(item), actor="seed-demo")
        created += 1
        click.echo(f"PASS Created {product.name} (ID: {product.id}, stock: {product.stock_quantity})")
    click.echo(f"DONE {created} demo product(s) created")


@click.group('stock')
def stock_group():
    """Stock inspection and adjustment commands."""


@stock_group.command('adjust')
@click.argument('product_id', type=int)
@click.option('--delta', type=int, default=None, help='Signed change to apply')
@click.option('--target', type=int, default=None, help='Absolute stock level to set')
@click.option('--reason', default=StockReason.MANUAL_ADJUSTMENT, show_default=True)
@click.option('--actor', default='cli', show_default=True)
@click.option('--note', default=None)
@with_appcontext
def adjust_stock(product_id, delta, target, reason, actor, note):
    """Apply a stock change to one product."""
    try:
        result = stock_service.apply_stock_delta(
            product_id, delta=delta, target=target, reason=reason, actor=actor, note=note
        )
    except StockLedgerError as e:
        raise click.ClickException(f"{e.kind}: {e.message}")

    click.echo(
        f"PASS Product {result.product_id}: {result.previous_quantity} -> {result.new_quantity} "
        f"({result.delta:+d}), trend {result.stock_trend:.1f}%"
    )


@stock_group.command('history')
@click.argument('product_id', type=int)
@click.option('--limit', type=int, default=None, help='Max entries (clamped server-side)')
@with_appcontext
def stock_history(product_id, limit):
    """Show stock history for a product, most recent first."""
    try:
        entries = stock_service.get_stock_history(product_id, limit=limit)
    except StockLedgerError as e:
        raise click.ClickException(f"{e.kind}: {e.message}")

    if not entries:
        click.echo("No history entries.")
        return

    for e in entries:
        click.echo(
            f"{e.occurred_at:%Y-%m-%d %H:%M:%S}  {e.previous_quantity:>6} -> {e.new_quantity:<6} "
            f"({e.delta:+d})  {e.reason:<18} {e.actor or '-'}"
        )


@stock_group.command('verify')
@click.option('--product-id', type=int, default=None, help='Only verify one product')
@with_appcontext
def verify_stock(product_id):
    """Replay stock history and compare with stored quantities."""
    if product_id is not None:
        product_ids = [product_id]
    else:
        product_ids = [pid for (pid,) in db.session.query(Product.id).order_by(Product.id).all()]

    failures = 0
    for pid in product_ids:
        try:
            result = stock_service.verify_history(pid)
        except InvalidState as e:
            failures += 1
            click.echo(f"FAIL {e.message}")
            continue
        except StockLedgerError as e:
            raise click.ClickException(f"{e.kind}: {e.message}")
        click.echo(f"PASS Product {pid}: stock {result['stock_quantity']} matches history")

    if failures:
        raise click.ClickException(f"{failures} product(s) failed history verification")
    click.echo(f"DONE {len(product_ids)} product(s) verified")


@stock_group.command('report')
@with_appcontext
def stock_report():
    """Inventory totals and low-stock products."""
    stats = metrics_service.inventory_stats()
    click.echo(f"Products:        {stats['total_products']}")
    click.echo(f"Inventory value: {stats['total_value_cents'] / 100:.2f}")
    click.echo(f"Low stock:       {stats['low_stock_count']}")
    click.echo(f"Out of stock:    {stats['out_of_stock_count']}")

    low = metrics_service.list_low_stock_products()
    if low:
        click.echo("")
        click.echo("Needs restock:")
        for p in low:
            click.echo(f"  [{p.id}] {p.name}: {p.stock_quantity}/{p.min_stock} ({metrics_service.stock_status(p)})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
