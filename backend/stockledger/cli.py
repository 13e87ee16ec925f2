# Overview: Flask CLI command groups for bootstrap, stock inspection, and maintenance.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migration-managed databases).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Idempotent: create a handful of hardware-store products with opening stock.
#
# Stock inspection:
# - python -m flask stock low
#   List active products at or below their minimum stock.
# - python -m flask stock reconcile [--product-id 3]
#   Compare current_stock with the movement trail; exits 1 on any mismatch.
#
# Quotations:
# - python -m flask quotations expire
#   Expire draft/sent quotations past their validity date.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import NotFoundError
from .models import Product
from .services import quotation_service, reporting_service


DEMO_PRODUCTS = [
    # reference, name, unit, purchase, selling, stock, min
    ("VIS-4X40", "Wood screws 4x40 (box of 200)", "box", 350, 690, 40, 10),
    ("CHV-8", "Wall plugs 8mm (bag of 50)", "bag", 120, 290, 25, 10),
    ("PEINT-BL-10", "White acrylic paint 10L", "can", 3200, 5490, 6, 3),
    ("MART-500", "Claw hammer 500g", "piece", 780, 1490, 4, 5),
    ("MET-5M", "Tape measure 5m", "piece", 410, 899, 12, 4),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the stock movement trail!
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
    """
    Create demo products with an opening stock balance.

    Opening stock is the value a product row is created with; existing
    products (matched by reference) are left untouched.
    """
    created = 0
    for reference, name, unit, purchase, selling, stock, min_stock in DEMO_PRODUCTS:
        if db.session.query(Product).filter_by(reference=reference).first():
            click.echo(f"SKIP {reference} already exists")
            continue
        db.session.add(Product(
            reference=reference,
            name=name,
            unit=unit,
            purchase_price_cents=purchase,
            selling_price_cents=selling,
            current_stock=stock,
            min_stock=min_stock,
        ))
        created += 1
    db.session.commit()
    click.echo(f"PASS Created {created} demo product(s).")


@click.group('stock')
def stock_group():
    """Stock inspection commands."""


@stock_group.command('low')
@with_appcontext
def low_stock_cli():
    """List active products at or below their minimum stock."""
    products = reporting_service.get_low_stock_products()
    if not products:
        click.echo("No products below minimum stock.")
        return

    click.echo(f"{'ID':<6} {'Reference':<14} {'Stock':>6} {'Min':>6}  Name")
    for p in products:
        click.echo(f"{p.id:<6} {(p.reference or '-'):<14} {p.current_stock:>6} {p.min_stock:>6}  {p.name}")


@stock_group.command('reconcile')
@click.option('--product-id', type=int, default=None, help='Only check this product')
@with_appcontext
@click.pass_context
def reconcile_cli(ctx, product_id):
    """
    Check current_stock against opening balance + signed movement sum.

    Exits with status 1 if any product is inconsistent.
    """
    if product_id is not None:
        product_ids = [product_id]
    else:
        product_ids = [pid for (pid,) in db.session.query(Product.id).order_by(Product.id).all()]

    mismatches = 0
    for pid in product_ids:
        try:
            report = reporting_service.get_stock_reconciliation(pid)
        except NotFoundError as e:
            raise click.ClickException(e.message)
        if report["is_consistent"]:
            click.echo(f"PASS product {pid}: {report['current_stock']} ({report['movement_count']} movements)")
        else:
            mismatches += 1
            click.echo(
                f"FAIL product {pid}: current {report['current_stock']} "
                f"!= expected {report['expected_stock']}"
            )

    if mismatches:
        click.echo(f"{mismatches} product(s) inconsistent.")
        ctx.exit(1)
    click.echo("All products consistent.")


@click.group('quotations')
def quotations_group():
    """Quotation maintenance commands."""


@quotations_group.command('expire')
@with_appcontext
def expire_quotations_cli():
    """Expire draft/sent quotations past their validity date."""
    count = quotation_service.mark_expired_quotations()
    click.echo(f"Expired {count} quotation(s).")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(quotations_group)
