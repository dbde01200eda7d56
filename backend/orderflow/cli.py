# Overview: Flask CLI command groups for bootstrap, audits and maintenance.

# backend/orderflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Commissions:
# - python -m flask commissions backfill
#   Create missing partner earnings for delivered coupon orders.
#
# Inventory:
# - python -m flask inventory verify [--variant-id 7]
#   Replay the inventory log and compare with on-hand quantities.
#
# Carrier:
# - python -m flask carrier sync --order-id 12
#   Push an order to the carrier (create shipment + assign AWB).
# - python -m flask carrier refresh --order-id 12
#   Pull carrier tracking events for an order.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Variant
from .services import commission_service, inventory_service, carrier_service


@click.group('system')
def system_group():
    """Schema bootstrap for local and test databases."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables (use Alembic migrations for existing databases)."""
    db.create_all()
    click.echo("PASS Tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@with_appcontext
def reset_db(yes):
    """Drop and recreate every table. Orders, stock and the inventory log are lost."""
    if not yes:
        click.confirm("WARN Every order, stock level and ledger entry will be deleted. Continue?", abort=True)

    db.drop_all()
    db.create_all()
    click.echo(f"PASS Recreated {len(db.metadata.tables)} tables.")


@click.group('commissions')
def commissions_group():
    """Partner commission maintenance."""


@commissions_group.command('backfill')
@with_appcontext
def backfill_commissions_cli():
    result = commission_service.backfill_commissions()
    click.echo(
        f"PASS Processed {result['orders_processed']} order(s), "
        f"created {result['commissions_created']} earning(s)."
    )


@click.group('inventory')
def inventory_group():
    """Inventory ledger audits."""


@inventory_group.command('verify')
@click.option('--variant-id', type=int, default=None, help='Check a single variant')
@with_appcontext
def verify_inventory_cli(variant_id):
    """
    Replay inventory log entries per variant and compare with stored quantity.

    Exits with status 1 when any variant disagrees.
    """
    if variant_id is not None:
        ids = [variant_id]
    else:
        ids = [vid for (vid,) in db.session.query(Variant.id).order_by(Variant.id.asc()).all()]

    failures = 0
    for vid in ids:
        result = inventory_service.verify_variant(vid)
        if result["ok"]:
            continue
        failures += 1
        click.echo(
            f"FAIL variant {vid}: on_hand={result['on_hand']} replayed={result['replayed']}"
        )

    if failures:
        click.echo(f"FAIL {failures} of {len(ids)} variant(s) inconsistent.")
        raise SystemExit(1)
    click.echo(f"PASS {len(ids)} variant(s) consistent with the inventory log.")


@click.group('carrier')
def carrier_group():
    """Carrier sync commands."""


@carrier_group.command('sync')
@click.option('--order-id', type=int, required=True)
@with_appcontext
def carrier_sync_cli(order_id):
    if not carrier_service.carrier_enabled():
        click.echo("WARN CARRIER_ENABLED is off; nothing to do.")
        return
    ok = carrier_service.sync_order_to_carrier(order_id)
    click.echo("PASS Order synced." if ok else "FAIL Carrier sync failed; see logs.")


@carrier_group.command('refresh')
@click.option('--order-id', type=int, required=True)
@with_appcontext
def carrier_refresh_cli(order_id):
    added = carrier_service.refresh_tracking(order_id)
    click.echo(f"PASS {len(added)} new tracking event(s).")


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(commissions_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(carrier_group)
