# Overview: Flask CLI command groups for bootstrap, ledger inspection, sequences, and maintenance.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# - flask --app stockledger <group> <command> [options]
#
# System bootstrap:
# - flask --app stockledger system init-db
#   Create all tables (use `flask db upgrade` for migrated databases).
# - flask --app stockledger system seed-demo
#   Idempotently create a demo business, two locations, one product and opening stock.
#
# Ledger inspection/repair:
# - flask --app stockledger ledger reconcile --location-id 1 [--drifted-only] [--fail-on-drift]
# - flask --app stockledger ledger reconcile --business-id 1
#   Compare cached balances with the ledger. Never writes.
# - flask --app stockledger ledger correct 3 1 --reason "cycle count" [--target 12]
#   Record an explicit correction (default: resync cache to the ledger).
# - flask --app stockledger ledger history 3 1 [--limit 20]
#   Show the newest ledger entries of one (variation, location).
#
# Sequences:
# - flask --app stockledger sequences next --business-id 1 --location-id 1 [--type invoice] [--date 2025-01-01]
# - flask --app stockledger sequences reset --business-id 1 --location-id 1 [--type invoice] [--date ...] [--value 0]
#
# Maintenance:
# - flask --app stockledger maintenance cleanup-idempotency-keys [--older-than-hours 72]

import click
from flask.cli import with_appcontext

from .errors import StockLedgerError
from .extensions import db
from .models import Business, BusinessLocation, Product, ProductVariation
from .quantities import quantity_to_str
from .services import (
    balance_service,
    ledger_service,
    maintenance_service,
    reconciliation_service,
    sequence_service,
)
from .services.concurrency import atomic
from .time_utils import parse_iso_date, to_utc_z


def _fail(exc: StockLedgerError):
    db.session.rollback()
    click.echo(f"FAIL {exc.message}")
    raise click.exceptions.Exit(1)


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Create demo data. Safe to run repeatedly."""
    business = db.session.query(Business).filter_by(code="DEMO").first()
    if business:
        click.echo(f"WARN Demo business already exists (ID: {business.id}), skipping...")
        return

    try:
        with atomic():
            business = Business(name="Demo Retail", code="DEMO")
            db.session.add(business)
            db.session.flush()

            store = BusinessLocation(business_id=business.id, name="Main Store", code="MAIN")
            warehouse = BusinessLocation(business_id=business.id, name="Warehouse", code="WH")
            db.session.add_all([store, warehouse])

            product = Product(business_id=business.id, name="Demo T-Shirt", alert_quantity=5)
            db.session.add(product)
            db.session.flush()

            variation = ProductVariation(business_id=business.id, product_id=product.id, name="Demo T-Shirt / M", sku="TS-M")
            db.session.add(variation)
            db.session.flush()

            ledger_service.set_opening_stock(
                business_id=business.id,
                variation_id=variation.id,
                location_id=warehouse.id,
                quantity=100,
                note="demo opening stock",
            )
    except StockLedgerError as e:
        _fail(e)

    click.echo(f"PASS Created business: {business.name} (ID: {business.id})")
    click.echo(f"PASS Locations: {store.name} (ID: {store.id}), {warehouse.name} (ID: {warehouse.id})")
    click.echo(f"PASS Variation: {variation.name} (ID: {variation.id}) with 100 units at {warehouse.name}")


# =============================================================================
# LEDGER
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Ledger inspection and correction commands."""


@ledger_group.command('reconcile')
@click.option('--location-id', type=int, default=None)
@click.option('--business-id', type=int, default=None)
@click.option('--drifted-only', is_flag=True, help='Only list drifted balances')
@click.option('--fail-on-drift', is_flag=True, help='Exit with status 2 when any balance drifted')
@with_appcontext
def reconcile_cli(location_id, business_id, drifted_only, fail_on_drift):
    """Compare cached balances with the ledger."""
    if (location_id is None) == (business_id is None):
        raise click.UsageError("Give exactly one of --location-id or --business-id")

    try:
        if location_id is not None:
            report = reconciliation_service.reconcile_location(location_id)
        else:
            report = reconciliation_service.reconcile_business(business_id)
    except StockLedgerError as e:
        _fail(e)
    finally:
        db.session.rollback()

    rows = report.drifted if drifted_only else report.results
    click.echo("\n" + "=" * 72)
    click.echo(f"{'Variation':<10} {'Location':<9} {'Cached':>14} {'Derived':>14} {'Variance':>12} {'Status'}")
    click.echo("=" * 72)
    for r in rows:
        click.echo(
            f"{r.product_variation_id:<10} {r.location_id:<9} "
            f"{quantity_to_str(r.cached):>14} {quantity_to_str(r.derived):>14} "
            f"{quantity_to_str(r.variance):>12} {r.status}"
        )
    click.echo("=" * 72)

    summary = report.summary()
    click.echo(
        f"Checked {summary['checked']}: {summary['ok']} ok, {summary['drifted']} drifted "
        f"({summary['overages']} over, {summary['shortages']} short), "
        f"{summary['requires_investigation']} require investigation\n"
    )
    if fail_on_drift and summary["drifted"]:
        raise click.exceptions.Exit(2)


@ledger_group.command('correct')
@click.argument('variation_id', type=int)
@click.argument('location_id', type=int)
@click.option('--reason', required=True, help='Why the correction is made')
@click.option('--target', default=None, help='Physical count to set (default: ledger-derived balance)')
@click.option('--user-id', type=int, default=None)
@with_appcontext
def correct_cli(variation_id, location_id, reason, target, user_id):
    """Record an explicit correction for one (variation, location)."""
    try:
        with atomic():
            correction = reconciliation_service.correct_drift(
                variation_id,
                location_id,
                user_id=user_id,
                reason=reason,
                target_quantity=target,
            )
    except StockLedgerError as e:
        _fail(e)

    click.echo(
        f"PASS Correction {correction.id}: cached {quantity_to_str(correction.cached_quantity)}, "
        f"ledger {quantity_to_str(correction.derived_quantity)}, now {quantity_to_str(correction.target_quantity)} "
        f"(entry {correction.ledger_entry_id})"
    )


@ledger_group.command('history')
@click.argument('variation_id', type=int)
@click.argument('location_id', type=int)
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def history_cli(variation_id, location_id, limit):
    """Newest ledger entries first."""
    try:
        rows, _ = ledger_service.list_entries(variation_id=variation_id, location_id=location_id, limit=limit)
    except StockLedgerError as e:
        _fail(e)

    if not rows:
        click.echo("No ledger entries found.")
        return

    click.echo(f"Cached balance: {quantity_to_str(balance_service.get_balance(variation_id, location_id))}")
    click.echo("=" * 88)
    click.echo(f"{'ID':<7} {'Occurred':<21} {'Type':<22} {'Change':>12} {'After':>12} {'Reference'}")
    click.echo("=" * 88)
    for e in rows:
        ref = f"{e.reference_type}:{e.reference_id}" if e.reference_type else "-"
        click.echo(
            f"{e.id:<7} {to_utc_z(e.occurred_at):<21} {e.transaction_type:<22} "
            f"{quantity_to_str(e.quantity_change):>12} {quantity_to_str(e.balance_after):>12} {ref}"
        )
    db.session.rollback()


# =============================================================================
# SEQUENCES
# =============================================================================

@click.group('sequences')
def sequences_group():
    """Document sequence commands."""


def _scope_options(f):
    f = click.option('--date', 'scope_date', default=None, help='Scope date YYYY-MM-DD (default: today UTC)')(f)
    f = click.option(
        '--type', 'sequence_type',
        type=click.Choice(sorted(sequence_service.SEQUENCE_TYPES)),
        default=sequence_service.SEQUENCE_INVOICE,
        show_default=True,
    )(f)
    f = click.option('--location-id', type=int, required=True)(f)
    f = click.option('--business-id', type=int, required=True)(f)
    return f


def _parse_scope_date(value):
    try:
        return parse_iso_date(value)
    except ValueError:
        raise click.BadParameter("must be YYYY-MM-DD", param_hint="--date")


@sequences_group.command('next')
@_scope_options
@with_appcontext
def next_sequence_cli(business_id, location_id, sequence_type, scope_date):
    """Allocate and print the next value."""
    try:
        with atomic():
            value = sequence_service.next_sequence(
                business_id, location_id, _parse_scope_date(scope_date), sequence_type
            )
    except StockLedgerError as e:
        _fail(e)
    click.echo(value)


@sequences_group.command('reset')
@_scope_options
@click.option('--value', type=int, default=0, show_default=True, help='Next allocation returns value + 1')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_sequence_cli(business_id, location_id, sequence_type, scope_date, value, yes):
    """Administrative reset of one counter."""
    if not yes:
        click.confirm("WARN Resetting a sequence can produce duplicate document numbers. Continue?", abort=True)
    try:
        with atomic():
            counter = sequence_service.reset_sequence(
                business_id, location_id, _parse_scope_date(scope_date), sequence_type, value=value
            )
    except StockLedgerError as e:
        _fail(e)
    click.echo(
        f"PASS {counter.sequence_type} sequence for location {counter.location_id} on "
        f"{counter.scope_date.isoformat()} reset to {counter.current_value}"
    )


# =============================================================================
# MAINTENANCE
# =============================================================================

@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-idempotency-keys')
@click.option('--older-than-hours', type=int, default=None, help='Default: IDEMPOTENCY_KEY_RETENTION_HOURS')
@with_appcontext
def cleanup_idempotency_keys_cli(older_than_hours):
    """Delete idempotency keys past the retention window."""
    deleted = maintenance_service.cleanup_idempotency_keys(older_than_hours=older_than_hours)
    click.echo(f"Deleted {deleted} idempotency keys.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(sequences_group)
    app.cli.add_command(maintenance_group)
