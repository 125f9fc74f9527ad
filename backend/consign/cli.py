# Overview: Flask CLI command groups for bootstrap, cut-off operations and reliability inspection.

# backend/consign/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migration-managed databases).
# - python -m flask system seed-demo
#   Create a demo store (owner 1) with one approved product for supplier 2.
#
# Cut-off operations:
# - python -m flask cutoff sweep [--now 2024-01-15T04:31:00Z]
#   Cancel drafts past their store's effective cut-off.
# - python -m flask cutoff status --store-id 1
#   Show cut-off time, local time and pending drafts for a store.
# - python -m flask cutoff warn [--now ...]
#   Send pre-cutoff warnings to suppliers with drafts.
#
# Reliability:
# - python -m flask reliability show --store-id 1
#   Owner report of supplier reliability, best first.
# - python -m flask reliability no-show --supplier-id 2 --store-id 1 --actor-id 1
#   Record a supplier no-show.

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import ConsignError
from .extensions import db
from .models import Store
from .models.catalog import PRODUCT_STATUS_APPROVED
from .services import catalog_service, cutoff_service, reliability_service, store_service
from .time_utils import parse_iso_datetime


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created")


@system_group.command('seed-demo')
@click.option('--owner-id', type=int, default=1, show_default=True, help='Owner user id')
@click.option('--supplier-id', type=int, default=2, show_default=True, help='Supplier user id')
@with_appcontext
def seed_demo(owner_id, supplier_id):
    """Create a demo store and an approved product (idempotent)."""
    store = db.session.query(Store).filter_by(slug="demo-lapak").first()
    if store:
        click.echo(f"SKIP Demo store already exists (ID: {store.id})")
        return

    store = store_service.create_store(
        owner_id=owner_id,
        name="Demo Lapak",
        slug="demo-lapak",
        timezone=current_app.config.get("DEFAULT_STORE_TIMEZONE"),
    )
    product = catalog_service.create_product(
        store_id=store.id,
        supplier_id=supplier_id,
        name="Kue Lapis",
        price_buy=1000,
        price_sell=1500,
        status=PRODUCT_STATUS_APPROVED,
    )
    click.echo(f"PASS Created store: {store.name} (ID: {store.id}, cutoff {store.cutoff_time})")
    click.echo(f"PASS Created product: {product.name} (ID: {product.id}) for supplier {supplier_id}")


def _parse_now(value):
    if not value:
        return None
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise click.BadParameter(f"'{value}' is not an ISO-8601 datetime", param_hint="--now")


@click.group('cutoff')
def cutoff_group():
    """Cut-off sweep and warning commands."""


@cutoff_group.command('sweep')
@click.option('--now', 'now_value', help='Sweep instant, ISO-8601 (UTC if no offset). Defaults to now.')
@with_appcontext
def sweep_cli(now_value):
    """Cancel drafts past their store's effective cut-off."""
    result = cutoff_service.run_cutoff_sweep(_parse_now(now_value))

    click.echo(f"Stores processed:       {result.stores_processed}")
    click.echo(f"Transactions cancelled: {result.transactions_cancelled}")
    for store_result in result.store_results:
        if store_result.cancelled_count:
            suppliers = ", ".join(str(s) for s in store_result.notified_suppliers)
            click.echo(f"  store {store_result.store_id}: {store_result.cancelled_count} cancelled (suppliers: {suppliers})")
    for store_id, message in result.failures:
        click.echo(f"FAIL store {store_id}: {message}")


@cutoff_group.command('status')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--now', 'now_value', help='Instant to evaluate, ISO-8601. Defaults to now.')
@with_appcontext
def status_cli(store_id, now_value):
    """Show a store's cut-off status."""
    try:
        status = cutoff_service.get_store_cutoff_status(store_id, _parse_now(now_value))
    except ConsignError as e:
        click.echo(f"FAIL {e.message}")
        return

    click.echo("\n" + "=" * 60)
    click.echo(f"Store:            {status.store_name} (ID: {status.store_id})")
    click.echo(f"Cut-off:          {status.cutoff_time} + {status.grace_period_minutes} min = {status.effective_cutoff}")
    click.echo(f"Local time:       {status.local_date} {status.local_time}")
    click.echo(f"After cut-off:    {'Yes' if status.is_after_cutoff else 'No'}")
    click.echo(f"Minutes until:    {status.minutes_until_cutoff}")
    click.echo(f"Pending drafts:   {status.pending_drafts}")
    click.echo(f"Auto-cancel:      {'On' if status.auto_cancel_enabled else 'Off'}")
    click.echo("=" * 60 + "\n")


@cutoff_group.command('warn')
@click.option('--now', 'now_value', help='Instant to evaluate, ISO-8601. Defaults to now.')
@with_appcontext
def warn_cli(now_value):
    """Send pre-cutoff warnings for every open store."""
    now = _parse_now(now_value)
    minutes_before = int(current_app.config.get("CUTOFF_WARNING_MINUTES", 30))

    total = 0
    for store in store_service.list_open_stores():
        sent = cutoff_service.send_cutoff_warnings(store.id, now, minutes_before)
        if sent:
            click.echo(f"  store {store.id}: {sent} supplier(s) warned")
        total += sent
    click.echo(f"PASS {total} warning(s) sent")


@click.group('reliability')
def reliability_group():
    """Supplier reliability inspection commands."""


@reliability_group.command('show')
@click.option('--store-id', type=int, required=True, help='Store ID')
@with_appcontext
def show_reliability(store_id):
    """Owner report of supplier reliability for a store."""
    rows = reliability_service.list_store_reliability(store_id)
    if not rows:
        click.echo("No supplier stats for this store.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'Supplier':<10} {'Score':<7} {'Accuracy':<10} {'Total':<7} {'Done':<6} {'NoShow':<8} {'Cancel':<8} {'Revenue'}")
    click.echo("=" * 80)
    for stats in rows:
        click.echo(
            f"{stats.supplier_id:<10} {stats.reliability_score:<7} {stats.average_accuracy:<10} "
            f"{stats.total_transactions:<7} {stats.completed_transactions:<6} {stats.no_show_count:<8} "
            f"{stats.cancelled_by_supplier:<8} {stats.total_revenue}"
        )
    click.echo("=" * 80 + "\n")


@reliability_group.command('no-show')
@click.option('--supplier-id', type=int, required=True, help='Supplier user ID')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--actor-id', type=int, default=0, show_default=True, help='Recording actor (0 = system)')
@with_appcontext
def record_no_show(supplier_id, store_id, actor_id):
    """Record that a supplier did not deliver."""
    try:
        store_service.get_store(store_id)
        stats = reliability_service.on_no_show(supplier_id, store_id, actor_id=actor_id)
    except ConsignError as e:
        click.echo(f"FAIL {e.message}")
        return
    click.echo(
        f"PASS Supplier {supplier_id}: no-shows {stats.no_show_count}, score {stats.reliability_score}"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(cutoff_group)
    app.cli.add_command(reliability_group)
