# Overview: Flask CLI command groups for bootstrap, scheduled inventory jobs, and inspection.

# backend/sportify/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--admin-email admin@sportify.local]
#   Idempotent: creates tables, the global settings row and an admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Inventory jobs (schedule scan-low-stock daily, dispatch-alerts as often as you like):
# - python -m flask inventory scan-low-stock [--dispatch]
#   Queue a low-stock alert for every product at or below its reorder point.
# - python -m flask inventory dispatch-alerts [--limit 100]
#   Deliver PENDING / FAILED alerts to suppliers.
# - python -m flask inventory summary
#   Print stock totals and low / out-of-stock counts.
#
# Discounts:
# - python -m flask discounts list [--active]
#   List discount codes with usage.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import DiscountCode, User
from .models.users import ROLE_ADMIN
from .services import notification_service, settings_service, stock_service
from .time_utils import utcnow


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-email', default='admin@sportify.local', help='Email of the bootstrap admin')
@with_appcontext
def init_system(admin_email):
    """Create tables, default settings and an admin account if missing."""
    click.echo("START Initializing Sportify...")

    db.create_all()
    settings = settings_service.get_global_settings()
    db.session.commit()
    click.echo(f"PASS Settings: {settings.site_name} ({settings.currency}, tax {settings.tax_rate_bps} bps)")

    admin = db.session.query(User).filter_by(email=admin_email).first()
    if admin is None:
        admin = User(email=admin_email, first_name="Admin", role=ROLE_ADMIN, is_active=True)
        db.session.add(admin)
        db.session.commit()
        click.echo(f"PASS Created admin user {admin.email} (ID: {admin.id})")
    else:
        click.echo(f"PASS Using existing admin user {admin.email} (ID: {admin.id})")

    click.echo("DONE")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("Refusing to reset without --yes")
        raise SystemExit(1)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('inventory')
def inventory_group():
    """Scheduled stock jobs and inspection."""


@inventory_group.command('scan-low-stock')
@click.option('--dispatch', is_flag=True, help='Deliver the queued alerts immediately')
@with_appcontext
def scan_low_stock_cmd(dispatch):
    """Queue alerts for every product at or below its reorder point."""
    started = utcnow()
    alerts = notification_service.scan_low_stock()
    click.echo(f"PASS Queued {len(alerts)} low stock alert(s) at {started.isoformat()}Z")

    if dispatch:
        result = notification_service.dispatch_pending_alerts()
        click.echo(
            f"PASS Dispatched {result['processed']}: "
            f"{result['sent']} sent, {result['failed']} failed, {result['skipped']} skipped"
        )


@inventory_group.command('dispatch-alerts')
@click.option('--limit', default=100, show_default=True, help='Maximum alerts to process')
@with_appcontext
def dispatch_alerts_cmd(limit):
    """Deliver PENDING and FAILED low-stock alerts."""
    result = notification_service.dispatch_pending_alerts(limit=limit)
    click.echo(
        f"PASS Dispatched {result['processed']}: "
        f"{result['sent']} sent, {result['failed']} failed, {result['skipped']} skipped"
    )


@inventory_group.command('summary')
@with_appcontext
def inventory_summary_cmd():
    """Print stock totals."""
    for key, value in stock_service.get_inventory_summary().items():
        click.echo(f"{key:<20} {value}")


@click.group('discounts')
def discounts_group():
    """Discount code inspection."""


@discounts_group.command('list')
@click.option('--active', 'active_only', is_flag=True, help='Only active codes')
@with_appcontext
def list_discounts_cmd(active_only):
    """List discount codes."""
    q = db.session.query(DiscountCode)
    if active_only:
        q = q.filter(DiscountCode.is_active.is_(True))
    rows = q.order_by(DiscountCode.code.asc()).all()
    if not rows:
        click.echo("No discount codes found")
        return

    now = utcnow()
    for d in rows:
        limit = d.usage_limit if d.usage_limit is not None else "-"
        state = "valid" if d.is_valid(now) else "not valid"
        click.echo(
            f"{d.code:<16} {d.discount_type:<14} {d.discount_value:>8} "
            f"used {d.used_count}/{limit}  {state}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(discounts_group)
