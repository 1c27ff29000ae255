# Overview: Flask CLI command groups for bootstrap, inspection, maintenance and the kiosk runtime.

# backend/labstore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to labstore (PowerShell: $env:FLASK_APP="labstore").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables, the cash box row and kiosk 1.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Members:
# - python -m flask members list [--all]
#   List members grouped by grade with balances and card status.
# - python -m flask members create --name "Sato" --grade M1
#   Create a member (balance 0).
#
# Catalog:
# - python -m flask catalog list [--all]
#   List products with purchasable quantity.
#
# Ledger:
# - python -m flask ledger summary
#   Cash box balance, entry totals and variance.
# - python -m flask ledger archive --yes
#   Period close: archive every live transaction.
#
# Kiosk:
# - python -m flask kiosk run --kiosk-id 1 --base-url http://localhost:5000
#   Run the card-reader relay + presence protocol against a running store API.

import time

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import StoreError
from .extensions import db
from .models import KioskStatus
from .services import cashbox_service, catalog_service, member_service, transaction_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the store database.

    Creates:
    - All tables (no-op for existing ones)
    - The single cash box row (balance 0)
    - Kiosk 1 session row (no card presented)
    """
    click.echo("START Initializing lab store...")

    db.create_all()
    click.echo("PASS Tables ready")

    box = cashbox_service.ensure_cash_box()
    click.echo(f"PASS Cash box ready (balance: {box.balance})")

    if db.session.get(KioskStatus, 1) is None:
        db.session.add(KioskStatus(id=1, current_uid=None))
        db.session.commit()
        click.echo("PASS Created kiosk 1")
    else:
        click.echo("PASS Using existing kiosk 1")

    if not current_app.config.get("ADMIN_API_TOKEN"):
        click.echo("WARN ADMIN_API_TOKEN is not set; admin routes are disabled")
    click.echo("DONE Lab store initialized")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


# =============================================================================
# MEMBER COMMANDS
# =============================================================================

@click.group('members')
def members_group():
    """Member inspection and bootstrap commands."""


@members_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include deactivated members')
@with_appcontext
def list_members_cli(include_inactive):
    """List members grouped by grade."""
    members = member_service.list_members(include_inactive=include_inactive)
    if not members:
        click.echo("No members found.")
        return

    for group in member_service.group_by_grade(members):
        click.echo(f"\n[{group['grade'] or '-'}]")
        for m in group["members"]:
            card = "card" if m["has_card"] else "-"
            active = "" if m["is_active"] else " (inactive)"
            click.echo(f"  {m['id']:<5} {m['name']:<24} {m['balance']:>8} {card}{active}")
    click.echo("")


@members_group.command('create')
@click.option('--name', required=True, help='Display name')
@click.option('--grade', default='', help='Grade label (D3, M1, ...)')
@with_appcontext
def create_member_cli(name, grade):
    """Create a member with a zero balance."""
    try:
        member = member_service.create_member({"name": name, "grade": grade})
    except StoreError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created member {member.name} (ID: {member.id})")


# =============================================================================
# CATALOG COMMANDS
# =============================================================================

@click.group('catalog')
def catalog_group():
    """Product catalog inspection."""


@catalog_group.command('list')
@click.option('--all', 'include_all', is_flag=True, help='Include inactive and internal products')
@with_appcontext
def list_catalog_cli(include_all):
    """List products with price and purchasable quantity."""
    items = catalog_service.list_catalog(include_inactive=include_all, include_internal=include_all)
    if not items:
        click.echo("No products found.")
        return

    click.echo("\n" + "=" * 72)
    click.echo(f"{'ID':<5} {'Name':<28} {'Category':<14} {'Price':>7} {'Avail':>7} {'Type'}")
    click.echo("=" * 72)
    for p in items:
        kind = "recipe" if p["recipe"] else "simple"
        click.echo(
            f"{p['id']:<5} {p['name']:<28} {p['category'] or '-':<14} "
            f"{p['price']:>7} {p['purchasable_quantity']:>7} {kind}"
        )
    click.echo("=" * 72 + "\n")


# =============================================================================
# LEDGER COMMANDS
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Cash box and transaction maintenance."""


@ledger_group.command('summary')
@with_appcontext
def ledger_summary_cli():
    """Show cash box reconciliation summary."""
    summary = cashbox_service.reconciliation_summary()
    click.echo(f"Cash box balance:     {summary['cash_box_balance']}")
    click.echo(f"Sum of entries:       {summary['entries_total']}")
    click.echo(f"Variance:             {summary['variance']}")
    click.echo(f"Member balance total: {summary['member_balance_total']}")
    for entry_type, total in sorted(summary["totals_by_type"].items()):
        click.echo(f"  {entry_type:<12} {total}")


@ledger_group.command('archive')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def archive_cli(yes):
    """Period close: archive all live transactions."""
    if not yes:
        click.confirm("WARN Archive every live transaction?", abort=True)
    count = transaction_service.archive_transactions()
    click.echo(f"PASS Archived {count} transaction(s)")


# =============================================================================
# KIOSK RUNTIME
# =============================================================================

@click.group('kiosk')
def kiosk_group():
    """Kiosk-side runtime."""


@kiosk_group.command('run')
@click.option('--kiosk-id', default=1, show_default=True, type=int)
@click.option('--base-url', default='http://localhost:5000', show_default=True, help='Store API URL')
@with_appcontext
def run_kiosk_cli(kiosk_id, base_url):
    """Relay card scans and log session start/end until interrupted."""
    from .kiosk.card_reader import CardReaderBridge
    from .kiosk.client import HttpChangeSource, StoreClient
    from .kiosk.runtime import KioskRuntime

    config = current_app.config
    store = StoreClient(base_url, admin_token=config.get("ADMIN_API_TOKEN") or None)
    bridge = CardReaderBridge(config["CARD_READER_URL"])
    runtime = KioskRuntime(
        store=store,
        changes=HttpChangeSource(base_url, kiosk_id),
        bridge=bridge,
        kiosk_id=kiosk_id,
        on_session_start=lambda s: click.echo(f"SESSION start: {s.member_name} (ID: {s.member_id})"),
        on_session_end=lambda s: click.echo(f"SESSION end: {s.member_name} (ID: {s.member_id})"),
        retry_delay=config["RECONNECT_DELAY_SECONDS"],
    )

    runtime.start()
    click.echo(f"START Kiosk {kiosk_id} running against {base_url} (Ctrl+C to stop)")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        runtime.close()
        click.echo("STOP Kiosk runtime stopped")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(members_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(kiosk_group)
