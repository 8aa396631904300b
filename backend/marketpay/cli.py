# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/marketpay/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tenant inspection:
# - python -m flask tenants list
#   List tenants with their verification status.
#
# Transactions:
# - python -m flask transactions expire
#   Flip overdue pending/awaiting transactions to expired (schedule this).
# - python -m flask transactions queue --tenant-id 3
#   Print a tenant's open transactions.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Tenant, Transaction
from .models.transactions import OPEN_TRANSACTION_STATUSES
from .services import transaction_service


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

    click.echo("PASS Database reset complete.")


@click.group('tenants')
def tenants_group():
    """Tenant inspection commands."""


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    tenants = db.session.query(Tenant).order_by(Tenant.id).all()
    if not tenants:
        click.echo("No tenants found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Slug':<24} {'Verified':<10} {'Status'}")
    click.echo("="*70)
    for tenant in tenants:
        verified = "Yes" if tenant.is_verified else "No"
        click.echo(f"{tenant.id:<5} {tenant.slug:<24} {verified:<10} {tenant.verification_status}")
    click.echo("="*70 + "\n")


@click.group('transactions')
def transactions_group():
    """Payment transaction maintenance."""


@transactions_group.command('expire')
@with_appcontext
def expire_transactions_cli():
    """Expire open transactions past their payment window."""
    expired = transaction_service.expire_stale_transactions()
    click.echo(f"Expired {expired} transactions.")


@transactions_group.command('queue')
@click.option('--tenant-id', type=int, required=True)
@with_appcontext
def queue_cli(tenant_id):
    """Print a tenant's open transactions, oldest first."""
    rows = (
        db.session.query(Transaction)
        .filter(Transaction.tenant_id == tenant_id, Transaction.status.in_(OPEN_TRANSACTION_STATUSES))
        .order_by(Transaction.created_at)
        .all()
    )
    if not rows:
        click.echo("Queue is empty.")
        return

    for txn in rows:
        status = transaction_service.effective_status(txn)
        click.echo(
            f"{txn.id:<6} {txn.payment_reference:<16} {status:<22} "
            f"{txn.total_amount:>10} {txn.instrument_id or '-'}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(transactions_group)
