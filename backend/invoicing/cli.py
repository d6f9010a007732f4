# Overview: Flask CLI command groups for bootstrap, sequences, the sync outbox and reconciliation.

# backend/invoicing/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent; migrations remain the source of truth).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Document numbers:
# - python -m flask sequences preview --type invoice
#   Show the next number for a document type without reserving it.
#
# Sync outbox (ledger and customer side effects):
# - python -m flask sync process [--limit 500]
#   Apply pending events oldest first.
# - python -m flask sync status
#   Count events per status.
# - python -m flask sync retry-failed
#   Re-queue events that exhausted their retries.
#
# Reconciliation:
# - python -m flask reconcile customers
#   Recompute cached customer totals from invoices.
# - python -m flask reconcile ledger-balances
#   Rewrite running ledger balances.
# - python -m flask reconcile verify
#   Report drift between invoices, ledger and customers (read-only).

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import outbox_service, reconciliation_service
from .services.invoice_state import VALID_DOCUMENT_TYPES
from .services.sequence_service import prefix_for, preview_next_id


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("PASS Database schema ready.")


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


@click.group('sequences')
def sequences_group():
    """Document number sequences."""


@sequences_group.command('preview')
@click.option('--type', 'doc_type', type=click.Choice(VALID_DOCUMENT_TYPES), default='invoice', help='Document type')
@with_appcontext
def preview_sequence(doc_type):
    """Show the next document number (not reserved)."""
    click.echo(preview_next_id(prefix_for(doc_type)))


@click.group('sync')
def sync_group():
    """Sync outbox processing."""


@sync_group.command('process')
@click.option('--limit', type=int, default=500, show_default=True, help='Maximum events to process')
@with_appcontext
def process_sync(limit):
    """Apply pending ledger/customer events."""
    result = outbox_service.process_pending_events(limit=limit)
    click.echo(
        f"PASS Processed {result['processed']} events: "
        f"{result['applied']} applied, {result['failed']} failed"
    )


@sync_group.command('status')
@with_appcontext
def sync_status():
    """Count events per status."""
    counts = outbox_service.get_outbox_status()

    click.echo("\n" + "="*40)
    click.echo(f"{'Status':<12} {'Events'}")
    click.echo("="*40)
    for status, count in counts.items():
        click.echo(f"{status:<12} {count}")
    click.echo("="*40 + "\n")


@sync_group.command('retry-failed')
@with_appcontext
def retry_failed_sync():
    """Re-queue events that exhausted their retries."""
    count = outbox_service.retry_failed_events()
    click.echo(f"PASS Re-queued {count} failed events")


@click.group('reconcile')
def reconcile_group():
    """Rebuild derived projections from invoices."""


@reconcile_group.command('customers')
@with_appcontext
def reconcile_customers():
    """Recompute cached customer totals."""
    result = reconciliation_service.recalculate_customer_financials()
    click.echo(f"PASS Checked {result['total']} customers, corrected {result['updated']}")
    for error in result['errors']:
        click.echo(f"FAIL {error}")


@reconcile_group.command('ledger-balances')
@with_appcontext
def reconcile_ledger_balances():
    """Rewrite running ledger balances."""
    result = reconciliation_service.recalculate_ledger_balances()
    click.echo(
        f"PASS Processed {result['customers_processed']} customers, "
        f"updated {result['entries_updated']} entries"
    )


@reconcile_group.command('verify')
@with_appcontext
def verify_ledger():
    """Report consistency issues (read-only)."""
    report = reconciliation_service.verify_ledger_consistency()
    click.echo(report['summary'])
    for issue in report['issues']:
        examples = ", ".join(str(example) for example in issue['examples'])
        click.echo(f"WARN {issue['type']}: {issue['count']} ({issue['description']}) e.g. {examples}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(sequences_group)
    app.cli.add_command(sync_group)
    app.cli.add_command(reconcile_group)
