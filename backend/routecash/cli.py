# Overview: Flask CLI command groups for bootstrap, ledger reconciliation, and discount administration.

# backend/routecash/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (idempotent; use flask db upgrade once migrations exist).
# - python -m flask system create-branch --name "Lahore Central" --code LHR --region Punjab
#   Create a branch.
#
# Ledger integrity:
# - python -m flask ledger verify
#   Check one sale per order, delivery balances, payment history and outstanding records.
# - python -m flask ledger reconcile
#   Dry run: list duplicate sale entries that would be removed.
# - python -m flask ledger reconcile --apply
#   Remove duplicate sale entries (keeps the earliest complete entry; never touches returns).
# - python -m flask ledger summary --branch-id 1
#   Print branch net cash by entry type.
#
# Discount administration:
# - python -m flask discounts show 5 [--month 2024-03]
#   Show a booker's unauthorized discount totals.
# - python -m flask discounts reset 5 2024-03 --by 1
#   Zero a booker's month after the salary deduction is settled.

import click
from flask.cli import with_appcontext

from .errors import RouteCashError
from .extensions import db
from .models import Branch
from .models.organization import money_str
from .services import discount_ledger_service, reconciliation_service, reporting_service


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('create-branch')
@click.option('--name', required=True, help='Branch name')
@click.option('--code', default=None, help='Short branch code')
@click.option('--region', default=None, help='Region for rollups')
@with_appcontext
def create_branch(name, code, region):
    """Create a branch."""
    existing = db.session.query(Branch).filter_by(name=name).first()
    if existing:
        click.echo(f"PASS Using existing branch: {existing.name} (ID: {existing.id})")
        return
    branch = Branch(name=name, code=code, region=region)
    db.session.add(branch)
    db.session.commit()
    click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id})")


@click.group('ledger')
def ledger_group():
    """Ledger reconciliation and integrity commands."""


@ledger_group.command('verify')
@with_appcontext
def verify_ledger():
    """Check ledger and delivery invariants; exits non-zero on problems."""
    report = reconciliation_service.verify_integrity()
    click.echo(
        f"Checked {report.orders_checked} orders and {report.deliveries_checked} deliveries"
    )
    if report.ok:
        click.echo("PASS No integrity issues found")
        return
    for issue in report.issues:
        click.echo(f"FAIL [{issue['kind']}] {issue['message']}")
    raise SystemExit(1)


@ledger_group.command('reconcile')
@click.option('--apply', 'apply_changes', is_flag=True, help='Delete duplicates (default is a dry run)')
@with_appcontext
def reconcile_ledger(apply_changes):
    """Find (and optionally remove) duplicate SALE_DELIVERED entries."""
    report = reconciliation_service.cleanup_duplicate_sales(dry_run=not apply_changes)
    if not report.groups:
        click.echo("PASS No duplicate sale entries")
        return

    for group in report.groups:
        click.echo(
            f"Order {group.order_id}: keep entry {group.keep_id}, "
            f"{'delete' if apply_changes else 'would delete'} {group.delete_ids}"
        )
    if apply_changes:
        click.echo(f"PASS Deleted {len(report.deleted_ids)} duplicate entries")
    else:
        click.echo("DRY RUN: re-run with --apply to delete")


@ledger_group.command('summary')
@click.option('--branch-id', type=int, required=True)
@with_appcontext
def ledger_summary(branch_id):
    """Print branch net cash by entry type."""
    try:
        summary = reporting_service.get_branch_cash_summary(branch_id)
    except RouteCashError as e:
        raise click.ClickException(e.message)

    for entry_type, totals in summary["by_type"].items():
        click.echo(f"{entry_type:<16} {totals['count']:>6}  {totals['net_cash']}")
    click.echo(f"{'NET CASH':<16} {'':>6}  {summary['net_cash']}")
    click.echo(f"{'OUTSTANDING':<16} {'':>6}  {summary['outstanding_balance']}")


@click.group('discounts')
def discounts_group():
    """Booker unauthorized-discount administration."""


@discounts_group.command('show')
@click.argument('booker_id', type=int)
@click.option('--month', default=None, help='YYYY-MM')
@with_appcontext
def show_discounts(booker_id, month):
    try:
        data = discount_ledger_service.get_booker_monthly_unauthorized_discount(booker_id, month)
    except RouteCashError as e:
        raise click.ClickException(e.message)

    for row in data["months"]:
        click.echo(f"{row['month_key']}  {row['amount']}  orders={row['order_ids']}")
    click.echo(f"TOTAL    {data['total']}")


@discounts_group.command('reset')
@click.argument('booker_id', type=int)
@click.argument('month')
@click.option('--by', 'reset_by', type=int, required=True, help='User id performing the reset')
@with_appcontext
def reset_discounts(booker_id, month, reset_by):
    """Zero a booker's unauthorized discount for one month."""
    try:
        audit = discount_ledger_service.reset_unauthorized_discount(booker_id, month, reset_by)
    except RouteCashError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Reset {money_str(audit.amount_reset)} for booker {booker_id} ({month})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(discounts_group)
