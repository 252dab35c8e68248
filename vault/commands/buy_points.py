"""
CLI Commands for the Buy-Points Flow.

The reconcile command is meant for cron, picking up purchases whose partner
callback never arrived:

# Reconcile stale pending purchases (every 15 minutes)
*/15 * * * * cd /app && flask buy-points reconcile --older-than 10
"""
import click
from flask.cli import with_appcontext

from ..services.buy_points_service import BuyPointsService
from .output import handle_vault_errors, echo_transaction


@click.group('buy-points')
def buy_points_cli():
    """Buy-points purchase commands."""
    pass


@buy_points_cli.command('initiate')
@click.argument('client_id')
@click.argument('amount')
@click.option('--collecto-id', required=True, help='Merchant collecto id')
@click.option('--payment-option', default='mobilemoney', show_default=True, help='Partner payment option')
@click.option('--phone', help='Mobile money number')
@click.option('--transaction-id', help='Transaction id (generated when omitted)')
@with_appcontext
@handle_vault_errors
def initiate(client_id, amount, collecto_id, payment_option, phone, transaction_id):
    """Start a points purchase and request payment from the partner."""
    result = BuyPointsService(collecto_id).initiate_purchase(
        client_id, amount, payment_option, phone=phone, transaction_id=transaction_id
    )
    echo_transaction(result['transaction'])
    if result.get('error'):
        click.echo(f"Partner request failed, transaction left pending: {result['error']}")


@buy_points_cli.command('status')
@click.argument('transaction_id')
@click.option('--collecto-id', help='Merchant collecto id')
@with_appcontext
@handle_vault_errors
def status(transaction_id, collecto_id):
    """Poll the partner and settle a pending purchase."""
    echo_transaction(BuyPointsService(collecto_id).check_status(transaction_id))


@buy_points_cli.command('confirm')
@click.argument('transaction_id')
@click.option('--collecto-id', help='Merchant collecto id')
@with_appcontext
@handle_vault_errors
def confirm(transaction_id, collecto_id):
    """Confirm a pending purchase and credit its points."""
    echo_transaction(BuyPointsService(collecto_id).confirm_transaction(transaction_id))


@buy_points_cli.command('fail')
@click.argument('transaction_id')
@click.option('--collecto-id', help='Merchant collecto id')
@with_appcontext
@handle_vault_errors
def fail(transaction_id, collecto_id):
    """Mark a pending purchase as failed."""
    echo_transaction(BuyPointsService(collecto_id).fail_transaction(transaction_id))


@buy_points_cli.command('reconcile')
@click.option('--collecto-id', help='Merchant collecto id (all merchants if omitted)')
@click.option('--older-than', type=int, default=10, show_default=True, help='Minutes a purchase must be pending')
@with_appcontext
@handle_vault_errors
def reconcile(collecto_id, older_than):
    """Poll the partner for every stale pending purchase."""
    results = BuyPointsService(collecto_id).reconcile_pending(older_than_minutes=older_than)
    click.echo(f"Checked: {results['checked']}")
    click.echo(f"  Confirmed: {results['confirmed']}")
    click.echo(f"  Failed: {results['failed']}")
    click.echo(f"  Still pending: {results['pending']}")
