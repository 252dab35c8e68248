"""
CLI Commands for Points Operations.

Every command goes through the same PointsEngine the services use, so the
idempotency and tier rules are identical to partner-driven events.

Usage:
    flask points earn C1 1000 --invoice-id INV-1 --collecto-id M1
    flask points purchase 42 200 5000 --collecto-id M1
    flask points redeem 42 40 --collecto-id M1
    flask points recompute-tier 42
    flask points history 42
"""
import click
from flask.cli import with_appcontext

from ..services.customer_service import CustomerService
from .output import handle_vault_errors, echo_customer, echo_transaction


@click.group('points')
def points_cli():
    """Points earning, purchase and redemption commands."""
    pass


@points_cli.command('earn')
@click.argument('client_id')
@click.argument('amount')
@click.option('--invoice-id', required=True, help='External invoice id (idempotency key)')
@click.option('--collecto-id', required=True, help='Merchant collecto id')
@click.option('--rule-id', type=int, help='Earning rule to apply (default: oldest active rule)')
@click.option('--name', help='Name for a newly created customer')
@with_appcontext
@handle_vault_errors
def earn(client_id, amount, invoice_id, collecto_id, rule_id, name):
    """Credit points for a paid invoice."""
    customer = CustomerService(collecto_id).process_invoice_payment(
        client_id, amount, invoice_id, rule_id=rule_id, name=name
    )
    echo_customer(customer)


@points_cli.command('purchase')
@click.argument('customer_id', type=int)
@click.argument('points')
@click.argument('amount')
@click.option('--collecto-id', help='Merchant collecto id')
@with_appcontext
@handle_vault_errors
def purchase(customer_id, points, amount, collecto_id):
    """Credit directly purchased points to the bought pool."""
    customer = CustomerService(collecto_id).purchase_points(customer_id, points, amount)
    echo_customer(customer)


@points_cli.command('redeem')
@click.argument('customer_id', type=int)
@click.argument('points')
@click.option('--collecto-id', help='Merchant collecto id')
@click.option('--key', 'idempotency_key', help='Redemption id (idempotency key)')
@with_appcontext
@handle_vault_errors
def redeem(customer_id, points, collecto_id, idempotency_key):
    """Spend points, earned pool first."""
    customer = CustomerService(collecto_id).redeem_points(
        customer_id, points, idempotency_key=idempotency_key
    )
    echo_customer(customer)


@points_cli.command('recompute-tier')
@click.argument('customer_id', type=int)
@click.option('--collecto-id', help='Merchant collecto id')
@with_appcontext
@handle_vault_errors
def recompute_tier(customer_id, collecto_id):
    """Re-derive a customer's tier from their balance."""
    customer = CustomerService(collecto_id).recalculate_tier(customer_id)
    echo_customer(customer)


@points_cli.command('history')
@click.argument('customer_id', type=int)
@click.option('--collecto-id', help='Merchant collecto id')
@with_appcontext
@handle_vault_errors
def history(customer_id, collecto_id):
    """Show a customer's transaction journal, newest first."""
    transactions = CustomerService(collecto_id).transaction_history(customer_id)
    if not transactions:
        click.echo('No transactions')
        return
    for transaction in transactions:
        echo_transaction(transaction)
