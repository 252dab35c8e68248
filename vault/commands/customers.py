"""
CLI Commands for Customer Administration.

Usage:
    flask customers list --collecto-id M1
    flask customers show 42 --collecto-id M1
    flask customers create C1 --name "Jane" --collecto-id M1
    flask customers deactivate 42 --collecto-id M1
    flask customers stats --collecto-id M1
    flask customers sync-invoices C1 --collecto-id M1 --token <user token>
"""
import click
from flask.cli import with_appcontext

from ..services.customer_service import CustomerService
from .output import handle_vault_errors, echo_customer, echo_json


@click.group('customers')
def customers_cli():
    """Customer administration commands."""
    pass


@customers_cli.command('list')
@click.option('--collecto-id', required=True, help='Merchant collecto id')
@click.option('--include-inactive', is_flag=True, help='Include deactivated customers')
@with_appcontext
@handle_vault_errors
def list_customers(collecto_id, include_inactive):
    """List customers of a merchant."""
    customers = CustomerService(collecto_id).list_customers(include_inactive=include_inactive)
    if not customers:
        click.echo('No customers found')
        return
    for customer in customers:
        status = '' if customer.is_active else ' [INACTIVE]'
        click.echo(f'{customer.id:>6}  {customer.client_id:<20} {customer.current_points:>8} pts{status}')
    click.echo(f'\nTotal: {len(customers)}')


@customers_cli.command('show')
@click.argument('customer_id', type=int)
@click.option('--collecto-id', help='Merchant collecto id')
@click.option('--json', 'as_json', is_flag=True, help='Print the raw record')
@with_appcontext
@handle_vault_errors
def show_customer(customer_id, collecto_id, as_json):
    """Show a customer's balances and tier."""
    customer = CustomerService(collecto_id).get_customer(customer_id)
    if as_json:
        echo_json(customer.to_dict())
    else:
        echo_customer(customer)


@customers_cli.command('create')
@click.argument('client_id')
@click.option('--collecto-id', required=True, help='Merchant collecto id')
@click.option('--name', required=True, help='Customer name')
@click.option('--email', help='Customer email')
@with_appcontext
@handle_vault_errors
def create_customer(client_id, collecto_id, name, email):
    """Create a customer (rejects an existing client id)."""
    customer = CustomerService(collecto_id).create_customer(client_id, name, email=email)
    click.echo(f'Created customer {customer.id}')
    echo_customer(customer)


@customers_cli.command('deactivate')
@click.argument('customer_id', type=int)
@click.option('--collecto-id', help='Merchant collecto id')
@with_appcontext
@handle_vault_errors
def deactivate_customer(customer_id, collecto_id):
    """Soft-deactivate a customer."""
    CustomerService(collecto_id).deactivate_customer(customer_id)
    click.echo(f'Customer {customer_id} deactivated')


@customers_cli.command('stats')
@click.option('--collecto-id', required=True, help='Merchant collecto id')
@with_appcontext
@handle_vault_errors
def customer_stats(collecto_id):
    """Show aggregate customer statistics for a merchant."""
    stats = CustomerService(collecto_id).get_customer_stats()
    click.echo(f"Customers: {stats['total_customers']}")
    click.echo(f"Total points: {stats['total_points']}")
    click.echo(f"Total purchased: {stats['total_purchased']:.2f}")
    click.echo(f"Average points per customer: {stats['average_points_per_customer']}")


@customers_cli.command('sync-invoices')
@click.argument('client_id')
@click.option('--collecto-id', required=True, help='Merchant collecto id')
@click.option('--token', 'user_token', help='Partner user token')
@click.option('--payments', is_flag=True, help='Sync payments instead of invoices')
@with_appcontext
@handle_vault_errors
def sync_invoices(client_id, collecto_id, user_token, payments):
    """Credit points for the customer's paid invoices (or payments) at Collecto."""
    service = CustomerService(collecto_id)
    if payments:
        result = service.sync_payments(client_id, user_token=user_token)
    else:
        result = service.sync_invoices(client_id, user_token=user_token)

    if result.get('upstream_error'):
        click.echo(f"Collecto unavailable: {result['upstream_error']}")
    click.echo(f"Processed: {result['processed']}")
    echo_customer(result['customer'])
