"""
Shared helpers for CLI commands: error reporting and output formatting.
"""
import json
from functools import wraps

import click

from ..utils.exceptions import VaultError


def handle_vault_errors(f):
    """Report business errors as a clean CLI failure (exit code 1)."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except VaultError as e:
            raise click.ClickException(f'{e.code}: {e.message}')
    return wrapper


def echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def echo_customer(customer) -> None:
    tier = customer.current_tier.name if customer.current_tier else '-'
    click.echo(
        f"Customer {customer.id} ({customer.collecto_id}/{customer.client_id}) {customer.name or ''}\n"
        f"  Points: {customer.current_points} (earned {customer.earned_points}, bought {customer.bought_points})\n"
        f"  Tier: {tier}\n"
        f"  Total purchased: {customer.total_purchased}"
        + ('' if customer.is_active else '\n  [INACTIVE]')
    )


def echo_transaction(transaction) -> None:
    click.echo(
        f"{transaction.transaction_id}  {transaction.type:<16} {transaction.status:<10} "
        f"{transaction.points:>8} pts  {transaction.amount}"
    )
