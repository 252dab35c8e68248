"""
CLI Commands for the Merchant Catalog (earning rules, tiers, packages).
"""
import click
from flask.cli import with_appcontext

from ..services.earning_rule_service import EarningRuleService
from ..services.tier_service import TierService
from ..services.vault_package_service import VaultPackageService
from .output import handle_vault_errors


@click.group('catalog')
def catalog_cli():
    """Earning rule, tier and package listings."""
    pass


def _flag(active):
    return '' if active else ' [INACTIVE]'


@catalog_cli.command('rules')
@click.option('--collecto-id', required=True, help='Merchant collecto id')
@click.option('--include-inactive', is_flag=True)
@with_appcontext
@handle_vault_errors
def list_rules(collecto_id, include_inactive):
    """List earning rules in the order they apply as default."""
    rules = EarningRuleService(collecto_id).list_rules(include_inactive=include_inactive)
    if not rules:
        click.echo('No earning rules')
        return
    for rule in rules:
        click.echo(f'{rule.id:>5}  {rule.rule_title:<30} {rule.points:>6} pts{_flag(rule.is_active)}')


@catalog_cli.command('tiers')
@click.option('--collecto-id', required=True, help='Merchant collecto id')
@click.option('--include-inactive', is_flag=True)
@with_appcontext
@handle_vault_errors
def list_tiers(collecto_id, include_inactive):
    """List the tier ladder, lowest threshold first."""
    tiers = TierService(collecto_id).list_tiers(include_inactive=include_inactive)
    if not tiers:
        click.echo('No tiers')
        return
    for tier in tiers:
        click.echo(
            f'{tier.id:>5}  {tier.name:<20} {tier.points_required:>8}+ pts  '
            f'x{tier.earning_multiplier}{_flag(tier.is_active)}'
        )


@catalog_cli.command('packages')
@click.option('--collecto-id', required=True, help='Merchant collecto id')
@click.option('--include-inactive', is_flag=True)
@click.option('--popular', is_flag=True, help='Only popular packages')
@with_appcontext
@handle_vault_errors
def list_packages(collecto_id, include_inactive, popular):
    """List point packages, cheapest first."""
    service = VaultPackageService(collecto_id)
    if popular:
        packages = service.list_popular_packages()
    else:
        packages = service.list_packages(include_inactive=include_inactive)
    if not packages:
        click.echo('No packages')
        return
    for package in packages:
        star = ' *' if package.is_popular else ''
        click.echo(
            f'{package.id:>5}  {package.name:<20} {package.points_amount:>8} pts  '
            f'{package.price}{star}{_flag(package.is_active)}'
        )
