"""
CLI Commands for Collecto Vault.

Usage:
    flask customers list --collecto-id M1          # Customers of a merchant
    flask customers stats --collecto-id M1         # Merchant statistics
    flask points earn C1 1000 --invoice-id INV-1 --collecto-id M1
    flask points redeem 42 40                      # Spend points
    flask buy-points initiate C1 5000 --collecto-id M1
    flask buy-points reconcile --older-than 10     # Settle stale purchases
    flask catalog tiers --collecto-id M1           # Tier ladder
"""
from .customers import customers_cli
from .points import points_cli
from .buy_points import buy_points_cli
from .catalog import catalog_cli


def init_app(app):
    """Register all CLI commands with the Flask app."""
    app.cli.add_command(customers_cli)
    app.cli.add_command(points_cli)
    app.cli.add_command(buy_points_cli)
    app.cli.add_command(catalog_cli)
