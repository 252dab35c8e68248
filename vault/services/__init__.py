"""
Business services for Collecto Vault.
"""
from .points_engine import PointsEngine
from .collecto_client import CollectoClient
from .customer_service import CustomerService
from .buy_points_service import BuyPointsService
from .earning_rule_service import EarningRuleService
from .tier_service import TierService
from .vault_package_service import VaultPackageService

__all__ = [
    'PointsEngine',
    'CollectoClient',
    'CustomerService',
    'BuyPointsService',
    'EarningRuleService',
    'TierService',
    'VaultPackageService',
]
