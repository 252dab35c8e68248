"""
Database models for Collecto Vault.
Customers, earning rules, reward tiers, point packages and the transaction journal.
"""
from .tier import Tier
from .customer import Customer
from .earning_rule import EarningRule
from .vault_package import VaultPackage
from .transaction import (
    Transaction,
    TransactionType,
    TransactionStatus,
    BUY_POINTS_REFERENCE,
)

__all__ = [
    'Tier',
    'Customer',
    'EarningRule',
    'VaultPackage',
    'Transaction',
    'TransactionType',
    'TransactionStatus',
    'BUY_POINTS_REFERENCE',
]
