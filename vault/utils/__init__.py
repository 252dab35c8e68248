"""
Utility modules for Collecto Vault.
"""
from .logging_config import setup_logging, get_logger
from .exceptions import (
    VaultError,
    ValidationError,
    NotFoundError,
    CustomerNotFoundError,
    TierNotFoundError,
    EarningRuleNotFoundError,
    PackageNotFoundError,
    TransactionNotFoundError,
    InsufficientPointsError,
    DuplicateError,
    DuplicateEventError,
    InvalidStatusTransitionError,
    UpstreamUnavailableError,
    PersistenceError,
)
