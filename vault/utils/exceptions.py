"""
Custom exceptions for Collecto Vault business logic.

These exceptions provide more specific error handling than generic Exception,
so callers can map each failure to the right user-facing response.
"""


class VaultError(Exception):
    """Base exception for all Vault business logic errors."""

    def __init__(self, message: str, code: str = "VAULT_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(VaultError):
    """Invalid input data."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        code = f"INVALID_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(message, code)


class NotFoundError(VaultError):
    """Resource not found."""

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with ID {identifier} not found"
        super().__init__(message, f"{resource.upper().replace(' ', '_')}_NOT_FOUND")


class CustomerNotFoundError(NotFoundError):
    """Customer not found."""

    def __init__(self, identifier=None):
        super().__init__("Customer", identifier)


class TierNotFoundError(NotFoundError):
    """Tier not found."""

    def __init__(self, identifier=None):
        super().__init__("Tier", identifier)


class EarningRuleNotFoundError(NotFoundError):
    """Earning rule not found."""

    def __init__(self, identifier=None):
        super().__init__("Earning rule", identifier)


class PackageNotFoundError(NotFoundError):
    """Vault package not found."""

    def __init__(self, identifier=None):
        super().__init__("Vault package", identifier)


class TransactionNotFoundError(NotFoundError):
    """Transaction not found."""

    def __init__(self, identifier=None):
        super().__init__("Transaction", identifier)


class InsufficientPointsError(VaultError):
    """Not enough points for the operation."""

    def __init__(self, current: int, required: int):
        self.current = current
        self.required = required
        message = f"Insufficient points. Current: {current}, Required: {required}"
        super().__init__(message, "INSUFFICIENT_POINTS")


class DuplicateError(VaultError):
    """Resource already exists."""

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} already exists"
        if identifier:
            message = f"{resource} with {identifier} already exists"
        super().__init__(message, "DUPLICATE_ENTRY")


class DuplicateEventError(VaultError):
    """An idempotency key has already been processed."""

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} already processed", "DUPLICATE_EVENT")


class InvalidStatusTransitionError(VaultError):
    """Invalid status transition for a resource."""

    def __init__(self, resource: str, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        message = f"Cannot change {resource} status from '{from_status}' to '{to_status}'"
        super().__init__(message, "INVALID_STATUS_TRANSITION")


class UpstreamUnavailableError(VaultError):
    """Error communicating with the Collecto partner API."""

    def __init__(self, message: str, status_code: int = None, original_error: Exception = None):
        self.status_code = status_code
        self.original_error = original_error
        super().__init__(message, "UPSTREAM_UNAVAILABLE")


class PersistenceError(VaultError):
    """Repository I/O failure."""

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(message, "PERSISTENCE_ERROR")
