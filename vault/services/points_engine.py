"""
Points Engine for Collecto Vault.

The single authority for converting external events into point-balance and
tier changes:
- Invoice/payment earnings (rule base points x tier multiplier, earned pool)
- Direct point purchases (bought pool)
- Settlement of pending buy-points transactions (bought pool)
- Redemptions (earned pool drained first, then bought pool)
- Tier recalculation against the merchant's threshold ladder
- Moving holders off a tier that is being deleted

IDEMPOTENCY:
- Every credit is journaled under an external transaction id. The journal row
  is inserted before any balance changes in the same unit of work, so a
  concurrent duplicate trips the unique constraint and the whole unit rolls
  back. Duplicates are never surfaced as errors: the caller gets the current
  customer back unchanged.

Nothing outside this module writes Customer.earned_points,
Customer.bought_points or Customer.current_tier_id.
"""

import math
import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple, Iterable

from flask import current_app

from ..models import (
    Customer,
    Tier,
    Transaction,
    TransactionType,
    TransactionStatus,
    BUY_POINTS_REFERENCE,
)
from ..repository import LoyaltyRepository
from ..utils.exceptions import (
    CustomerNotFoundError,
    DuplicateEventError,
    InsufficientPointsError,
    InvalidStatusTransitionError,
    TransactionNotFoundError,
    ValidationError,
)


# Multiplier applied when the customer holds no tier
BASE_MULTIPLIER = Decimal('1')


# ==================== Pure Calculations ====================

def calculate_points(base_points: int, multiplier) -> int:
    """floor(base_points * multiplier), computed in decimal arithmetic."""
    return int(math.floor(Decimal(base_points) * Decimal(str(multiplier))))


def select_tier(tiers: Iterable[Tier], points: int) -> Optional[Tier]:
    """
    Pick the tier a balance qualifies for.

    Highest points_required not above the balance wins. Equal thresholds
    prefer the higher earning multiplier, then the lower id.
    """
    qualifying = [t for t in tiers if t.points_required <= points]
    if not qualifying:
        return None
    return max(
        qualifying,
        key=lambda t: (t.points_required, Decimal(str(t.earning_multiplier)), -t.id)
    )


def split_redemption(earned: int, bought: int, points: int) -> Tuple[int, int]:
    """Return (earned, bought) after spending points, earned pool first."""
    from_earned = min(earned, points)
    remainder = points - from_earned
    return earned - from_earned, max(0, bought - remainder)


# ==================== Input Validation ====================

def to_amount(value, field: str = 'amount', allow_zero: bool = True) -> Decimal:
    """Parse a monetary amount into a finite, non-negative Decimal."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f'{field} is required', field)
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field} must be a number', field)
    if not amount.is_finite():
        raise ValidationError(f'{field} must be a finite number', field)
    if amount < 0 or (amount == 0 and not allow_zero):
        qualifier = 'non-negative' if allow_zero else 'greater than 0'
        raise ValidationError(f'{field} must be {qualifier}', field)
    return amount


def to_points(value, field: str = 'points') -> int:
    """Parse a positive whole number of points."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f'{field} is required', field)
    try:
        points = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field} must be a whole number', field)
    if not points.is_finite() or points != points.to_integral_value():
        raise ValidationError(f'{field} must be a whole number', field)
    if points <= 0:
        raise ValidationError(f'{field} must be greater than 0', field)
    return int(points)


def require_key(value, field: str = 'transaction_id') -> str:
    key = str(value).strip() if value is not None else ''
    if not key:
        raise ValidationError(f'{field} is required', field)
    return key


class PointsEngine:
    """
    Applies point-affecting events to customers.

    Usage:
        engine = PointsEngine()

        customer = engine.apply_invoice_earning(customer, 'M1', 1000, None, 'INV-1')
        customer = engine.purchase_points(customer, 200, 5000)
        customer = engine.redeem_points(customer, 40)
        customer = engine.recompute_tier(customer)
    """

    def __init__(self, repository: LoyaltyRepository = None):
        self.repository = repository or LoyaltyRepository()

    # ==================== Earning ====================

    def apply_invoice_earning(
        self,
        customer: Customer,
        collecto_id: str,
        amount,
        rule_id: Optional[int] = None,
        idempotency_key: str = None
    ) -> Customer:
        """
        Credit points for a paid invoice or confirmed payment.

        Args:
            customer: Customer who paid
            collecto_id: Merchant scope the payment belongs to
            amount: Amount paid (>= 0), added to total_purchased
            rule_id: Earning rule to apply; defaults to the scope's oldest active rule
            idempotency_key: External invoice/transaction id

        Returns:
            Updated customer (unchanged if the key was already processed)
        """
        amount = to_amount(amount)
        key = require_key(idempotency_key, 'idempotency_key')
        collecto_id = self._scope(customer, collecto_id)
        repo = self.repository

        existing = repo.find_transaction_by_external_id(key)
        if existing is not None and (
            existing.is_terminal or existing.type != TransactionType.INVOICE_EARNING.value
        ):
            current_app.logger.info(f'Invoice {key} already processed ({existing.status}), skipping')
            return self._reload(customer.id)

        locked = self._lock(customer.id)
        base_points = self._base_points(collecto_id, rule_id)
        multiplier = self._multiplier(locked)
        points_earned = calculate_points(base_points, multiplier)

        try:
            if existing is None:
                repo.create_transaction(
                    customer_id=locked.id,
                    collecto_id=collecto_id,
                    client_id=locked.client_id,
                    transaction_id=key,
                    reference=f'INVOICE:{key}',
                    type=TransactionType.INVOICE_EARNING.value,
                    amount=amount,
                    points=points_earned,
                    status=TransactionStatus.CONFIRMED.value,
                    confirmed_at=datetime.utcnow()
                )
            elif not repo.settle_transaction(
                existing.id, TransactionStatus.CONFIRMED, points=points_earned, amount=amount
            ):
                raise DuplicateEventError(key)
        except DuplicateEventError:
            repo.rollback()
            current_app.logger.info(f'Invoice {key} processed concurrently, skipping')
            return self._reload(customer.id)

        locked.earned_points = locked.earned_points + points_earned
        locked.total_purchased = (locked.total_purchased or Decimal('0')) + amount
        self._apply_tier(locked, collecto_id)
        repo.commit()

        current_app.logger.info(
            f'Invoice earning: customer {locked.collecto_id}/{locked.client_id} '
            f'+{points_earned} pts ({base_points} base x{multiplier}) for {amount} [{key}]'
        )
        return locked

    def purchase_points(
        self,
        customer: Customer,
        points_to_purchase,
        amount,
        idempotency_key: str = None,
        payment_method: str = None
    ) -> Customer:
        """
        Credit directly purchased points to the bought pool.

        The journal row is only written when an idempotency key is supplied;
        admin-initiated purchases may omit it.
        """
        points = to_points(points_to_purchase, 'points_to_purchase')
        amount = to_amount(amount, allow_zero=False)
        repo = self.repository

        key = None
        if idempotency_key is not None:
            key = require_key(idempotency_key, 'idempotency_key')
            if repo.find_transaction_by_external_id(key) is not None:
                current_app.logger.info(f'Points purchase {key} already processed, skipping')
                return self._reload(customer.id)

        locked = self._lock(customer.id)

        if key:
            try:
                repo.create_transaction(
                    customer_id=locked.id,
                    collecto_id=locked.collecto_id,
                    client_id=locked.client_id,
                    transaction_id=key,
                    reference=BUY_POINTS_REFERENCE,
                    type=TransactionType.POINTS_PURCHASE.value,
                    amount=amount,
                    points=points,
                    status=TransactionStatus.CONFIRMED.value,
                    payment_method=payment_method,
                    confirmed_at=datetime.utcnow()
                )
            except DuplicateEventError:
                current_app.logger.info(f'Points purchase {key} processed concurrently, skipping')
                return self._reload(customer.id)

        self._credit_bought(locked, points, amount)
        repo.commit()

        current_app.logger.info(
            f'Points purchase: customer {locked.collecto_id}/{locked.client_id} '
            f'+{points} pts for {amount}'
        )
        return locked

    def settle_purchase(self, transaction: Transaction, status: TransactionStatus) -> Transaction:
        """
        Move a pending buy-points transaction to a terminal status.

        Confirming credits the points stored on the row to the bought pool.
        Settling an already-settled row to the same status is a no-op;
        flipping it to the other terminal status raises
        InvalidStatusTransitionError.
        """
        if status is TransactionStatus.PENDING:
            raise ValidationError('Cannot settle a transaction to pending', 'status')
        if transaction.type != TransactionType.POINTS_PURCHASE.value:
            raise ValidationError(
                f'Transaction {transaction.transaction_id} is not a points purchase', 'type'
            )
        repo = self.repository

        locked = self._lock(transaction.customer_id) if status is TransactionStatus.CONFIRMED else None

        if not repo.settle_transaction(transaction.id, status):
            repo.rollback()
            current = repo.find_transaction(transaction.id)
            if current is None:
                raise TransactionNotFoundError(transaction.transaction_id)
            self.repository.refresh(current)
            if current.status != status.value:
                raise InvalidStatusTransitionError('transaction', current.status, status.value)
            current_app.logger.info(
                f'Transaction {current.transaction_id} already {current.status}, skipping'
            )
            return current

        if locked is not None:
            self._credit_bought(locked, transaction.points, transaction.amount)
        repo.commit()

        current = repo.find_transaction(transaction.id)
        self.repository.refresh(current)
        current_app.logger.info(
            f'Transaction {current.transaction_id} {status.value}'
            + (f': +{current.points} bought pts' if locked is not None else '')
        )
        return current

    # ==================== Redemption ====================

    def redeem_points(
        self,
        customer: Customer,
        points_to_redeem,
        idempotency_key: str = None,
        reference: str = None
    ) -> Customer:
        """
        Spend points, draining the earned pool before the bought pool.

        Raises:
            ValidationError: points_to_redeem is not a positive whole number
            InsufficientPointsError: balance is below points_to_redeem
        """
        points = to_points(points_to_redeem, 'points_to_redeem')
        repo = self.repository

        if idempotency_key is not None:
            key = require_key(idempotency_key, 'idempotency_key')
            if repo.find_transaction_by_external_id(key) is not None:
                current_app.logger.info(f'Redemption {key} already processed, skipping')
                return self._reload(customer.id)
        else:
            key = f'RDM-{uuid.uuid4().hex}'

        locked = self._lock(customer.id)
        balance = locked.current_points
        if points > balance:
            repo.rollback()
            raise InsufficientPointsError(balance, points)

        try:
            repo.create_transaction(
                customer_id=locked.id,
                collecto_id=locked.collecto_id,
                client_id=locked.client_id,
                transaction_id=key,
                reference=reference,
                type=TransactionType.REDEMPTION.value,
                amount=Decimal('0'),
                points=points,
                status=TransactionStatus.CONFIRMED.value,
                confirmed_at=datetime.utcnow()
            )
        except DuplicateEventError:
            current_app.logger.info(f'Redemption {key} processed concurrently, skipping')
            return self._reload(customer.id)

        locked.earned_points, locked.bought_points = split_redemption(
            locked.earned_points, locked.bought_points, points
        )
        self._apply_tier(locked, locked.collecto_id)
        repo.commit()

        current_app.logger.info(
            f'Redemption: customer {locked.collecto_id}/{locked.client_id} -{points} pts '
            f'(balance {locked.current_points})'
        )
        return locked

    # ==================== Tiers ====================

    def recompute_tier(self, customer: Customer, collecto_id: str = None) -> Customer:
        """Re-derive the customer's tier and persist it only if it changed."""
        collecto_id = self._scope(customer, collecto_id)
        locked = self._lock(customer.id)
        if self._apply_tier(locked, collecto_id):
            self.repository.commit()
        else:
            self.repository.rollback()
        return self._reload(customer.id)

    def detach_tier(self, tier_id: int) -> int:
        """
        Move every holder of a tier to the best other tier they qualify for.

        Used before a tier is deleted. Holders that qualify for no other
        active tier end up untiered.

        Returns:
            Number of customers moved off the tier
        """
        moved = 0
        for customer_id in self.repository.list_customer_ids_by_tier(tier_id):
            locked = self._lock(customer_id)
            if locked.current_tier_id != tier_id:
                continue
            self._apply_tier(locked, locked.collecto_id, exclude_tier_id=tier_id)
            moved += 1
        self.repository.commit()
        return moved

    # ==================== Helpers ====================

    def _credit_bought(self, customer: Customer, points: int, amount) -> None:
        customer.bought_points = customer.bought_points + points
        customer.total_purchased = (customer.total_purchased or Decimal('0')) + Decimal(str(amount))
        self._apply_tier(customer, customer.collecto_id)

    def _apply_tier(self, customer: Customer, collecto_id: str, exclude_tier_id: int = None) -> bool:
        tiers = [t for t in self.repository.list_active_tiers(collecto_id) if t.id != exclude_tier_id]
        tier = select_tier(tiers, customer.current_points)
        new_tier_id = tier.id if tier else None
        if new_tier_id == customer.current_tier_id:
            return False

        current_app.logger.info(
            f'Tier change: customer {customer.collecto_id}/{customer.client_id} '
            f'{customer.current_tier_id} -> {new_tier_id} at {customer.current_points} pts'
        )
        customer.current_tier_id = new_tier_id
        return True

    def _base_points(self, collecto_id: str, rule_id: Optional[int]) -> int:
        """Base points of the explicit rule, else the scope's oldest active rule, else 0."""
        if rule_id is not None:
            rule = self.repository.find_earning_rule(rule_id)
            if rule is None or not rule.is_active or rule.collecto_id != collecto_id:
                current_app.logger.warning(
                    f'Earning rule {rule_id} unavailable for {collecto_id}, awarding 0 base points'
                )
                return 0
            return rule.points

        rules = self.repository.list_active_rules(collecto_id)
        if not rules:
            current_app.logger.warning(f'No active earning rules for {collecto_id}, awarding 0 base points')
            return 0
        return rules[0].points

    def _multiplier(self, customer: Customer) -> Decimal:
        if customer.current_tier_id is None:
            return BASE_MULTIPLIER
        tier = self.repository.find_tier(customer.current_tier_id)
        if tier is None or not tier.is_active:
            return BASE_MULTIPLIER
        return Decimal(str(tier.earning_multiplier))

    def _scope(self, customer: Customer, collecto_id: Optional[str]) -> str:
        if collecto_id and collecto_id != customer.collecto_id:
            raise ValidationError(
                f'Customer {customer.id} does not belong to {collecto_id}', 'collecto_id'
            )
        return customer.collecto_id

    def _lock(self, customer_id: int) -> Customer:
        customer = self.repository.lock_customer(customer_id)
        if customer is None:
            raise CustomerNotFoundError(customer_id)
        return customer

    def _reload(self, customer_id: int) -> Customer:
        customer = self.repository.get_customer_by_id(customer_id)
        if customer is None:
            raise CustomerNotFoundError(customer_id)
        self.repository.refresh(customer)
        return customer
