"""
Persistence layer for the points engine.

LoyaltyRepository is the only place the engine touches the database. Every
method maps SQLAlchemy failures to PersistenceError after rolling back the
session, except IntegrityError on journal inserts, which means the
idempotency key was already used and surfaces as DuplicateEventError.

Writes to a customer row are serialized two ways: lock_customer() issues
SELECT ... FOR UPDATE where the backend supports it, and Customer.version
makes any lost update raise StaleDataError at flush time.
"""
from datetime import datetime
from decimal import Decimal
from functools import wraps
from typing import Optional, List, Dict, Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .extensions import db
from .models import (
    Customer,
    EarningRule,
    Tier,
    Transaction,
    TransactionStatus,
    VaultPackage,
)
from .utils.exceptions import DuplicateError, DuplicateEventError, PersistenceError


def _persistence(func_):
    """Translate database errors raised by a repository call."""
    @wraps(func_)
    def wrapper(*args, **kwargs):
        try:
            return func_(*args, **kwargs)
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceError(f'{func_.__name__} failed: {e}', original_error=e) from e
    return wrapper


class LoyaltyRepository:
    """
    CRUD and aggregate queries over customers, rules, tiers, packages and
    the transaction journal.

    Methods that mutate do not commit unless stated; the caller owns the
    unit of work and ends it with commit() or rollback().
    """

    # ==================== Unit of Work ====================

    @_persistence
    def commit(self) -> None:
        """Commit the unit of work. IntegrityError is re-raised after rollback."""
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise

    def rollback(self) -> None:
        db.session.rollback()

    @_persistence
    def refresh(self, instance) -> None:
        """Reload an instance that a bulk update may have left stale."""
        db.session.refresh(instance)

    # ==================== Customers ====================

    @_persistence
    def get_customer(self, collecto_id: str, client_id: str) -> Optional[Customer]:
        return Customer.query.filter_by(collecto_id=collecto_id, client_id=client_id).first()

    @_persistence
    def get_customer_by_id(self, customer_id: int) -> Optional[Customer]:
        return db.session.get(Customer, customer_id)

    @_persistence
    def lock_customer(self, customer_id: int) -> Optional[Customer]:
        """Load a customer for mutation, refreshing any stale identity-map copy."""
        return (
            Customer.query
            .filter_by(id=customer_id)
            .populate_existing()
            .with_for_update()
            .first()
        )

    @_persistence
    def create_customer(
        self,
        collecto_id: str,
        client_id: str,
        name: str = None,
        email: str = None
    ) -> Customer:
        """Insert and commit a customer. Raises DuplicateError on (collecto_id, client_id) clash."""
        customer = Customer(
            collecto_id=collecto_id,
            client_id=client_id,
            name=name,
            email=email
        )
        db.session.add(customer)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise DuplicateError('Customer', f'clientId {client_id}')
        return customer

    @_persistence
    def update_customer(self, customer_id: int, fields: Dict[str, Any], commit: bool = True) -> Optional[Customer]:
        customer = db.session.get(Customer, customer_id)
        if customer is None:
            return None
        for key, value in fields.items():
            setattr(customer, key, value)
        if commit:
            db.session.commit()
        else:
            db.session.flush()
        return customer

    @_persistence
    def list_customers(self, collecto_id: str = None, include_inactive: bool = False) -> List[Customer]:
        query = Customer.query
        if not include_inactive:
            query = query.filter(Customer.is_active.is_(True))
        if collecto_id:
            query = query.filter(Customer.collecto_id == collecto_id)
        return query.order_by(Customer.created_at.desc(), Customer.id.desc()).all()

    @_persistence
    def list_customer_ids_by_tier(self, tier_id: int) -> List[int]:
        rows = db.session.query(Customer.id).filter(
            Customer.current_tier_id == tier_id
        ).order_by(Customer.id.asc()).all()
        return [row[0] for row in rows]

    @_persistence
    def customer_stats(self, collecto_id: str) -> Dict[str, Any]:
        count, points, purchased = db.session.query(
            func.count(Customer.id),
            func.coalesce(func.sum(Customer.current_points), 0),
            func.coalesce(func.sum(Customer.total_purchased), 0)
        ).filter(
            Customer.collecto_id == collecto_id,
            Customer.is_active.is_(True)
        ).one()
        return {
            'total_customers': int(count),
            'total_points': int(points),
            'total_purchased': Decimal(str(purchased)),
        }

    # ==================== Earning Rules ====================

    @_persistence
    def find_earning_rule(self, rule_id: int) -> Optional[EarningRule]:
        return db.session.get(EarningRule, rule_id)

    @_persistence
    def list_active_rules(self, collecto_id: str) -> List[EarningRule]:
        """Active rules of a scope in creation order."""
        return EarningRule.query.filter_by(
            collecto_id=collecto_id,
            is_active=True
        ).order_by(EarningRule.created_at.asc(), EarningRule.id.asc()).all()

    # ==================== Tiers ====================

    @_persistence
    def find_tier(self, tier_id: int) -> Optional[Tier]:
        return db.session.get(Tier, tier_id)

    @_persistence
    def list_active_tiers(self, collecto_id: str) -> List[Tier]:
        return Tier.query.filter_by(
            collecto_id=collecto_id,
            is_active=True
        ).order_by(Tier.points_required.asc(), Tier.id.asc()).all()

    # ==================== Packages ====================

    @_persistence
    def find_package_by_price(self, price, collecto_id: str) -> Optional[VaultPackage]:
        return VaultPackage.query.filter_by(
            collecto_id=collecto_id,
            is_active=True,
            price=Decimal(str(price))
        ).order_by(VaultPackage.id.asc()).first()

    # ==================== Transaction Journal ====================

    @_persistence
    def find_transaction(self, pk: int) -> Optional[Transaction]:
        return db.session.get(Transaction, pk)

    @_persistence
    def find_transaction_by_external_id(self, transaction_id: str) -> Optional[Transaction]:
        return Transaction.query.filter_by(transaction_id=transaction_id).first()

    @_persistence
    def create_transaction(self, **fields) -> Transaction:
        """
        Add a journal row and flush it.

        A clash on the unique transaction_id rolls back the whole unit of
        work and raises DuplicateEventError, so callers insert the journal
        row before touching balances.
        """
        transaction = Transaction(**fields)
        db.session.add(transaction)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise DuplicateEventError(fields.get('transaction_id'))
        return transaction

    @_persistence
    def update_transaction_status(self, pk: int, status: TransactionStatus) -> Optional[Transaction]:
        """Unconditionally set a journal row's status and commit. Prefer settle_transaction for pending rows."""
        transaction = db.session.get(Transaction, pk)
        if transaction is None:
            return None
        transaction.status = status.value
        if status is TransactionStatus.CONFIRMED:
            transaction.confirmed_at = datetime.utcnow()
        db.session.commit()
        return transaction

    @_persistence
    def settle_transaction(self, pk: int, status: TransactionStatus, **fields) -> bool:
        """
        Compare-and-swap a pending journal row into a terminal status.

        Returns False when the row was no longer pending, meaning another
        request settled it first.
        """
        values = {'status': status.value, 'updated_at': datetime.utcnow()}
        if status is TransactionStatus.CONFIRMED:
            values['confirmed_at'] = datetime.utcnow()
        values.update(fields)
        updated = Transaction.query.filter_by(
            id=pk,
            status=TransactionStatus.PENDING.value
        ).update(values, synchronize_session=False)
        return updated == 1

    @_persistence
    def set_partner_transaction_id(self, pk: int, partner_transaction_id: str) -> None:
        Transaction.query.filter_by(id=pk).update(
            {'partner_transaction_id': partner_transaction_id},
            synchronize_session=False
        )
        db.session.commit()

    @_persistence
    def list_transactions(
        self,
        collecto_id: str = None,
        customer_id: int = None,
        client_id: str = None,
        status: TransactionStatus = None,
        transaction_type=None
    ) -> List[Transaction]:
        query = Transaction.query
        if collecto_id:
            query = query.filter(Transaction.collecto_id == collecto_id)
        if customer_id:
            query = query.filter(Transaction.customer_id == customer_id)
        if client_id:
            query = query.filter(Transaction.client_id == client_id)
        if status:
            query = query.filter(Transaction.status == status.value)
        if transaction_type:
            query = query.filter(Transaction.type == transaction_type.value)
        return query.order_by(Transaction.created_at.desc(), Transaction.id.desc()).all()

    @_persistence
    def list_pending_transactions(
        self,
        transaction_type,
        created_before: datetime = None,
        collecto_id: str = None
    ) -> List[Transaction]:
        query = Transaction.query.filter(
            Transaction.status == TransactionStatus.PENDING.value,
            Transaction.type == transaction_type.value
        )
        if created_before:
            query = query.filter(Transaction.created_at <= created_before)
        if collecto_id:
            query = query.filter(Transaction.collecto_id == collecto_id)
        return query.order_by(Transaction.created_at.asc(), Transaction.id.asc()).all()
