"""
Buy Points Service for Collecto Vault.

Customers buy points through the partner's request-to-pay. Each purchase is
journaled as a pending POINTS_PURCHASE row before the partner is contacted,
then settled to confirmed (points credited to the bought pool) or failed.

STATE MACHINE:
    pending -> confirmed   partner reports success, or admin confirms
    pending -> failed      partner reports failure, or admin fails it
Terminal rows never move again.
"""
import math
import uuid
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any

from flask import current_app

from ..models import (
    Transaction,
    TransactionType,
    TransactionStatus,
    BUY_POINTS_REFERENCE,
)
from ..repository import LoyaltyRepository
from ..utils.exceptions import (
    CustomerNotFoundError,
    DuplicateEventError,
    TransactionNotFoundError,
    UpstreamUnavailableError,
    ValidationError,
)
from .collecto_client import (
    extract_status,
    extract_transaction_id,
    is_failure_status,
    is_success_status,
)
from .customer_service import CustomerService
from .points_engine import PointsEngine, to_amount, require_key


class BuyPointsService:
    """
    Pending buy-points purchases for one merchant.

    Usage:
        service = BuyPointsService('M1')
        result = service.initiate_purchase('C1', 5000, 'mobilemoney', phone='256700000000')
        transaction = service.check_status(result['transaction'].transaction_id)
    """

    def __init__(
        self,
        collecto_id: str = None,
        repository: LoyaltyRepository = None,
        engine: PointsEngine = None,
        collecto_client=None
    ):
        self.collecto_id = collecto_id
        self.repository = repository or LoyaltyRepository()
        self.engine = engine or PointsEngine(self.repository)
        self.customers = CustomerService(
            collecto_id,
            repository=self.repository,
            engine=self.engine,
            collecto_client=collecto_client
        )

    @property
    def collecto_client(self):
        return self.customers.collecto_client

    # ==================== Initiate ====================

    def points_for_amount(self, amount) -> int:
        """Points a payment buys: a package priced exactly at amount, else one point per unit."""
        package = self.repository.find_package_by_price(amount, self.collecto_id)
        if package is not None:
            return package.points_amount
        return int(math.floor(amount))

    def initiate_purchase(
        self,
        client_id: str,
        amount,
        payment_option: str,
        phone: str = None,
        transaction_id: str = None,
        name: str = None,
        user_token: str = None
    ) -> Dict[str, Any]:
        """
        Journal a pending purchase and ask the partner to collect payment.

        Returns:
            {'transaction': Transaction, 'points': int, 'partner': partner response or None,
             'error': message when the partner could not be reached}
        """
        amount = to_amount(amount, allow_zero=False)
        if not payment_option:
            raise ValidationError('paymentOption is required', 'payment_option')
        if transaction_id is not None:
            key = require_key(transaction_id, 'transaction_id')
        else:
            key = f'BP-{uuid.uuid4().hex[:16]}'

        existing = self.repository.find_transaction_by_external_id(key)
        if existing is not None:
            current_app.logger.info(f'Buy-points {key} already initiated ({existing.status})')
            return {'transaction': existing, 'points': existing.points, 'partner': None}

        customer = self.customers.get_or_create_customer(client_id, name=name)
        points = self.points_for_amount(amount)
        if points <= 0:
            raise ValidationError(f'Amount {amount} buys no points', 'amount')

        try:
            transaction = self.repository.create_transaction(
                customer_id=customer.id,
                collecto_id=customer.collecto_id,
                client_id=customer.client_id,
                transaction_id=key,
                reference=BUY_POINTS_REFERENCE,
                type=TransactionType.POINTS_PURCHASE.value,
                amount=amount,
                points=points,
                status=TransactionStatus.PENDING.value,
                payment_method=payment_option,
                phone=phone
            )
            self.repository.commit()
        except DuplicateEventError:
            existing = self.repository.find_transaction_by_external_id(key)
            return {'transaction': existing, 'points': existing.points, 'partner': None}

        current_app.logger.info(
            f'Buy-points initiated: {customer.collecto_id}/{customer.client_id} '
            f'{points} pts for {amount} via {payment_option} [{key}]'
        )

        try:
            partner = self.collecto_client.request_to_pay(
                customer.collecto_id,
                customer.client_id,
                amount,
                phone,
                payment_option,
                key,
                user_token=user_token
            )
        except UpstreamUnavailableError as e:
            current_app.logger.error(f'Request-to-pay for {key} failed, left pending: {e.message}')
            return {'transaction': transaction, 'points': points, 'partner': None, 'error': e.message}

        partner_id = extract_transaction_id(partner)
        if partner_id and partner_id != key:
            self.repository.set_partner_transaction_id(transaction.id, partner_id)
            self.repository.refresh(transaction)

        return {'transaction': transaction, 'points': points, 'partner': partner}

    # ==================== Settlement ====================

    def check_status(self, transaction_id: str, user_token: str = None) -> Transaction:
        """
        Poll the partner for a pending purchase and settle it.

        Terminal rows are returned untouched. An unreachable partner or an
        undecided status leaves the row pending.
        """
        transaction = self.get_by_transaction_id(transaction_id)
        if transaction.is_terminal:
            return transaction

        poll_id = transaction.partner_transaction_id or transaction.transaction_id
        try:
            response = self.collecto_client.check_payment_status(poll_id, user_token=user_token)
        except UpstreamUnavailableError as e:
            current_app.logger.warning(f'Status poll for {transaction_id} failed: {e.message}')
            return transaction

        status = extract_status(response)
        if is_success_status(status):
            return self.engine.settle_purchase(transaction, TransactionStatus.CONFIRMED)
        if is_failure_status(status):
            return self.engine.settle_purchase(transaction, TransactionStatus.FAILED)

        current_app.logger.info(f'Buy-points {transaction_id} still pending (partner status {status!r})')
        return transaction

    def confirm_transaction(self, transaction_id: str) -> Transaction:
        return self.engine.settle_purchase(
            self.get_by_transaction_id(transaction_id), TransactionStatus.CONFIRMED
        )

    def fail_transaction(self, transaction_id: str) -> Transaction:
        return self.engine.settle_purchase(
            self.get_by_transaction_id(transaction_id), TransactionStatus.FAILED
        )

    def reconcile_pending(self, older_than_minutes: int = 10) -> Dict[str, int]:
        """
        Poll every pending purchase older than the threshold.

        Returns:
            Counts of confirmed, failed and still-pending rows
        """
        cutoff = datetime.utcnow() - timedelta(minutes=older_than_minutes)
        pending = self.repository.list_pending_transactions(
            TransactionType.POINTS_PURCHASE,
            created_before=cutoff,
            collecto_id=self.collecto_id
        )

        results = {'checked': 0, 'confirmed': 0, 'failed': 0, 'pending': 0}
        for transaction in pending:
            results['checked'] += 1
            settled = self.check_status(transaction.transaction_id)
            results[settled.status] = results.get(settled.status, 0) + 1

        current_app.logger.info(
            f'Reconciled {results["checked"]} pending purchases: '
            f'{results["confirmed"]} confirmed, {results["failed"]} failed'
        )
        return results

    # ==================== Queries ====================

    def get_transaction(self, pk: int) -> Transaction:
        transaction = self.repository.find_transaction(pk)
        if not self._visible(transaction):
            raise TransactionNotFoundError(pk)
        return transaction

    def get_by_transaction_id(self, transaction_id: str) -> Transaction:
        transaction = self.repository.find_transaction_by_external_id(
            require_key(transaction_id, 'transaction_id')
        )
        if not self._visible(transaction):
            raise TransactionNotFoundError(transaction_id)
        return transaction

    def list_for_customer(self, customer_id: int, status: Optional[TransactionStatus] = None) -> List[Transaction]:
        customer = self.repository.get_customer_by_id(customer_id)
        if customer is None:
            raise CustomerNotFoundError(customer_id)
        return self.repository.list_transactions(
            customer_id=customer_id,
            status=status,
            transaction_type=TransactionType.POINTS_PURCHASE
        )

    def list_for_client(self, client_id: str) -> List[Transaction]:
        return self.repository.list_transactions(
            collecto_id=self.collecto_id,
            client_id=client_id,
            transaction_type=TransactionType.POINTS_PURCHASE
        )

    def list_transactions(self, status: Optional[TransactionStatus] = None) -> List[Transaction]:
        return self.repository.list_transactions(
            collecto_id=self.collecto_id,
            status=status,
            transaction_type=TransactionType.POINTS_PURCHASE
        )

    def _visible(self, transaction: Optional[Transaction]) -> bool:
        if transaction is None or transaction.type != TransactionType.POINTS_PURCHASE.value:
            return False
        return not self.collecto_id or transaction.collecto_id == self.collecto_id
