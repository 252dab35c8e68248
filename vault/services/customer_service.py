"""
Customer Service for Collecto Vault.

Customer lifecycle (get-or-create, admin create/update, soft deactivation),
merchant statistics, and the entry points that turn partner invoices and
payments into point earnings through the PointsEngine.
"""
from decimal import Decimal
from typing import Optional, List, Dict, Any

from flask import current_app

from ..models import Customer, Transaction
from ..repository import LoyaltyRepository
from ..utils.exceptions import (
    CustomerNotFoundError,
    DuplicateError,
    UpstreamUnavailableError,
    ValidationError,
)
from .points_engine import PointsEngine, to_amount


DEFAULT_CUSTOMER_NAME = 'New Customer'


class CustomerService:
    """
    Customer operations for one merchant (collecto) account.

    Usage:
        service = CustomerService('M1')
        customer = service.process_invoice_payment('C1', 1000, 'INV-1')
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
        self._collecto_client = collecto_client

    @property
    def collecto_client(self):
        if self._collecto_client is None:
            from .collecto_client import CollectoClient
            self._collecto_client = CollectoClient()
        return self._collecto_client

    def _require_scope(self) -> str:
        if not self.collecto_id:
            raise ValidationError('collectoId is required', 'collecto_id')
        return self.collecto_id

    # ==================== Lookup ====================

    def list_customers(self, include_inactive: bool = False) -> List[Customer]:
        return self.repository.list_customers(self.collecto_id, include_inactive=include_inactive)

    def get_customer(self, customer_id: int) -> Customer:
        """Get a customer by id. Deactivated customers are still returned."""
        customer = self.repository.get_customer_by_id(customer_id)
        if customer is None or (self.collecto_id and customer.collecto_id != self.collecto_id):
            raise CustomerNotFoundError(customer_id)
        return customer

    def get_customer_by_client_id(self, client_id: str) -> Customer:
        customer = self.repository.get_customer(self._require_scope(), client_id)
        if customer is None:
            raise CustomerNotFoundError(client_id)
        return customer

    # ==================== Lifecycle ====================

    def get_or_create_customer(self, client_id: str, name: str = None, email: str = None) -> Customer:
        """
        Idempotent get-or-create on (collecto_id, client_id).

        A concurrent create of the same pair loses the unique constraint race
        and re-reads the winner's row.
        """
        collecto_id = self._require_scope()
        if not client_id:
            raise ValidationError('clientId is required', 'client_id')

        customer = self.repository.get_customer(collecto_id, client_id)
        if customer is not None:
            if not customer.is_active:
                current_app.logger.warning(f'Customer {collecto_id}/{client_id} is deactivated')
            return customer

        try:
            customer = self.repository.create_customer(
                collecto_id, client_id, name=name or DEFAULT_CUSTOMER_NAME, email=email
            )
            current_app.logger.info(f'Customer created: {collecto_id}/{client_id}')
            return customer
        except DuplicateError:
            customer = self.repository.get_customer(collecto_id, client_id)
            if customer is None:
                raise
            return customer

    def create_customer(self, client_id: str, name: str, email: str = None) -> Customer:
        """Admin create. Rejects an existing (collecto_id, client_id) pair."""
        collecto_id = self._require_scope()
        if not client_id or not name or not name.strip():
            raise ValidationError('collectoId, clientId, and name are required')

        if self.repository.get_customer(collecto_id, client_id) is not None:
            raise DuplicateError('Customer', f'clientId {client_id}')

        customer = self.repository.create_customer(collecto_id, client_id, name=name.strip(), email=email)
        current_app.logger.info(f'Customer created by admin: {collecto_id}/{client_id}')
        return customer

    def update_customer(self, customer_id: int, name: str = None, email: str = None) -> Customer:
        """Update contact details. Point pools and tier are not editable here."""
        self.get_customer(customer_id)
        fields = {}
        if name is not None:
            if not name.strip():
                raise ValidationError('Name cannot be empty', 'name')
            fields['name'] = name.strip()
        if email is not None:
            fields['email'] = email.strip() or None
        if not fields:
            return self.get_customer(customer_id)
        return self.repository.update_customer(customer_id, fields)

    def deactivate_customer(self, customer_id: int) -> Customer:
        self.get_customer(customer_id)
        customer = self.repository.update_customer(customer_id, {'is_active': False})
        current_app.logger.info(f'Customer {customer_id} deactivated')
        return customer

    # ==================== Points ====================

    def process_invoice_payment(
        self,
        client_id: str,
        amount,
        invoice_id: str,
        rule_id: Optional[int] = None,
        name: str = None
    ) -> Customer:
        """Credit a confirmed partner payment to the (possibly new) customer."""
        customer = self.get_or_create_customer(client_id, name=name)
        return self.engine.apply_invoice_earning(
            customer, self.collecto_id, amount, rule_id=rule_id, idempotency_key=invoice_id
        )

    def purchase_points(self, customer_id: int, points_to_purchase, amount) -> Customer:
        """Admin/manual points purchase, applied immediately."""
        return self.engine.purchase_points(self.get_customer(customer_id), points_to_purchase, amount)

    def redeem_points(self, customer_id: int, points_to_redeem, idempotency_key: str = None) -> Customer:
        return self.engine.redeem_points(
            self.get_customer(customer_id), points_to_redeem, idempotency_key=idempotency_key
        )

    def recalculate_tier(self, customer_id: int) -> Customer:
        customer = self.get_customer(customer_id)
        return self.engine.recompute_tier(customer, customer.collecto_id)

    def transaction_history(self, customer_id: int) -> List[Transaction]:
        self.get_customer(customer_id)
        return self.repository.list_transactions(customer_id=customer_id)

    # ==================== Partner Sync ====================

    def sync_invoices(self, client_id: str, user_token: str = None) -> Dict[str, Any]:
        """
        Pull the customer's invoices from Collecto and credit each paid one.

        Each invoice id is its own idempotency key, so re-syncing never
        credits twice. Nothing is credited when Collecto is unavailable.
        """
        return self._sync(client_id, user_token, 'invoices')

    def sync_payments(self, client_id: str, user_token: str = None) -> Dict[str, Any]:
        """
        Pull the customer's payments from Collecto and credit each one.

        Payments are keyed by the invoice they settle (falling back to the
        payment id), so an invoice already credited by sync_invoices is not
        credited again.
        """
        return self._sync(client_id, user_token, 'payments')

    def _sync(self, client_id: str, user_token: Optional[str], kind: str) -> Dict[str, Any]:
        collecto_id = self._require_scope()
        customer = self.get_or_create_customer(client_id)

        fetch = self.collecto_client.list_invoices if kind == 'invoices' else self.collecto_client.list_payments
        try:
            records = fetch(collecto_id, client_id, user_token=user_token)
        except UpstreamUnavailableError as e:
            current_app.logger.warning(f'Collecto {kind} unavailable for {collecto_id}/{client_id}: {e.message}')
            return {'customer': customer, kind: [], 'processed': 0, 'upstream_error': e.message}

        processed = 0
        for record in records:
            # A payment settles an invoice, so both share the invoice id as key
            key = record.get('invoiceId') if kind == 'payments' else None
            key = key or record.get('id')
            try:
                amount = to_amount(record.get('amount'), allow_zero=False)
            except ValidationError:
                amount = None
            if not key or amount is None:
                current_app.logger.warning(
                    f'Skipping {kind} record without id or positive amount for {collecto_id}/{client_id}: {record}'
                )
                continue
            customer = self.engine.apply_invoice_earning(
                customer, collecto_id, amount, idempotency_key=str(key)
            )
            processed += 1

        current_app.logger.info(f'Synced {processed} {kind} for {collecto_id}/{client_id}')
        return {'customer': customer, kind: records, 'processed': processed}

    # ==================== Statistics ====================

    def get_customer_stats(self) -> Dict[str, Any]:
        stats = self.repository.customer_stats(self._require_scope())
        count = stats['total_customers']
        return {
            'total_customers': count,
            'total_points': stats['total_points'],
            'total_purchased': float(stats['total_purchased'] or Decimal('0')),
            'average_points_per_customer': stats['total_points'] // count if count else 0,
        }
