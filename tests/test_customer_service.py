"""
Tests for the Customer Service.

Customer lifecycle, merchant statistics, and invoice/payment sync with the
Collecto client mocked out.
"""
from decimal import Decimal

import pytest

from vault.extensions import db
from vault.models import Customer, Transaction
from vault.services.customer_service import CustomerService, DEFAULT_CUSTOMER_NAME
from vault.utils.exceptions import (
    CustomerNotFoundError,
    DuplicateError,
    UpstreamUnavailableError,
    ValidationError,
)


class TestCustomerLifecycle:
    """Tests for get-or-create, create, update and deactivate."""

    def test_get_or_create_creates_once(self, app, collecto_id):
        service = CustomerService(collecto_id)

        first = service.get_or_create_customer('C1')
        second = service.get_or_create_customer('C1', name='Ignored')

        assert first.id == second.id
        assert first.name == DEFAULT_CUSTOMER_NAME
        assert first.current_points == 0
        assert first.current_tier_id is None
        assert Customer.query.count() == 1

    def test_get_or_create_is_scoped_by_merchant(self, app):
        one = CustomerService('M1').get_or_create_customer('C1')
        two = CustomerService('M2').get_or_create_customer('C1')

        assert one.id != two.id

    def test_get_or_create_requires_scope(self, app):
        with pytest.raises(ValidationError):
            CustomerService().get_or_create_customer('C1')

    def test_get_or_create_requires_client_id(self, app, collecto_id):
        with pytest.raises(ValidationError):
            CustomerService(collecto_id).get_or_create_customer('')

    def test_create_customer(self, app, collecto_id):
        customer = CustomerService(collecto_id).create_customer('C9', '  Jane  ', email='jane@example.com')

        assert customer.id is not None
        assert customer.name == 'Jane'
        assert customer.email == 'jane@example.com'

    def test_create_duplicate_rejected(self, app, collecto_id, customer):
        with pytest.raises(DuplicateError):
            CustomerService(collecto_id).create_customer('C1', 'Someone')

    def test_create_requires_name(self, app, collecto_id):
        with pytest.raises(ValidationError):
            CustomerService(collecto_id).create_customer('C9', '   ')

    def test_update_customer(self, app, collecto_id, customer):
        updated = CustomerService(collecto_id).update_customer(customer.id, name='New Name', email='n@example.com')

        assert updated.name == 'New Name'
        assert updated.email == 'n@example.com'
        assert updated.current_points == 0

    def test_update_rejects_empty_name(self, app, collecto_id, customer):
        with pytest.raises(ValidationError):
            CustomerService(collecto_id).update_customer(customer.id, name=' ')

    def test_get_customer_other_merchant_not_found(self, app, customer):
        with pytest.raises(CustomerNotFoundError):
            CustomerService('M2').get_customer(customer.id)

    def test_get_unknown_customer(self, app, collecto_id):
        with pytest.raises(CustomerNotFoundError):
            CustomerService(collecto_id).get_customer(404)

    def test_get_by_client_id(self, app, collecto_id, customer):
        assert CustomerService(collecto_id).get_customer_by_client_id('C1').id == customer.id

        with pytest.raises(CustomerNotFoundError):
            CustomerService(collecto_id).get_customer_by_client_id('nobody')

    def test_deactivate_hides_from_listing(self, app, collecto_id, customer):
        service = CustomerService(collecto_id)

        service.deactivate_customer(customer.id)

        assert service.list_customers() == []
        assert len(service.list_customers(include_inactive=True)) == 1
        assert service.get_customer(customer.id).is_active is False

    def test_deactivated_customer_still_returned_by_get_or_create(self, app, collecto_id, customer):
        service = CustomerService(collecto_id)
        service.deactivate_customer(customer.id)

        assert service.get_or_create_customer('C1').id == customer.id
        assert Customer.query.count() == 1


class TestInvoicePayment:
    """Tests for CustomerService.process_invoice_payment."""

    def test_new_customer_earns_on_first_invoice(self, app, collecto_id, earning_rule, tier_ladder):
        customer = CustomerService(collecto_id).process_invoice_payment('C1', 1000, 'INV-1')

        assert customer.client_id == 'C1'
        assert customer.earned_points == 50
        assert customer.current_points == 50
        assert customer.total_purchased == Decimal('1000')
        assert customer.current_tier_id is None

    def test_replayed_invoice_is_ignored(self, app, collecto_id, earning_rule):
        service = CustomerService(collecto_id)

        service.process_invoice_payment('C1', 1000, 'INV-1')
        customer = service.process_invoice_payment('C1', 1000, 'INV-1')

        assert customer.earned_points == 50
        assert Transaction.query.count() == 1

    def test_explicit_rule(self, app, collecto_id, earning_rule):
        customer = CustomerService(collecto_id).process_invoice_payment(
            'C1', 10, 'INV-1', rule_id=earning_rule.id, name='Walk-in'
        )

        assert customer.earned_points == 50
        assert customer.name == 'Walk-in'

    def test_redeem_and_history(self, app, collecto_id, earning_rule):
        service = CustomerService(collecto_id)
        customer = service.process_invoice_payment('C1', 1000, 'INV-1')

        service.redeem_points(customer.id, 20, idempotency_key='RDM-1')
        history = service.transaction_history(customer.id)

        assert [t.transaction_id for t in history] == ['RDM-1', 'INV-1']
        assert service.get_customer(customer.id).current_points == 30

    def test_purchase_and_recalculate(self, app, collecto_id, customer, tier_ladder):
        service = CustomerService(collecto_id)

        service.purchase_points(customer.id, 300, 3000)
        result = service.recalculate_tier(customer.id)

        assert result.bought_points == 300
        assert result.current_tier_id == tier_ladder['silver'].id


class TestPartnerSync:
    """Tests for invoice and payment sync through the Collecto client."""

    def test_sync_invoices_credits_each_invoice(self, app, collecto_id, earning_rule, partner):
        partner.list_invoices.return_value = [
            {'id': 'INV-1', 'amount': 1000},
            {'id': 'INV-2', 'amount': 500},
            {'id': None, 'amount': 300},
        ]
        service = CustomerService(collecto_id, collecto_client=partner)

        result = service.sync_invoices('C1', user_token='tok')

        assert result['processed'] == 2
        assert result['customer'].earned_points == 100
        assert result['customer'].total_purchased == Decimal('1500')
        partner.list_invoices.assert_called_once_with(collecto_id, 'C1', user_token='tok')

    def test_resync_does_not_double_credit(self, app, collecto_id, earning_rule, partner):
        partner.list_invoices.return_value = [{'id': 'INV-1', 'amount': 1000}]
        service = CustomerService(collecto_id, collecto_client=partner)

        service.sync_invoices('C1')
        result = service.sync_invoices('C1')

        assert result['customer'].earned_points == 50
        assert Transaction.query.count() == 1

    def test_sync_with_partner_down_credits_nothing(self, app, collecto_id, earning_rule, partner):
        partner.list_invoices.side_effect = UpstreamUnavailableError('Collecto /invoices timed out')
        service = CustomerService(collecto_id, collecto_client=partner)

        result = service.sync_invoices('C1')

        assert result['processed'] == 0
        assert result['invoices'] == []
        assert 'timed out' in result['upstream_error']
        assert result['customer'].current_points == 0
        assert Transaction.query.count() == 0

    def test_sync_payments(self, app, collecto_id, earning_rule, partner):
        partner.list_payments.return_value = [{'id': 'PAY-1', 'amount': '250.50'}]
        service = CustomerService(collecto_id, collecto_client=partner)

        result = service.sync_payments('C1')

        assert result['processed'] == 1
        assert result['customer'].total_purchased == Decimal('250.50')
        partner.list_invoices.assert_not_called()

    def test_sync_skips_records_with_bad_amounts(self, app, collecto_id, earning_rule, partner):
        partner.list_invoices.return_value = [
            {'id': 'INV-1', 'amount': 1000},
            {'id': 'INV-2', 'amount': -5},
            {'id': 'INV-3', 'amount': 'n/a'},
            {'id': 'INV-4', 'amount': 0},
            {'id': 'INV-5', 'amount': 2000},
        ]
        service = CustomerService(collecto_id, collecto_client=partner)

        result = service.sync_invoices('C1')

        assert result['processed'] == 2
        assert result['customer'].earned_points == 100
        assert result['customer'].total_purchased == Decimal('3000')
        assert sorted(t.transaction_id for t in Transaction.query.all()) == ['INV-1', 'INV-5']

    def test_payment_for_synced_invoice_not_credited_twice(self, app, collecto_id, earning_rule, partner):
        partner.list_invoices.return_value = [{'id': 'INV-1', 'amount': 1000}]
        partner.list_payments.return_value = [{'id': 'PAY-1', 'invoiceId': 'INV-1', 'amount': 1000}]
        service = CustomerService(collecto_id, collecto_client=partner)

        service.sync_invoices('C1')
        result = service.sync_payments('C1')

        assert result['customer'].earned_points == 50
        assert result['customer'].total_purchased == Decimal('1000')
        assert [t.transaction_id for t in Transaction.query.all()] == ['INV-1']


class TestCustomerStats:
    """Tests for CustomerService.get_customer_stats."""

    def test_stats(self, app, collecto_id):
        for client_id, earned, purchased in [('A', 10, '100'), ('B', 10, '50.50'), ('C', 5, '0')]:
            db.session.add(Customer(
                collecto_id=collecto_id, client_id=client_id,
                earned_points=earned, total_purchased=Decimal(purchased)
            ))
        db.session.add(Customer(collecto_id='M2', client_id='X', earned_points=1000))
        db.session.commit()

        stats = CustomerService(collecto_id).get_customer_stats()

        assert stats['total_customers'] == 3
        assert stats['total_points'] == 25
        assert stats['total_purchased'] == pytest.approx(150.50)
        assert stats['average_points_per_customer'] == 8

    def test_stats_empty_merchant(self, app, collecto_id):
        stats = CustomerService(collecto_id).get_customer_stats()

        assert stats == {
            'total_customers': 0,
            'total_points': 0,
            'total_purchased': 0.0,
            'average_points_per_customer': 0,
        }

    def test_stats_exclude_inactive(self, app, collecto_id, customer):
        service = CustomerService(collecto_id)
        service.purchase_points(customer.id, 40, 400)
        service.deactivate_customer(customer.id)

        assert service.get_customer_stats()['total_customers'] == 0
