"""
Tests for the Points Engine.

Covers the pure calculations (rule x multiplier, tier selection, redemption
split) and the engine operations against the database:
- Invoice earning, including idempotency on the invoice id
- Direct point purchases and settlement of pending purchases
- Redemption order and insufficient balance
- Tier recalculation and monotonicity
"""
from decimal import Decimal
from unittest.mock import patch

import pytest

from vault.extensions import db
from vault.models import Customer, EarningRule, Tier, Transaction, TransactionStatus, TransactionType
from vault.services.points_engine import (
    PointsEngine,
    calculate_points,
    select_tier,
    split_redemption,
    to_amount,
    to_points,
)
from vault.utils.exceptions import (
    InsufficientPointsError,
    InvalidStatusTransitionError,
    ValidationError,
)


def _set_balance(customer, earned=0, bought=0, tier=None):
    customer.earned_points = earned
    customer.bought_points = bought
    customer.current_tier_id = tier.id if tier else None
    db.session.commit()


def _stored_points(customer_id):
    return db.session.query(Customer.current_points).filter(Customer.id == customer_id).scalar()


class TestCalculations:
    """Tests for the pure calculation helpers."""

    def test_rule_times_multiplier_is_floored(self):
        assert calculate_points(100, Decimal('1.5')) == 150
        assert calculate_points(7, Decimal('1.5')) == 10
        assert calculate_points(50, 1) == 50

    def test_float_multiplier_uses_decimal_arithmetic(self):
        """100 * 0.29 is 28.999... in binary floating point."""
        assert calculate_points(100, 0.29) == 29
        assert calculate_points(3, 1.15) == 3

    def test_zero_base_points(self):
        assert calculate_points(0, Decimal('2')) == 0

    def test_select_tier_highest_qualifying(self):
        tiers = [
            Tier(id=1, name='Silver', points_required=250, earning_multiplier=Decimal('1.2')),
            Tier(id=2, name='Gold', points_required=500, earning_multiplier=Decimal('1.5')),
        ]
        assert select_tier(tiers, 0) is None
        assert select_tier(tiers, 249) is None
        assert select_tier(tiers, 250).name == 'Silver'
        assert select_tier(tiers, 499).name == 'Silver'
        assert select_tier(tiers, 10000).name == 'Gold'

    def test_select_tier_tie_prefers_higher_multiplier(self):
        tiers = [
            Tier(id=1, name='Plus', points_required=500, earning_multiplier=Decimal('1.2')),
            Tier(id=2, name='Premium', points_required=500, earning_multiplier=Decimal('1.5')),
        ]
        assert select_tier(tiers, 600).name == 'Premium'

    def test_select_tier_full_tie_prefers_lower_id(self):
        tiers = [
            Tier(id=7, name='B', points_required=500, earning_multiplier=Decimal('1.5')),
            Tier(id=3, name='A', points_required=500, earning_multiplier=Decimal('1.5')),
        ]
        assert select_tier(tiers, 500).id == 3

    def test_split_redemption_drains_earned_first(self):
        assert split_redemption(30, 20, 40) == (0, 10)
        assert split_redemption(30, 20, 10) == (20, 20)
        assert split_redemption(30, 20, 50) == (0, 0)
        assert split_redemption(0, 20, 5) == (0, 15)

    @pytest.mark.parametrize('value', [0, -5, 1.5, '2.5', 'abc', None, True, float('inf')])
    def test_to_points_rejects_invalid(self, value):
        with pytest.raises(ValidationError):
            to_points(value)

    def test_to_points_accepts_whole_numbers(self):
        assert to_points(40) == 40
        assert to_points('40') == 40
        assert to_points(Decimal('40.0')) == 40

    @pytest.mark.parametrize('value', [-1, 'abc', None, 'NaN', 'Infinity'])
    def test_to_amount_rejects_invalid(self, value):
        with pytest.raises(ValidationError):
            to_amount(value)

    def test_to_amount_zero_allowed_unless_disabled(self):
        assert to_amount(0) == Decimal('0')
        with pytest.raises(ValidationError):
            to_amount(0, allow_zero=False)


class TestInvoiceEarning:
    """Tests for PointsEngine.apply_invoice_earning."""

    def test_earns_default_rule_points(self, app, customer, earning_rule, tier_ladder):
        """One active 50-point rule, lowest tier at 250: no tier after earning."""
        engine = PointsEngine()

        result = engine.apply_invoice_earning(customer, 'M1', 1000, idempotency_key='INV-1')

        assert result.earned_points == 50
        assert result.bought_points == 0
        assert result.current_points == 50
        assert result.total_purchased == Decimal('1000')
        assert result.current_tier_id is None

    def test_journals_confirmed_invoice_row(self, app, customer, earning_rule):
        PointsEngine().apply_invoice_earning(customer, 'M1', 1000, idempotency_key='INV-1')

        row = Transaction.query.filter_by(transaction_id='INV-1').one()
        assert row.type == TransactionType.INVOICE_EARNING.value
        assert row.status == TransactionStatus.CONFIRMED.value
        assert row.points == 50
        assert row.amount == Decimal('1000')
        assert row.customer_id == customer.id
        assert row.confirmed_at is not None

    def test_same_key_twice_credits_once(self, app, customer, earning_rule):
        engine = PointsEngine()

        engine.apply_invoice_earning(customer, 'M1', 1000, idempotency_key='INV-1')
        result = engine.apply_invoice_earning(customer, 'M1', 1000, idempotency_key='INV-1')

        assert result.earned_points == 50
        assert result.total_purchased == Decimal('1000')
        assert Transaction.query.filter_by(transaction_id='INV-1').count() == 1

    def test_distinct_keys_accumulate(self, app, customer, earning_rule):
        engine = PointsEngine()

        engine.apply_invoice_earning(customer, 'M1', 1000, idempotency_key='INV-1')
        result = engine.apply_invoice_earning(customer, 'M1', 500, idempotency_key='INV-2')

        assert result.earned_points == 100
        assert result.total_purchased == Decimal('1500')

    def test_rule_times_tier_multiplier(self, app, customer, tier_ladder):
        """A 100-point rule with a 1.5x tier credits 150."""
        rule = EarningRule(collecto_id='M1', rule_title='Big Invoice', description='d', points=100)
        db.session.add(rule)
        db.session.commit()
        _set_balance(customer, earned=500, tier=tier_ladder['gold'])

        result = PointsEngine().apply_invoice_earning(
            customer, 'M1', 200, rule_id=rule.id, idempotency_key='INV-9'
        )

        assert result.earned_points == 650
        assert Transaction.query.filter_by(transaction_id='INV-9').one().points == 150

    def test_inactive_tier_multiplier_ignored(self, app, customer, tier_ladder, earning_rule):
        gold = tier_ladder['gold']
        _set_balance(customer, earned=500, tier=gold)
        gold.is_active = False
        db.session.commit()

        result = PointsEngine().apply_invoice_earning(customer, 'M1', 100, idempotency_key='INV-1')

        assert result.earned_points == 550

    def test_earning_promotes_tier(self, app, customer, tier_ladder, earning_rule):
        _set_balance(customer, earned=220)

        result = PointsEngine().apply_invoice_earning(customer, 'M1', 100, idempotency_key='INV-1')

        assert result.current_points == 270
        assert result.current_tier_id == tier_ladder['silver'].id

    def test_default_rule_is_oldest_active(self, app, customer, earning_rule):
        newer = EarningRule(collecto_id='M1', rule_title='Newer', description='d', points=999)
        db.session.add(newer)
        db.session.commit()

        result = PointsEngine().apply_invoice_earning(customer, 'M1', 10, idempotency_key='INV-1')

        assert result.earned_points == 50

    def test_no_active_rule_awards_zero(self, app, customer):
        result = PointsEngine().apply_invoice_earning(customer, 'M1', 1000, idempotency_key='INV-1')

        assert result.earned_points == 0
        assert result.total_purchased == Decimal('1000')
        assert Transaction.query.filter_by(transaction_id='INV-1').count() == 1

    def test_inactive_explicit_rule_awards_zero(self, app, customer, earning_rule):
        earning_rule.is_active = False
        db.session.commit()

        result = PointsEngine().apply_invoice_earning(
            customer, 'M1', 1000, rule_id=earning_rule.id, idempotency_key='INV-1'
        )

        assert result.earned_points == 0

    def test_rule_from_other_merchant_awards_zero(self, app, customer):
        foreign = EarningRule(collecto_id='M2', rule_title='Other', description='d', points=80)
        db.session.add(foreign)
        db.session.commit()

        result = PointsEngine().apply_invoice_earning(
            customer, 'M1', 1000, rule_id=foreign.id, idempotency_key='INV-1'
        )

        assert result.earned_points == 0

    def test_scope_mismatch_rejected(self, app, customer, earning_rule):
        with pytest.raises(ValidationError):
            PointsEngine().apply_invoice_earning(customer, 'M2', 1000, idempotency_key='INV-1')

        assert Transaction.query.count() == 0

    def test_negative_amount_rejected(self, app, customer, earning_rule):
        with pytest.raises(ValidationError):
            PointsEngine().apply_invoice_earning(customer, 'M1', -1, idempotency_key='INV-1')

    def test_missing_key_rejected(self, app, customer, earning_rule):
        with pytest.raises(ValidationError):
            PointsEngine().apply_invoice_earning(customer, 'M1', 100, idempotency_key='  ')

    def test_key_used_by_other_type_is_noop(self, app, customer, earning_rule):
        engine = PointsEngine()
        engine.purchase_points(customer, 10, 100, idempotency_key='SHARED-1')

        result = engine.apply_invoice_earning(customer, 'M1', 100, idempotency_key='SHARED-1')

        assert result.earned_points == 0
        assert result.bought_points == 10


class TestPurchase:
    """Tests for PointsEngine.purchase_points and settle_purchase."""

    def test_purchase_credits_bought_pool(self, app, customer):
        result = PointsEngine().purchase_points(customer, 200, 5000)

        assert result.bought_points == 200
        assert result.earned_points == 0
        assert result.total_purchased == Decimal('5000')
        assert Transaction.query.count() == 0

    def test_purchase_with_key_is_idempotent(self, app, customer):
        engine = PointsEngine()

        engine.purchase_points(customer, 200, 5000, idempotency_key='BP-1')
        result = engine.purchase_points(customer, 200, 5000, idempotency_key='BP-1')

        assert result.bought_points == 200
        assert Transaction.query.filter_by(transaction_id='BP-1').count() == 1

    def test_concurrent_duplicate_purchase_is_skipped(self, app, customer):
        engine = PointsEngine()
        engine.purchase_points(customer, 200, 5000, idempotency_key='BP-1')

        # Second writer misses the pre-check and hits the unique constraint
        with patch.object(engine.repository, 'find_transaction_by_external_id', return_value=None), \
                patch.object(app.logger, 'info') as mock_info:
            result = engine.purchase_points(customer, 200, 5000, idempotency_key='BP-1')

        assert result.bought_points == 200
        assert Transaction.query.filter_by(transaction_id='BP-1').count() == 1
        mock_info.assert_any_call('Points purchase BP-1 processed concurrently, skipping')

    @pytest.mark.parametrize('points,amount', [(0, 100), (-5, 100), (10, 0), (10, -1)])
    def test_purchase_rejects_invalid_input(self, app, customer, points, amount):
        with pytest.raises(ValidationError):
            PointsEngine().purchase_points(customer, points, amount)

    def test_confirm_pending_purchase(self, app, customer, tier_ladder):
        _set_balance(customer, earned=50)
        pending = _pending_purchase(customer, 'BP-1', points=200, amount=5000)

        settled = PointsEngine().settle_purchase(pending, TransactionStatus.CONFIRMED)

        assert settled.status == TransactionStatus.CONFIRMED.value
        assert settled.confirmed_at is not None
        customer = db.session.get(Customer, customer.id)
        assert customer.bought_points == 200
        assert customer.current_points == 250
        assert customer.current_tier_id == tier_ladder['silver'].id

    def test_confirm_twice_credits_once(self, app, customer):
        pending = _pending_purchase(customer, 'BP-1', points=200, amount=5000)
        engine = PointsEngine()

        engine.settle_purchase(pending, TransactionStatus.CONFIRMED)
        engine.settle_purchase(pending, TransactionStatus.CONFIRMED)

        assert db.session.get(Customer, customer.id).bought_points == 200

    def test_fail_pending_purchase_credits_nothing(self, app, customer):
        pending = _pending_purchase(customer, 'BP-1', points=200, amount=5000)

        settled = PointsEngine().settle_purchase(pending, TransactionStatus.FAILED)

        assert settled.status == TransactionStatus.FAILED.value
        assert db.session.get(Customer, customer.id).bought_points == 0

    def test_terminal_status_cannot_flip(self, app, customer):
        pending = _pending_purchase(customer, 'BP-1', points=200, amount=5000)
        engine = PointsEngine()
        engine.settle_purchase(pending, TransactionStatus.FAILED)

        with pytest.raises(InvalidStatusTransitionError):
            engine.settle_purchase(pending, TransactionStatus.CONFIRMED)

        assert db.session.get(Customer, customer.id).bought_points == 0

    def test_settle_to_pending_rejected(self, app, customer):
        pending = _pending_purchase(customer, 'BP-1', points=200, amount=5000)

        with pytest.raises(ValidationError):
            PointsEngine().settle_purchase(pending, TransactionStatus.PENDING)


class TestRedemption:
    """Tests for PointsEngine.redeem_points."""

    def test_redeem_drains_earned_then_bought(self, app, customer):
        _set_balance(customer, earned=30, bought=20)

        result = PointsEngine().redeem_points(customer, 40)

        assert result.earned_points == 0
        assert result.bought_points == 10
        assert result.current_points == 10
        assert _stored_points(customer.id) == 10

    def test_redeem_journals_magnitude(self, app, customer):
        _set_balance(customer, earned=30, bought=20)

        PointsEngine().redeem_points(customer, 40, idempotency_key='RDM-1', reference='voucher')

        row = Transaction.query.filter_by(transaction_id='RDM-1').one()
        assert row.type == TransactionType.REDEMPTION.value
        assert row.points == 40
        assert row.reference == 'voucher'

    def test_redeem_without_key_generates_one(self, app, customer):
        _set_balance(customer, earned=30)
        engine = PointsEngine()

        engine.redeem_points(customer, 10)
        engine.redeem_points(customer, 10)

        assert Transaction.query.filter_by(type=TransactionType.REDEMPTION.value).count() == 2
        assert db.session.get(Customer, customer.id).earned_points == 10

    def test_redeem_same_key_twice_debits_once(self, app, customer):
        _set_balance(customer, earned=30)
        engine = PointsEngine()

        engine.redeem_points(customer, 10, idempotency_key='RDM-1')
        result = engine.redeem_points(customer, 10, idempotency_key='RDM-1')

        assert result.earned_points == 20

    def test_insufficient_points(self, app, customer):
        _set_balance(customer, earned=30, bought=20)

        with pytest.raises(InsufficientPointsError) as exc:
            PointsEngine().redeem_points(customer, 51)

        assert exc.value.current == 50
        assert exc.value.required == 51
        customer = db.session.get(Customer, customer.id)
        assert customer.earned_points == 30
        assert customer.bought_points == 20
        assert Transaction.query.count() == 0

    def test_concurrent_duplicate_redemption_is_skipped(self, app, customer):
        _set_balance(customer, earned=30)
        engine = PointsEngine()
        engine.redeem_points(customer, 10, idempotency_key='RDM-1')

        with patch.object(engine.repository, 'find_transaction_by_external_id', return_value=None), \
                patch.object(app.logger, 'info') as mock_info:
            result = engine.redeem_points(customer, 10, idempotency_key='RDM-1')

        assert result.earned_points == 20
        mock_info.assert_any_call('Redemption RDM-1 processed concurrently, skipping')

    def test_redeem_entire_balance(self, app, customer):
        _set_balance(customer, earned=30, bought=20)

        result = PointsEngine().redeem_points(customer, 50)

        assert result.earned_points == 0
        assert result.bought_points == 0

    @pytest.mark.parametrize('points', [0, -10, 2.5])
    def test_redeem_rejects_non_positive(self, app, customer, points):
        _set_balance(customer, earned=30)

        with pytest.raises(ValidationError):
            PointsEngine().redeem_points(customer, points)

    def test_redemption_can_demote_tier(self, app, customer, tier_ladder):
        _set_balance(customer, earned=300, tier=tier_ladder['silver'])

        result = PointsEngine().redeem_points(customer, 100)

        assert result.current_points == 200
        assert result.current_tier_id is None


class TestRecomputeTier:
    """Tests for PointsEngine.recompute_tier."""

    def test_assigns_qualifying_tier(self, app, customer, tier_ladder):
        _set_balance(customer, earned=600)

        result = PointsEngine().recompute_tier(customer)

        assert result.current_tier_id == tier_ladder['gold'].id

    def test_tie_break_prefers_higher_multiplier(self, app, customer):
        plus = Tier(collecto_id='M1', name='Plus', points_required=500, earning_multiplier=Decimal('1.2'))
        premium = Tier(collecto_id='M1', name='Premium', points_required=500, earning_multiplier=Decimal('1.5'))
        db.session.add_all([plus, premium])
        db.session.commit()
        _set_balance(customer, earned=600)

        result = PointsEngine().recompute_tier(customer, 'M1')

        assert result.current_tier_id == premium.id

    def test_ignores_other_merchant_tiers(self, app, customer):
        db.session.add(Tier(collecto_id='M2', name='Elsewhere', points_required=0))
        db.session.commit()

        result = PointsEngine().recompute_tier(customer)

        assert result.current_tier_id is None

    def test_ignores_inactive_tiers(self, app, customer, tier_ladder):
        tier_ladder['gold'].is_active = False
        db.session.commit()
        _set_balance(customer, earned=600)

        result = PointsEngine().recompute_tier(customer)

        assert result.current_tier_id == tier_ladder['silver'].id

    def test_unchanged_tier_is_not_rewritten(self, app, customer, tier_ladder):
        _set_balance(customer, earned=300, tier=tier_ladder['silver'])
        version = customer.version

        result = PointsEngine().recompute_tier(customer)

        assert result.current_tier_id == tier_ladder['silver'].id
        assert result.version == version

    def test_monotonic_in_points(self, app, customer, tier_ladder):
        engine = PointsEngine()
        thresholds = []

        for points in [0, 100, 249, 250, 400, 500, 900, 5000]:
            _set_balance(customer, earned=points)
            result = engine.recompute_tier(customer)
            thresholds.append(result.current_tier.points_required if result.current_tier else -1)

        assert thresholds == sorted(thresholds)

        for points in [5000, 499, 250, 10]:
            _set_balance(customer, earned=points)
            result = engine.recompute_tier(customer)
            current = result.current_tier.points_required if result.current_tier else -1
            assert current <= thresholds[-1]
            thresholds.append(current)

        assert thresholds[-4:] == sorted(thresholds[-4:], reverse=True)


def _pending_purchase(customer, transaction_id, points, amount):
    row = Transaction(
        customer_id=customer.id,
        collecto_id=customer.collecto_id,
        client_id=customer.client_id,
        transaction_id=transaction_id,
        reference='BUYPOINTS',
        type=TransactionType.POINTS_PURCHASE.value,
        amount=Decimal(str(amount)),
        points=points,
        status=TransactionStatus.PENDING.value
    )
    db.session.add(row)
    db.session.commit()
    return row
