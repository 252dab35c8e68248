"""
Shared fixtures for Collecto Vault tests.

The app fixture pushes a single application context for the whole test, so
the session, and every object a fixture creates, stays attached. Tests must
not open a nested app.app_context().
"""
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from vault import create_app
from vault.extensions import db
from vault.models import Customer, EarningRule, Tier, VaultPackage
from vault.services.collecto_client import CollectoClient


@pytest.fixture
def app():
    """Create test application on an in-memory database."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def collecto_id():
    return 'M1'


@pytest.fixture
def customer(app, collecto_id):
    """A fresh customer with empty pools and no tier."""
    customer = Customer(collecto_id=collecto_id, client_id='C1', name='Test Customer')
    db.session.add(customer)
    db.session.commit()
    return customer


@pytest.fixture
def tier_ladder(app, collecto_id):
    """Silver at 250 points (x1.2), Gold at 500 points (x1.5)."""
    silver = Tier(collecto_id=collecto_id, name='Silver', points_required=250,
                  earning_multiplier=Decimal('1.2'))
    gold = Tier(collecto_id=collecto_id, name='Gold', points_required=500,
                earning_multiplier=Decimal('1.5'))
    db.session.add_all([silver, gold])
    db.session.commit()
    return {'silver': silver, 'gold': gold}


@pytest.fixture
def earning_rule(app, collecto_id):
    """The merchant's only active rule, worth 50 points."""
    rule = EarningRule(collecto_id=collecto_id, rule_title='Invoice Paid',
                       description='Points per paid invoice', points=50)
    db.session.add(rule)
    db.session.commit()
    return rule


@pytest.fixture
def package(app, collecto_id):
    """500 points for 4000."""
    package = VaultPackage(collecto_id=collecto_id, name='Starter', points_amount=500,
                           price=Decimal('4000'))
    db.session.add(package)
    db.session.commit()
    return package


@pytest.fixture
def partner():
    """Stand-in for the Collecto API client."""
    return MagicMock(spec=CollectoClient)
