"""
Shared fixtures for the loyalty ledger tests.

Every test gets a fresh in-memory SQLite database through
create_app('testing'). The app context stays pushed for the whole test, so
tests use db.session directly.
"""
import pytest

from punchcard import create_app
from punchcard.extensions import db
from punchcard.models import Merchant
from punchcard.services.ledger_service import LedgerService
from punchcard.services.offer_service import OfferService


@pytest.fixture
def app():
    """Create test application."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def merchant(app):
    """Create a test merchant with discount API credentials."""
    merchant = Merchant(
        name='Test Coffee Co',
        slug='test-coffee',
        commerce_domain='test-coffee.myshopify.com',
        access_token='test-token',
        settings={},
    )
    db.session.add(merchant)
    db.session.commit()
    return merchant


@pytest.fixture
def other_merchant(app):
    merchant = Merchant(name='Other Shop', slug='other-shop')
    db.session.add(merchant)
    db.session.commit()
    return merchant


@pytest.fixture
def offer(merchant):
    """Buy 12 get 1 free offer with two qualifying variations."""
    service = OfferService(merchant.id)
    offer = service.create_offer(
        brand_name='Acme Roasters',
        size_group='12oz',
        required_quantity=12,
        window_months=12,
        created_by='admin@test-coffee.com',
    )
    service.add_qualifying_variations(offer.id, [
        {'variation_id': 'VAR-1', 'item_name': 'House Blend', 'variation_name': '12oz', 'sku': 'HB-12'},
        {'variation_id': 'VAR-2', 'item_name': 'Dark Roast', 'variation_name': '12oz', 'sku': 'DR-12'},
    ])
    return offer


@pytest.fixture
def ledger(merchant):
    return LedgerService(merchant.id)


@pytest.fixture
def customer_id():
    return 'CUST-1'
