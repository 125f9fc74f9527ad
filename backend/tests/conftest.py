"""
Pytest fixtures for consign backend tests.

Provides an in-memory database, a recording notifier, and a store with one
approved product per supplier.
"""

from datetime import date

import pytest
from consign import create_app
from consign.extensions import db
from consign.models import Store, Product
from consign.models.catalog import PRODUCT_STATUS_APPROVED, PRODUCT_STATUS_PENDING
from consign.services.audit_service import get_audit_health
from consign.services.notification_service import Notifier, set_notifier


OWNER_ID = 1
SUPPLIER_ID = 2
OTHER_SUPPLIER_ID = 3
TRX_DATE = date(2024, 1, 15)


class RecordingNotifier(Notifier):
    """Keeps events in memory; raises when fail is set."""

    def __init__(self):
        self.events = []
        self.fail = False

    def notify(self, user_id, event_kind, payload):
        if self.fail:
            raise RuntimeError("notifier down")
        self.events.append((user_id, event_kind, payload))

    def kinds(self, user_id=None):
        return [kind for uid, kind, _ in self.events if user_id is None or uid == user_id]


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'ENABLE_BACKGROUND_JOBS': False,
        'CRON_SECRET': 'test-cron-secret',
        'LOG_LEVEL': 'DEBUG',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh rows, healthy audit and a recording notifier for each test."""
    with app.app_context():
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        db.session.expunge_all()

        get_audit_health().reset()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def notifier(app, db_session):
    recorder = RecordingNotifier()
    set_notifier(app, recorder)
    return recorder


@pytest.fixture(scope='function')
def store(db_session, notifier):
    """Store with an 11:00 cut-off and 30 minutes grace, on UTC wall clock."""
    store = Store(
        owner_id=OWNER_ID,
        name="Lapak Pagi",
        slug="lapak-pagi",
        timezone="UTC",
        cutoff_time="11:00",
        cutoff_grace_period=30,
        auto_cancel_enabled=True,
    )
    db_session.add(store)
    db_session.commit()
    return store


def make_product(session, store, supplier_id=SUPPLIER_ID, *, price_buy=1000, status=PRODUCT_STATUS_APPROVED, name="Kue Lapis"):
    product = Product(
        store_id=store.id,
        supplier_id=supplier_id,
        name=name,
        price_buy=price_buy,
        price_sell=price_buy + 500,
        status=status,
        is_active=True,
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def product(db_session, store):
    """Approved product for SUPPLIER_ID, price_buy 1000."""
    return make_product(db_session, store)


@pytest.fixture(scope='function')
def second_product(db_session, store):
    return make_product(db_session, store, price_buy=2500, name="Risoles")


@pytest.fixture(scope='function')
def pending_product(db_session, store):
    return make_product(db_session, store, status=PRODUCT_STATUS_PENDING, name="Pastel")


def owner_headers(owner_id=OWNER_ID) -> dict:
    return {'X-Actor-Id': str(owner_id), 'X-Actor-Role': 'owner'}


def supplier_headers(supplier_id=SUPPLIER_ID) -> dict:
    return {'X-Actor-Id': str(supplier_id), 'X-Actor-Role': 'supplier'}
