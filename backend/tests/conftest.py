"""
Pytest fixtures for the lab store backend tests.

Provides the in-memory application, per-test table wipe, model factories,
admin headers and a manual clock for the kiosk-side timers.
"""

import pytest

from labstore import create_app
from labstore.extensions import db
from labstore.models import CashBox, KioskStatus, Member, MemberBalance, Product, RecipeComponent

ADMIN_TOKEN = "test-admin-token"

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'ADMIN_API_TOKEN': ADMIN_TOKEN,
    'KIOSK_PASSWORD': 'open-sesame',
    'SLACK_WEBHOOK_URL': '',
    'LOW_STOCK_THRESHOLD': 3,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def admin_headers():
    return {'Authorization': f'Bearer {ADMIN_TOKEN}'}


@pytest.fixture(scope='function')
def make_member(db_session):
    """Factory: member with a balance row."""
    def _make(name="Member", grade="M1", balance=0, card_uid=None, is_active=True):
        member = Member(name=name, grade=grade, card_uid=card_uid, is_active=is_active)
        db_session.add(member)
        db_session.flush()
        db_session.add(MemberBalance(member_id=member.id, balance=balance))
        db_session.commit()
        return member
    return _make


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: simple product, or composite when recipe={ingredient_id: qty} is given."""
    def _make(name="Product", price=100, stock=0, recipe=None, category="snack",
              is_active=True, is_sellable=True, product_id=None):
        product = Product(
            id=product_id,
            name=name,
            price=price,
            stock=stock,
            category=category,
            is_active=is_active,
            is_sellable=is_sellable,
        )
        db_session.add(product)
        db_session.flush()
        for ingredient_id, quantity in (recipe or {}).items():
            db_session.add(RecipeComponent(product_id=product.id, ingredient_id=ingredient_id, quantity=quantity))
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def cash_box(db_session):
    box = CashBox(id=1, balance=0)
    db_session.add(box)
    db_session.commit()
    return box


@pytest.fixture(scope='function')
def kiosk(db_session):
    status = KioskStatus(id=1, current_uid=None)
    db_session.add(status)
    db_session.commit()
    return status


@pytest.fixture(scope='function')
def balance_of(db_session):
    """Committed balance lookup, bypassing the identity map."""
    def _balance(member_id: int) -> int:
        db_session.expire_all()
        return db_session.query(MemberBalance).filter_by(member_id=member_id).one().balance
    return _balance


@pytest.fixture(scope='function')
def stock_of(db_session):
    def _stock(product_id: int) -> int:
        db_session.expire_all()
        return db_session.get(Product, product_id).stock
    return _stock


# =============================================================================
# MANUAL CLOCK
# =============================================================================

class ManualTimer:
    def __init__(self, when, func):
        self.when = when
        self.func = func
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose timers only fire when the test advances the clock."""

    def __init__(self):
        self.now = 0.0
        self.timers = []

    def call_later(self, delay, func):
        timer = ManualTimer(self.now + delay, func)
        self.timers.append(timer)
        return timer

    @property
    def pending(self):
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = sorted((t for t in self.pending if t.when <= target), key=lambda t: t.when)
            if not due:
                break
            timer = due[0]
            self.now = timer.when
            timer.fired = True
            timer.func()
        self.now = target


@pytest.fixture(scope='function')
def scheduler():
    return ManualScheduler()
