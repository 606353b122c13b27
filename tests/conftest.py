# tests/conftest.py
import pytest
from datetime import datetime, timedelta

from app import create_app
from extensions import db
from models import User
from utils.accrual_controller import AccrualController
from utils.auth_utils import issue_token
from utils.ledger import Ledger
from utils.mining_service import RateComposer
from utils.session_store import SessionStore

JWT_SECRET = 'test-secret-key-that-is-long-enough-for-hs256'


class FakeClock:
    """可手动推进的时钟，替代真实时间"""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 9, 0, 0))


@pytest.fixture
def app(clock):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'JWT_SECRET': JWT_SECRET,
        'MINING_CLOCK': clock,
        'MINING_WATERMARK_WRITE_INTERVAL': 0,
        'MINING_SCHEDULER_ENABLED': False,
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def user(app):
    user = User(id='user-1', username='miner')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def auth_headers():
    def make(user_id='user-1'):
        return {'Authorization': f'Bearer {issue_token(user_id, JWT_SECRET)}'}
    return make


@pytest.fixture
def store(app, clock):
    return SessionStore(clock)


@pytest.fixture
def ledger(app):
    return Ledger()


@pytest.fixture
def composer(clock):
    return RateComposer(clock=clock)


@pytest.fixture
def make_controller(store, ledger, composer, clock):
    def make(user_id='user-1', **kwargs):
        kwargs.setdefault('watermark_write_interval', 0)
        return AccrualController(user_id, store, ledger, composer, clock=clock, **kwargs)
    return make
