from datetime import datetime, timedelta

import pytest

from app import create_app
from config import TestingConfig
from models.models import db
from services import accounts, spots


class FakeClock:
    """Virtual clock; tests move time forward explicitly."""

    def __init__(self, start=datetime(2024, 1, 1, 12, 0, 0)):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app(clock):
    app = create_app(TestingConfig, clock=clock)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(app):
    accounts.register('admin@park.io', 'adminpass', role='admin')
    client = app.test_client()
    response = client.post('/login', json={'email': 'admin@park.io', 'password': 'adminpass'})
    assert response.status_code == 200
    return client


@pytest.fixture
def funded_user(app):
    """Registered user with a balance of 100."""
    user = accounts.register('driver@park.io', 'secret1')
    accounts.credit(user.email, 100)
    return user.email


@pytest.fixture
def spot(app):
    return spots.create('Main Street 1', 5).id
