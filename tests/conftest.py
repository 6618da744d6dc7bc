from datetime import datetime, timedelta

import pytest

from app import create_app
from config import TestConfig
from models import db
from models.user import User, ROLE_ADMIN, ROLE_USER
from security.cache import MemoryCache
from security.password import hash_password
from utils.clock import FrozenClock

START = datetime(2025, 1, 1, 12, 0, 0)
PASSWORD = "correct horse battery"


@pytest.fixture
def clock():
    return FrozenClock(START)


@pytest.fixture
def cache(clock):
    return MemoryCache(clock)


@pytest.fixture
def app(clock, cache):
    app = create_app(TestConfig, clock=clock, cache=cache)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app, clock):
    def _make(email="user@example.com", role=ROLE_USER, password=PASSWORD, **fields):
        user = User(
            email=email,
            name=fields.pop("name", email.split("@")[0]),
            role=role,
            password_hash=hash_password(password),
            created_at=clock.now(),
            **fields,
        )
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def admin(make_user):
    return make_user("admin@example.com", role=ROLE_ADMIN)


@pytest.fixture
def customer(make_user):
    return make_user("customer@example.com", role=ROLE_USER)


@pytest.fixture
def token_store(app):
    return app.extensions["token_store"]


@pytest.fixture
def issue_token(token_store):
    """Returns a plain-text bearer token for `user`; default is a 7 day admin token."""
    def _issue(user, name="test-device", abilities=("admin:read", "admin:write"), ttl=timedelta(days=7)):
        return token_store.issue(user, name, list(abilities), ttl)
    return _issue


def bearer(plain_text: str) -> dict:
    return {"Authorization": f"Bearer {plain_text}"}
