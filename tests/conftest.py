"""
Pytest configuration and shared fixtures for the barbershop backend tests.
"""

import os

os.environ["TESTING"] = "True"
os.environ["FLASK_ENV"] = "testing"

import json  # noqa: E402
import sys  # noqa: E402

import bcrypt  # noqa: E402
import httpx  # noqa: E402
import pytest  # noqa: E402
from flask import Flask  # noqa: E402

from barbershop.config import is_production_database  # noqa: E402
from barbershop.extensions import db as database  # noqa: E402
from barbershop.models import Base, LoyaltyReward, Offer, User  # noqa: E402
from main import create_app  # noqa: E402

TIMIFY_TEST_URL = "https://timify.test"


class RecordingPush:
    """Stands in for the Firebase sender and keeps every message."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, device_token, title, body, data=None):
        if self.fail:
            raise RuntimeError("push backend down")
        self.sent.append({"token": device_token, "title": title, "body": body, "data": data or {}})
        return True

    def types(self):
        return [m["data"].get("type") for m in self.sent]


class TimifyStub:
    """
    Request handler for httpx.MockTransport. Register responses per
    (method, path); a list of responses is served in order, the last one
    repeating.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def on(self, method, path, *responses):
        self.routes[(method, path)] = list(responses)

    def calls_to(self, method, path):
        return [r for r in self.calls if r.method == method and r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"message": "no stub"})
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        status, payload = item
        return httpx.Response(status, json=payload)


@pytest.fixture
def push_spy():
    return RecordingPush()


@pytest.fixture
def timify():
    return TimifyStub()


@pytest.fixture
def app(push_spy, timify):
    """Create a test app bound to a fresh in-memory database."""
    test_config = {
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "SECRET_KEY": "test-secret-key-for-testing-only",
        "QR_TOKEN_PEPPER": "test-pepper",
        "TIMIFY_BASE_URL": TIMIFY_TEST_URL,
        "TIMIFY_MAX_RETRIES": 0,
        "TIMIFY_RETRY_BACKOFF_SECONDS": 0,
        "TIMIFY_COMPANY_IDS": [],
        "LOYALTY_TARGET": 10,
        "BOOKING_CANCEL_CUTOFF_MINUTES": 60,
        "ENABLE_LOCAL_CANCEL": True,
        "ENABLE_SCHEDULER": False,
    }
    app = create_app(
        test_config=test_config,
        timify_transport=httpx.MockTransport(timify),
        push_service=push_spy,
    )

    if is_production_database(app.config["SQLALCHEMY_DATABASE_URI"]):
        print(" DANGER: Database URL appears to be production!")
        sys.exit(1)

    with app.app_context():
        Base.metadata.create_all(bind=database.engine)
        yield app
        database.session.remove()
        Base.metadata.drop_all(bind=database.engine)

    app.extensions["barbershop"].timify.close()


@pytest.fixture
def db_session(app: Flask):
    return database.session


@pytest.fixture
def services(app):
    return app.extensions["barbershop"]


@pytest.fixture
def client(app):
    return app.test_client()


def _make_user(session, email, role="USER", password="password123", fcm_token=None):
    hashed_pw = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode("utf-8")
    user = User(email=email, password_hash=hashed_pw, full_name="Test User", role=role, fcm_token=fcm_token)
    session.add(user)
    session.commit()
    return user


@pytest.fixture
def make_user(db_session):
    def factory(email, role="USER", password="password123", fcm_token=None):
        return _make_user(db_session, email, role, password, fcm_token)

    return factory


@pytest.fixture
def sample_user(make_user):
    """A customer with a registered device token."""
    return make_user("customer@example.com", fcm_token="device-token-1")


@pytest.fixture
def sample_admin(make_user):
    return make_user("admin@example.com", role="ADMIN", password="adminpass123")


def _login(client, email, password):
    response = client.post(
        "/api/v1/auth/login",
        data=json.dumps({"email": email, "password": password}),
        content_type="application/json",
    )
    assert response.status_code == 200, response.data
    return {"Authorization": f"Bearer {json.loads(response.data)['token']}"}


@pytest.fixture
def auth_headers(client, sample_user):
    return _login(client, "customer@example.com", "password123")


@pytest.fixture
def admin_headers(client, sample_admin):
    return _login(client, "admin@example.com", "adminpass123")


@pytest.fixture
def sample_offer(db_session):
    offer = Offer(title="Men's Haircut", price=25, is_active=True)
    db_session.add(offer)
    db_session.commit()
    return offer


@pytest.fixture
def sample_rewards(db_session):
    rewards = [
        LoyaltyReward(name="Free beard trim", cost_points=150, is_active=True),
        LoyaltyReward(name="Free haircut", cost_points=300, is_active=True),
        LoyaltyReward(name="Retired reward", cost_points=50, is_active=False),
    ]
    db_session.add_all(rewards)
    db_session.commit()
    return rewards
