from datetime import timedelta

import pytest

from app import create_app
from models import db
from utils.clock import utcnow

ACCESS_SECRET = "test-access-secret-for-automation-only-0123456789"
REFRESH_SECRET = "test-refresh-secret-for-automation-only-9876543210"


class FakeClock:
    """Controllable naive-UTC clock shared by every component under test."""

    def __init__(self):
        self.now = utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingSender:
    def __init__(self):
        self.sent = []
        self.fail_with = None

    def send(self, to_email, code):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((to_email, code))

    def last_code(self, email=None):
        for to_email, code in reversed(self.sent):
            if email is None or to_email == email:
                return code
        raise AssertionError(f"no code sent to {email}")


def wrong_code(code):
    return f"{(int(code) + 1) % 1000000:06d}"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def make_app(tmp_path, clock, sender):
    contexts = []

    def _make(**overrides):
        config = {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'auth.db'}",
            "SQLALCHEMY_ENGINE_OPTIONS": {
                "connect_args": {"check_same_thread": False, "timeout": 30},
            },
            "SECRET_KEY": "test-secret-key",
            "JWT_SECRET": ACCESS_SECRET,
            "JWT_REFRESH_SECRET": REFRESH_SECRET,
            "AUTH_CODE_HASH_ROUNDS": 4,
            "ADMIN_EMAILS": [],
            "ALLOWED_EMAILS": [],
            "LOG_LEVEL": "WARNING",
            "LOG_JSON": False,
        }
        config.update(overrides)
        app = create_app(config, clock=clock, email_sender=sender)
        ctx = app.app_context()
        ctx.push()
        db.create_all()
        contexts.append(ctx)
        return app

    yield _make

    for ctx in reversed(contexts):
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
        ctx.pop()


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def auth(app):
    return app.extensions["auth"]


@pytest.fixture
def store(auth):
    return auth.store


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def fixed_codes(monkeypatch):
    """Codes handed out in order; append to the list before requesting."""
    codes = []
    monkeypatch.setattr("security.auth_code.generate_code", lambda: codes.pop(0))
    return codes
