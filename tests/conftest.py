from __future__ import annotations

import smtplib
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app import create_app
from app.core import mailer
from app.core.config import Config
from app.core.extensions import db
from app.core.mailer import mail_outbox
from app.core.models import User, seed_demo_data


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SECRET_KEY = "test-secret"
    APP_ENV = "development"
    CLIENT_URL = "http://willtank.test"
    MAIL_SUPPRESS_SEND = True
    MAIL_SEND_RETRIES = 0
    CHECK_IN_SCHEDULER_ENABLED = False


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        seed_demo_data(db.session)
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def outbox(app):
    return mail_outbox()


@pytest.fixture
def demo_user(app):
    return User.query.filter_by(email="demo@willtank.local").first()


@pytest.fixture
def current_user_account(app):
    return User.query.filter_by(email="current@willtank.local").first()


@pytest.fixture
def login_demo(client):
    def _login():
        return client.post(
            "/api/login",
            json={"email": "demo@willtank.local", "password": "demo12345"},
        )

    return _login


@pytest.fixture
def smtp_sent(app, monkeypatch):
    """Turn off suppression and route mail through an in-memory SMTP server."""
    sent: list[tuple[str, list[str]]] = []

    class AsciiSMTP:
        def __init__(self, host, port, timeout=None):
            self.host = host
            self.port = port

        def starttls(self):
            pass

        def login(self, user, password):
            pass

        def sendmail(self, from_addr, to_addrs, msg):
            for address in to_addrs:
                # commands go over the wire as ASCII, like smtplib.SMTP.send
                f"rcpt TO:{smtplib.quoteaddr(address)}\r\n".encode("ascii")
            sent.append((from_addr, list(to_addrs)))

        def quit(self):
            pass

    app.config["MAIL_SUPPRESS_SEND"] = False
    monkeypatch.setattr(mailer.smtplib, "SMTP_SSL", AsciiSMTP)
    monkeypatch.setattr(mailer.smtplib, "SMTP", AsciiSMTP)
    return sent
