from dataclasses import dataclass
from datetime import timedelta

import pytest

from authcore import create_app, db
from authcore.services import get_auth_services
from authcore.stores.memory import InMemoryOTPStore, InMemorySessionStore
from authcore.utils.helpers import utcnow


# ==================== DOUBLES ====================

@dataclass
class SentCode:
    email: str
    code: str
    purpose: str


class RecordingMailer:
    """Remplace OTPMailer: garde les codes envoyés au lieu de les poster"""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send_otp(self, email, code, purpose='LOGIN', ttl_minutes=10):
        self.sent.append(SentCode(email, code, purpose))
        return not self.fail

    def last_code(self, email=None):
        for item in reversed(self.sent):
            if email is None or item.email == email:
                return item.code
        return None


class RecordingAudit:
    """Sink d'audit qui mémorise (action, kwargs)"""

    def __init__(self):
        self.events = []

    def __call__(self, action, **kwargs):
        self.events.append((action, kwargs))

    def actions(self):
        return [action for action, _ in self.events]

    def find(self, action):
        return [kwargs for a, kwargs in self.events if a == action]


class FakeClock:
    def __init__(self, now=None):
        self.now = now or utcnow()

    def __call__(self):
        return self.now

    def advance(self, **delta):
        self.now += timedelta(**delta)


# ==================== FIXTURES ====================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def audit():
    return RecordingAudit()


@pytest.fixture
def otp_store():
    return InMemoryOTPStore()


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def app(clock):
    """Application de test sur SQLite en mémoire, stores SQLAlchemy et audit en base"""
    app = create_app('testing', mailer=RecordingMailer(), clock=clock)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    return get_auth_services()


@pytest.fixture
def mailer(services):
    return services.mailer


@pytest.fixture
def login(client, mailer, clock):
    """Demande + vérification d'un code, retourne le JSON de verify-otp"""
    def _login(email, purpose='LOGIN'):
        # Hors cooldown du code précédent
        clock.advance(seconds=61)
        response = client.post('/api/auth/request-otp', json={'email': email, 'purpose': purpose})
        assert response.status_code == 200, response.get_json()
        response = client.post('/api/auth/verify-otp', json={
            'email': email, 'code': mailer.last_code(email), 'purpose': purpose
        })
        assert response.status_code == 200, response.get_json()
        return response.get_json()
    return _login