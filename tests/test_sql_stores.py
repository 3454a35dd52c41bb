from datetime import timedelta

import pytest

from authcore import db
from authcore.models import User
from authcore.models.enums import SessionState
from authcore.stores.base import SessionRecord
from authcore.stores.sql import SQLAlchemyOTPStore, SQLAlchemySessionStore
from authcore.utils.helpers import utcnow


@pytest.fixture
def user(app):
    user = User(email='store@example.com')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def otp_sql():
    return SQLAlchemyOTPStore()


@pytest.fixture
def session_sql():
    return SQLAlchemySessionStore()


def _create(store, user, purpose='LOGIN', ttl=10, now=None):
    now = now or utcnow()
    return store.create(user.id, purpose, 'a' * 64, now, now + timedelta(minutes=ttl), 5)


# ==== Codes OTP ====

def test_create_invalidates_previous_same_purpose(otp_sql, user):
    first = _create(otp_sql, user)
    other = _create(otp_sql, user, purpose='VERIFY_EMAIL')
    second = _create(otp_sql, user)

    assert otp_sql.get(first.id).is_used
    assert not otp_sql.get(other.id).is_used
    assert otp_sql.find_latest_active(user.id, 'LOGIN').id == second.id


def test_register_failed_attempt_stops_at_cap(otp_sql, user):
    code = _create(otp_sql, user)

    counts = [otp_sql.register_failed_attempt(code.id) for _ in range(6)]

    assert counts == [1, 2, 3, 4, 5, None]


def test_register_failed_attempt_without_returning(otp_sql, user, monkeypatch):
    monkeypatch.setattr(db.engine.dialect, 'update_returning', False)
    code = _create(otp_sql, user)

    counts = [otp_sql.register_failed_attempt(code.id) for _ in range(6)]

    assert counts == [1, 2, 3, 4, 5, None]
    assert otp_sql.get(code.id).attempts == 5


def test_register_failed_attempt_on_used_code(otp_sql, user):
    code = _create(otp_sql, user)
    otp_sql.mark_used(code.id, utcnow())

    assert otp_sql.register_failed_attempt(code.id) is None
    assert otp_sql.register_failed_attempt('unknown') is None


def test_records_are_detached(otp_sql, session_sql, user):
    code = _create(otp_sql, user)
    code.attempts = 99

    assert otp_sql.get(code.id).attempts == 0
    assert isinstance(_session(session_sql, user), SessionRecord)


def test_consume_first_writer_wins(otp_sql, user):
    code = _create(otp_sql, user)
    now = utcnow()

    assert otp_sql.consume(code.id, now) is True
    assert otp_sql.consume(code.id, now) is False


def test_consume_refuses_expired_or_exhausted(otp_sql, user):
    expired = _create(otp_sql, user, ttl=-1)
    assert otp_sql.consume(expired.id, utcnow()) is False

    exhausted = _create(otp_sql, user, purpose='VERIFY_EMAIL')
    for _ in range(5):
        otp_sql.register_failed_attempt(exhausted.id)
    assert otp_sql.consume(exhausted.id, utcnow()) is False


def test_mark_used_once(otp_sql, user):
    code = _create(otp_sql, user)
    assert otp_sql.mark_used(code.id, utcnow()) is True
    assert otp_sql.mark_used(code.id, utcnow()) is False


def test_issuance_queries(otp_sql, user):
    now = utcnow()
    _create(otp_sql, user, now=now - timedelta(hours=2))
    _create(otp_sql, user, purpose='VERIFY_EMAIL', now=now - timedelta(minutes=30))
    _create(otp_sql, user, now=now)

    assert otp_sql.latest_issued_at(user.id) == now
    assert otp_sql.count_issued_since(user.id, now - timedelta(hours=1)) == 2
    assert otp_sql.latest_issued_at('nobody') is None


def test_purge_codes(otp_sql, user):
    now = utcnow()
    old = _create(otp_sql, user, now=now - timedelta(days=2))
    live = _create(otp_sql, user, purpose='VERIFY_EMAIL')

    assert otp_sql.purge(now, now - timedelta(hours=24)) == 1
    assert otp_sql.get(old.id) is None
    assert otp_sql.get(live.id) is not None


# ==== Sessions ====

def _session(store, user, session_id='sid-1', jti='jti-1', now=None, days=7):
    now = now or utcnow()
    return store.create(session_id, user.id, jti, now, now + timedelta(days=days), '127.0.0.1', 'pytest')


def test_rotate_is_compare_and_set(session_sql, user):
    _session(session_sql, user)
    now = utcnow()
    new_expiry = now + timedelta(days=7)

    assert session_sql.rotate('sid-1', 'jti-1', 'jti-2', new_expiry, now) is True
    assert session_sql.rotate('sid-1', 'jti-1', 'jti-3', new_expiry, now) is False
    assert session_sql.get('sid-1').refresh_jti == 'jti-2'


def test_rotate_refuses_invalid_session(session_sql, user):
    _session(session_sql, user)
    now = utcnow()
    session_sql.invalidate('sid-1', 'logout', now)

    assert session_sql.rotate('sid-1', 'jti-1', 'jti-2', now + timedelta(days=7), now) is False


def test_invalidate_is_monotonic(session_sql, user):
    _session(session_sql, user)
    now = utcnow()

    assert session_sql.invalidate('sid-1', 'logout', now) is True
    assert session_sql.invalidate('sid-1', 'logout', now) is False
    assert session_sql.get('sid-1').state(now) is SessionState.INVALID
    assert session_sql.invalidate('unknown', 'logout', now) is False


def test_invalidate_all_and_list_active(session_sql, user):
    _session(session_sql, user, 'sid-1')
    _session(session_sql, user, 'sid-2')
    now = utcnow()

    assert len(session_sql.list_active(user.id, now)) == 2
    assert session_sql.invalidate_all(user.id, 'banned', now) == 2
    assert session_sql.list_active(user.id, now) == []
    assert session_sql.invalidate_all(user.id, 'banned', now) == 0


def test_purge_sessions(session_sql, user):
    now = utcnow()
    _session(session_sql, user, 'expired', now=now - timedelta(days=8))
    _session(session_sql, user, 'revoked')
    _session(session_sql, user, 'alive')
    session_sql.invalidate('revoked', 'logout', now)

    assert session_sql.purge(now) == 2
    assert session_sql.get('alive') is not None
