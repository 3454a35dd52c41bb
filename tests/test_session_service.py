from datetime import timedelta

import jwt as pyjwt
import pytest
from flask_jwt_extended import create_refresh_token, decode_token

from authcore.models.enums import SessionState
from authcore.services.session_service import SessionManager
from authcore.services.token_service import AccessClaims, RefreshClaims, TokenService
from authcore.utils.audit import AuditAction
from authcore.utils.helpers import ClientMeta

USER = 'user-1'
CLIENT = ClientMeta(ip_address='10.0.0.1', user_agent='pytest')


@pytest.fixture
def roles():
    return {USER: 'STUDENT'}


@pytest.fixture
def manager(app, session_store, audit, clock, roles):
    return SessionManager(
        session_store, TokenService(), role_resolver=roles.get,
        audit=audit, clock=clock
    )


def _make_manager(app, session_store, audit, clock, roles, **kwargs):
    return SessionManager(session_store, TokenService(), role_resolver=roles.get,
                          audit=audit, clock=clock, **kwargs)


# ==== Claims ====

def test_access_claims_round_trip(app):
    token = TokenService().mint_access(USER, 'ADMIN', 'sid-1').token
    claims = AccessClaims.from_payload(decode_token(token))

    assert claims.subject == USER
    assert claims.role == 'ADMIN'
    assert claims.session_id == 'sid-1'


@pytest.mark.parametrize('missing', ['sub', 'role', 'sid', 'jti', 'exp'])
def test_access_claims_fail_closed(app, missing):
    payload = decode_token(TokenService().mint_access(USER, 'ADMIN', 'sid-1').token)
    payload.pop(missing)

    with pytest.raises(ValueError):
        AccessClaims.from_payload(payload)


def test_refresh_token_is_not_access_token(app):
    payload = decode_token(TokenService().mint_refresh(USER, 'sid-1').token)

    with pytest.raises(ValueError):
        AccessClaims.from_payload(payload)
    assert RefreshClaims.from_payload(payload).session_id == 'sid-1'


def test_malformed_claim_types_rejected():
    with pytest.raises(ValueError):
        RefreshClaims.from_payload({'type': 'refresh', 'sub': 42, 'sid': 's', 'jti': 'j', 'iat': 1, 'exp': 2})
    with pytest.raises(ValueError):
        RefreshClaims.from_payload(None)


# ==== Création ====

def test_create_session_embeds_session_id(manager, session_store, audit):
    bundle = manager.create_session(USER, 'STUDENT', CLIENT)

    access = AccessClaims.from_payload(decode_token(bundle.tokens.access_token))
    refresh = RefreshClaims.from_payload(decode_token(bundle.tokens.refresh_token))
    stored = session_store.get(bundle.session_id)

    assert access.session_id == refresh.session_id == bundle.session_id
    assert stored.refresh_jti == refresh.jti
    assert stored.ip_address == '10.0.0.1'
    assert AuditAction.LOGIN_SUCCESS in audit.actions()


# ==== Refresh ====

def test_refresh_rotates_tokens(manager, session_store):
    bundle = manager.create_session(USER, 'STUDENT', CLIENT)

    pair = manager.refresh(bundle.tokens.refresh_token, CLIENT)

    assert pair is not None
    assert pair.access_token != bundle.tokens.access_token
    assert pair.refresh_token != bundle.tokens.refresh_token
    # Identité de session conservée
    assert AccessClaims.from_payload(decode_token(pair.access_token)).session_id == bundle.session_id
    assert session_store.get(bundle.session_id).last_refreshed_at is not None


def test_superseded_refresh_token_rejected(manager, audit):
    bundle = manager.create_session(USER, 'STUDENT', CLIENT)
    assert manager.refresh(bundle.tokens.refresh_token) is not None

    assert manager.refresh(bundle.tokens.refresh_token) is None
    assert AuditAction.REFRESH_REUSE in audit.actions()
    # La session reste utilisable par défaut
    assert manager.validate_session(bundle.session_id, USER)


def test_reuse_can_revoke_session(app, session_store, audit, clock, roles):
    manager = _make_manager(app, session_store, audit, clock, roles, reuse_revokes_session=True)
    bundle = manager.create_session(USER, 'STUDENT', CLIENT)
    pair = manager.refresh(bundle.tokens.refresh_token)

    assert manager.refresh(bundle.tokens.refresh_token) is None
    assert not manager.validate_session(bundle.session_id)
    assert manager.refresh(pair.refresh_token) is None


def test_refresh_with_tampered_token(manager, audit):
    bundle = manager.create_session(USER, 'STUDENT', CLIENT)
    header, payload, signature = bundle.tokens.refresh_token.split('.')

    assert manager.refresh(f'{header}.{payload}.{signature[::-1]}') is None
    assert manager.refresh('not-a-token') is None
    assert manager.refresh(None) is None
    assert audit.find(AuditAction.REFRESH_REJECTED)


def test_refresh_with_foreign_signature(app, manager):
    bundle = manager.create_session(USER, 'STUDENT', CLIENT)
    payload = decode_token(bundle.tokens.refresh_token)
    forged = pyjwt.encode(payload, 'attacker-secret-key-at-least-32-bytes', algorithm='HS256')

    assert manager.refresh(forged) is None


def test_refresh_with_expired_token(app, manager):
    bundle = manager.create_session(USER, 'STUDENT', CLIENT)
    expired = create_refresh_token(
        identity=USER, additional_claims={'sid': bundle.session_id},
        expires_delta=timedelta(seconds=-10)
    )

    assert manager.refresh(expired) is None


def test_refresh_with_access_token_rejected(manager):
    bundle = manager.create_session(USER, 'STUDENT', CLIENT)
    assert manager.refresh(bundle.tokens.access_token) is None


def test_refresh_after_session_expiry(manager, clock):
    bundle = manager.create_session(USER, 'STUDENT', CLIENT)
    clock.advance(days=8)

    assert manager.refresh(bundle.tokens.refresh_token) is None
    assert not manager.validate_session(bundle.session_id)


def test_refresh_for_unavailable_account(manager, roles):
    bundle = manager.create_session(USER, 'STUDENT', CLIENT)
    roles.pop(USER)

    assert manager.refresh(bundle.tokens.refresh_token) is None


def test_refresh_picks_up_current_role(manager, roles):
    bundle = manager.create_session(USER, 'STUDENT', CLIENT)
    roles[USER] = 'ALUMNI'

    pair = manager.refresh(bundle.tokens.refresh_token)
    assert AccessClaims.from_payload(decode_token(pair.access_token)).role == 'ALUMNI'


# ==== Invalidation ====

def test_invalidate_session_is_idempotent(manager, session_store, audit):
    bundle = manager.create_session(USER, 'STUDENT', CLIENT)

    assert manager.invalidate_session(bundle.session_id, 'logout') is True
    assert manager.invalidate_session(bundle.session_id, 'logout') is False
    assert session_store.get(bundle.session_id).state(manager.clock()) is SessionState.INVALID
    assert len(audit.find(AuditAction.SESSION_REVOKED)) == 2


def test_invalidated_session_cannot_refresh(manager):
    bundle = manager.create_session(USER, 'STUDENT', CLIENT)
    manager.invalidate_session(bundle.session_id)

    assert manager.refresh(bundle.tokens.refresh_token) is None


def test_invalidate_all_sessions(manager, audit):
    first = manager.create_session(USER, 'STUDENT', CLIENT)
    second = manager.create_session(USER, 'STUDENT', CLIENT)
    other = manager.create_session('user-2', 'USER', CLIENT)

    assert manager.invalidate_all_sessions(USER, 'banned') == 2

    assert not manager.validate_session(first.session_id)
    assert not manager.validate_session(second.session_id)
    assert manager.validate_session(other.session_id)
    assert audit.find(AuditAction.SESSIONS_REVOKED)[0]['details']['count'] == 2


def test_validate_session_checks_owner(manager):
    bundle = manager.create_session(USER, 'STUDENT', CLIENT)

    assert manager.validate_session(bundle.session_id, USER)
    assert not manager.validate_session(bundle.session_id, 'user-2')
    assert not manager.validate_session('unknown')


def test_list_sessions_only_active(manager):
    kept = manager.create_session(USER, 'STUDENT', CLIENT)
    dropped = manager.create_session(USER, 'STUDENT', CLIENT)
    manager.invalidate_session(dropped.session_id)

    assert [s.id for s in manager.list_sessions(USER)] == [kept.session_id]
