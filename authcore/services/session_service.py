"""
Gestionnaire de sessions
========================

Une session est l'enregistrement serveur d'un client authentifié. Les tokens
y font référence par le claim `sid`; toute requête privilégiée revérifie la
session côté serveur, ce qui rend révocables des JWT qui ne le sont pas
individuellement.

    ACTIVE --refresh--> ACTIVE
    ACTIVE --logout / révocation / ban--> INVALID (terminal)

Le refresh conserve l'identifiant de session et fait tourner le refresh
token: la session mémorise le jti du refresh token courant et la rotation
est un compare-and-set sur ce jti. Un refresh token remplacé est refusé.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from authcore.models.enums import SessionState
from authcore.services.token_service import REFRESH_TOKEN_EXPIRES, TokenService
from authcore.stores.base import SessionStore
from authcore.utils.audit import AuditAction, audit_log, emit_audit
from authcore.utils.helpers import ClientMeta, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime


@dataclass(frozen=True)
class SessionBundle:
    """Résultat de create_session()"""
    session: object
    tokens: TokenPair

    @property
    def session_id(self) -> str:
        return self.session.id


class SessionManager:
    """
    Usage:
        manager = SessionManager(session_store, TokenService(), role_resolver)
        bundle = manager.create_session(user.id, user.role, client)
        pair = manager.refresh(refresh_token)  # None si refusé
    """

    def __init__(
        self,
        session_store: SessionStore,
        tokens: TokenService,
        role_resolver: Callable[[str], Optional[str]],
        audit: Callable = audit_log,
        clock: Callable = utcnow,
        refresh_lifetime: timedelta = REFRESH_TOKEN_EXPIRES,
        reuse_revokes_session: bool = False
    ):
        self.session_store = session_store
        self.tokens = tokens
        self.role_resolver = role_resolver
        self.audit = audit
        self.clock = clock
        self.refresh_lifetime = refresh_lifetime
        self.reuse_revokes_session = reuse_revokes_session

    # ==================== CRÉATION ====================

    def create_session(self, user_id: str, role: str, client: ClientMeta = None,
                       impersonated_by: str = None) -> SessionBundle:
        client = client or ClientMeta()
        session_id = str(uuid.uuid4())
        now = self.clock()
        expires_at = now + self.refresh_lifetime

        access = self.tokens.mint_access(user_id, role, session_id)
        refresh = self.tokens.mint_refresh(user_id, session_id)

        session = self.session_store.create(
            session_id=session_id,
            user_id=user_id,
            refresh_jti=refresh.jti,
            created_at=now,
            expires_at=expires_at,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            impersonated_by=impersonated_by
        )

        emit_audit(
            self.audit, AuditAction.LOGIN_SUCCESS, client=client,
            user_id=user_id, resource_type='session', resource_id=session_id,
            details={'expires_at': expires_at.isoformat(), 'impersonated_by': impersonated_by}
        )
        logger.info(f"Session {session_id} created for user {user_id}")

        return SessionBundle(
            session=session,
            tokens=TokenPair(
                access_token=access.token,
                refresh_token=refresh.token,
                access_expires_at=access.expires_at,
                refresh_expires_at=refresh.expires_at
            )
        )

    # ==================== REFRESH ====================

    def refresh(self, refresh_token: str, client: ClientMeta = None) -> Optional[TokenPair]:
        """
        Échange un refresh token contre une nouvelle paire.
        Retourne None (jamais d'exception) pour tout token refusé.
        """
        client = client or ClientMeta()
        claims = self.tokens.decode_refresh(refresh_token)
        if claims is None:
            return self._reject('invalid_token', client)

        now = self.clock()
        session = self.session_store.get(claims.session_id)
        if session is None or session.user_id != claims.subject:
            return self._reject('unknown_session', client, claims.subject, claims.session_id)

        state = session.state(now)
        if state is not SessionState.ACTIVE:
            return self._reject(f'session_{state.value.lower()}', client, claims.subject, claims.session_id)

        if session.refresh_jti != claims.jti:
            return self._reuse_detected(claims, client, now)

        role = self.role_resolver(claims.subject)
        if role is None:
            return self._reject('account_unavailable', client, claims.subject, claims.session_id)

        refresh = self.tokens.mint_refresh(claims.subject, claims.session_id)
        rotated = self.session_store.rotate(
            session_id=claims.session_id,
            expected_jti=claims.jti,
            new_jti=refresh.jti,
            expires_at=now + self.refresh_lifetime,
            now=now,
            ip_address=client.ip_address,
            user_agent=client.user_agent
        )
        if not rotated:
            # Un refresh concurrent a gagné la rotation
            return self._reject('rotation_conflict', client, claims.subject, claims.session_id)

        access = self.tokens.mint_access(claims.subject, role, claims.session_id)

        emit_audit(
            self.audit, AuditAction.SESSION_REFRESHED, client=client,
            user_id=claims.subject, resource_type='session', resource_id=claims.session_id
        )

        return TokenPair(
            access_token=access.token,
            refresh_token=refresh.token,
            access_expires_at=access.expires_at,
            refresh_expires_at=refresh.expires_at
        )

    def _reuse_detected(self, claims, client, now) -> None:
        revoked = False
        if self.reuse_revokes_session:
            revoked = self.session_store.invalidate(claims.session_id, 'refresh_reuse', now)

        emit_audit(
            self.audit, AuditAction.REFRESH_REUSE, client=client,
            user_id=claims.subject, resource_type='session', resource_id=claims.session_id,
            details={'session_revoked': revoked}, status='warning'
        )
        logger.warning(f"Superseded refresh token reused for session {claims.session_id}")
        return None

    def _reject(self, reason: str, client, user_id: str = None, session_id: str = None) -> None:
        emit_audit(
            self.audit, AuditAction.REFRESH_REJECTED, client=client,
            user_id=user_id, resource_type='session', resource_id=session_id,
            details={'reason': reason}, status='failure'
        )
        return None

    # ==================== VALIDATION ====================

    def validate_session(self, session_id: str, user_id: str = None) -> bool:
        """La session existe, appartient au compte et est ACTIVE"""
        session = self.session_store.get(session_id)
        if session is None:
            return False
        if user_id is not None and session.user_id != user_id:
            return False
        return session.state(self.clock()) is SessionState.ACTIVE

    def get_session(self, session_id: str):
        return self.session_store.get(session_id)

    def list_sessions(self, user_id: str) -> List:
        return self.session_store.list_active(user_id, self.clock())

    # ==================== INVALIDATION ====================

    def invalidate_session(self, session_id: str, reason: str = 'logout',
                           actor_id: str = None, client: ClientMeta = None) -> bool:
        """Passe la session à INVALID. Idempotent: False si déjà invalide."""
        session = self.session_store.get(session_id)
        changed = self.session_store.invalidate(session_id, reason, self.clock())

        emit_audit(
            self.audit, AuditAction.SESSION_REVOKED, client=client,
            user_id=session.user_id if session else actor_id,
            resource_type='session', resource_id=session_id,
            details={'reason': reason, 'actor_id': actor_id, 'changed': changed}
        )
        return changed

    def invalidate_all_sessions(self, user_id: str, reason: str = 'revoked',
                                actor_id: str = None, client: ClientMeta = None) -> int:
        """Invalide toutes les sessions du compte. Retourne le nombre de sessions touchées."""
        count = self.session_store.invalidate_all(user_id, reason, self.clock())

        emit_audit(
            self.audit, AuditAction.SESSIONS_REVOKED, client=client,
            user_id=user_id, resource_type='user', resource_id=user_id,
            details={'reason': reason, 'actor_id': actor_id, 'count': count}
        )
        logger.info(f"{count} session(s) invalidated for user {user_id} ({reason})")
        return count

    def purge(self) -> int:
        return self.session_store.purge(self.clock())
