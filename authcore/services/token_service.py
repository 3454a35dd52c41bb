"""
Tokens JWT et claims typés
==========================

Les tokens sont signés par Flask-JWT-Extended. Leur payload n'est jamais
manipulé comme un dict libre au-delà de ce module: il est converti en
AccessClaims / RefreshClaims, qui refusent tout champ manquant ou mal typé.

Claims embarqués:
- access:  sub, role, sid, type='access'
- refresh: sub, sid, type='refresh'
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt as pyjwt
from flask_jwt_extended import create_access_token, create_refresh_token, decode_token
from flask_jwt_extended.exceptions import JWTExtendedException

logger = logging.getLogger(__name__)

ACCESS_TOKEN_EXPIRES = timedelta(minutes=15)
REFRESH_TOKEN_EXPIRES = timedelta(days=7)


def _require_str(payload: dict, key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise ValueError(f'Invalid claim: {key}')
    return value


def _require_timestamp(payload: dict, key: str) -> datetime:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f'Invalid claim: {key}')
    # datetimes naïfs en UTC, comme en base
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class AccessClaims:
    subject: str
    role: str
    session_id: str
    jti: str
    issued_at: datetime
    expires_at: datetime

    @classmethod
    def from_payload(cls, payload) -> 'AccessClaims':
        if not isinstance(payload, dict) or payload.get('type') != 'access':
            raise ValueError('Not an access token')
        return cls(
            subject=_require_str(payload, 'sub'),
            role=_require_str(payload, 'role'),
            session_id=_require_str(payload, 'sid'),
            jti=_require_str(payload, 'jti'),
            issued_at=_require_timestamp(payload, 'iat'),
            expires_at=_require_timestamp(payload, 'exp'),
        )


@dataclass(frozen=True)
class RefreshClaims:
    subject: str
    session_id: str
    jti: str
    issued_at: datetime
    expires_at: datetime

    @classmethod
    def from_payload(cls, payload) -> 'RefreshClaims':
        if not isinstance(payload, dict) or payload.get('type') != 'refresh':
            raise ValueError('Not a refresh token')
        return cls(
            subject=_require_str(payload, 'sub'),
            session_id=_require_str(payload, 'sid'),
            jti=_require_str(payload, 'jti'),
            issued_at=_require_timestamp(payload, 'iat'),
            expires_at=_require_timestamp(payload, 'exp'),
        )


@dataclass(frozen=True)
class MintedToken:
    token: str
    jti: str
    expires_at: datetime


class TokenService:
    """
    Émission et décodage des tokens (contexte applicatif Flask requis)

    Usage:
        tokens = TokenService(access_expires=timedelta(minutes=15))
        access = tokens.mint_access(user.id, user.role, session_id)
        claims = tokens.decode_refresh(refresh_token)  # None si invalide
    """

    def __init__(self, access_expires: timedelta = ACCESS_TOKEN_EXPIRES,
                 refresh_expires: timedelta = REFRESH_TOKEN_EXPIRES):
        self.access_expires = access_expires
        self.refresh_expires = refresh_expires

    def mint_access(self, user_id: str, role: str, session_id: str) -> MintedToken:
        token = create_access_token(
            identity=user_id,
            additional_claims={'role': role, 'sid': session_id},
            expires_delta=self.access_expires
        )
        return self._minted(token)

    def mint_refresh(self, user_id: str, session_id: str) -> MintedToken:
        token = create_refresh_token(
            identity=user_id,
            additional_claims={'sid': session_id},
            expires_delta=self.refresh_expires
        )
        return self._minted(token)

    def decode_refresh(self, token: str) -> Optional[RefreshClaims]:
        payload = self._decode(token)
        if payload is None:
            return None
        try:
            return RefreshClaims.from_payload(payload)
        except ValueError as e:
            logger.info(f"Rejected refresh token: {e}")
            return None

    @staticmethod
    def _decode(token) -> Optional[dict]:
        """Signature et expiration vérifiées, None sinon"""
        if not isinstance(token, str) or not token:
            return None
        try:
            return decode_token(token)
        except (pyjwt.PyJWTError, JWTExtendedException) as e:
            logger.info(f"Token decode failed: {e}")
            return None

    @staticmethod
    def _minted(token: str) -> MintedToken:
        payload = decode_token(token)
        return MintedToken(
            token=token,
            jti=payload['jti'],
            expires_at=_require_timestamp(payload, 'exp')
        )
