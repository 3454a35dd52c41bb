"""
Services de l'application
Logique métier réutilisable

Les services sont construits une fois par application dans
init_auth_services() et rangés dans app.extensions['authcore'].
Les stores, le sink d'audit, le mailer et l'horloge sont injectables
(les tests passent des stores en mémoire).
"""

from dataclasses import dataclass
from typing import Callable

from flask import current_app

from authcore.services.auth_service import AuthService, AuthResult
from authcore.services.email_service import OTPMailer, build_mailer
from authcore.services.otp_service import OTPService
from authcore.services.rate_limit_service import OTPRateLimiter
from authcore.services.session_service import SessionManager
from authcore.services.token_service import TokenService
from authcore.utils.audit import audit_log
from authcore.utils.helpers import utcnow

EXTENSION_KEY = 'authcore'


@dataclass
class AuthServices:
    otp: OTPService
    rate_limiter: OTPRateLimiter
    tokens: TokenService
    sessions: SessionManager
    mailer: OTPMailer
    auth: AuthService


def init_auth_services(app, otp_store=None, session_store=None, audit: Callable = None,
                       mailer: OTPMailer = None, clock: Callable = None) -> AuthServices:
    """Construit les services à partir de la configuration de l'application"""
    if otp_store is None or session_store is None:
        from authcore.stores.sql import SQLAlchemyOTPStore, SQLAlchemySessionStore
        otp_store = otp_store or SQLAlchemyOTPStore()
        session_store = session_store or SQLAlchemySessionStore()

    audit = audit or audit_log
    clock = clock or utcnow
    cfg = app.config

    otp_service = OTPService(
        otp_store,
        hash_key=cfg.get('OTP_HASH_KEY') or cfg['SECRET_KEY'],
        ttl_minutes=cfg['OTP_TTL_MINUTES'],
        max_attempts=cfg['OTP_MAX_ATTEMPTS'],
        code_length=cfg['OTP_LENGTH'],
        audit=audit,
        clock=clock
    )
    rate_limiter = OTPRateLimiter(
        otp_store,
        cooldown_seconds=cfg['OTP_RESEND_COOLDOWN_SECONDS'],
        max_per_hour=cfg['OTP_MAX_PER_HOUR'],
        clock=clock
    )
    tokens = TokenService(
        access_expires=cfg['JWT_ACCESS_TOKEN_EXPIRES'],
        refresh_expires=cfg['JWT_REFRESH_TOKEN_EXPIRES']
    )

    sessions = SessionManager(
        session_store,
        tokens,
        role_resolver=AuthService.role_for,
        audit=audit,
        clock=clock,
        refresh_lifetime=cfg['JWT_REFRESH_TOKEN_EXPIRES'],
        reuse_revokes_session=cfg.get('AUTH_REFRESH_REUSE_REVOKES_SESSION', False)
    )
    mailer = mailer or build_mailer(app)
    auth = AuthService(
        otp_service,
        rate_limiter,
        sessions,
        mailer,
        audit=audit,
        clock=clock,
        auto_register=cfg.get('AUTH_AUTO_REGISTER', True)
    )

    container = AuthServices(
        otp=otp_service,
        rate_limiter=rate_limiter,
        tokens=tokens,
        sessions=sessions,
        mailer=mailer,
        auth=auth
    )
    app.extensions[EXTENSION_KEY] = container
    return container


def get_auth_services() -> AuthServices:
    return current_app.extensions[EXTENSION_KEY]


__all__ = [
    'AuthServices',
    'AuthService',
    'AuthResult',
    'init_auth_services',
    'get_auth_services',
]
