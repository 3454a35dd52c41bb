"""
Enums - Types énumérés pour les modèles
=======================================

Centralise les types énumérés pour éviter les "magic strings"
et garantir la cohérence des données.
"""

import enum


class UserRole(enum.Enum):
    """Rôles des comptes"""
    SUPER_ADMIN = 'SUPER_ADMIN'
    ADMIN = 'ADMIN'
    MENTOR = 'MENTOR'
    STUDENT = 'STUDENT'
    ALUMNI = 'ALUMNI'
    USER = 'USER'

    @classmethod
    def values(cls) -> list:
        return [r.value for r in cls]

    @classmethod
    def admin_roles(cls) -> list:
        return [cls.ADMIN.value, cls.SUPER_ADMIN.value]


class OTPPurpose(enum.Enum):
    """But d'un code OTP"""
    LOGIN = 'LOGIN'
    VERIFY_EMAIL = 'VERIFY_EMAIL'
    ACCOUNT_RECOVERY = 'ACCOUNT_RECOVERY'

    @classmethod
    def values(cls) -> list:
        return [p.value for p in cls]

    @classmethod
    def session_purposes(cls) -> list:
        """Purposes dont la vérification ouvre une session"""
        return [cls.LOGIN.value, cls.ACCOUNT_RECOVERY.value]


class SessionState(enum.Enum):
    """État d'une session (INVALID est terminal)"""
    ACTIVE = 'active'
    EXPIRED = 'expired'
    INVALID = 'invalid'


class OTPFailure(enum.Enum):
    """Raisons internes d'échec de vérification (jamais exposées au client)"""
    NOT_FOUND = 'not_found'
    EXPIRED = 'expired'
    TOO_MANY_ATTEMPTS = 'too_many_attempts'
    MISMATCH = 'mismatch'
    ALREADY_USED = 'already_used'


class ErrorCode:
    """Codes d'erreur renvoyés par l'API"""
    VALIDATION_ERROR = 'VALIDATION_ERROR'
    RATE_LIMITED = 'RATE_LIMITED'
    INVALID_OTP = 'INVALID_OTP'
    INVALID_TOKEN = 'INVALID_TOKEN'
    USER_INACTIVE = 'USER_INACTIVE'
    USER_NOT_FOUND = 'USER_NOT_FOUND'
    UNAUTHORIZED = 'UNAUTHORIZED'
    FORBIDDEN = 'FORBIDDEN'
    NOT_FOUND = 'NOT_FOUND'
    INTERNAL_ERROR = 'INTERNAL_ERROR'

    HTTP_STATUS = {
        VALIDATION_ERROR: 400,
        RATE_LIMITED: 429,
        INVALID_OTP: 401,
        INVALID_TOKEN: 401,
        USER_INACTIVE: 403,
        USER_NOT_FOUND: 404,
        UNAUTHORIZED: 401,
        FORBIDDEN: 403,
        NOT_FOUND: 404,
        INTERNAL_ERROR: 500,
    }

    @classmethod
    def status_for(cls, code: str) -> int:
        return cls.HTTP_STATUS.get(code, 400)
