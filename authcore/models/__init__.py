"""
Modèles de l'application
Export centralisé de tous les modèles SQLAlchemy
"""

from authcore.models.enums import (
    UserRole, OTPPurpose, SessionState, OTPFailure, ErrorCode
)
from authcore.models.user import User
from authcore.models.otp import OTPCode
from authcore.models.session import UserSession

__all__ = [
    # Enums
    'UserRole',
    'OTPPurpose',
    'SessionState',
    'OTPFailure',
    'ErrorCode',
    # Models
    'User',
    'OTPCode',
    'UserSession',
]
