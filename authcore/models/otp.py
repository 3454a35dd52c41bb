"""
Modèle OTPCode - Codes de vérification
"""

from authcore import db
from authcore.models.enums import OTPPurpose
from authcore.utils.helpers import utcnow
import uuid


class OTPCode(db.Model):
    """
    Code OTP envoyé par email.
    Jamais supprimé par le coeur d'authentification (voir `flask auth cleanup`).
    """
    __tablename__ = 'otp_codes'

    __table_args__ = (
        db.Index('idx_otp_user_purpose', 'user_id', 'purpose', 'is_used'),
        db.Index('idx_otp_user_created', 'user_id', 'created_at'),
        db.Index('idx_otp_expires', 'expires_at'),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False)

    # But de l'OTP: LOGIN, VERIFY_EMAIL, ACCOUNT_RECOVERY
    purpose = db.Column(db.String(30), nullable=False, default=OTPPurpose.LOGIN.value)

    # Hash du code (jamais stocker en clair)
    code_hash = db.Column(db.String(64), nullable=False)

    # Expiration = created_at + TTL
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)

    # Tentatives de vérification
    attempts = db.Column(db.Integer, nullable=False, default=0)
    max_attempts = db.Column(db.Integer, nullable=False, default=5)

    # Statut
    is_used = db.Column(db.Boolean, nullable=False, default=False)
    used_at = db.Column(db.DateTime)
