"""
Modèle UserSession - Sessions authentifiées
===========================================

Une session représente un client authentifié (navigateur, appareil).
Les tokens JWT portent son identifiant (claim `sid`): révoquer la session
suffit à rendre inutilisables tous les tokens qui la référencent.
"""

from authcore import db
from authcore.utils.helpers import utcnow
import uuid


class UserSession(db.Model):
    """
    Session d'un utilisateur.
    is_valid ne repasse jamais à True une fois révoquée.
    """
    __tablename__ = 'user_sessions'

    __table_args__ = (
        db.Index('idx_session_user_valid', 'user_id', 'is_valid'),
        db.Index('idx_session_expires', 'expires_at'),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False)

    # jti du refresh token courant (rotation)
    refresh_jti = db.Column(db.String(36), nullable=False)

    # Client (audit)
    user_agent = db.Column(db.String(500))
    ip_address = db.Column(db.String(45))

    # Statut
    is_valid = db.Column(db.Boolean, nullable=False, default=True)
    revoked_at = db.Column(db.DateTime)
    revoked_reason = db.Column(db.String(50))

    # Session ouverte par un SUPER_ADMIN au nom du compte
    impersonated_by = db.Column(db.String(36))

    # Timestamps
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)
    last_refreshed_at = db.Column(db.DateTime)
