"""
Audit Logging - Traçabilité des événements d'authentification
=============================================================

Enregistre chaque événement de sécurité (émission de code, échec ou succès
de vérification, refresh, révocation) en base et dans le logger 'audit'.
Un échec d'écriture d'audit est journalisé mais n'interrompt jamais
l'opération principale.
"""

import json
import logging
from typing import Callable, Optional

from flask import request, has_request_context

from authcore import db
from authcore.utils.helpers import utcnow, get_client_ip

logger = logging.getLogger('audit')
logger.setLevel(logging.INFO)
logger.propagate = False


def configure_audit_logger(log_file: Optional[str]):
    """Ajoute un handler fichier au logger d'audit (une seule fois)"""
    if not log_file:
        return
    if any(
        isinstance(h, logging.FileHandler) and getattr(h, 'baseFilename', '').endswith(log_file)
        for h in logger.handlers
    ):
        return
    audit_handler = logging.FileHandler(log_file)
    audit_handler.setLevel(logging.INFO)
    audit_handler.setFormatter(logging.Formatter(
        '%(asctime)s - AUDIT - %(message)s'
    ))
    logger.addHandler(audit_handler)


class AuditLog(db.Model):
    """Modèle pour stocker les logs d'audit en base"""
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(db.DateTime, default=utcnow, nullable=False)
    user_id = db.Column(db.String(36), index=True)
    user_email = db.Column(db.String(120))
    action = db.Column(db.String(50), nullable=False, index=True)
    resource_type = db.Column(db.String(50))
    resource_id = db.Column(db.String(36))
    details = db.Column(db.Text)  # JSON
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))
    status = db.Column(db.String(20), default='success')  # success, failure, warning

    def to_dict(self):
        return {
            'id': self.id,
            'timestamp': self.timestamp.isoformat(),
            'user_id': self.user_id,
            'user_email': self.user_email,
            'action': self.action,
            'resource_type': self.resource_type,
            'resource_id': self.resource_id,
            'details': json.loads(self.details) if self.details else None,
            'ip_address': self.ip_address,
            'status': self.status
        }


# Actions auditées
class AuditAction:
    # OTP
    OTP_REQUESTED = 'otp_requested'
    OTP_REQUEST_REJECTED = 'otp_request_rejected'
    OTP_VERIFIED = 'otp_verified'
    OTP_FAILED = 'otp_failed'
    OTP_DELIVERY = 'otp_delivery'

    # Sessions
    LOGIN_SUCCESS = 'login_success'
    LOGIN_FAILED = 'login_failed'
    SESSION_REFRESHED = 'session_refreshed'
    REFRESH_REJECTED = 'refresh_rejected'
    REFRESH_REUSE = 'refresh_reuse'
    LOGOUT = 'logout'
    SESSION_REVOKED = 'session_revoked'
    SESSIONS_REVOKED = 'sessions_revoked'
    IMPERSONATION_START = 'impersonation_start'
    IMPERSONATION_END = 'impersonation_end'

    # Comptes
    USER_CREATE = 'user_create'
    USER_DEACTIVATE = 'user_deactivate'
    USER_ACTIVATE = 'user_activate'
    USER_BAN = 'user_ban'
    USER_UNBAN = 'user_unban'
    ROLE_CHANGE = 'role_change'

    # Sécurité
    RATE_LIMIT_EXCEEDED = 'rate_limit_exceeded'


def audit_log(
    action: str,
    resource_type: str = None,
    resource_id: str = None,
    details: dict = None,
    status: str = 'success',
    user_id: str = None,
    user_email: str = None,
    ip_address: str = None,
    user_agent: str = None
):
    """
    Enregistre une action dans le log d'audit

    Args:
        action: Type d'action (voir AuditAction)
        resource_type: Type de ressource affectée (user, session, otp)
        resource_id: ID de la ressource
        details: Détails supplémentaires (dict)
        status: success, failure, warning
        user_id: ID du compte concerné
        user_email: Email du compte
        ip_address / user_agent: Client (auto-détectés depuis la requête)
    """
    try:
        if has_request_context():
            ip_address = ip_address or get_client_ip()
            user_agent = user_agent or (request.headers.get('User-Agent', '')[:500] or None)

        log_entry = AuditLog(
            user_id=user_id,
            user_email=user_email,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=json.dumps(details, default=str) if details else None,
            ip_address=ip_address,
            user_agent=user_agent,
            status=status
        )

        db.session.add(log_entry)
        db.session.commit()

        # Logger aussi dans le fichier
        log_message = f"[{status.upper()}] {action}"
        if resource_type:
            log_message += f" | {resource_type}"
        if resource_id:
            log_message += f":{resource_id}"
        log_message += f" | user:{user_id} | ip:{ip_address}"
        if details:
            log_message += f" | {json.dumps(details, default=str)}"

        if status in ('failure', 'warning'):
            logger.warning(log_message)
        else:
            logger.info(log_message)

    except Exception as e:
        # Ne pas faire échouer l'opération principale si l'audit échoue
        db.session.rollback()
        logging.getLogger(__name__).error(f"Audit log error ({action}): {e}")


def emit_audit(sink: Callable, action: str, client=None, **kwargs):
    """
    Appelle un sink d'audit injecté (audit_log par défaut).
    Les erreurs du sink sont journalisées, jamais propagées.
    """
    if client is not None:
        kwargs.setdefault('ip_address', client.ip_address)
        kwargs.setdefault('user_agent', client.user_agent)
    try:
        sink(action, **kwargs)
    except Exception as e:
        logging.getLogger(__name__).error(f"Audit sink error ({action}): {e}")
