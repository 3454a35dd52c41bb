"""
Fonctions utilitaires
Helpers réutilisables dans toute l'application
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from flask import request, jsonify, has_request_context


EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')
EMAIL_MAX_LENGTH = 100


def utcnow() -> datetime:
    """Datetime UTC naïf (format des colonnes en base)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_email(email) -> str:
    if not isinstance(email, str):
        return ''
    return email.strip().lower()


def normalize_choice(value, default: str = None) -> Optional[str]:
    """Valeur d'enum saisie (casse libre). None si ce n'est pas une chaîne."""
    if value is None or value == '':
        return default
    if not isinstance(value, str):
        return None
    return value.strip().upper()


def validate_email(email: str) -> bool:
    """Valide le format email"""
    if not email or len(email) > EMAIL_MAX_LENGTH:
        return False
    return bool(EMAIL_PATTERN.match(email))


@dataclass(frozen=True)
class ClientMeta:
    """Métadonnées du client conservées pour l'audit"""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls) -> 'ClientMeta':
        if not has_request_context():
            return cls()
        return cls(ip_address=get_client_ip(), user_agent=(request.headers.get('User-Agent') or '')[:500] or None)


def get_client_ip() -> Optional[str]:
    """IP réelle du client (derrière proxy: X-Forwarded-For puis X-Real-IP)"""
    forwarded = request.headers.get('X-Forwarded-For', '')
    if forwarded:
        return forwarded.split(',')[0].strip()[:45]
    real_ip = request.headers.get('X-Real-IP')
    if real_ip:
        return real_ip.strip()[:45]
    return request.remote_addr


def error_response(code: str, message: str, status: int, **extra):
    """Réponse d'erreur JSON standard"""
    payload = {
        'success': False,
        'error': {'code': code, 'message': message}
    }
    payload['error'].update({k: v for k, v in extra.items() if v is not None})
    return jsonify(payload), status


def result_error(result):
    """Réponse d'erreur pour un AuthResult en échec (Retry-After si fourni)"""
    response, status = error_response(
        result.error_code, result.message, result.status, retry_after=result.retry_after
    )
    if result.retry_after:
        response.headers['Retry-After'] = str(result.retry_after)
    return response, status


def request_data() -> dict:
    """Corps JSON de la requête, {} si absent ou invalide"""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
