"""
Routes OTP - Connexion par code email
=====================================

Endpoints publics du flux sans mot de passe:
- Demander un code
- Vérifier un code (ouvre une session pour LOGIN / ACCOUNT_RECOVERY)
"""

from flask import Blueprint, jsonify, current_app
from flask_jwt_extended import set_access_cookies, set_refresh_cookies
from authcore import limiter
from authcore.services import get_auth_services
from authcore.utils.helpers import ClientMeta, request_data, result_error
import logging

otp_bp = Blueprint('otp', __name__)
logger = logging.getLogger(__name__)

# Rate limiting strict pour les OTP (par IP, en plus du quota par compte)
otp_send_limit = limiter.limit("5 per minute", error_message="Trop de demandes. Réessayez dans 1 minute.")
otp_verify_limit = limiter.limit("10 per minute", error_message="Trop de tentatives. Réessayez dans 1 minute.")


def set_session_cookies(response, access_token: str, refresh_token: str):
    """Cookies http-only (SameSite selon JWT_COOKIE_SAMESITE)"""
    set_access_cookies(
        response, access_token,
        max_age=int(current_app.config['JWT_ACCESS_TOKEN_EXPIRES'].total_seconds())
    )
    set_refresh_cookies(
        response, refresh_token,
        max_age=int(current_app.config['JWT_REFRESH_TOKEN_EXPIRES'].total_seconds())
    )


@otp_bp.route('/request-otp', methods=['POST'])
@otp_send_limit
def request_otp():
    """
    Envoie un code OTP par email

    Body:
        - email: Email du compte
        - purpose: LOGIN (défaut), VERIFY_EMAIL, ACCOUNT_RECOVERY

    Returns:
        issued_at, expires_in
    """
    data = request_data()
    result = get_auth_services().auth.request_code(
        data.get('email'), data.get('purpose'), ClientMeta.from_request()
    )
    if not result.success:
        return result_error(result)

    return jsonify({'success': True, **result.data})


@otp_bp.route('/verify-otp', methods=['POST'])
@otp_verify_limit
def verify_otp():
    """
    Vérifie un code OTP

    Body:
        - email: Email du compte
        - code: Code à 6 chiffres (chaîne, les zéros initiaux comptent)
        - purpose: LOGIN (défaut), VERIFY_EMAIL, ACCOUNT_RECOVERY

    Returns:
        user, access_token, refresh_token, expires_at (cookies posés aussi)
    """
    data = request_data()
    result = get_auth_services().auth.verify_code(
        data.get('email'), data.get('code'), data.get('purpose'), ClientMeta.from_request()
    )
    if not result.success:
        return result_error(result)

    response = jsonify({'success': True, **result.data})
    if 'access_token' in result.data:
        set_session_cookies(response, result.data['access_token'], result.data['refresh_token'])
    return response
