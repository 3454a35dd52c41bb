"""
Routes d'authentification
=========================

Gestion des sessions après connexion par code:
refresh (rotation du refresh token), déconnexion, profil, sessions actives,
statut de bannissement et fin d'impersonation.
"""

from flask import Blueprint, request, jsonify, g, current_app
from flask_jwt_extended import unset_jwt_cookies
from authcore import limiter
from authcore.routes.otp import set_session_cookies
from authcore.services import get_auth_services
from authcore.utils.decorators import session_required, token_required
from authcore.utils.helpers import ClientMeta, request_data, result_error
import logging

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)

refresh_limit = limiter.limit("10 per minute", error_message="Trop de rafraîchissements. Réessayez plus tard.")


def _refresh_token_from_request():
    """Refresh token depuis le corps JSON, sinon depuis le cookie"""
    data = request_data()
    token = data.get('refresh_token') or data.get('refreshToken')
    if token:
        return token
    return request.cookies.get(current_app.config['JWT_REFRESH_COOKIE_NAME'])


@auth_bp.route('/refresh', methods=['POST'])
@refresh_limit
def refresh():
    """
    Échange un refresh token contre une nouvelle paire de tokens

    L'ancien refresh token devient inutilisable (rotation).
    """
    result = get_auth_services().auth.refresh(_refresh_token_from_request(), ClientMeta.from_request())
    if not result.success:
        response, status = result_error(result)
        unset_jwt_cookies(response)
        return response, status

    response = jsonify({'success': True, **result.data})
    set_session_cookies(response, result.data['access_token'], result.data['refresh_token'])
    return response


@auth_bp.route('/logout', methods=['POST'])
@session_required
def logout():
    """Déconnexion: invalide la session courante côté serveur"""
    result = get_auth_services().auth.logout(g.user_id, g.session_id, ClientMeta.from_request())

    response = jsonify({'success': True, **result.data})
    unset_jwt_cookies(response)
    return response


@auth_bp.route('/logout-all', methods=['POST'])
@session_required
def logout_all():
    """Déconnexion de toutes les sessions du compte"""
    result = get_auth_services().auth.logout_all(g.user_id, ClientMeta.from_request())

    response = jsonify({'success': True, **result.data})
    unset_jwt_cookies(response)
    return response


@auth_bp.route('/me', methods=['GET'])
@session_required
def get_current_user():
    """Récupérer le profil de l'utilisateur connecté"""
    return jsonify({'success': True, 'user': g.user.to_dict(include_private=True)})


@auth_bp.route('/sessions', methods=['GET'])
@session_required
def list_sessions():
    """Sessions actives du compte (la session courante est marquée)"""
    result = get_auth_services().auth.list_sessions(g.user_id, current_session_id=g.session_id)
    return jsonify({'success': True, **result.data})


@auth_bp.route('/sessions/<session_id>', methods=['DELETE'])
@session_required
def revoke_session(session_id):
    """Révoque une des sessions du compte"""
    result = get_auth_services().auth.revoke_own_session(g.user_id, session_id, ClientMeta.from_request())
    if not result.success:
        return result_error(result)

    response = jsonify({'success': True, **result.data})
    if session_id == g.session_id:
        unset_jwt_cookies(response)
    return response


@auth_bp.route('/ban-status', methods=['GET'])
@token_required
def ban_status():
    """
    Statut de bannissement du compte

    Ne vérifie que la signature du token: le bannissement révoque les
    sessions, le client doit encore pouvoir lire le motif.
    """
    result = get_auth_services().auth.ban_status(g.user_id)
    if not result.success:
        return result_error(result)
    return jsonify({'success': True, **result.data})


@auth_bp.route('/impersonation', methods=['DELETE'])
@session_required
def end_impersonation():
    """Termine la session ouverte par un SUPER_ADMIN au nom du compte"""
    result = get_auth_services().auth.end_impersonation(g.user_id, g.session_id, ClientMeta.from_request())
    if not result.success:
        return result_error(result)

    response = jsonify({'success': True, **result.data})
    unset_jwt_cookies(response)
    return response
