"""
Routes Admin - Gestion des comptes
Désactivation, bannissement, changement de rôle, révocation des sessions,
impersonation (SUPER_ADMIN)
"""

from flask import request, jsonify, g
from authcore.routes.admin import admin_bp
from authcore.models import User
from authcore.routes.otp import set_session_cookies
from authcore.services import get_auth_services
from authcore.utils.decorators import admin_required, super_admin_required
from authcore.utils.helpers import ClientMeta, request_data, result_error
import logging

logger = logging.getLogger(__name__)


def _respond(result):
    if not result.success:
        return result_error(result)
    return jsonify({'success': True, **result.data})


@admin_bp.route('/users', methods=['GET'])
@admin_required
def admin_get_users():
    """Liste des comptes (filtre optionnel ?role=)"""
    query = User.query
    role = request.args.get('role')
    if role:
        query = query.filter_by(role=role)
    users = query.order_by(User.created_at.desc()).all()

    return jsonify({
        'success': True,
        'users': [u.to_dict(include_private=True) for u in users]
    })


@admin_bp.route('/users/<user_id>/deactivate', methods=['POST'])
@admin_required
def admin_deactivate_user(user_id):
    """Désactive le compte et invalide toutes ses sessions"""
    return _respond(get_auth_services().auth.deactivate_user(user_id, g.user, ClientMeta.from_request()))


@admin_bp.route('/users/<user_id>/activate', methods=['POST'])
@admin_required
def admin_activate_user(user_id):
    """Réactive le compte"""
    return _respond(get_auth_services().auth.activate_user(user_id, g.user, ClientMeta.from_request()))


@admin_bp.route('/users/<user_id>/ban', methods=['POST'])
@admin_required
def admin_ban_user(user_id):
    """
    Bannit le compte et invalide toutes ses sessions

    Body:
        - reason: Motif (optionnel)
    """
    data = request_data()
    return _respond(get_auth_services().auth.ban_user(
        user_id, g.user, reason=data.get('reason'), client=ClientMeta.from_request()
    ))


@admin_bp.route('/users/<user_id>/unban', methods=['POST'])
@admin_required
def admin_unban_user(user_id):
    """Lève le bannissement"""
    return _respond(get_auth_services().auth.unban_user(user_id, g.user, ClientMeta.from_request()))


@admin_bp.route('/users/<user_id>/role', methods=['PUT'])
@admin_required
def admin_change_role(user_id):
    """
    Change le rôle du compte (ses sessions sont invalidées)

    Body:
        - role: SUPER_ADMIN, ADMIN, MENTOR, STUDENT, ALUMNI, USER
    """
    return _respond(get_auth_services().auth.change_role(
        user_id, request_data().get('role'), g.user, ClientMeta.from_request()
    ))


@admin_bp.route('/users/<user_id>/revoke-sessions', methods=['POST'])
@admin_required
def admin_revoke_sessions(user_id):
    """Invalide toutes les sessions du compte"""
    return _respond(get_auth_services().auth.revoke_user_sessions(user_id, g.user, ClientMeta.from_request()))


@admin_bp.route('/users/<user_id>/impersonate', methods=['POST'])
@super_admin_required
def admin_impersonate_user(user_id):
    """
    Ouvre une session au nom du compte (SUPER_ADMIN uniquement)

    La session garde l'id du SUPER_ADMIN; elle se ferme avec
    DELETE /api/auth/impersonation.
    """
    result = get_auth_services().auth.impersonate(user_id, g.user, ClientMeta.from_request())
    if not result.success:
        return result_error(result)

    response = jsonify({'success': True, **result.data})
    set_session_cookies(response, result.data['access_token'], result.data['refresh_token'])
    return response
