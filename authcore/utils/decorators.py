from functools import wraps
from flask import request, g
from flask_jwt_extended import verify_jwt_in_request, get_jwt
from flask_jwt_extended.exceptions import JWTExtendedException
import jwt as pyjwt
from authcore.models import ErrorCode, UserRole
from authcore.services import get_auth_services
from authcore.services.token_service import AccessClaims
from authcore.utils.helpers import error_response
import logging

logger = logging.getLogger(__name__)


def _access_claims():
    """Claims du JWT d'accès de la requête, None si absent ou invalide"""
    try:
        verify_jwt_in_request()
        return AccessClaims.from_payload(get_jwt())
    except (pyjwt.PyJWTError, JWTExtendedException, ValueError) as e:
        logger.info(f"Access token rejected: {e}")
        return None


def token_required(fn):
    """
    Décorateur qui vérifie seulement le JWT d'accès (signature, expiration,
    claims), sans exiger que la session soit encore valide.
    Réservé aux routes qui doivent répondre à un compte dont les sessions
    viennent d'être révoquées (statut de bannissement).

    Stocke user_id et session_id dans g
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if request.method == 'OPTIONS':
            return fn(*args, **kwargs)

        claims = _access_claims()
        if claims is None:
            return error_response(ErrorCode.UNAUTHORIZED, 'Authentication required', 401)

        g.user_id = claims.subject
        g.session_id = claims.session_id
        return fn(*args, **kwargs)

    return wrapper


def session_required(fn):
    """
    Décorateur qui vérifie:
    1. JWT d'accès valide (signature, expiration)
    2. Claims complets (sub, role, sid)
    3. Session `sid` valide côté serveur et appartenant au compte
    4. Compte actif et non banni

    Stocke user, session_id et user_role dans g
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        # Skip JWT verification for OPTIONS (CORS preflight)
        if request.method == 'OPTIONS':
            return fn(*args, **kwargs)

        claims = _access_claims()
        if claims is None:
            return error_response(ErrorCode.UNAUTHORIZED, 'Authentication required', 401)

        services = get_auth_services()

        # Un token signé ne suffit pas: la session doit encore être valide
        if not services.sessions.validate_session(claims.session_id, claims.subject):
            return error_response(ErrorCode.UNAUTHORIZED, 'Session expired or revoked', 401)

        user = services.auth.get_user(claims.subject)
        if not user:
            return error_response(ErrorCode.UNAUTHORIZED, 'Authentication required', 401)

        if not user.can_authenticate:
            return error_response(ErrorCode.USER_INACTIVE, 'This account is not active', 403)

        g.user = user
        g.user_id = user.id
        g.session_id = claims.session_id
        g.user_role = user.role

        return fn(*args, **kwargs)

    return wrapper


def role_required(*roles):
    """
    Décorateur qui vérifie le rôle (après session_required).

    Usage:
        @session_required
        @role_required('ADMIN', 'SUPER_ADMIN')
        def my_route(): ...
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if request.method == 'OPTIONS':
                return fn(*args, **kwargs)

            user_role = getattr(g, 'user_role', None)
            if user_role is None:
                return error_response(ErrorCode.UNAUTHORIZED, 'Authentication required', 401)

            if user_role not in roles:
                logger.warning(f"Role {user_role} denied on {request.path} (user {g.user_id})")
                return error_response(ErrorCode.FORBIDDEN, 'Insufficient permissions', 403)

            return fn(*args, **kwargs)
        return wrapper
    return decorator


def admin_required(fn):
    """Session valide + rôle ADMIN ou SUPER_ADMIN"""
    return session_required(role_required(*UserRole.admin_roles())(fn))


def super_admin_required(fn):
    """Session valide + rôle SUPER_ADMIN"""
    return session_required(role_required(UserRole.SUPER_ADMIN.value)(fn))
