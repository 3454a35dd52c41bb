"""Authentication service: passwordless login flow and account administration."""
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError

from authcore import db
from authcore.models import User
from authcore.models.enums import ErrorCode, OTPPurpose, UserRole
from authcore.services.otp_service import OTPService
from authcore.services.rate_limit_service import OTPRateLimiter
from authcore.services.session_service import SessionManager
from authcore.services.email_service import OTPMailer
from authcore.utils.audit import AuditAction, audit_log, emit_audit
from authcore.utils.helpers import ClientMeta, normalize_choice, normalize_email, utcnow, validate_email

logger = logging.getLogger(__name__)


@dataclass
class AuthResult:
    """Outcome of an AuthService operation.

    Expected failures (bad input, wrong code, revoked session...) are carried
    here instead of being raised; routes turn them into JSON responses.
    """
    success: bool
    data: dict = field(default_factory=dict)
    error_code: Optional[str] = None
    message: Optional[str] = None
    retry_after: Optional[int] = None

    @property
    def status(self) -> int:
        if self.success:
            return 200
        return ErrorCode.status_for(self.error_code)

    @classmethod
    def ok(cls, **data) -> 'AuthResult':
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error_code: str, message: str, retry_after: int = None) -> 'AuthResult':
        return cls(success=False, error_code=error_code, message=message, retry_after=retry_after)


class AuthService:
    """Service for passwordless authentication and account management.

    Handles:
    - Code requests (validation, auto-registration, rate limiting, delivery)
    - Code verification and session opening
    - Token refresh, logout, session listing
    - Administrative account actions (deactivate, ban, role change)
    - Super admin impersonation
    """

    def __init__(
        self,
        otp_service: OTPService,
        rate_limiter: OTPRateLimiter,
        sessions: SessionManager,
        mailer: OTPMailer,
        audit: Callable = audit_log,
        clock: Callable = utcnow,
        auto_register: bool = True
    ):
        self.otp_service = otp_service
        self.rate_limiter = rate_limiter
        self.sessions = sessions
        self.mailer = mailer
        self.audit = audit
        self.clock = clock
        self.auto_register = auto_register

    # ==================== LOOKUPS ====================

    @staticmethod
    def get_user(user_id) -> Optional[User]:
        if not user_id:
            return None
        return db.session.get(User, user_id)

    @staticmethod
    def find_by_email(email) -> Optional[User]:
        return User.query.filter_by(email=normalize_email(email)).first()

    @staticmethod
    def role_for(user_id) -> Optional[str]:
        """Current role of an account allowed to authenticate, None otherwise."""
        user = AuthService.get_user(user_id)
        if not user or not user.can_authenticate:
            return None
        return user.role

    # ==================== REQUEST CODE ====================

    def request_code(self, email, purpose: str = OTPPurpose.LOGIN.value,
                     client: ClientMeta = None) -> AuthResult:
        """Issue a code for the account and send it by email.

        Unknown emails are registered on the fly when auto-registration is on;
        otherwise they receive the same success response without any code.
        """
        client = client or ClientMeta()
        email = normalize_email(email)
        purpose = normalize_choice(purpose, OTPPurpose.LOGIN.value)

        if not validate_email(email):
            return AuthResult.fail(ErrorCode.VALIDATION_ERROR, 'A valid email address is required')
        if purpose not in OTPPurpose.values():
            return AuthResult.fail(ErrorCode.VALIDATION_ERROR, 'Invalid purpose')

        user = self.find_by_email(email)

        if not user:
            if not (self.auto_register and purpose == OTPPurpose.LOGIN.value):
                emit_audit(
                    self.audit, AuditAction.OTP_REQUEST_REJECTED, client=client,
                    user_email=email, details={'purpose': purpose, 'reason': 'unknown_email'},
                    status='warning'
                )
                return self._code_sent(self.clock())
            try:
                user = self.create_user(email, client=client, method='otp_request')
            except (IntegrityError, ValueError):
                # Concurrent first request for the same email won the insert
                user = self.find_by_email(email)
                if user is None:
                    raise

        if not user.can_authenticate:
            emit_audit(
                self.audit, AuditAction.OTP_REQUEST_REJECTED, client=client,
                user_id=user.id, user_email=user.email,
                details={'purpose': purpose, 'reason': 'banned' if user.is_banned else 'inactive'},
                status='failure'
            )
            return AuthResult.fail(ErrorCode.USER_INACTIVE, 'This account is not active')

        decision = self.rate_limiter.can_request(user.id)
        if not decision.allowed:
            emit_audit(
                self.audit, AuditAction.RATE_LIMIT_EXCEEDED, client=client,
                user_id=user.id, user_email=user.email,
                details={'purpose': purpose, 'retry_after': decision.retry_after},
                status='warning'
            )
            return AuthResult.fail(decision.reason, decision.message, retry_after=decision.retry_after)

        issued = self.otp_service.issue(user.id, purpose, user_email=user.email, client=client)

        sent = self.mailer.send_otp(
            user.email, issued.code, purpose,
            ttl_minutes=int(self.otp_service.ttl.total_seconds() // 60)
        )
        if not sent:
            logger.error(f"OTP email could not be delivered to user {user.id}")
        emit_audit(
            self.audit, AuditAction.OTP_DELIVERY, client=client,
            user_id=user.id, user_email=user.email,
            resource_type='otp', resource_id=issued.otp_id,
            details={'purpose': purpose, 'email_sent': sent},
            status='success' if sent else 'failure'
        )

        return self._code_sent(issued.issued_at)

    def _code_sent(self, issued_at) -> AuthResult:
        return AuthResult.ok(
            message='If the address is valid, a verification code has been sent',
            issued_at=issued_at.isoformat(),
            expires_in=int(self.otp_service.ttl.total_seconds())
        )

    # ==================== VERIFY CODE ====================

    def verify_code(self, email, code, purpose: str = OTPPurpose.LOGIN.value,
                    client: ClientMeta = None) -> AuthResult:
        """Check a submitted code and, for login purposes, open a session.

        Every verification failure maps to INVALID_OTP so the client cannot
        tell a wrong code from an expired or exhausted one.
        """
        client = client or ClientMeta()
        email = normalize_email(email)
        purpose = normalize_choice(purpose, OTPPurpose.LOGIN.value)
        code = code.strip() if isinstance(code, str) else code

        if not validate_email(email):
            return AuthResult.fail(ErrorCode.VALIDATION_ERROR, 'A valid email address is required')
        if (not isinstance(code, str) or not code.isdigit()
                or len(code) != self.otp_service.code_length):
            return AuthResult.fail(ErrorCode.VALIDATION_ERROR,
                                   f'The code must be a string of {self.otp_service.code_length} digits')
        if purpose not in OTPPurpose.values():
            return AuthResult.fail(ErrorCode.VALIDATION_ERROR, 'Invalid purpose')

        user = self.find_by_email(email)
        if not user:
            emit_audit(
                self.audit, AuditAction.LOGIN_FAILED, client=client,
                user_email=email, details={'reason': 'user_not_found'}, status='failure'
            )
            return AuthResult.fail(ErrorCode.USER_NOT_FOUND, 'No account found for this email')

        if not user.can_authenticate:
            emit_audit(
                self.audit, AuditAction.LOGIN_FAILED, client=client,
                user_id=user.id, user_email=user.email,
                details={'reason': 'banned' if user.is_banned else 'inactive'}, status='failure'
            )
            return AuthResult.fail(ErrorCode.USER_INACTIVE, 'This account is not active')

        verification = self.otp_service.verify(user.id, code, purpose, user_email=user.email, client=client)
        if not verification.success:
            return AuthResult.fail(ErrorCode.INVALID_OTP, 'Invalid or expired code')

        opens_session = purpose in OTPPurpose.session_purposes()
        try:
            user.email_verified = True
            if opens_session:
                user.last_login = self.clock()
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        if not opens_session:
            return AuthResult.ok(user=user.to_dict(include_private=True), email_verified=True)

        bundle = self.sessions.create_session(user.id, user.role, client)
        tokens = bundle.tokens
        return AuthResult.ok(
            user=user.to_dict(include_private=True),
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=tokens.access_expires_at.isoformat(),
            refresh_expires_at=tokens.refresh_expires_at.isoformat(),
            session_id=bundle.session_id
        )

    # ==================== SESSIONS ====================

    def refresh(self, refresh_token, client: ClientMeta = None) -> AuthResult:
        pair = self.sessions.refresh(refresh_token, client)
        if pair is None:
            return AuthResult.fail(ErrorCode.INVALID_TOKEN, 'Invalid or expired refresh token')
        return AuthResult.ok(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_at=pair.access_expires_at.isoformat(),
            refresh_expires_at=pair.refresh_expires_at.isoformat()
        )

    def logout(self, user_id: str, session_id: str, client: ClientMeta = None) -> AuthResult:
        self.sessions.invalidate_session(session_id, 'logout', actor_id=user_id, client=client)
        emit_audit(
            self.audit, AuditAction.LOGOUT, client=client,
            user_id=user_id, resource_type='session', resource_id=session_id
        )
        return AuthResult.ok(message='Logged out')

    def logout_all(self, user_id: str, client: ClientMeta = None) -> AuthResult:
        count = self.sessions.invalidate_all_sessions(user_id, 'logout_all', actor_id=user_id, client=client)
        emit_audit(
            self.audit, AuditAction.LOGOUT, client=client,
            user_id=user_id, resource_type='user', resource_id=user_id,
            details={'all_sessions': True, 'count': count}
        )
        return AuthResult.ok(message='Logged out from all sessions', revoked=count)

    def list_sessions(self, user_id: str, current_session_id: str = None) -> AuthResult:
        sessions = self.sessions.list_sessions(user_id)
        return AuthResult.ok(sessions=[s.to_dict(current_session_id) for s in sessions])

    def revoke_own_session(self, user_id: str, session_id: str, client: ClientMeta = None) -> AuthResult:
        session = self.sessions.get_session(session_id)
        # Une session d'un autre compte est traitée comme inexistante
        if not session or session.user_id != user_id:
            return AuthResult.fail(ErrorCode.NOT_FOUND, 'Session not found')
        self.sessions.invalidate_session(session_id, 'revoked_by_user', actor_id=user_id, client=client)
        return AuthResult.ok(message='Session revoked')

    # ==================== ACCOUNTS ====================

    def create_user(self, email, role: str = UserRole.USER.value, first_name: str = None,
                    last_name: str = None, client: ClientMeta = None, method: str = 'admin') -> User:
        """Create an account. Raises ValueError on invalid input or duplicate email."""
        email = normalize_email(email)
        if not validate_email(email):
            raise ValueError('Invalid email address')
        if role not in UserRole.values():
            raise ValueError(f'Invalid role: {role}')
        if self.find_by_email(email):
            raise ValueError('Email already registered')

        user = User(email=email, role=role, first_name=first_name, last_name=last_name)
        try:
            db.session.add(user)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        emit_audit(
            self.audit, AuditAction.USER_CREATE, client=client,
            user_id=user.id, user_email=user.email,
            resource_type='user', resource_id=user.id,
            details={'role': role, 'method': method}
        )
        logger.info(f"User {user.id} created ({method})")
        return user

    def deactivate_user(self, user_id: str, actor: User, client: ClientMeta = None) -> AuthResult:
        return self._update_account(
            user_id, actor, AuditAction.USER_DEACTIVATE, client,
            lambda user: setattr(user, 'is_active', False),
            revoke_reason='deactivated'
        )

    def activate_user(self, user_id: str, actor: User, client: ClientMeta = None) -> AuthResult:
        return self._update_account(
            user_id, actor, AuditAction.USER_ACTIVATE, client,
            lambda user: setattr(user, 'is_active', True)
        )

    def ban_user(self, user_id: str, actor: User, reason: str = None,
                 client: ClientMeta = None) -> AuthResult:
        if reason is not None and not isinstance(reason, str):
            return AuthResult.fail(ErrorCode.VALIDATION_ERROR, 'The ban reason must be a string')
        reason = (reason or '').strip()[:255] or None

        target = self.get_user(user_id)
        if target:
            if target.is_banned:
                return AuthResult.fail(ErrorCode.VALIDATION_ERROR, 'User is already banned')
            if target.role == UserRole.SUPER_ADMIN.value:
                return AuthResult.fail(ErrorCode.FORBIDDEN, 'A super admin cannot be banned')
            if target.role == UserRole.ADMIN.value and actor.role != UserRole.SUPER_ADMIN.value:
                return AuthResult.fail(ErrorCode.FORBIDDEN, 'Only a super admin can ban an admin')

        return self._update_account(
            user_id, actor, AuditAction.USER_BAN, client,
            lambda user: user.ban(reason=reason, banned_by=actor.id),
            revoke_reason='banned',
            details={'reason': reason}
        )

    def unban_user(self, user_id: str, actor: User, client: ClientMeta = None) -> AuthResult:
        return self._update_account(
            user_id, actor, AuditAction.USER_UNBAN, client,
            lambda user: user.unban()
        )

    def change_role(self, user_id: str, role, actor: User, client: ClientMeta = None) -> AuthResult:
        role = normalize_choice(role)
        if role not in UserRole.values():
            return AuthResult.fail(ErrorCode.VALIDATION_ERROR, f'Invalid role: {role}')

        target = self.get_user(user_id)
        super_admin = UserRole.SUPER_ADMIN.value
        if target and super_admin in (role, target.role) and actor.role != super_admin:
            return AuthResult.fail(ErrorCode.FORBIDDEN, 'Only a super admin can grant or remove this role')

        previous = target.role if target else None
        return self._update_account(
            user_id, actor, AuditAction.ROLE_CHANGE, client,
            lambda user: setattr(user, 'role', role),
            revoke_reason='role_changed',
            details={'old_role': previous, 'new_role': role}
        )

    def revoke_user_sessions(self, user_id: str, actor: User, client: ClientMeta = None) -> AuthResult:
        user = self.get_user(user_id)
        if not user:
            return AuthResult.fail(ErrorCode.USER_NOT_FOUND, 'User not found')
        count = self.sessions.invalidate_all_sessions(user.id, 'admin_revoke', actor_id=actor.id, client=client)
        return AuthResult.ok(message='Sessions revoked', revoked=count)

    def ban_status(self, user_id: str) -> AuthResult:
        """Ban details for the account itself (who, when, why)."""
        user = self.get_user(user_id)
        if not user:
            return AuthResult.fail(ErrorCode.USER_NOT_FOUND, 'User not found')
        if not user.is_banned:
            return AuthResult.ok(banned=False)

        banner = self.get_user(user.banned_by)
        return AuthResult.ok(banned=True, details={
            'banned_at': user.banned_at.isoformat() if user.banned_at else None,
            'banned_by': {
                'email': banner.email,
                'first_name': banner.first_name,
                'last_name': banner.last_name,
            } if banner else None,
            'reason': user.ban_reason,
        })

    # ==================== IMPERSONATION ====================

    def impersonate(self, user_id: str, actor: User, client: ClientMeta = None) -> AuthResult:
        """Open a session as another account on behalf of a super admin.

        The session records who opened it; ending it only closes that
        session, the super admin's own sessions are untouched.
        """
        if actor.role != UserRole.SUPER_ADMIN.value:
            return AuthResult.fail(ErrorCode.FORBIDDEN, 'Only super admins can impersonate users')
        if user_id == actor.id:
            return AuthResult.fail(ErrorCode.VALIDATION_ERROR, 'You cannot impersonate yourself')

        target = self.get_user(user_id)
        if not target:
            return AuthResult.fail(ErrorCode.USER_NOT_FOUND, 'User not found')
        if target.role == UserRole.SUPER_ADMIN.value:
            return AuthResult.fail(ErrorCode.FORBIDDEN, 'Super admins cannot be impersonated')
        if not target.can_authenticate:
            return AuthResult.fail(ErrorCode.USER_INACTIVE, 'This account is not active')

        bundle = self.sessions.create_session(target.id, target.role, client, impersonated_by=actor.id)
        emit_audit(
            self.audit, AuditAction.IMPERSONATION_START, client=client,
            user_id=actor.id, user_email=actor.email,
            resource_type='user', resource_id=target.id,
            details={'session_id': bundle.session_id, 'impersonated_email': target.email}
        )
        logger.warning(f"User {actor.id} started impersonating {target.id}")

        tokens = bundle.tokens
        return AuthResult.ok(
            user=target.to_dict(include_private=True),
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=tokens.access_expires_at.isoformat(),
            refresh_expires_at=tokens.refresh_expires_at.isoformat(),
            session_id=bundle.session_id,
            impersonated_by=actor.id
        )

    def end_impersonation(self, user_id: str, session_id: str, client: ClientMeta = None) -> AuthResult:
        session = self.sessions.get_session(session_id)
        if not session or session.user_id != user_id or not session.impersonated_by:
            return AuthResult.fail(ErrorCode.VALIDATION_ERROR, 'Not currently impersonating')

        self.sessions.invalidate_session(
            session_id, 'impersonation_end', actor_id=session.impersonated_by, client=client
        )
        emit_audit(
            self.audit, AuditAction.IMPERSONATION_END, client=client,
            user_id=session.impersonated_by, resource_type='user', resource_id=user_id,
            details={
                'session_id': session_id,
                'duration_seconds': int((self.clock() - session.created_at).total_seconds())
            }
        )
        return AuthResult.ok(message='Impersonation ended')

    def _update_account(self, user_id, actor, action, client, mutate,
                        revoke_reason: str = None, details: dict = None) -> AuthResult:
        """Apply an administrative change, then invalidate sessions when required.

        Tokens already issued stay cryptographically valid; revoking the
        sessions is what makes them fail on the next privileged request.
        """
        user = self.get_user(user_id)
        if not user:
            return AuthResult.fail(ErrorCode.USER_NOT_FOUND, 'User not found')
        if user.id == actor.id:
            return AuthResult.fail(ErrorCode.FORBIDDEN, 'You cannot perform this action on your own account')

        try:
            mutate(user)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        revoked = 0
        if revoke_reason:
            revoked = self.sessions.invalidate_all_sessions(
                user.id, revoke_reason, actor_id=actor.id, client=client
            )

        emit_audit(
            self.audit, action, client=client,
            user_id=actor.id, user_email=actor.email,
            resource_type='user', resource_id=user.id,
            details={**(details or {}), 'sessions_revoked': revoked}
        )
        return AuthResult.ok(user=user.to_dict(include_private=True), sessions_revoked=revoked)

    # ==================== HOUSEKEEPING ====================

    def cleanup(self) -> dict:
        """Delete expired codes, long-consumed codes and dead sessions."""
        return {
            'otp_codes': self.otp_service.purge(),
            'sessions': self.sessions.purge(),
        }
