"""
Stores SQLAlchemy
=================

Implémentation des stores sur les modèles Flask-SQLAlchemy.
Les écritures conditionnelles passent par un UPDATE ... WHERE unique:
le nombre de lignes modifiées indique qui a gagné.

Comme les stores en mémoire, ils retournent des enregistrements détachés
(OTPRecord, SessionRecord) et jamais les instances ORM.
"""

import logging
from dataclasses import fields
from datetime import datetime
from typing import Optional

from authcore import db
from authcore.models import OTPCode, UserSession
from authcore.stores.base import OTPRecord, OTPStore, SessionRecord, SessionStore

logger = logging.getLogger(__name__)

# Nombre d'essais du compare-and-set quand le dialecte n'a pas UPDATE ... RETURNING
ATTEMPT_CAS_RETRIES = 5


def _detach(row, record_cls):
    if row is None:
        return None
    return record_cls(**{f.name: getattr(row, f.name) for f in fields(record_cls)})


class SQLAlchemyOTPStore(OTPStore):
    """Codes OTP en base"""

    def create(self, user_id, purpose, code_hash, created_at, expires_at, max_attempts):
        try:
            # Invalider les anciens codes
            OTPCode.query.filter_by(
                user_id=user_id,
                purpose=purpose,
                is_used=False
            ).update({'is_used': True, 'used_at': created_at}, synchronize_session=False)

            otp_record = OTPCode(
                user_id=user_id,
                purpose=purpose,
                code_hash=code_hash,
                created_at=created_at,
                expires_at=expires_at,
                attempts=0,
                max_attempts=max_attempts
            )
            db.session.add(otp_record)
            db.session.flush()
            record = _detach(otp_record, OTPRecord)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return record

    def get(self, code_id) -> Optional[OTPRecord]:
        return _detach(db.session.get(OTPCode, code_id), OTPRecord)

    def find_latest_active(self, user_id, purpose):
        row = OTPCode.query.filter_by(
            user_id=user_id,
            purpose=purpose,
            is_used=False
        ).order_by(OTPCode.created_at.desc()).first()
        return _detach(row, OTPRecord)

    def mark_used(self, code_id, now):
        return self._conditional_update(
            [OTPCode.id == code_id, OTPCode.is_used.is_(False)],
            {'is_used': True, 'used_at': now}
        ) == 1

    def register_failed_attempt(self, code_id) -> Optional[int]:
        usable = [
            OTPCode.id == code_id,
            OTPCode.is_used.is_(False),
            OTPCode.attempts < OTPCode.max_attempts,
        ]

        if db.engine.dialect.update_returning:
            try:
                attempts = db.session.execute(
                    db.update(OTPCode)
                    .where(*usable)
                    .values(attempts=OTPCode.attempts + 1)
                    .returning(OTPCode.attempts)
                    .execution_options(synchronize_session=False)
                ).scalar()
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
            return attempts

        # Sans RETURNING: compare-and-set sur la valeur lue
        for _ in range(ATTEMPT_CAS_RETRIES):
            observed = db.session.query(OTPCode.attempts).filter(*usable).scalar()
            if observed is None:
                db.session.rollback()
                return None
            if self._conditional_update(usable + [OTPCode.attempts == observed],
                                        {'attempts': observed + 1}) == 1:
                return observed + 1
        logger.warning(f"Attempt counter contention on OTP {code_id}")
        return None

    def consume(self, code_id, now):
        return self._conditional_update(
            [
                OTPCode.id == code_id,
                OTPCode.is_used.is_(False),
                OTPCode.attempts < OTPCode.max_attempts,
                OTPCode.expires_at > now,
            ],
            {'is_used': True, 'used_at': now}
        ) == 1

    def latest_issued_at(self, user_id) -> Optional[datetime]:
        return db.session.query(db.func.max(OTPCode.created_at)).filter(
            OTPCode.user_id == user_id
        ).scalar()

    def count_issued_since(self, user_id, since):
        return OTPCode.query.filter(
            OTPCode.user_id == user_id,
            OTPCode.created_at >= since
        ).count()

    def purge(self, now, used_before):
        try:
            deleted = OTPCode.query.filter(
                db.or_(
                    OTPCode.expires_at < now,
                    db.and_(OTPCode.is_used.is_(True), OTPCode.used_at < used_before)
                )
            ).delete(synchronize_session=False)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return deleted

    @staticmethod
    def _conditional_update(conditions, values) -> int:
        try:
            updated = OTPCode.query.filter(*conditions).update(values, synchronize_session=False)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return updated


class SQLAlchemySessionStore(SessionStore):
    """Sessions en base"""

    def create(self, session_id, user_id, refresh_jti, created_at, expires_at,
               ip_address=None, user_agent=None, impersonated_by=None):
        session = UserSession(
            id=session_id,
            user_id=user_id,
            refresh_jti=refresh_jti,
            created_at=created_at,
            expires_at=expires_at,
            ip_address=ip_address,
            user_agent=user_agent,
            impersonated_by=impersonated_by,
            is_valid=True
        )
        try:
            db.session.add(session)
            db.session.flush()
            record = _detach(session, SessionRecord)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return record

    def get(self, session_id):
        if not session_id:
            return None
        return _detach(db.session.get(UserSession, session_id), SessionRecord)

    def rotate(self, session_id, expected_jti, new_jti, expires_at, now,
               ip_address=None, user_agent=None):
        values = {
            'refresh_jti': new_jti,
            'expires_at': expires_at,
            'last_refreshed_at': now,
        }
        if ip_address:
            values['ip_address'] = ip_address
        if user_agent:
            values['user_agent'] = user_agent

        return self._conditional_update(
            [
                UserSession.id == session_id,
                UserSession.is_valid.is_(True),
                UserSession.refresh_jti == expected_jti,
                UserSession.expires_at > now,
            ],
            values
        ) == 1

    def invalidate(self, session_id, reason, now):
        return self._conditional_update(
            [UserSession.id == session_id, UserSession.is_valid.is_(True)],
            {'is_valid': False, 'revoked_at': now, 'revoked_reason': reason}
        ) == 1

    def invalidate_all(self, user_id, reason, now):
        return self._conditional_update(
            [UserSession.user_id == user_id, UserSession.is_valid.is_(True)],
            {'is_valid': False, 'revoked_at': now, 'revoked_reason': reason}
        )

    def list_active(self, user_id, now):
        rows = UserSession.query.filter(
            UserSession.user_id == user_id,
            UserSession.is_valid.is_(True),
            UserSession.expires_at > now
        ).order_by(UserSession.created_at.desc()).all()
        return [_detach(row, SessionRecord) for row in rows]

    def purge(self, now):
        try:
            deleted = UserSession.query.filter(
                db.or_(UserSession.expires_at < now, UserSession.is_valid.is_(False))
            ).delete(synchronize_session=False)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return deleted

    @staticmethod
    def _conditional_update(conditions, values) -> int:
        try:
            updated = UserSession.query.filter(*conditions).update(values, synchronize_session=False)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return updated
