"""
Stores en mémoire
=================

Mêmes contrats que les stores SQLAlchemy, pour les tests et le développement.
Un verrou par store rend chaque écriture conditionnelle atomique.
Les enregistrements retournés sont des copies: les modifier n'a aucun effet.
"""

import threading
import uuid
from dataclasses import replace
from typing import Dict, Optional

from authcore.models.enums import SessionState
from authcore.stores.base import OTPRecord, OTPStore, SessionRecord, SessionStore


class InMemoryOTPStore(OTPStore):

    def __init__(self):
        self._codes: Dict[str, OTPRecord] = {}
        self._lock = threading.Lock()

    def create(self, user_id, purpose, code_hash, created_at, expires_at, max_attempts):
        record = OTPRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            purpose=purpose,
            code_hash=code_hash,
            created_at=created_at,
            expires_at=expires_at,
            max_attempts=max_attempts,
        )
        with self._lock:
            for code in self._codes.values():
                if code.user_id == user_id and code.purpose == purpose and not code.is_used:
                    code.is_used = True
                    code.used_at = created_at
            self._codes[record.id] = record
            return replace(record)

    def find_latest_active(self, user_id, purpose):
        with self._lock:
            candidates = [
                c for c in self._codes.values()
                if c.user_id == user_id and c.purpose == purpose and not c.is_used
            ]
            if not candidates:
                return None
            return replace(max(candidates, key=lambda c: c.created_at))

    def mark_used(self, code_id, now):
        with self._lock:
            code = self._codes.get(code_id)
            if code is None or code.is_used:
                return False
            code.is_used = True
            code.used_at = now
            return True

    def register_failed_attempt(self, code_id) -> Optional[int]:
        with self._lock:
            code = self._codes.get(code_id)
            if code is None or code.is_used or code.attempts >= code.max_attempts:
                return None
            code.attempts += 1
            return code.attempts

    def consume(self, code_id, now):
        with self._lock:
            code = self._codes.get(code_id)
            if (code is None or code.is_used
                    or code.attempts >= code.max_attempts
                    or code.expires_at <= now):
                return False
            code.is_used = True
            code.used_at = now
            return True

    def latest_issued_at(self, user_id):
        with self._lock:
            dates = [c.created_at for c in self._codes.values() if c.user_id == user_id]
            return max(dates) if dates else None

    def count_issued_since(self, user_id, since):
        with self._lock:
            return sum(1 for c in self._codes.values()
                       if c.user_id == user_id and c.created_at >= since)

    def purge(self, now, used_before):
        with self._lock:
            doomed = [
                c.id for c in self._codes.values()
                if c.expires_at < now or (c.is_used and c.used_at and c.used_at < used_before)
            ]
            for code_id in doomed:
                del self._codes[code_id]
            return len(doomed)

    def get(self, code_id) -> Optional[OTPRecord]:
        with self._lock:
            code = self._codes.get(code_id)
            return replace(code) if code else None


class InMemorySessionStore(SessionStore):

    def __init__(self):
        self._sessions: Dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def create(self, session_id, user_id, refresh_jti, created_at, expires_at,
               ip_address=None, user_agent=None, impersonated_by=None):
        record = SessionRecord(
            id=session_id,
            user_id=user_id,
            refresh_jti=refresh_jti,
            created_at=created_at,
            expires_at=expires_at,
            ip_address=ip_address,
            user_agent=user_agent,
            impersonated_by=impersonated_by,
        )
        with self._lock:
            self._sessions[session_id] = record
            return replace(record)

    def get(self, session_id):
        with self._lock:
            session = self._sessions.get(session_id)
            return replace(session) if session else None

    def rotate(self, session_id, expected_jti, new_jti, expires_at, now,
               ip_address=None, user_agent=None):
        with self._lock:
            session = self._sessions.get(session_id)
            if (session is None or session.state(now) is not SessionState.ACTIVE
                    or session.refresh_jti != expected_jti):
                return False
            session.refresh_jti = new_jti
            session.expires_at = expires_at
            session.last_refreshed_at = now
            if ip_address:
                session.ip_address = ip_address
            if user_agent:
                session.user_agent = user_agent
            return True

    def invalidate(self, session_id, reason, now):
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or not session.is_valid:
                return False
            session.is_valid = False
            session.revoked_at = now
            session.revoked_reason = reason
            return True

    def invalidate_all(self, user_id, reason, now):
        count = 0
        with self._lock:
            for session in self._sessions.values():
                if session.user_id == user_id and session.is_valid:
                    session.is_valid = False
                    session.revoked_at = now
                    session.revoked_reason = reason
                    count += 1
        return count

    def list_active(self, user_id, now):
        with self._lock:
            active = [
                replace(s) for s in self._sessions.values()
                if s.user_id == user_id and s.state(now) is SessionState.ACTIVE
            ]
        return sorted(active, key=lambda s: s.created_at, reverse=True)

    def purge(self, now):
        with self._lock:
            doomed = [s.id for s in self._sessions.values()
                      if s.expires_at < now or not s.is_valid]
            for session_id in doomed:
                del self._sessions[session_id]
            return len(doomed)
