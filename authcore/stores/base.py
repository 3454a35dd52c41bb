"""
Stores - Interfaces de persistance du coeur d'authentification
==============================================================

Les services ne parlent jamais directement à la base: ils reçoivent un
OTPStore et un SessionStore. Toute écriture qui dépend de l'état courant
(tentatives, consommation, rotation) est une écriture conditionnelle unique
côté store, jamais un couple lecture/écriture côté service.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from authcore.models.enums import SessionState


def session_state(session, now: datetime) -> SessionState:
    if not session.is_valid:
        return SessionState.INVALID
    if now >= session.expires_at:
        return SessionState.EXPIRED
    return SessionState.ACTIVE


@dataclass
class OTPRecord:
    """Code OTP (même forme que le modèle OTPCode)"""
    id: str
    user_id: str
    purpose: str
    code_hash: str
    created_at: datetime
    expires_at: datetime
    attempts: int = 0
    max_attempts: int = 5
    is_used: bool = False
    used_at: Optional[datetime] = None


@dataclass
class SessionRecord:
    """Session (même forme que le modèle UserSession)"""
    id: str
    user_id: str
    refresh_jti: str
    created_at: datetime
    expires_at: datetime
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    is_valid: bool = True
    revoked_at: Optional[datetime] = None
    revoked_reason: Optional[str] = None
    last_refreshed_at: Optional[datetime] = None
    impersonated_by: Optional[str] = None

    def state(self, now: datetime) -> SessionState:
        return session_state(self, now)

    def to_dict(self, current_session_id: str = None):
        return {
            'id': self.id,
            'user_agent': self.user_agent,
            'ip_address': self.ip_address,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'last_refreshed_at': self.last_refreshed_at.isoformat() if self.last_refreshed_at else None,
            'impersonated_by': self.impersonated_by,
            'current': self.id == current_session_id,
        }


class OTPStore(ABC):
    """Persistance des codes OTP"""

    @abstractmethod
    def create(self, user_id: str, purpose: str, code_hash: str,
               created_at: datetime, expires_at: datetime, max_attempts: int):
        """Crée un code et invalide, dans la même transaction, les codes
        non utilisés du même compte pour le même purpose."""

    @abstractmethod
    def get(self, code_id: str) -> Optional[OTPRecord]:
        """Code par identifiant, ou None"""

    @abstractmethod
    def find_latest_active(self, user_id: str, purpose: str):
        """Code non utilisé le plus récent (expiré ou non), ou None"""

    @abstractmethod
    def mark_used(self, code_id: str, now: datetime) -> bool:
        """Rend le code inutilisable. False s'il l'était déjà."""

    @abstractmethod
    def register_failed_attempt(self, code_id: str) -> Optional[int]:
        """Incrémente `attempts` si le code est encore utilisable et sous le
        seuil. Retourne le nouveau compteur, ou None si rien n'a été écrit."""

    @abstractmethod
    def consume(self, code_id: str, now: datetime) -> bool:
        """Passe is_used à True si le code est non utilisé, non expiré et sous
        le seuil de tentatives. Premier écrivain gagnant."""

    @abstractmethod
    def latest_issued_at(self, user_id: str) -> Optional[datetime]:
        """Date du dernier code émis pour le compte (tous purposes)"""

    @abstractmethod
    def count_issued_since(self, user_id: str, since: datetime) -> int:
        """Nombre de codes émis pour le compte depuis `since`"""

    @abstractmethod
    def purge(self, now: datetime, used_before: datetime) -> int:
        """Supprime les codes expirés et ceux utilisés avant `used_before`"""


class SessionStore(ABC):
    """Persistance des sessions"""

    @abstractmethod
    def create(self, session_id: str, user_id: str, refresh_jti: str,
               created_at: datetime, expires_at: datetime,
               ip_address: str = None, user_agent: str = None,
               impersonated_by: str = None):
        """Crée une session valide (impersonated_by: id du SUPER_ADMIN)"""

    @abstractmethod
    def get(self, session_id: str):
        """Session par identifiant, ou None"""

    @abstractmethod
    def rotate(self, session_id: str, expected_jti: str, new_jti: str,
               expires_at: datetime, now: datetime,
               ip_address: str = None, user_agent: str = None) -> bool:
        """Remplace le jti du refresh token si la session est valide, non
        expirée et que son jti courant vaut `expected_jti`."""

    @abstractmethod
    def invalidate(self, session_id: str, reason: str, now: datetime) -> bool:
        """Invalide la session. False si elle l'était déjà (ou inconnue)."""

    @abstractmethod
    def invalidate_all(self, user_id: str, reason: str, now: datetime) -> int:
        """Invalide toutes les sessions valides du compte"""

    @abstractmethod
    def list_active(self, user_id: str, now: datetime) -> List:
        """Sessions valides et non expirées du compte, plus récentes d'abord"""

    @abstractmethod
    def purge(self, now: datetime) -> int:
        """Supprime les sessions expirées ou invalidées"""
