"""
Service OTP (One-Time Password)
===============================

Gère la génération, le stockage haché et la vérification des codes OTP
envoyés par email (connexion, vérification d'adresse, récupération).

Un seul code actif par compte et par purpose: émettre un code invalide les
précédents. La vérification ne lève pas d'exception pour un échec attendu
(code absent, expiré, faux, épuisé): elle retourne un OTPVerification.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from authcore.models.enums import OTPFailure, OTPPurpose
from authcore.stores.base import OTPStore
from authcore.utils.audit import AuditAction, audit_log, emit_audit
from authcore.utils.crypto import generate_otp, hash_otp, verify_otp_hash
from authcore.utils.helpers import utcnow

logger = logging.getLogger(__name__)

# Durée de validité des OTP (en minutes)
OTP_VALIDITY_MINUTES = 10
OTP_LENGTH = 6
MAX_ATTEMPTS = 5


@dataclass(frozen=True)
class IssuedCode:
    """Code fraîchement émis (le code en clair ne quitte ce service que vers l'email)"""
    code: str
    otp_id: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class OTPVerification:
    """Résultat de verify()"""
    success: bool
    failure: Optional[OTPFailure] = None
    otp_id: Optional[str] = None
    remaining_attempts: Optional[int] = None


class OTPService:
    """
    Service de gestion des codes OTP

    Usage:
        service = OTPService(otp_store, hash_key=app.config['OTP_HASH_KEY'])

        issued = service.issue(user_id='xxx', purpose='LOGIN')
        result = service.verify(user_id='xxx', code='123456', purpose='LOGIN')
    """

    def __init__(
        self,
        otp_store: OTPStore,
        hash_key,
        ttl_minutes: int = OTP_VALIDITY_MINUTES,
        max_attempts: int = MAX_ATTEMPTS,
        code_length: int = OTP_LENGTH,
        audit: Callable = audit_log,
        clock: Callable = utcnow
    ):
        self.otp_store = otp_store
        self.hash_key = hash_key
        self.ttl = timedelta(minutes=ttl_minutes)
        self.max_attempts = max_attempts
        self.code_length = code_length
        self.audit = audit
        self.clock = clock

    def generate_otp(self) -> str:
        """Génère un code OTP numérique"""
        return generate_otp(self.code_length)

    def issue(self, user_id: str, purpose: str = OTPPurpose.LOGIN.value,
              user_email: str = None, client=None) -> IssuedCode:
        """
        Génère, hache et stocke un nouveau code.
        Les codes non utilisés du même compte/purpose sont invalidés.

        Le rate limiting est à la charge de l'appelant (OTPRateLimiter).
        """
        code = self.generate_otp()
        now = self.clock()
        expires_at = now + self.ttl

        otp_record = self.otp_store.create(
            user_id=user_id,
            purpose=purpose,
            code_hash=hash_otp(code, self.hash_key),
            created_at=now,
            expires_at=expires_at,
            max_attempts=self.max_attempts
        )

        emit_audit(
            self.audit, AuditAction.OTP_REQUESTED, client=client,
            user_id=user_id, user_email=user_email,
            resource_type='otp', resource_id=otp_record.id,
            details={'purpose': purpose, 'expires_at': expires_at.isoformat()}
        )
        logger.info(f"OTP issued for user {user_id}, purpose: {purpose}")

        return IssuedCode(code=code, otp_id=otp_record.id, issued_at=now, expires_at=expires_at)

    def verify(self, user_id: str, code: str, purpose: str = OTPPurpose.LOGIN.value,
               user_email: str = None, client=None) -> OTPVerification:
        """
        Vérifie un code OTP

        1. Code non utilisé le plus récent pour (user, purpose)
        2. Expiré => rendu inutilisable, échec
        3. Tentatives épuisées => échec, même si le code est juste
        4. Comparaison en temps constant
        5. Faux => incrément atomique des tentatives
        6. Juste => consommation atomique (premier arrivé gagnant)
        """
        otp_record = self.otp_store.find_latest_active(user_id, purpose)

        if not otp_record:
            return self._fail(OTPFailure.NOT_FOUND, user_id, user_email, purpose, client)

        now = self.clock()

        # Vérifier expiration
        if now >= otp_record.expires_at:
            self.otp_store.mark_used(otp_record.id, now)
            return self._fail(OTPFailure.EXPIRED, user_id, user_email, purpose, client, otp_record.id)

        # Vérifier tentatives
        if otp_record.attempts >= otp_record.max_attempts:
            self.otp_store.mark_used(otp_record.id, now)
            return self._fail(OTPFailure.TOO_MANY_ATTEMPTS, user_id, user_email, purpose, client, otp_record.id)

        # Vérifier le code
        if not verify_otp_hash(code, otp_record.code_hash, self.hash_key):
            attempts = self.otp_store.register_failed_attempt(otp_record.id)
            if attempts is None:
                # Code consommé ou épuisé entre-temps par une requête concurrente
                return self._fail(OTPFailure.ALREADY_USED, user_id, user_email, purpose, client, otp_record.id)

            remaining = max(otp_record.max_attempts - attempts, 0)
            if remaining == 0:
                self.otp_store.mark_used(otp_record.id, now)
            return self._fail(OTPFailure.MISMATCH, user_id, user_email, purpose, client,
                              otp_record.id, remaining=remaining)

        # Code valide: consommation conditionnelle
        if not self.otp_store.consume(otp_record.id, now):
            return self._fail(OTPFailure.ALREADY_USED, user_id, user_email, purpose, client, otp_record.id)

        emit_audit(
            self.audit, AuditAction.OTP_VERIFIED, client=client,
            user_id=user_id, user_email=user_email,
            resource_type='otp', resource_id=otp_record.id,
            details={'purpose': purpose}
        )
        logger.info(f"OTP verified for user {user_id}, purpose: {purpose}")

        return OTPVerification(success=True, otp_id=otp_record.id)

    def purge(self, used_retention: timedelta = timedelta(hours=24)) -> int:
        """Supprime les codes expirés et ceux consommés depuis plus de `used_retention`"""
        now = self.clock()
        return self.otp_store.purge(now, now - used_retention)

    def _fail(self, failure: OTPFailure, user_id, user_email, purpose, client,
              otp_id: str = None, remaining: int = None) -> OTPVerification:
        emit_audit(
            self.audit, AuditAction.OTP_FAILED, client=client,
            user_id=user_id, user_email=user_email,
            resource_type='otp', resource_id=otp_id,
            details={'purpose': purpose, 'reason': failure.value, 'remaining_attempts': remaining},
            status='failure'
        )
        logger.info(f"OTP verification failed for user {user_id}: {failure.value}")
        return OTPVerification(success=False, failure=failure, otp_id=otp_id, remaining_attempts=remaining)
