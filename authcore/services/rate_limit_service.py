"""
Rate limiting de l'émission des codes OTP
=========================================

Deux règles indépendantes, évaluées à partir des codes stockés:
- cooldown: pas de nouveau code moins de N secondes après le précédent
- quota: au plus M codes par compte sur l'heure glissante

Le limiteur ne lève jamais d'exception pour un refus: il retourne une
décision structurée que l'appelant transforme en réponse 429.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

from authcore.models.enums import ErrorCode
from authcore.stores.base import OTPStore
from authcore.utils.helpers import utcnow

RESEND_COOLDOWN_SECONDS = 60
MAX_CODES_PER_HOUR = 5


@dataclass(frozen=True)
class RateLimitDecision:
    """Résultat de can_request()"""
    allowed: bool
    reason: Optional[str] = None
    message: Optional[str] = None
    retry_after: Optional[int] = None  # secondes

    @classmethod
    def allow(cls) -> 'RateLimitDecision':
        return cls(allowed=True)


class OTPRateLimiter:
    """
    Usage:
        limiter = OTPRateLimiter(otp_store)
        decision = limiter.can_request(user_id)
        if not decision.allowed:
            ...  # 429 RATE_LIMITED, decision.retry_after
    """

    def __init__(
        self,
        otp_store: OTPStore,
        cooldown_seconds: int = RESEND_COOLDOWN_SECONDS,
        max_per_hour: int = MAX_CODES_PER_HOUR,
        clock: Callable = utcnow
    ):
        self.otp_store = otp_store
        self.cooldown = timedelta(seconds=cooldown_seconds)
        self.max_per_hour = max_per_hour
        self.clock = clock

    def can_request(self, user_id: str) -> RateLimitDecision:
        now = self.clock()

        # Cooldown
        last_issued = self.otp_store.latest_issued_at(user_id)
        if last_issued is not None:
            elapsed = now - last_issued
            if elapsed < self.cooldown:
                remaining = max(1, int((self.cooldown - elapsed).total_seconds() + 0.999))
                return RateLimitDecision(
                    allowed=False,
                    reason=ErrorCode.RATE_LIMITED,
                    message=f'Please wait {remaining} seconds before requesting a new code',
                    retry_after=remaining
                )

        # Quota horaire
        window_start = now - timedelta(hours=1)
        hourly_count = self.otp_store.count_issued_since(user_id, window_start)
        if hourly_count >= self.max_per_hour:
            return RateLimitDecision(
                allowed=False,
                reason=ErrorCode.RATE_LIMITED,
                message='Too many code requests. Please try again later.',
                retry_after=3600
            )

        return RateLimitDecision.allow()
