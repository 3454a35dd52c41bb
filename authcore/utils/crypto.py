"""
Utilitaires cryptographiques pour les codes OTP
===============================================

- Génération: CSPRNG (module secrets), distribution uniforme sur 10^n
- Stockage: HMAC-SHA256 du code avec une clé serveur (OTP_HASH_KEY)
- Vérification: comparaison en temps constant des digests

L'espace des codes est petit (10^6): le hash seul ne protège pas contre
une recherche exhaustive. La protection réelle vient de l'expiration, du
plafond de tentatives et du rate limiting.
"""

import secrets
import logging
from typing import Union

from cryptography.hazmat.primitives import constant_time, hashes, hmac

logger = logging.getLogger(__name__)

OTP_LENGTH = 6


def generate_otp(length: int = OTP_LENGTH) -> str:
    """Génère un code OTP numérique de `length` chiffres"""
    return str(secrets.randbelow(10 ** length)).zfill(length)


def _key_bytes(key: Union[str, bytes]) -> bytes:
    if isinstance(key, str):
        key = key.encode()
    if not key:
        raise ValueError('OTP hash key is not configured')
    return key


def hash_otp(code: str, key: Union[str, bytes]) -> str:
    """Hash le code OTP pour stockage sécurisé (hex, 64 caractères)"""
    mac = hmac.HMAC(_key_bytes(key), hashes.SHA256())
    mac.update(code.encode())
    return mac.finalize().hex()


def verify_otp_hash(code: str, digest: str, key: Union[str, bytes]) -> bool:
    """Compare en temps constant le hash du code soumis au hash stocké"""
    if not isinstance(code, str) or not isinstance(digest, str):
        return False
    candidate = hash_otp(code, key)
    return constant_time.bytes_eq(candidate.encode(), digest.encode())
