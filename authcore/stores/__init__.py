"""
Stores de persistance du coeur d'authentification
"""

from authcore.stores.base import (
    OTPStore, SessionStore, OTPRecord, SessionRecord, session_state
)
from authcore.stores.memory import InMemoryOTPStore, InMemorySessionStore

__all__ = [
    'OTPStore',
    'SessionStore',
    'OTPRecord',
    'SessionRecord',
    'session_state',
    'InMemoryOTPStore',
    'InMemorySessionStore',
]
