"""Password hashing and bearer-token sessions for the server."""

import hashlib
import hmac
import logging
import os
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Optional

__all__ = ["hash_password", "verify_password", "Session", "SessionStore"]

logger = logging.getLogger(__name__)

# PBKDF2 parameters
_PBKDF2_ITERATIONS = 240_000
_PBKDF2_HASH = "sha256"
_SALT_LENGTH = 16


def hash_password(password: str, iterations: int = _PBKDF2_ITERATIONS) -> str:
    """Hash a password with PBKDF2-HMAC-SHA256 and a random salt.

    Returns a string in the format: ``iterations$salt_hex$derived_hex``.
    """
    salt = os.urandom(_SALT_LENGTH)
    derived = hashlib.pbkdf2_hmac(_PBKDF2_HASH, password.encode(), salt, iterations)
    return f"{iterations}${salt.hex()}${derived.hex()}"


def verify_password(password: str, stored_hash: str) -> bool:
    """Constant-time password verification against a PBKDF2 hash string."""
    parts = stored_hash.split("$", 2)
    if len(parts) != 3:
        return False
    iterations_str, salt_hex, expected_hex = parts
    try:
        iterations = int(iterations_str)
        salt = bytes.fromhex(salt_hex)
    except (ValueError, TypeError):
        return False
    derived = hashlib.pbkdf2_hmac(_PBKDF2_HASH, password.encode(), salt, iterations)
    return hmac.compare_digest(derived.hex(), expected_hex)


@dataclass
class Session:
    user_id: int
    created: float


class SessionStore:
    """In-memory bearer-token sessions with a fixed TTL."""

    def __init__(self, ttl: int = 7 * 24 * 3600):
        self.ttl = ttl
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def _cleanup_expired(self, now: float) -> None:
        """Must be called while holding ``_lock``."""
        expired = [tok for tok, s in self._sessions.items() if now - s.created > self.ttl]
        for tok in expired:
            self._sessions.pop(tok, None)

    def create(self, user_id: int) -> str:
        """Create a new session and return its token."""
        token = secrets.token_urlsafe(32)
        now = time.time()
        with self._lock:
            self._cleanup_expired(now)
            self._sessions[token] = Session(user_id=user_id, created=now)
        return token

    def get_user_id(self, token: str) -> Optional[int]:
        with self._lock:
            session = self._sessions.get(token)
            if session is None:
                return None
            if time.time() - session.created > self.ttl:
                self._sessions.pop(token, None)
                return None
            return session.user_id

    def revoke(self, token: str) -> None:
        with self._lock:
            self._sessions.pop(token, None)

    def revoke_user(self, user_id: int) -> int:
        """Drop every session of a user (deleted or rejected account)."""
        with self._lock:
            tokens = [tok for tok, s in self._sessions.items() if s.user_id == user_id]
            for tok in tokens:
                self._sessions.pop(tok, None)
        if tokens:
            logger.info(f"Revoked {len(tokens)} session(s) of user {user_id}")
        return len(tokens)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
