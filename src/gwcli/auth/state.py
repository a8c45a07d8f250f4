"""
OAuth state tokens for CSRF protection.

A state token is bound to one authorization attempt. It is compared by exact
string equality; the first valid consumption wins and every later one fails.
"""

import hmac
import logging
import secrets
from threading import Lock
from typing import Optional

logger = logging.getLogger(__name__)

# 32 random bytes -> 256 bits of entropy, 43 URL-safe characters
STATE_NUM_BYTES = 32


def new_state() -> str:
    """Generate a random, URL-safe OAuth state value."""
    return secrets.token_urlsafe(STATE_NUM_BYTES)


def new_csrf_token() -> str:
    """Generate the hex CSRF token issued by the accounts manager."""
    return secrets.token_hex(STATE_NUM_BYTES)


def tokens_equal(expected: str, candidate: Optional[str]) -> bool:
    """Compare two secret strings in constant time."""
    if not expected or candidate is None:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), candidate.encode("utf-8"))


class StateToken:
    """Single-use anti-CSRF token for one authorization attempt."""

    def __init__(self, value: str) -> None:
        if not value:
            raise ValueError("OAuth state must be provided")
        self.value = value
        self._lock = Lock()
        self._consumed = False
        self._invalidated = False

    @classmethod
    def generate(cls) -> "StateToken":
        return cls(new_state())

    @property
    def consumed(self) -> bool:
        return self._consumed

    @property
    def active(self) -> bool:
        return not (self._consumed or self._invalidated)

    def matches(self, candidate: Optional[str]) -> bool:
        """Check a candidate without consuming the token."""
        return self.active and tokens_equal(self.value, candidate)

    def consume(self, candidate: Optional[str]) -> bool:
        """
        Validate and consume the token.

        Returns:
            True for the first matching candidate only.
        """
        with self._lock:
            if not self.matches(candidate):
                return False
            self._consumed = True
        logger.debug(f"Consumed OAuth state {self.value[:8]}...")
        return True

    def invalidate(self) -> None:
        """Reject every later candidate, matching or not."""
        with self._lock:
            self._invalidated = True

    def __repr__(self) -> str:
        return f"StateToken({self.value[:8]}..., active={self.active})"
