"""
OAuth ``state`` registry (CSRF protection).

A nonce is issued to an authenticated user right before they are sent to
the ServiceM8 consent screen and is bound to that user server-side.  The
callback must present the same nonce exactly once; the user id is looked
up here, never parsed out of ``state``.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from typing import Dict, Optional, Tuple

from connectors.errors import InvalidState

logger = logging.getLogger(__name__)


class OAuthStateRegistry:
    """In-memory, single-use, expiring state nonces."""

    def __init__(self, ttl_seconds: int = 600) -> None:
        self._ttl = ttl_seconds
        self._pending: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def issue(self, user_id: str) -> str:
        state = secrets.token_urlsafe(32)
        now = time.monotonic()
        with self._lock:
            self._prune(now)
            self._pending[state] = (user_id, now + self._ttl)
        logger.debug("Issued OAuth state for user %s", user_id)
        return state

    def consume(self, state: str, user_id: Optional[str] = None) -> str:
        """
        Redeem ``state`` and return the user it was issued to.

        The nonce is discarded on first lookup whatever the outcome, so a
        replay always fails.  When ``user_id`` is given (authenticated
        exchange), it must match the user the nonce was bound to.
        """
        if not state:
            raise InvalidState("OAuth state is missing")
        with self._lock:
            entry = self._pending.pop(state, None)

        if entry is None:
            raise InvalidState("OAuth state is unknown or already used")
        owner, expires = entry
        if expires < time.monotonic():
            raise InvalidState("OAuth state has expired")
        if user_id is not None and not secrets.compare_digest(owner, user_id):
            logger.warning("OAuth state issued to %s presented by %s", owner, user_id)
            raise InvalidState("OAuth state was issued to a different user")
        return owner

    def _prune(self, now: float) -> None:
        expired = [key for key, (_, exp) in self._pending.items() if exp < now]
        for key in expired:
            del self._pending[key]
