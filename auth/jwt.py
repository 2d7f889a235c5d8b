"""
Caller token creation and verification.

Tokens are base64-encoded JSON payloads signed with HMAC-SHA256.
Secret key is loaded from ``config.auth_token_secret`` (env var:
``AUTH_TOKEN_SECRET``).
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from base64 import b64decode, b64encode
from typing import Optional

from config.settings import config
from connectors.errors import Unauthorized

_TOKEN_EXPIRY_SECONDS = 3600


def create_token(user_id: str, *, expires_in: int = _TOKEN_EXPIRY_SECONDS, secret: Optional[str] = None) -> str:
    """Create a signed token containing ``user_id`` and expiry."""
    key = (secret or config.auth_token_secret).encode()
    payload = {
        "user_id": user_id,
        "exp": int(time.time()) + expires_in,
    }
    raw = json.dumps(payload).encode()
    sig = hmac.new(key, raw, hashlib.sha256).hexdigest()
    return b64encode(raw).decode() + "." + sig


def verify_token(token: str, *, secret: Optional[str] = None) -> str:
    """
    Verify token and return ``user_id``.

    Raises ``Unauthorized`` on invalid or expired tokens.
    """
    key = (secret or config.auth_token_secret).encode()
    try:
        parts = token.split(".", 1)
        if len(parts) != 2:
            raise ValueError("bad format")
        raw = b64decode(parts[0], validate=True)
        expected_sig = hmac.new(key, raw, hashlib.sha256).hexdigest()
        if not hmac.compare_digest(parts[1], expected_sig):
            raise ValueError("bad signature")
        payload = json.loads(raw)
        if payload.get("exp", 0) < time.time():
            raise ValueError("token expired")
        user_id = payload["user_id"]
        if not isinstance(user_id, str) or not user_id:
            raise ValueError("no user_id")
        return user_id
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        raise Unauthorized(f"Invalid or expired token: {exc}") from exc
