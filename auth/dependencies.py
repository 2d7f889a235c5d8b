"""
FastAPI dependencies for authentication.

Provides ``get_current_user_id``, used by every protected route.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from auth.jwt import verify_token
from connectors.errors import Unauthorized

# Missing or non-Bearer headers resolve to None and become Unauthorized.
_bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> str:
    """
    Extract and verify the Bearer token, returning the authenticated
    ``user_id``.
    """
    if credentials is None:
        raise Unauthorized("Missing Bearer token")
    return verify_token(credentials.credentials)
