"""
Domain models for stored connections and provider token responses.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class Connection(BaseModel):
    """One user's ServiceM8 credentials, tokens always encrypted."""

    user_id: str
    encrypted_access_token: str = Field(repr=False)
    encrypted_refresh_token: str = Field(repr=False)
    expires_at: datetime
    updated_at: Optional[datetime] = None


class TokenGrant(BaseModel):
    """Validated token endpoint response (plaintext, never persisted as-is)."""

    access_token: str = Field(repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    expires_in: int
