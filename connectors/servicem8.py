"""
ServiceM8Connector — OAuth2 token endpoint client for ServiceM8.

Speaks the standard form-encoded token protocol for both grants and turns
every outcome into either a validated ``TokenGrant`` or one of the
``OAuthError`` subclasses.  No retries: the caller decides.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from config.settings import Settings
from connectors.errors import (
    InvalidGrant,
    InvalidRequest,
    MalformedResponse,
    OAuthError,
    ProviderUnavailable,
)
from connectors.models import TokenGrant

logger = logging.getLogger(__name__)

_REDACTED_FIELDS = ("access_token", "refresh_token", "id_token")


def _redact(body: Any) -> Any:
    """Strip token values from a provider body before it is logged."""
    if isinstance(body, dict):
        return {k: ("<redacted>" if k in _REDACTED_FIELDS else v) for k, v in body.items()}
    return body


def _parse_expires_in(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("boolean expires_in")
    if isinstance(value, int):
        seconds = value
    elif isinstance(value, str) and value.strip().isdigit():
        seconds = int(value.strip())
    else:
        raise ValueError(f"expires_in is {type(value).__name__}")
    if seconds <= 0:
        raise ValueError("expires_in must be positive")
    return seconds


class ServiceM8Connector:
    """OAuth2 connector for ServiceM8."""

    provider_name = "servicem8"
    display_name = "ServiceM8"

    def __init__(
        self,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client_id = settings.client_id
        self._client_secret = settings.client_secret
        self._redirect_uri = settings.redirect_uri
        self._token_url = settings.servicem8_token_url
        self._authorize_url = settings.servicem8_authorize_url
        self._scopes: List[str] = settings.scopes
        self._timeout = settings.provider_timeout_seconds
        self._transport = transport

    def get_auth_url(self, state: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "scope": " ".join(self._scopes),
            "state": state,
        }
        return f"{self._authorize_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenGrant:
        """Authorization-code grant."""
        if not code:
            raise InvalidRequest("Authorization code is required")
        if not self._redirect_uri:
            raise InvalidRequest("redirect_uri is required for the code grant")
        return await self._request_token(
            "authorization_code",
            {"code": code, "redirect_uri": self._redirect_uri},
            require_refresh_token=True,
        )

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Refresh-token grant; ``refresh_token`` in the result may be None."""
        if not refresh_token:
            raise InvalidRequest("Refresh token is required")
        return await self._request_token(
            "refresh_token",
            {"refresh_token": refresh_token},
            require_refresh_token=False,
        )

    async def _request_token(
        self,
        grant_type: str,
        fields: Dict[str, str],
        *,
        require_refresh_token: bool,
    ) -> TokenGrant:
        if not (self._client_id and self._client_secret):
            raise InvalidRequest("Client credentials are not configured")

        form = {
            "grant_type": grant_type,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            **fields,
        }

        logger.debug("Requesting ServiceM8 %s grant", grant_type)
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(
                    self._token_url,
                    data=form,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            logger.warning("ServiceM8 %s grant failed in transport: %s", grant_type, exc)
            raise ProviderUnavailable(f"Token endpoint unreachable: {exc}") from exc

        try:
            body = resp.json()
        except ValueError:
            body = None

        if not resp.is_success:
            self._raise_for_error(grant_type, resp.status_code, body if body is not None else resp.text)

        if not isinstance(body, dict):
            logger.error("ServiceM8 %s grant returned non-JSON body (%s)", grant_type, resp.status_code)
            raise MalformedResponse("Token response is not a JSON object", status=resp.status_code)

        return self._parse_grant(grant_type, body, require_refresh_token)

    def _raise_for_error(self, grant_type: str, status: int, body: Any) -> None:
        error_code = body.get("error") if isinstance(body, dict) else None
        logger.error(
            "ServiceM8 %s grant failed: HTTP %s %s",
            grant_type,
            status,
            _redact(body),
        )
        message = f"Token endpoint returned HTTP {status}"
        if status >= 500 or status == 429:
            raise ProviderUnavailable(message, status=status, error_code=error_code)
        if error_code == "invalid_grant" or (error_code is None and status in (400, 401)):
            raise InvalidGrant(message, status=status, error_code=error_code)
        raise OAuthError(message, status=status, error_code=error_code)

    def _parse_grant(self, grant_type: str, body: Dict[str, Any], require_refresh_token: bool) -> TokenGrant:
        access_token = body.get("access_token")
        refresh_token = body.get("refresh_token") or None
        problems = []
        if not isinstance(access_token, str) or not access_token:
            problems.append("access_token")
        if require_refresh_token and not isinstance(refresh_token, str):
            problems.append("refresh_token")
        if refresh_token is not None and not isinstance(refresh_token, str):
            problems.append("refresh_token")
        try:
            expires_in = _parse_expires_in(body.get("expires_in"))
        except ValueError:
            problems.append("expires_in")
            expires_in = 0

        if problems:
            logger.error(
                "ServiceM8 %s grant response missing/invalid fields %s: %s",
                grant_type,
                sorted(set(problems)),
                _redact(body),
            )
            raise MalformedResponse(f"Token response missing or invalid: {', '.join(sorted(set(problems)))}")

        return TokenGrant(access_token=access_token, refresh_token=refresh_token, expires_in=expires_in)
