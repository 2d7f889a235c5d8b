"""
ServiceM8 connector API routes — connect, callback, active token, disconnect.

Route prefix: /api/v1/servicem8
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, Field

from api.dependencies import (
    get_connector,
    get_settings,
    get_state_registry,
    get_token_manager,
)
from auth.dependencies import get_current_user_id
from config.settings import Settings
from connectors.errors import CredentialError, InvalidGrant, InvalidState
from connectors.servicem8 import ServiceM8Connector
from connectors.state import OAuthStateRegistry
from connectors.token_manager import TokenManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["servicem8"])


# ── Request / response schemas ─────────────────────────────────────────


class ExchangeRequest(BaseModel):
    code: str = Field(..., min_length=1)


class ExchangeResponse(BaseModel):
    success: bool
    message: str


class AuthUrlResponse(BaseModel):
    auth_url: str


class ActiveTokenResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(..., alias="accessToken")


class StatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    connected: bool
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")


class DisconnectResponse(BaseModel):
    deleted: bool


# ── Endpoints ──────────────────────────────────────────────────────────


@router.get("/auth-url", response_model=AuthUrlResponse)
async def get_auth_url(
    user_id: str = Depends(get_current_user_id),
    connector: ServiceM8Connector = Depends(get_connector),
    states: OAuthStateRegistry = Depends(get_state_registry),
) -> Dict[str, str]:
    """
    Issue a single-use state nonce for the caller and return the ServiceM8
    consent URL carrying it.
    """
    state = states.issue(user_id)
    return {"auth_url": connector.get_auth_url(state)}


@router.post("/exchange", response_model=ExchangeResponse)
async def exchange_code(
    req: ExchangeRequest,
    state: str = Query(..., min_length=1),
    user_id: str = Depends(get_current_user_id),
    states: OAuthStateRegistry = Depends(get_state_registry),
    tokens: TokenManager = Depends(get_token_manager),
) -> Dict[str, object]:
    """
    Complete the authorization-code grant for the authenticated caller.

    ``state`` is forwarded from the provider redirect and must be the nonce
    issued to this same user by ``/auth-url``.
    """
    states.consume(state, user_id)
    await tokens.connect(user_id, req.code)
    return {"success": True, "message": "ServiceM8 connection successful."}


@router.get("/callback")
async def oauth_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    settings: Settings = Depends(get_settings),
    states: OAuthStateRegistry = Depends(get_state_registry),
    tokens: TokenManager = Depends(get_token_manager),
) -> RedirectResponse:
    """
    OAuth callback — ServiceM8 redirects here after consent when
    ``REDIRECT_URI`` points at this backend.

    The user is whoever the state nonce was issued to.  Always answers with
    a redirect back to the settings page, success or not.
    """
    if error:
        logger.info("ServiceM8 consent denied or failed: %s", error)
        return _settings_redirect(settings, error="access_denied")
    if not code:
        return _settings_redirect(settings, error="missing_code")
    if not state:
        return _settings_redirect(settings, error="missing_state")

    try:
        user_id = states.consume(state)
    except InvalidState as exc:
        logger.warning("Rejected ServiceM8 callback: %s", exc)
        return _settings_redirect(settings, error="invalid_state")

    try:
        await tokens.connect(user_id, code)
    except InvalidGrant as exc:
        logger.warning("ServiceM8 rejected authorization code for user %s: %s", user_id, exc)
        return _settings_redirect(settings, error="invalid_grant")
    except CredentialError as exc:
        logger.error("ServiceM8 callback failed for user %s: %s", user_id, exc, exc_info=exc.__cause__)
        return _settings_redirect(settings, error="callback_error")

    return _settings_redirect(settings)


@router.post("/token", response_model=ActiveTokenResponse, response_model_by_alias=True)
async def get_active_token(
    user_id: str = Depends(get_current_user_id),
    tokens: TokenManager = Depends(get_token_manager),
) -> Dict[str, str]:
    """Return a usable ServiceM8 access token, refreshing it if needed."""
    access_token = await tokens.fetch_active_token(user_id)
    return {"accessToken": access_token}


@router.get("/status", response_model=StatusResponse, response_model_by_alias=True)
async def get_status(
    user_id: str = Depends(get_current_user_id),
    tokens: TokenManager = Depends(get_token_manager),
) -> Dict[str, object]:
    """Connected / not connected, for the settings page."""
    status = await tokens.connection_status(user_id)
    return {"connected": status["connected"], "expiresAt": status["expires_at"]}


@router.post("/disconnect", response_model=DisconnectResponse)
async def disconnect(
    user_id: str = Depends(get_current_user_id),
    tokens: TokenManager = Depends(get_token_manager),
) -> Dict[str, bool]:
    """Delete the caller's ServiceM8 connection (idempotent)."""
    deleted = await tokens.disconnect(user_id)
    return {"deleted": deleted}


def _settings_redirect(settings: Settings, error: Optional[str] = None) -> RedirectResponse:
    params = {"error": error} if error else {"s8_connect": "success"}
    return RedirectResponse(
        url=f"{settings.app_url.rstrip('/')}/settings?{urlencode(params)}",
        status_code=302,
    )
