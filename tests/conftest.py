"""
Shared fixtures: settings, cipher, in-memory store and a stub ServiceM8
token endpoint built on ``httpx.MockTransport``.
"""

import asyncio
import base64
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Tuple
from urllib.parse import parse_qsl

import httpx
import pytest

from config.settings import Settings
from connectors.encryption import TokenCipher
from connectors.exchange import OAuthExchangeHandler
from connectors.models import Connection
from connectors.servicem8 import ServiceM8Connector
from connectors.store import InMemoryConnectionStore
from connectors.token_manager import TokenManager

TEST_SECRET = base64.b64encode(b"0123456789abcdef0123456789abcdef").decode()
TOKEN_URL = "https://servicem8.test/oauth/access_token"


class ProviderStub:
    """Token endpoint stand-in: replays queued responses, records requests."""

    def __init__(self) -> None:
        self.responses: List[Tuple[int, Any]] = []
        self.requests: List[dict] = []
        self.headers: List[httpx.Headers] = []
        self.delay = 0.0

    def queue(self, status: int, body: Any) -> None:
        self.responses.append((status, body))

    async def handler(self, request: httpx.Request) -> httpx.Response:
        body = await request.aread()
        self.requests.append(dict(parse_qsl(body.decode())))
        self.headers.append(request.headers)
        if self.delay:
            await asyncio.sleep(self.delay)
        status, payload = self.responses.pop(0)
        if isinstance(payload, Exception):
            raise payload
        if isinstance(payload, (dict, list)):
            return httpx.Response(status, json=payload)
        return httpx.Response(status, text=payload or "")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        client_id="test-client-id",
        client_secret="test-client-secret",
        redirect_uri="https://app.test/auth/servicem8/callback",
        token_encryption_key=TEST_SECRET,
        servicem8_token_url=TOKEN_URL,
        servicem8_authorize_url="https://servicem8.test/oauth/authorize",
        expiry_buffer_seconds=60,
        app_url="https://app.test",
        auth_token_secret="test-auth-token-secret",
    )


@pytest.fixture
def provider() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher(TEST_SECRET)


@pytest.fixture
def store() -> InMemoryConnectionStore:
    return InMemoryConnectionStore()


@pytest.fixture
def connector(settings, provider) -> ServiceM8Connector:
    return ServiceM8Connector(settings, transport=provider.transport)


@pytest.fixture
def exchange(connector, store, cipher) -> OAuthExchangeHandler:
    return OAuthExchangeHandler(connector, store, cipher)


@pytest.fixture
def manager(store, exchange, cipher, settings) -> TokenManager:
    return TokenManager(store, exchange, cipher, expiry_buffer_seconds=settings.expiry_buffer_seconds)


@pytest.fixture
def seed(store, cipher):
    """Store a connection whose access token expires ``expires_in`` seconds from now."""

    async def _seed(
        user_id: str = "user-1",
        access_token: str = "A1",
        refresh_token: str = "R1",
        expires_in: float = 3600,
        target: Optional[InMemoryConnectionStore] = None,
    ) -> Connection:
        return await (target or store).upsert(
            Connection(
                user_id=user_id,
                encrypted_access_token=cipher.encrypt(access_token),
                encrypted_refresh_token=cipher.encrypt(refresh_token),
                expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            )
        )

    return _seed
