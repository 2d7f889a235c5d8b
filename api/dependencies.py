"""
FastAPI dependencies (shared across routes).

Each credential component is built once per process from ``config`` and
handed to routes through ``Depends``; tests swap them with
``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from config.settings import Settings, config
from connectors.encryption import TokenCipher, get_cipher
from connectors.exchange import OAuthExchangeHandler
from connectors.servicem8 import ServiceM8Connector
from connectors.state import OAuthStateRegistry
from connectors.store import ConnectionStore, SqlConnectionStore
from connectors.token_manager import TokenManager


def get_settings() -> Settings:
    return config


def get_token_cipher() -> TokenCipher:
    return get_cipher(config.token_encryption_key)


@lru_cache(maxsize=1)
def get_connector() -> ServiceM8Connector:
    return ServiceM8Connector(config)


@lru_cache(maxsize=1)
def get_connection_store() -> ConnectionStore:
    from database.session import async_session_factory

    return SqlConnectionStore(async_session_factory)


@lru_cache(maxsize=1)
def get_state_registry() -> OAuthStateRegistry:
    return OAuthStateRegistry(ttl_seconds=config.oauth_state_ttl_seconds)


@lru_cache(maxsize=1)
def get_exchange_handler() -> OAuthExchangeHandler:
    return OAuthExchangeHandler(get_connector(), get_connection_store(), get_token_cipher())


@lru_cache(maxsize=1)
def get_token_manager() -> TokenManager:
    return TokenManager(
        get_connection_store(),
        get_exchange_handler(),
        get_token_cipher(),
        expiry_buffer_seconds=config.expiry_buffer_seconds,
    )
