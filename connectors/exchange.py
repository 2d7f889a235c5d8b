"""
OAuth exchange handler — run a grant, encrypt the result, persist it.

Used once per connect (authorization-code grant) and again for every
silent renewal (refresh-token grant).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from connectors.encryption import TokenCipher
from connectors.errors import StoreError
from connectors.models import Connection, TokenGrant
from connectors.servicem8 import ServiceM8Connector
from connectors.store import ConnectionStore

logger = logging.getLogger(__name__)


class OAuthExchangeHandler:
    def __init__(
        self,
        connector: ServiceM8Connector,
        store: ConnectionStore,
        cipher: TokenCipher,
    ) -> None:
        self.connector = connector
        self.store = store
        self.cipher = cipher

    async def exchange_code(self, user_id: str, code: str) -> Connection:
        """
        Complete the authorization-code grant for ``user_id`` and store the
        resulting connection, replacing any previous one.
        """
        grant = await self.connector.exchange_code(code)
        connection = self._build_connection(user_id, grant, grant.refresh_token)
        stored = await self.store.upsert(connection)
        logger.info("ServiceM8 connected for user %s (expires %s)", user_id, stored.expires_at.isoformat())
        return stored

    async def refresh(self, connection: Connection) -> Tuple[Optional[Connection], str]:
        """
        Run the refresh-token grant for a stored connection.

        Persists the renewed tokens over ``connection`` and returns the
        stored connection plus the new plaintext access token.  The write
        only lands while the row still holds the refresh token that was
        used; if the user reconnected or disconnected meanwhile the result
        is discarded and ``None`` comes back in place of the connection.

        A failed write is retried once; if it still fails the fresh token is
        returned anyway (logged as an error) so this call can proceed, and
        the next call refreshes again.

        Raises ``IntegrityError`` if the stored refresh token does not
        decrypt, ``OAuthError`` subclasses if the provider call fails.
        """
        refresh_token = self.cipher.decrypt(connection.encrypted_refresh_token)
        grant = await self.connector.refresh_access_token(refresh_token)
        if grant.refresh_token is None:
            logger.debug("No rotated refresh token for user %s; keeping the current one", connection.user_id)
        updated = self._build_connection(
            connection.user_id,
            grant,
            grant.refresh_token or refresh_token,
        )
        return await self._persist_refresh(updated, connection.encrypted_refresh_token), grant.access_token

    async def _persist_refresh(self, connection: Connection, expected_refresh_token: str) -> Optional[Connection]:
        try:
            stored = await self.store.update_if_unchanged(connection, expected_refresh_token)
        except StoreError as exc:
            logger.warning("Retrying write of refreshed tokens for user %s: %s", connection.user_id, exc)
            try:
                stored = await self.store.update_if_unchanged(connection, expected_refresh_token)
            except StoreError as retry_exc:
                logger.error(
                    "Refreshed tokens for user %s could not be saved; serving the new access token unsaved",
                    connection.user_id,
                    exc_info=retry_exc,
                )
                return connection
        if stored is None:
            logger.info(
                "Connection for user %s changed while refreshing; discarding the refreshed tokens",
                connection.user_id,
            )
            return None
        logger.info("Refreshed ServiceM8 token for user %s", connection.user_id)
        return stored

    def _build_connection(self, user_id: str, grant: TokenGrant, refresh_token: str) -> Connection:
        return Connection(
            user_id=user_id,
            encrypted_access_token=self.cipher.encrypt(grant.access_token),
            encrypted_refresh_token=self.cipher.encrypt(refresh_token),
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=grant.expires_in),
        )
