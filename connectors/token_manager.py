"""
Token manager — get / refresh / disconnect per-user ServiceM8 tokens.

This is the single interface every ServiceM8 API consumer uses to get an
access token it can send right now.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from connectors.encryption import TokenCipher
from connectors.errors import (
    CredentialError,
    IntegrityError,
    InvalidGrant,
    NotConnected,
    StoreError,
)
from connectors.exchange import OAuthExchangeHandler
from connectors.models import Connection
from connectors.store import ConnectionStore

logger = logging.getLogger(__name__)


class TokenManager:
    """
    Active token provider, connect and disconnect handler.

    The check-expiry → refresh → persist sequence and the code grant are
    serialized per user with an in-process lock.  Refresh writes and
    invalidations are also conditional on the row still being the one that
    was read, so a disconnect or a reconnect from elsewhere is never undone.  That is enough for a single instance; several
    instances sharing one database need a distributed lock on top.
    """

    def __init__(
        self,
        store: ConnectionStore,
        exchange: OAuthExchangeHandler,
        cipher: TokenCipher,
        *,
        expiry_buffer_seconds: int = 60,
    ) -> None:
        self.store = store
        self.exchange = exchange
        self.cipher = cipher
        self.expiry_buffer = timedelta(seconds=expiry_buffer_seconds)
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def is_expiring(self, connection: Connection, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= connection.expires_at - self.expiry_buffer

    async def get_active_token(self, user_id: str) -> Optional[str]:
        """
        Get a valid access token for the user.

        Returns ``None`` when the user is not connected, when the connection
        had to be dropped (rejected refresh token, corrupt ciphertext) and on
        any transient failure.  Use ``fetch_active_token`` to tell those
        apart.
        """
        try:
            return await self.fetch_active_token(user_id)
        except NotConnected:
            return None
        except CredentialError as exc:
            logger.warning("No active ServiceM8 token for user %s: %s", user_id, exc)
            return None

    async def fetch_active_token(self, user_id: str) -> str:
        """
        Like ``get_active_token`` but raises instead of returning ``None``:

        * ``NotConnected`` — no connection, or it was just invalidated
        * ``ProviderUnavailable`` — transient, the connection is untouched
        * ``OAuthError`` / ``MalformedResponse`` / ``StoreError`` — other failures
        """
        conn = await self._load(user_id)
        if not self.is_expiring(conn):
            return await self._decrypt_access_token(conn)

        lock = self._lock_for(user_id)
        async with lock:
            # Another caller may have refreshed while we waited.
            conn = await self._load(user_id)
            if not self.is_expiring(conn):
                return await self._decrypt_access_token(conn)

            logger.info("ServiceM8 token for user %s is expiring; refreshing", user_id)
            try:
                stored, access_token = await self.exchange.refresh(conn)
            except InvalidGrant as exc:
                if not await self._invalidate(conn, f"refresh token rejected ({exc.error_code or exc.status})"):
                    return await self._decrypt_access_token(await self._load(user_id))
                raise NotConnected("ServiceM8 refresh token was rejected") from exc
            except IntegrityError as exc:
                await self._invalidate(conn, "stored refresh token failed to decrypt")
                raise NotConnected("Stored ServiceM8 credentials are corrupt") from exc

            if stored is None:
                # Reconnected or disconnected while the refresh was in flight.
                return await self._decrypt_access_token(await self._load(user_id))
            return access_token

    async def connect(self, user_id: str, code: str) -> Connection:
        """
        Complete the authorization-code grant for ``user_id``.

        Runs under the same per-user lock as refreshes, so a reconnect never
        interleaves with a refresh of the connection it replaces.
        """
        lock = self._lock_for(user_id)
        async with lock:
            return await self.exchange.exchange_code(user_id, code)

    async def connection_status(self, user_id: str) -> Dict[str, Any]:
        """Connected / not connected, without decrypting or refreshing."""
        conn = await self.store.get(user_id)
        return {
            "connected": conn is not None,
            "expires_at": conn.expires_at if conn else None,
        }

    async def disconnect(self, user_id: str) -> bool:
        """
        Delete the user's connection.
        Returns True if one was deleted, False if there was nothing to delete.
        """
        deleted = await self.store.delete(user_id)
        if deleted:
            logger.info("Disconnected ServiceM8 for user %s", user_id)
        else:
            logger.info("Disconnect for user %s: no connection stored", user_id)
        return deleted

    # ── Internals ───────────────────────────────────────────────────────

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def _load(self, user_id: str) -> Connection:
        conn = await self.store.get(user_id)
        if conn is None:
            raise NotConnected(f"No ServiceM8 connection for user {user_id}")
        return conn

    async def _decrypt_access_token(self, conn: Connection) -> str:
        try:
            return self.cipher.decrypt(conn.encrypted_access_token)
        except IntegrityError as exc:
            await self._invalidate(conn, "stored access token failed to decrypt")
            raise NotConnected("Stored ServiceM8 credentials are corrupt") from exc

    async def _invalidate(self, conn: Connection, reason: str) -> bool:
        """
        Drop an unusable connection so the user is asked to reconnect.

        Only the row that was read is removed; returns False when it has
        since been replaced by a reconnect.
        """
        logger.warning("Removing ServiceM8 connection for user %s: %s", conn.user_id, reason)
        try:
            deleted = await self.store.delete(
                conn.user_id, expected_refresh_token=conn.encrypted_refresh_token
            )
        except StoreError as exc:
            logger.error("Could not remove unusable connection for user %s: %s", conn.user_id, exc)
            return True
        if not deleted:
            logger.info("Connection for user %s was replaced meanwhile; keeping it", conn.user_id)
        return deleted
