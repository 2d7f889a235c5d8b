"""
Connection store — get / upsert / delete one ServiceM8 connection per user.

Everything that touches persisted credentials goes through a
``ConnectionStore``; nothing else knows the table name.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy import delete, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.errors import StoreError
from connectors.models import Connection
from database.models import ServiceM8Connection

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without a zone; everything here is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ConnectionStore(ABC):
    """Capability every handler depends on instead of a table name."""

    @abstractmethod
    async def get(self, user_id: str) -> Optional[Connection]:
        ...

    @abstractmethod
    async def upsert(self, connection: Connection) -> Connection:
        """Insert or replace by ``user_id``; stamps ``updated_at``."""
        ...

    @abstractmethod
    async def update_if_unchanged(
        self, connection: Connection, expected_refresh_token: str
    ) -> Optional[Connection]:
        """
        Replace the tokens only while the stored ``encrypted_refresh_token``
        still equals ``expected_refresh_token``.  Never inserts.

        Returns ``None`` when the row was replaced or deleted meanwhile.
        """
        ...

    @abstractmethod
    async def delete(self, user_id: str, *, expected_refresh_token: Optional[str] = None) -> bool:
        """
        Remove the row; return whether one was removed.  With
        ``expected_refresh_token`` only a row still holding that ciphertext
        is removed.
        """
        ...


class SqlConnectionStore(ConnectionStore):
    """SQLAlchemy-backed store (PostgreSQL in production, SQLite in tests)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, user_id: str) -> Optional[Connection]:
        try:
            async with self._session_factory() as session:
                row = await session.get(ServiceM8Connection, user_id)
        except SQLAlchemyError as exc:
            logger.error("Failed to load connection for user %s: %s", user_id, exc)
            raise StoreError("Failed to load connection") from exc

        if row is None:
            return None
        return Connection(
            user_id=row.user_id,
            encrypted_access_token=row.encrypted_access_token,
            encrypted_refresh_token=row.encrypted_refresh_token,
            expires_at=_as_utc(row.expires_at),
            updated_at=_as_utc(row.updated_at) if row.updated_at else None,
        )

    async def upsert(self, connection: Connection) -> Connection:
        stored = connection.model_copy(update={"updated_at": datetime.now(timezone.utc)})
        values = {
            "user_id": stored.user_id,
            "encrypted_access_token": stored.encrypted_access_token,
            "encrypted_refresh_token": stored.encrypted_refresh_token,
            "expires_at": stored.expires_at,
            "updated_at": stored.updated_at,
        }
        try:
            async with self._session_factory() as session:
                insert = sqlite_insert if session.get_bind().dialect.name == "sqlite" else pg_insert
                stmt = insert(ServiceM8Connection).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["user_id"],
                    set_={k: v for k, v in values.items() if k != "user_id"},
                )
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to store connection for user %s: %s", stored.user_id, exc)
            raise StoreError("Failed to save connection") from exc

        logger.debug("Stored connection for user %s", stored.user_id)
        return stored

    async def update_if_unchanged(
        self, connection: Connection, expected_refresh_token: str
    ) -> Optional[Connection]:
        stored = connection.model_copy(update={"updated_at": datetime.now(timezone.utc)})
        stmt = (
            update(ServiceM8Connection)
            .where(
                ServiceM8Connection.user_id == stored.user_id,
                ServiceM8Connection.encrypted_refresh_token == expected_refresh_token,
            )
            .values(
                encrypted_access_token=stored.encrypted_access_token,
                encrypted_refresh_token=stored.encrypted_refresh_token,
                expires_at=stored.expires_at,
                updated_at=stored.updated_at,
            )
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to update connection for user %s: %s", stored.user_id, exc)
            raise StoreError("Failed to save connection") from exc

        if not (result.rowcount or 0):
            return None
        return stored

    async def delete(self, user_id: str, *, expected_refresh_token: Optional[str] = None) -> bool:
        stmt = delete(ServiceM8Connection).where(ServiceM8Connection.user_id == user_id)
        if expected_refresh_token is not None:
            stmt = stmt.where(ServiceM8Connection.encrypted_refresh_token == expected_refresh_token)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to delete connection for user %s: %s", user_id, exc)
            raise StoreError("Failed to delete connection") from exc
        return (result.rowcount or 0) > 0


class InMemoryConnectionStore(ConnectionStore):
    """Dict-backed store for single-process deployments and tests."""

    def __init__(self) -> None:
        self._rows: Dict[str, Connection] = {}

    async def get(self, user_id: str) -> Optional[Connection]:
        row = self._rows.get(user_id)
        return row.model_copy() if row else None

    async def upsert(self, connection: Connection) -> Connection:
        stored = connection.model_copy(update={"updated_at": datetime.now(timezone.utc)})
        self._rows[stored.user_id] = stored
        return stored.model_copy()

    async def update_if_unchanged(
        self, connection: Connection, expected_refresh_token: str
    ) -> Optional[Connection]:
        current = self._rows.get(connection.user_id)
        if current is None or current.encrypted_refresh_token != expected_refresh_token:
            return None
        return await self.upsert(connection)

    async def delete(self, user_id: str, *, expected_refresh_token: Optional[str] = None) -> bool:
        current = self._rows.get(user_id)
        if current is None:
            return False
        if expected_refresh_token is not None and current.encrypted_refresh_token != expected_refresh_token:
            return False
        del self._rows[user_id]
        return True
