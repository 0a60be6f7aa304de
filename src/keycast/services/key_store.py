"""PostgreSQL-backed record store for servers and issued access keys.

Each operation opens its own session from the shared session factory, so
the issuance and reclamation loops can use the store concurrently; the
engine's connection pool is the only shared resource.

"Nothing found" outcomes are returned as None or an empty list. Database
failures are raised as RecordStoreError.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from keycast.db.models.access_keys import AccessKey
from keycast.db.models.servers import SHADOWSOCKS, Server

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


class RecordStoreError(Exception):
    """Raised when the database cannot complete a store operation."""

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} failed: {reason}")


def _eligible() -> tuple[ColumnElement[bool], ...]:
    """Filters selecting servers that may receive a new access key."""
    return (Server.is_active.is_(True), Server.protocol == SHADOWSOCKS)


class AccessKeyStore:
    """Data access for the server inventory and outstanding access keys.

    Example:
        store = AccessKeyStore(session_factory)
        servers = await store.list_eligible_servers()
        expired = await store.list_expired(datetime.now(UTC))
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Initialize the store.

        Args:
            session_factory: Factory producing sessions bound to the shared engine.
        """
        self._session_factory = session_factory

    async def list_eligible_servers(self) -> list[Server]:
        """Return all active Shadowsocks servers, oldest first."""
        stmt = select(Server).where(*_eligible()).order_by(Server.created_at)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise RecordStoreError("list_eligible_servers", type(e).__name__) from e

    async def pick_eligible_server(self) -> Server | None:
        """Return one active server chosen at random, or None if there is none."""
        stmt = (
            select(Server)
            .where(*_eligible())
            .order_by(func.random())
            .limit(1)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise RecordStoreError("pick_eligible_server", type(e).__name__) from e

    async def save(self, access_key: AccessKey) -> AccessKey:
        """Persist a newly issued access key.

        Args:
            access_key: Record with created_at and expired_at already set.

        Returns:
            The persisted record.
        """
        try:
            async with self._session_factory() as session:
                session.add(access_key)
                await session.commit()
        except SQLAlchemyError as e:
            raise RecordStoreError("save", type(e).__name__) from e

        logger.debug(
            "Access key record saved: access_key_id=%s, credential_id=%s",
            access_key.access_key_id,
            access_key.credential_id,
        )
        return access_key

    async def list_expired(self, now: datetime) -> list[AccessKey]:
        """Return records whose expiry lies strictly before now, oldest first.

        Args:
            now: Reference time (timezone-aware).
        """
        stmt = select(AccessKey).where(AccessKey.expired_at < now).order_by(AccessKey.expired_at)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise RecordStoreError("list_expired", type(e).__name__) from e

    async def delete(self, access_key_id: UUID) -> bool:
        """Delete one record.

        Args:
            access_key_id: Local identifier of the record.

        Returns:
            True if a row was removed, False if it did not exist.
        """
        stmt = delete(AccessKey).where(AccessKey.access_key_id == access_key_id)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            raise RecordStoreError("delete", type(e).__name__) from e
        return result.rowcount > 0

    async def last_issued_at(self) -> datetime | None:
        """Creation time of the most recent record, or None if there are no records."""
        stmt = select(func.max(AccessKey.created_at))
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise RecordStoreError("last_issued_at", type(e).__name__) from e
