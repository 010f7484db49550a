"""Shared quota store persisted in a Postgres table via SQLAlchemy async.

Every check costs one primary-key read and one upsert round trip. The
read-modify-write is not atomic: two workers checking the same key at the
same moment can both observe the same ``points`` and both decrement, so a
window may admit slightly more than its capacity.

asyncpg raises a plain ``OSError`` when the server is unreachable, so
connection failures are reported as ``StoreError`` alongside SQLAlchemy errors.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import TIMESTAMP, Column, Integer, String, delete
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from app.adapters.rate_limit.base import AbstractQuotaStore, QuotaRecord
from app.core.errors import StoreError

logger = logging.getLogger(__name__)

Base = declarative_base()


class QuotaRecordRow(Base):
    """One row per ``prefix:identifier`` key."""

    __tablename__ = "rate_limit_records"

    key = Column(String, primary_key=True)
    points = Column(Integer, nullable=False)
    last_reset = Column(TIMESTAMP(timezone=True), nullable=False, index=True)
    blocked_until = Column(TIMESTAMP(timezone=True), nullable=True)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)


def _to_datetime(epoch_seconds: float) -> datetime:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)


def _to_epoch(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


class SqlQuotaStore(AbstractQuotaStore):
    """Quota store shared by every process pointing at the same database."""

    name = "database"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine

    @classmethod
    def from_url(cls, database_url: str) -> "SqlQuotaStore":
        """Build a store with its own engine and session factory."""

        engine = create_async_engine(database_url, pool_pre_ping=True)
        session_factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        return cls(session_factory, engine=engine)

    async def create_schema(self) -> None:
        """Create the quota table if it does not exist yet."""

        if self._engine is None:
            return
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, OSError) as exc:
            raise self._store_error("create_schema", exc) from exc

    async def load(self, key: str) -> QuotaRecord | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(QuotaRecordRow, key)
        except (SQLAlchemyError, OSError) as exc:
            raise self._store_error("load", exc) from exc

        if row is None:
            return None

        return QuotaRecord(
            points=row.points,
            last_reset=_to_epoch(row.last_reset),
            blocked_until=_to_epoch(row.blocked_until) if row.blocked_until else None,
        )

    async def save(self, key: str, record: QuotaRecord) -> None:
        values = {
            "key": key,
            "points": record.points,
            "last_reset": _to_datetime(record.last_reset),
            "blocked_until": (
                _to_datetime(record.blocked_until)
                if record.blocked_until is not None
                else None
            ),
            "updated_at": datetime.now(timezone.utc),
        }
        stmt = insert(QuotaRecordRow).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[QuotaRecordRow.key],
            set_={
                "points": stmt.excluded.points,
                "last_reset": stmt.excluded.last_reset,
                "blocked_until": stmt.excluded.blocked_until,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise self._store_error("save", exc) from exc

    async def purge(self, key_prefix: str, older_than: float) -> int:
        stmt = delete(QuotaRecordRow).where(
            QuotaRecordRow.key.startswith(f"{key_prefix}:", autoescape=True),
            QuotaRecordRow.last_reset < _to_datetime(older_than),
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise self._store_error("purge", exc) from exc
        return result.rowcount or 0

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()

    def _store_error(
        self, operation: str, exc: SQLAlchemyError | OSError
    ) -> StoreError:
        logger.error(
            "quota_store.failure",
            extra={
                "operation": operation,
                "error_type": type(exc).__name__,
            },
        )
        return StoreError(
            code="rate_limit_store_unavailable",
            message="Rate limit store is unavailable",
            details={"backend": self.name, "operation": operation},
        )
