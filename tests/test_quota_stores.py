"""Tests for the in-memory and SQL quota stores and the store factory."""

from __future__ import annotations

import socket
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from app.adapters.rate_limit.base import QuotaRecord
from app.adapters.rate_limit.factory import create_quota_store
from app.adapters.rate_limit.in_memory import InMemoryQuotaStore
from app.adapters.rate_limit.sql import QuotaRecordRow, SqlQuotaStore
from app.core.config import RateLimitSettings
from app.core.errors import StoreError, ValidationAppError


class TestInMemoryQuotaStore:
    @pytest.mark.asyncio
    async def test_missing_key_loads_none(self) -> None:
        store = InMemoryQuotaStore()

        assert await store.load("api:public:ip1") is None

    @pytest.mark.asyncio
    async def test_save_replaces_existing_record(self) -> None:
        store = InMemoryQuotaStore()

        await store.save("k:ip1", QuotaRecord(points=3, last_reset=10.0))
        await store.save("k:ip1", QuotaRecord(points=2, last_reset=10.0))

        assert len(store) == 1
        assert (await store.load("k:ip1")).points == 2

    @pytest.mark.asyncio
    async def test_purge_matches_whole_prefix_segment(self) -> None:
        store = InMemoryQuotaStore()
        await store.save("api:ip1", QuotaRecord(points=1, last_reset=10.0))
        await store.save("api:admin:ip1", QuotaRecord(points=1, last_reset=10.0))
        await store.save("apix:ip1", QuotaRecord(points=1, last_reset=10.0))

        removed = await store.purge("api:admin", older_than=20.0)

        assert removed == 1
        assert await store.load("api:admin:ip1") is None
        assert await store.load("api:ip1") is not None
        assert await store.load("apix:ip1") is not None


def _session_factory(session: AsyncMock) -> MagicMock:
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = session
    factory.return_value.__aexit__.return_value = False
    return factory


class TestSqlQuotaStore:
    @pytest.mark.asyncio
    async def test_missing_row_is_not_an_error(self) -> None:
        session = AsyncMock()
        session.get.return_value = None
        store = SqlQuotaStore(_session_factory(session))

        assert await store.load("time-off:ip1") is None
        session.get.assert_awaited_once_with(QuotaRecordRow, "time-off:ip1")

    @pytest.mark.asyncio
    async def test_row_is_converted_to_epoch_seconds(self) -> None:
        last_reset = datetime(2025, 1, 17, 12, 0, tzinfo=timezone.utc)
        blocked_until = datetime(2025, 1, 17, 12, 5, tzinfo=timezone.utc)
        session = AsyncMock()
        session.get.return_value = QuotaRecordRow(
            key="time-off:ip1",
            points=0,
            last_reset=last_reset,
            blocked_until=blocked_until,
            updated_at=last_reset,
        )
        store = SqlQuotaStore(_session_factory(session))

        record = await store.load("time-off:ip1")

        assert record == QuotaRecord(
            points=0,
            last_reset=last_reset.timestamp(),
            blocked_until=blocked_until.timestamp(),
        )

    @pytest.mark.asyncio
    async def test_naive_timestamps_are_read_as_utc(self) -> None:
        session = AsyncMock()
        session.get.return_value = QuotaRecordRow(
            key="k:ip1",
            points=4,
            last_reset=datetime(2025, 1, 17, 12, 0),
            blocked_until=None,
            updated_at=datetime(2025, 1, 17, 12, 0),
        )
        store = SqlQuotaStore(_session_factory(session))

        record = await store.load("k:ip1")

        assert record.last_reset == datetime(2025, 1, 17, 12, 0, tzinfo=timezone.utc).timestamp()
        assert record.blocked_until is None

    @pytest.mark.asyncio
    async def test_save_upserts_and_commits(self) -> None:
        session = AsyncMock()
        store = SqlQuotaStore(_session_factory(session))

        await store.save("k:ip1", QuotaRecord(points=2, last_reset=1_700_000_000.0))

        session.execute.assert_awaited_once()
        session.commit.assert_awaited_once()
        statement = session.execute.await_args.args[0]
        assert statement.table.name == "rate_limit_records"

    @pytest.mark.asyncio
    async def test_read_failure_raises_store_error(self) -> None:
        session = AsyncMock()
        session.get.side_effect = OperationalError("SELECT", {}, Exception("connection refused"))
        store = SqlQuotaStore(_session_factory(session))

        with pytest.raises(StoreError) as exc_info:
            await store.load("k:ip1")

        assert exc_info.value.code == "rate_limit_store_unavailable"
        assert exc_info.value.details["operation"] == "load"

    @pytest.mark.asyncio
    async def test_write_failure_raises_store_error(self) -> None:
        session = AsyncMock()
        session.commit.side_effect = OperationalError("COMMIT", {}, Exception("timeout"))
        store = SqlQuotaStore(_session_factory(session))

        with pytest.raises(StoreError) as exc_info:
            await store.save("k:ip1", QuotaRecord(points=1, last_reset=1.0))

        assert exc_info.value.details["operation"] == "save"

    @pytest.mark.asyncio
    async def test_purge_returns_deleted_row_count(self) -> None:
        session = AsyncMock()
        session.execute.return_value = MagicMock(rowcount=7)
        store = SqlQuotaStore(_session_factory(session))

        removed = await store.purge("auth", older_than=1_700_000_000.0)

        assert removed == 7
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connection_refused_raises_store_error(self) -> None:
        session = AsyncMock()
        session.get.side_effect = ConnectionRefusedError(111, "Connect call failed")
        store = SqlQuotaStore(_session_factory(session))

        with pytest.raises(StoreError) as exc_info:
            await store.load("k:ip1")

        assert exc_info.value.code == "rate_limit_store_unavailable"
        assert exc_info.value.details["operation"] == "load"

    @pytest.mark.asyncio
    async def test_unresolvable_host_raises_store_error(self) -> None:
        session = AsyncMock()
        session.execute.side_effect = socket.gaierror(-2, "Name or service not known")
        store = SqlQuotaStore(_session_factory(session))

        with pytest.raises(StoreError) as exc_info:
            await store.purge("auth", older_than=1.0)

        assert exc_info.value.details["operation"] == "purge"

    @pytest.mark.asyncio
    async def test_create_schema_connect_failure_raises_store_error(self) -> None:
        engine = MagicMock()
        engine.begin.side_effect = ConnectionRefusedError(111, "Connect call failed")
        store = SqlQuotaStore(MagicMock(), engine=engine)

        with pytest.raises(StoreError) as exc_info:
            await store.create_schema()

        assert exc_info.value.details["operation"] == "create_schema"

    @pytest.mark.asyncio
    async def test_purge_treats_prefix_literally(self) -> None:
        session = AsyncMock()
        session.execute.return_value = MagicMock(rowcount=0)
        store = SqlQuotaStore(_session_factory(session))

        await store.purge("time_off%", older_than=1_700_000_000.0)

        compiled = session.execute.await_args.args[0].compile(dialect=postgresql.dialect())
        assert "ESCAPE '/'" in str(compiled)
        assert "time/_off/%:" in compiled.params.values()

    @pytest.mark.asyncio
    async def test_close_disposes_owned_engine(self) -> None:
        engine = AsyncMock()
        store = SqlQuotaStore(MagicMock(), engine=engine)

        await store.close()

        engine.dispose.assert_awaited_once()


class TestCreateQuotaStore:
    def test_memory_backend(self) -> None:
        store = create_quota_store(RateLimitSettings(backend="memory"))

        assert isinstance(store, InMemoryQuotaStore)

    def test_database_backend_uses_configured_url(self) -> None:
        with patch("app.adapters.rate_limit.factory.SqlQuotaStore.from_url") as from_url:
            create_quota_store(
                RateLimitSettings(backend="database", database_url="postgresql+asyncpg://db/quota")
            )

        from_url.assert_called_once_with("postgresql+asyncpg://db/quota")

    def test_unknown_backend_is_rejected(self) -> None:
        with pytest.raises(ValidationAppError) as exc_info:
            create_quota_store(RateLimitSettings(backend="redis"))

        assert exc_info.value.code == "rate_limit_unknown_backend"
