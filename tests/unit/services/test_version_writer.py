"""Unit tests for race-safe version creation."""

import asyncio
import contextlib
from unittest.mock import AsyncMock, MagicMock

import asyncpg

from quote_estimator.core.errors import ErrorKind
from quote_estimator.core.result_types import Err, Ok
from quote_estimator.models.quote import DisplayMode
from quote_estimator.services.version_writer import (
    ADVANCE_PROJECTION_QUERY,
    INSERT_NEXT_VERSION_QUERY,
    VersionWriter,
)


def _write(writer: VersionWriter, tenant_id, quote_id, n: int = 0):
    return writer.write(
        tenant_id=tenant_id,
        quote_id=quote_id,
        actor=f"user-{n}",
        ai_mode=DisplayMode.RANGE,
        source="admin",
        reason="reassess_from_notes",
        output={"estimate_low": 100 + n, "estimate_high": 200 + n},
        meta={"created_from": "admin"},
    )


class TestVersionWriter:
    """Test version numbering and the current projection."""

    async def test_first_version_is_one(self, fake_store, tenant_id, quote_id):
        """Test a quote without versions gets version 1."""
        # Setup
        writer = VersionWriter(fake_store)

        # Execute
        result = await _write(writer, tenant_id, quote_id)

        # Assert
        assert isinstance(result, Ok)
        assert result.value.version_number == 1
        assert fake_store.projections[quote_id]["current_version"] == 1

    async def test_sequential_writes_increment(self, fake_store, tenant_id, quote_id):
        """Test each write appends the next number."""
        writer = VersionWriter(fake_store)

        numbers = [
            (await _write(writer, tenant_id, quote_id, n)).unwrap().version_number
            for n in range(3)
        ]

        assert numbers == [1, 2, 3]

    async def test_concurrent_writes_are_gapless(self, fake_store, tenant_id, quote_id):
        """Test concurrent writers get distinct, gapless numbers."""
        # Setup
        writers = 5
        writer = VersionWriter(fake_store, max_attempts=writers)

        # Execute
        results = await asyncio.gather(
            *(_write(writer, tenant_id, quote_id, n) for n in range(writers))
        )

        # Assert
        assert all(isinstance(result, Ok) for result in results)
        numbers = sorted(result.value.version_number for result in results)
        assert numbers == list(range(1, writers + 1))
        stored = sorted(row["version"] for row in fake_store.versions[quote_id])
        assert stored == list(range(1, writers + 1))
        assert fake_store.projections[quote_id]["current_version"] == writers

    async def test_retries_exhausted_is_version_conflict(self, tenant_id, quote_id):
        """Test persistent unique violations surface as VERSION_CONFLICT."""
        # Setup
        conn = MagicMock()
        conn.fetchrow = AsyncMock(
            side_effect=asyncpg.UniqueViolationError("duplicate key")
        )
        conn.execute = AsyncMock()

        @contextlib.asynccontextmanager
        async def transaction():
            yield conn

        db = MagicMock()
        db.transaction = transaction
        writer = VersionWriter(db, max_attempts=3)

        # Execute
        result = await _write(writer, tenant_id, quote_id)

        # Assert
        assert isinstance(result, Err)
        assert result.error.kind is ErrorKind.VERSION_CONFLICT
        assert result.error.details["attempts"] == 3
        assert conn.fetchrow.await_count == 3
        conn.execute.assert_not_awaited()

    async def test_insert_and_projection_share_transaction(self, tenant_id, quote_id):
        """Test the projection update runs on the inserting connection."""
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value={"id": quote_id, "version": 7})
        conn.execute = AsyncMock(return_value="UPDATE 1")

        @contextlib.asynccontextmanager
        async def transaction():
            yield conn

        db = MagicMock()
        db.transaction = transaction
        writer = VersionWriter(db)

        result = await _write(writer, tenant_id, quote_id)

        assert result.unwrap().version_number == 7
        assert conn.fetchrow.await_args.args[0] == INSERT_NEXT_VERSION_QUERY
        assert conn.execute.await_args.args == (
            ADVANCE_PROJECTION_QUERY,
            quote_id,
            tenant_id,
            {"estimate_low": 100, "estimate_high": 200},
            7,
        )

    async def test_list_versions_oldest_first(self, fake_store, tenant_id, quote_id):
        """Test versions are listed in ascending order."""
        writer = VersionWriter(fake_store)
        for n in range(3):
            await _write(writer, tenant_id, quote_id, n)

        versions = await writer.list_versions(tenant_id, quote_id)

        assert [v.version for v in versions] == [1, 2, 3]
        assert versions[0].ai_mode is DisplayMode.RANGE
        assert versions[2].created_by == "user-2"
