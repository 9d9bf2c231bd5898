"""Tests for database configuration."""

import pytest
import tempfile

from sqlalchemy import text

from agentmem.database import DatabaseManager


class TestSQLitePragmas:
    """Test SQLite PRAGMA settings."""

    @pytest.mark.asyncio
    async def test_wal_mode_enabled(self):
        """Verify WAL mode is enabled."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db = DatabaseManager(temp_dir)
            await db.init_db()

            async with db.get_session() as session:
                result = await session.execute(text("PRAGMA journal_mode"))
                mode = result.scalar()
                assert mode.lower() == "wal"

            await db.close()

    @pytest.mark.asyncio
    async def test_foreign_keys_enabled(self):
        """Verify foreign keys are enabled."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db = DatabaseManager(temp_dir)
            await db.init_db()

            async with db.get_session() as session:
                result = await session.execute(text("PRAGMA foreign_keys"))
                enabled = result.scalar()
                assert enabled == 1

            await db.close()

    @pytest.mark.asyncio
    async def test_busy_timeout_set(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db = DatabaseManager(temp_dir)
            await db.init_db()

            async with db.get_session() as session:
                result = await session.execute(text("PRAGMA busy_timeout"))
                assert result.scalar() == 30000

            await db.close()


class TestSchema:
    """Tables and bookkeeping."""

    @pytest.mark.asyncio
    async def test_tables_created(self, temp_storage):
        db = DatabaseManager(temp_storage)
        await db.init_db()

        async with db.get_session() as session:
            result = await session.execute(
                text("SELECT name FROM sqlite_master WHERE type='table'")
            )
            tables = {row[0] for row in result.all()}

        assert {"memory_entries", "memory_embeddings", "memory_associations", "meta", "schema_version"} <= tables
        await db.close()

    @pytest.mark.asyncio
    async def test_meta_roundtrip(self, temp_storage):
        db = DatabaseManager(temp_storage)
        await db.init_db()

        assert await db.get_meta("embedding_dimension") is None
        await db.set_meta("embedding_dimension", "768")
        await db.set_meta("embedding_dimension", "384")

        assert await db.get_meta("embedding_dimension") == "384"
        assert await db.list_meta() == {"embedding_dimension": "384"}
        await db.close()

    @pytest.mark.asyncio
    async def test_failed_session_rolls_back(self, temp_storage):
        db = DatabaseManager(temp_storage)
        await db.init_db()

        with pytest.raises(RuntimeError):
            async with db.get_session() as session:
                await session.execute(text("INSERT INTO meta (key, value) VALUES ('k', 'v')"))
                raise RuntimeError("boom")

        assert await db.get_meta("k") is None
        await db.close()

    @pytest.mark.asyncio
    async def test_reopen_existing_database(self, temp_storage):
        db = DatabaseManager(temp_storage)
        await db.init_db()
        await db.set_meta("k", "v")
        await db.close()

        reopened = DatabaseManager(temp_storage)
        await reopened.init_db()
        assert await reopened.get_meta("k") == "v"
        await reopened.close()
