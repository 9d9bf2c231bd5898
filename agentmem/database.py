"""
Database Manager - SQLite persistence for the memory store.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from sqlalchemy import event, select
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
import logging

from .models import Base, Meta

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Manages the SQLite database connection.

    Creates tables, runs schema migrations and provides session management.
    """

    def __init__(self, storage_path: str = "./storage", db_name: str = "agentmem.db"):
        self.storage_path = Path(storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)

        self.db_path = self.storage_path / db_name
        self.db_url = f"sqlite+aiosqlite:///{self.db_path}"
        self._migrated = False
        self._initialized = False
        self._engine = None
        self._session_factory = None

    def _get_engine(self):
        """Lazy engine creation - ensures it's created in the right event loop context."""
        if self._engine is None:
            self._engine = create_async_engine(
                self.db_url,
                connect_args={"check_same_thread": False},
                # Each operation gets a fresh connection; WAL lets readers run
                # alongside the batch decay writer
                poolclass=NullPool,
                pool_pre_ping=True,
            )

            @event.listens_for(self._engine.sync_engine, "connect")
            def set_sqlite_pragmas(dbapi_conn, connection_record):
                cursor = dbapi_conn.cursor()
                # WAL mode for better concurrent access
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA synchronous=NORMAL")
                cursor.execute("PRAGMA busy_timeout=30000")
                # Association rows cascade with their entries
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.execute("PRAGMA temp_store=MEMORY")
                cursor.close()

            self._session_factory = async_sessionmaker(
                bind=self._engine,
                expire_on_commit=False,
                class_=AsyncSession
            )
        return self._engine

    @property
    def engine(self):
        return self._get_engine()

    @property
    def SessionLocal(self):
        self._get_engine()  # Ensure engine is created
        return self._session_factory

    def _run_migrations(self, force: bool = False):
        """Run schema migrations (sync, before async engine starts)."""
        if self._migrated and not force:
            return

        if self.db_path.exists():
            from .migrations import run_migrations
            count, applied = run_migrations(str(self.db_path))
            if count > 0:
                logger.info(f"Applied {count} migration(s): {applied}")

        self._migrated = True

    async def init_db(self):
        """Initialize the database tables and run migrations."""
        if self._initialized:
            return

        is_new_db = not self.db_path.exists()

        # Existing databases are migrated BEFORE the async engine opens them
        if not is_new_db:
            self._run_migrations()

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        # Fresh databases only need their version stamped
        if is_new_db:
            self._run_migrations(force=True)

        self._initialized = True
        logger.info(f"Database initialized at {self.db_path}")

    @asynccontextmanager
    async def get_session(self):
        """Provide a transactional scope around a series of operations."""
        session = self.SessionLocal()
        try:
            yield session
            await session.commit()
        except BaseException:
            # BaseException so a cancelled task never commits a half-done unit
            await session.rollback()
            raise
        finally:
            await session.close()

    async def get_meta(self, key: str) -> Optional[str]:
        """Read a value from the meta table."""
        async with self.get_session() as session:
            row = await session.get(Meta, key)
            return row.value if row else None

    async def set_meta(self, key: str, value: str) -> None:
        """Write a value to the meta table."""
        async with self.get_session() as session:
            row = await session.get(Meta, key)
            if row is None:
                session.add(Meta(key=key, value=value))
            else:
                row.value = value

    async def list_meta(self) -> dict:
        async with self.get_session() as session:
            result = await session.execute(select(Meta))
            return {row.key: row.value for row in result.scalars().all()}

    async def close(self):
        """Dispose of the engine."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            self._initialized = False
