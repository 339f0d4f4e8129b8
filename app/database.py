"""Database utilities for the FilmDex collections service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, NamedTuple

from sqlalchemy import MetaData, event, inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base shared by every FilmDex table."""

    metadata = MetaData()


class ColumnMigration(NamedTuple):
    column: str
    ddl: str
    backfill: str | None = None


# Additive migrations for databases created before a column existed.
SCHEMA_MIGRATIONS: dict[str, tuple[ColumnMigration, ...]] = {
    "collections": (
        ColumnMigration(
            "type",
            "ALTER TABLE collections ADD COLUMN type VARCHAR(16) DEFAULT 'user'",
            "UPDATE collections SET type = 'user' WHERE type IS NULL",
        ),
        ColumnMigration(
            "is_system",
            "ALTER TABLE collections ADD COLUMN is_system BOOLEAN DEFAULT 0",
            "UPDATE collections SET is_system = "
            "CASE WHEN type = 'watch_next' THEN 1 ELSE 0 END",
        ),
    ),
    "movie_collections": (
        # Gaps left by the id backfill are closed by normalize_orders().
        ColumnMigration(
            "collection_order",
            "ALTER TABLE movie_collections ADD COLUMN collection_order INTEGER",
            "UPDATE movie_collections SET collection_order = id "
            "WHERE collection_order IS NULL",
        ),
    ),
}


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Owns the async engine and hands out sessions to the store."""

    def __init__(self, database_url: str):
        self._engine: AsyncEngine = create_async_engine(database_url, future=True)
        if self._engine.dialect.name == "sqlite":
            # Membership rows rely on ON DELETE CASCADE.
            event.listen(
                self._engine.sync_engine, "connect", _enable_sqlite_foreign_keys
            )
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_all(self) -> None:
        """Create missing tables and bring older tables up to date."""

        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        inspector = inspect(sync_connection)
        table_names = set(inspector.get_table_names())

        for table, migrations in SCHEMA_MIGRATIONS.items():
            if table not in table_names:
                continue
            present = {column["name"] for column in inspector.get_columns(table)}
            for migration in migrations:
                if migration.column in present:
                    continue
                sync_connection.execute(text(migration.ddl))
                if migration.backfill:
                    sync_connection.execute(text(migration.backfill))
                present.add(migration.column)

    async def dispose(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session for ad-hoc work outside the store."""

        async with self.session_factory() as session:
            yield session
