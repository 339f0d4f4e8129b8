"""Pytest configuration and test helpers."""

from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Callable

import pytest

# Ensure the application package is importable when running tests without an
# editable install. ``app`` sits at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.config import Settings  # noqa: E402
from app.database import Database  # noqa: E402
from app.services.collection_service import CollectionService  # noqa: E402


@pytest.fixture
def database_url(tmp_path) -> str:
    """SQLite URL for a database private to the current test."""

    return f"sqlite+aiosqlite:///{tmp_path / 'filmdex.db'}"


@pytest.fixture
def open_service(database_url) -> Callable[..., AsyncIterator[CollectionService]]:
    """Return an async context manager yielding a service on a fresh database.

    Call it inside the coroutine passed to ``asyncio.run`` so the engine and its
    connections live on that event loop.
    """

    @asynccontextmanager
    async def _open(
        movies_factory: Callable[..., object] | None = None, **overrides: object
    ) -> AsyncIterator[CollectionService]:
        database = Database(database_url)
        await database.create_all()
        settings = Settings(_env_file=None, **overrides)
        movies = (
            movies_factory(database.session_factory) if movies_factory else None
        )
        try:
            yield CollectionService(settings, database.session_factory, movies)
        finally:
            await database.dispose()

    return _open
