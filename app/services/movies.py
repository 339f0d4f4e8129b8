"""Movie repository used by the collection engines."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Optional, Protocol

from pydantic import TypeAdapter
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import canonical_field_name
from ..db_models import MovieRecord
from ..errors import MovieNotFoundError, UnknownFieldError
from ..models import Movie, MovieCreate, TitleStatus

logger = logging.getLogger(__name__)


EDITABLE_FIELDS: dict[str, TypeAdapter[Any]] = {
    "title": TypeAdapter(str),
    "format": TypeAdapter(Optional[str]),
    "price": TypeAdapter(Optional[float]),
    "acquired_date": TypeAdapter(Optional[date]),
    "title_status": TypeAdapter(TitleStatus),
    "release_date": TypeAdapter(Optional[date]),
}

FIELD_ALIASES: dict[str, str] = {
    "acquiredDate": "acquired_date",
    "purchaseDate": "acquired_date",
    "purchase_date": "acquired_date",
    "titleStatus": "title_status",
    "releaseDate": "release_date",
}


def editable_field_name(field: str) -> str:
    """Return the column name for ``field`` or raise :class:`UnknownFieldError`."""

    cleaned = field.strip()
    name = (
        FIELD_ALIASES.get(cleaned)
        or canonical_field_name(cleaned)
        or cleaned.replace("-", "_").lower()
    )
    if name not in EDITABLE_FIELDS:
        raise UnknownFieldError(field)
    return name


class MovieRepository(Protocol):
    """Operations the collection engines need from the movie store."""

    async def create_movie(self, data: MovieCreate) -> Movie: ...

    async def get_movie(self, movie_id: int) -> Movie: ...

    async def update_movie_field(self, movie_id: int, field: str, value: Any) -> Movie: ...

    async def delete_movie(self, movie_id: int) -> None: ...


class SqlMovieRepository:
    """Movie repository backed by the ``movies`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create_movie(self, data: MovieCreate) -> Movie:
        async with self._session_factory() as session:
            record = MovieRecord(**data.model_dump())
            session.add(record)
            await session.commit()
            logger.info("Added movie %r (id %s)", record.title, record.id)
            return Movie.model_validate(record)

    async def get_movie(self, movie_id: int) -> Movie:
        async with self._session_factory() as session:
            record = await session.get(MovieRecord, movie_id)
            if record is None:
                raise MovieNotFoundError(movie_id)
            return Movie.model_validate(record)

    async def update_movie_field(self, movie_id: int, field: str, value: Any) -> Movie:
        name = editable_field_name(field)
        coerced = EDITABLE_FIELDS[name].validate_python(value)
        if name == "title" and not coerced.strip():
            raise ValueError("Movie title may not be blank")

        async with self._session_factory() as session:
            record = await session.get(MovieRecord, movie_id)
            if record is None:
                raise MovieNotFoundError(movie_id)
            setattr(record, name, coerced)
            record.updated_at = datetime.utcnow()
            await session.commit()
            return Movie.model_validate(record)

    async def delete_movie(self, movie_id: int) -> None:
        async with self._session_factory() as session:
            record = await session.get(MovieRecord, movie_id)
            if record is None:
                raise MovieNotFoundError(movie_id)
            await session.delete(record)
            await session.commit()
            logger.info("Deleted movie %r (id %s)", record.title, movie_id)
