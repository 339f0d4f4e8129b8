"""High level entry point for collection membership operations."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings, canonical_field_name
from ..errors import (
    BoxSetConflictError,
    CollectionNotEmptyError,
)
from ..models import (
    CleanupResult,
    Collection,
    FieldChangeProposal,
    Membership,
    Movie,
    MovieCollection,
    MovieCreate,
    PropagationResult,
)
from ..utils import normalize_name
from .movies import MovieRepository, SqlMovieRepository
from .ordering import OrderingEngine
from .propagation import PropagationEngine
from .rename_merge import Plan, RenameMergeEngine
from .resolver import MembershipResolver
from .store import CollectionStore
from .sweeper import CleanupSweeper

logger = logging.getLogger(__name__)


class CollectionService:
    """Coordinates the store, engines and sweeper behind one writer lock.

    Mutating operations are serialised so that multi-step sequences (reorder,
    rename/merge, removal with renumbering) never interleave. Reads go straight
    to the store.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        movies: MovieRepository | None = None,
    ):
        self._settings = settings
        self.store = CollectionStore(session_factory)
        self.movies: MovieRepository = movies or SqlMovieRepository(session_factory)
        self.resolver = MembershipResolver(self.store)
        self.ordering = OrderingEngine(self.store)
        self.sweeper = CleanupSweeper(self.store)
        self.rename_merge = RenameMergeEngine(
            self.store, self.resolver, self.ordering, self.sweeper
        )
        self.propagation = PropagationEngine(
            self.store,
            self.resolver,
            self.movies,
            shared_fields=settings.shared_fields,
            concurrency=settings.propagation_concurrency,
        )
        self._write_lock = asyncio.Lock()

    async def get_all_collections(
        self, collection_type: str | None = None
    ) -> list[Collection]:
        return await self.store.list_collections(collection_type)

    async def get_collection(self, collection_id: int) -> Collection:
        return await self.store.get_collection(collection_id)

    async def get_movie_collections(self, movie_id: int) -> list[MovieCollection]:
        return await self.resolver.collections_for_movie(movie_id)

    async def get_collection_members(self, collection_id: int) -> list[Membership]:
        return await self.store.list_memberships(collection_id)

    async def get_watch_next(self) -> list[Membership]:
        """Return the watch-next queue, most recently added first."""

        collection = await self.store.find_watch_next()
        if collection is None:
            return []
        return await self.store.list_memberships(collection.id)

    async def suggest_collection_names(
        self, query: str = "", collection_type: str | None = None
    ) -> list[str]:
        types = [collection_type] if collection_type else None
        return await self.store.suggest_names(
            query, limit=self._settings.suggestion_limit, collection_types=types
        )

    async def set_user_collections(
        self, movie_id: int, names: Sequence[str]
    ) -> list[MovieCollection]:
        await self.movies.get_movie(movie_id)
        async with self._write_lock:
            await self.rename_merge.set_user_collections(movie_id, names)
        return await self.resolver.collections_for_movie(movie_id)

    async def change_box_set_name(
        self, movie_id: int, new_name: str | None, old_name: str | None = None
    ) -> Plan:
        await self.movies.get_movie(movie_id)
        async with self._write_lock:
            return await self.rename_merge.change_box_set_name(
                movie_id, new_name, old_name
            )

    async def add_to_collection(
        self, movie_id: int, name: str, collection_type: str = "user"
    ) -> Membership:
        """Add the movie to a collection by name, creating it when missing.

        A movie already in a different box set is refused; watch_next ignores
        ``name`` and uses the singleton queue.
        """

        await self.movies.get_movie(movie_id)
        async with self._write_lock:
            if collection_type == "watch_next":
                collection = await self._ensure_watch_next()
                return await self.ordering.append(collection.id, movie_id)

            cleaned = normalize_name(name)
            if not cleaned:
                raise ValueError("Collection name may not be blank")

            if collection_type == "box_set":
                current = await self.resolver.box_set_for(movie_id)
                if current is not None and current.name != cleaned:
                    raise BoxSetConflictError(movie_id, current.name)

            collection = await self.store.find_collection(cleaned, collection_type)
            if collection is None:
                collection = await self.store.create_collection(
                    cleaned, collection_type
                )
            return await self.ordering.append(collection.id, movie_id)

    async def rename_collection(self, collection_id: int, new_name: str) -> Collection:
        """Rename a collection for every member at once."""

        async with self._write_lock:
            return await self.store.rename_collection(collection_id, new_name)

    async def remove_from_collection(self, movie_id: int, collection_id: int) -> bool:
        async with self._write_lock:
            removed = await self.ordering.remove(collection_id, movie_id)
            await self.sweeper.sweep(collection_id)
            return removed

    async def toggle_watch_next(self, movie_id: int) -> bool:
        """Flip the movie's watch-next membership; returns the new state."""

        await self.movies.get_movie(movie_id)
        async with self._write_lock:
            entry = await self.resolver.watch_next_for(movie_id)
            if entry is not None:
                await self.ordering.remove(entry.collection.id, movie_id)
                await self.sweeper.sweep(entry.collection.id)
                logger.info("Removed movie %s from watch next", movie_id)
                return False
            collection = await self._ensure_watch_next()
            await self.ordering.append(collection.id, movie_id)
            logger.info("Added movie %s to watch next", movie_id)
            return True

    async def reorder_member(
        self, collection_id: int, movie_id: int, new_index: int
    ) -> list[Membership]:
        async with self._write_lock:
            return await self.ordering.reorder(collection_id, movie_id, new_index)

    async def propose_field_change(
        self, movie_id: int, field: str, value: Any = None
    ) -> FieldChangeProposal:
        return await self.propagation.propose(movie_id, field, value)

    async def apply_field_change(
        self, movie_id: int, field: str, value: Any, propagate: bool = False
    ) -> PropagationResult:
        """Write a field, sweeping collections emptied by a move out of "owned"."""

        leaving_owned = (
            canonical_field_name(field) == "title_status" and value != "owned"
        )
        touched: list[int] = []
        if leaving_owned:
            touched = await self._collections_touched_by(movie_id, propagate)

        try:
            result = await self.propagation.apply(movie_id, field, value, propagate)
        finally:
            if touched:
                async with self._write_lock:
                    await self.sweeper.sweep_many(touched)
        return result

    async def cleanup_empty_collections(self) -> CleanupResult:
        async with self._write_lock:
            return CleanupResult(cleaned_count=await self.sweeper.sweep_all())

    async def normalize_orders(self) -> int:
        async with self._write_lock:
            return await self.ordering.normalize_all()

    async def delete_collection(self, collection_id: int) -> None:
        """Delete a collection explicitly; only empty collections may go."""

        async with self._write_lock:
            collection = await self.store.get_collection(collection_id)
            if collection.member_count:
                raise CollectionNotEmptyError(collection_id, collection.member_count)
            await self.store.delete_collection(collection_id)

    async def create_movie(self, data: MovieCreate) -> Movie:
        return await self.movies.create_movie(data)

    async def get_movie(self, movie_id: int) -> Movie:
        return await self.movies.get_movie(movie_id)

    async def delete_movie(self, movie_id: int) -> None:
        """Delete a movie after removing it from every collection it is in."""

        await self.movies.get_movie(movie_id)
        async with self._write_lock:
            collection_ids = await self.store.collection_ids_for_movie(movie_id)
            for collection_id in collection_ids:
                await self.ordering.remove(collection_id, movie_id)
            await self.movies.delete_movie(movie_id)
            await self.sweeper.sweep_many(collection_ids)

    async def _ensure_watch_next(self) -> Collection:
        collection = await self.store.find_watch_next()
        if collection is None:
            collection = await self.store.create_collection(
                self._settings.watch_next_name, "watch_next"
            )
        return collection

    async def _collections_touched_by(
        self, movie_id: int, propagate: bool
    ) -> list[int]:
        """Collections of every movie a status write may reach.

        The movie repository may drop memberships of titles leaving "owned";
        these ids are recorded before the write so emptied ones can be swept.
        """

        movie_ids = [movie_id]
        box_set = await self.resolver.box_set_for(movie_id)
        if propagate and box_set is not None:
            movie_ids = await self.store.list_members(box_set.collection.id)
        collection_ids: list[int] = []
        for member_id in movie_ids:
            collection_ids.extend(await self.store.collection_ids_for_movie(member_id))
        return collection_ids
