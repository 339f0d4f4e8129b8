"""Read-side view of which collections a movie belongs to."""

from __future__ import annotations

import logging

from ..models import MovieCollection
from .store import CollectionStore

logger = logging.getLogger(__name__)


class MembershipResolver:
    """Answer membership questions straight from the store, without caching."""

    def __init__(self, store: CollectionStore):
        self._store = store

    async def collections_for_movie(self, movie_id: int) -> list[MovieCollection]:
        return await self._store.memberships_for_movie(movie_id)

    async def box_sets_for(self, movie_id: int) -> list[MovieCollection]:
        return [
            entry
            for entry in await self.collections_for_movie(movie_id)
            if entry.type == "box_set"
        ]

    async def box_set_for(self, movie_id: int) -> MovieCollection | None:
        """Return the movie's box set.

        A movie should sit in at most one box set; when stored data disagrees,
        the lowest collection id wins and the anomaly is logged.
        """

        box_sets = await self.box_sets_for(movie_id)
        if not box_sets:
            return None
        if len(box_sets) > 1:
            logger.warning(
                "Movie %s belongs to %d box sets: %s",
                movie_id,
                len(box_sets),
                ", ".join(repr(entry.name) for entry in box_sets),
            )
        return min(box_sets, key=lambda entry: entry.collection.id)

    async def watch_next_for(self, movie_id: int) -> MovieCollection | None:
        for entry in await self.collections_for_movie(movie_id):
            if entry.type == "watch_next":
                return entry
        return None

    async def in_watch_next(self, movie_id: int) -> bool:
        return await self.watch_next_for(movie_id) is not None

    async def user_collections_for(self, movie_id: int) -> list[MovieCollection]:
        return [
            entry
            for entry in await self.collections_for_movie(movie_id)
            if entry.type == "user"
        ]

    async def user_collection_names(self, movie_id: int) -> list[str]:
        return [entry.name for entry in await self.user_collections_for(movie_id)]
