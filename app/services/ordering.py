"""Per-collection ordering: append, reorder, removal and renumbering."""

from __future__ import annotations

import logging
from typing import Sequence

from ..errors import MembershipNotFoundError
from ..models import Membership
from ..utils import clamp_index
from .store import CollectionStore, is_descending

logger = logging.getLogger(__name__)


def renumber(sequence: Sequence[int], collection_type: str) -> dict[int, int]:
    """Assign contiguous orders to movie ids listed in display order.

    Ascending collections number the first displayed movie ``1``; watch_next
    numbers it ``N`` and counts down to ``1`` for the last.
    """

    total = len(sequence)
    if len(set(sequence)) != total:
        raise ValueError("Member sequence contains duplicate movie ids")
    if is_descending(collection_type):
        return {movie_id: total - index for index, movie_id in enumerate(sequence)}
    return {movie_id: index + 1 for index, movie_id in enumerate(sequence)}


def move_member(sequence: Sequence[int], movie_id: int, new_index: int) -> list[int]:
    """Return ``sequence`` with ``movie_id`` moved to ``new_index``.

    The target index is clamped into the valid range.
    """

    items = list(sequence)
    if movie_id not in items:
        raise ValueError(f"Movie {movie_id} is not part of the sequence")
    target = clamp_index(new_index, len(items))
    items.remove(movie_id)
    items.insert(target, movie_id)
    return items


class OrderingEngine:
    """Keeps member orders contiguous after every write."""

    def __init__(self, store: CollectionStore):
        self._store = store

    async def append(self, collection_id: int, movie_id: int) -> Membership:
        return await self._store.add_membership(movie_id, collection_id)

    async def reorder(
        self, collection_id: int, movie_id: int, new_index: int
    ) -> list[Membership]:
        """Move a member to ``new_index`` in display order and renumber all members."""

        collection = await self._store.get_collection(collection_id)
        sequence = await self._store.list_members(collection_id)
        if movie_id not in sequence:
            raise MembershipNotFoundError(movie_id, collection_id)

        reordered = move_member(sequence, movie_id, new_index)
        await self._store.write_orders(
            collection_id, renumber(reordered, collection.type)
        )
        logger.info(
            "Moved movie %s to position %d in collection %s",
            movie_id,
            reordered.index(movie_id),
            collection_id,
        )
        return await self._store.list_memberships(collection_id)

    async def remove(self, collection_id: int, movie_id: int) -> bool:
        """Remove a member and close the gap it leaves in the same transaction.

        Returns ``False`` when the movie was not a member.
        """

        try:
            await self._store.remove_and_renumber(movie_id, collection_id, renumber)
        except MembershipNotFoundError:
            logger.debug(
                "Movie %s was not in collection %s; nothing removed",
                movie_id,
                collection_id,
            )
            return False
        return True

    async def normalize(self, collection_id: int) -> bool:
        """Rewrite orders contiguously while keeping the current sequence.

        Returns ``True`` when any order changed.
        """

        collection = await self._store.get_collection(collection_id)
        memberships = await self._store.list_memberships(collection_id)
        orders = renumber(
            [membership.movie_id for membership in memberships], collection.type
        )
        if all(orders[m.movie_id] == m.order for m in memberships):
            return False
        await self._store.write_orders(collection_id, orders)
        return True

    async def normalize_all(self) -> int:
        """Normalise every collection, returning how many were rewritten."""

        rewritten = 0
        for collection in await self._store.list_collections():
            if await self.normalize(collection.id):
                logger.info(
                    "Renumbered collection %r (id %s)", collection.name, collection.id
                )
                rewritten += 1
        return rewritten
