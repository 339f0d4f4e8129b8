"""Removal of collections left without members."""

from __future__ import annotations

import logging
from typing import Iterable

from .store import CollectionStore

logger = logging.getLogger(__name__)


class CleanupSweeper:
    """Deletes empty collections; safe to call any number of times."""

    def __init__(self, store: CollectionStore):
        self._store = store

    async def sweep(self, collection_id: int) -> bool:
        return await self._store.delete_collection_if_empty(collection_id)

    async def sweep_many(self, collection_ids: Iterable[int]) -> int:
        swept = 0
        for collection_id in dict.fromkeys(collection_ids):
            if await self.sweep(collection_id):
                swept += 1
        return swept

    async def sweep_all(self) -> int:
        swept = await self.sweep_many(await self._store.empty_collection_ids())
        if swept:
            logger.info("Cleaned up %d empty collection(s)", swept)
        return swept
