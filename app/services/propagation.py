"""Shared field edits across the members of a box set."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable

from ..config import DEFAULT_SHARED_FIELDS, canonical_field_name
from ..errors import PartialBatchFailure
from ..models import FieldChangeProposal, FieldWriteResult, PropagationResult
from .movies import MovieRepository, editable_field_name
from .resolver import MembershipResolver
from .store import CollectionStore

logger = logging.getLogger(__name__)


class PropagationEngine:
    """Offers and applies "this item only" versus "all members" field writes."""

    def __init__(
        self,
        store: CollectionStore,
        resolver: MembershipResolver,
        movies: MovieRepository,
        *,
        shared_fields: Iterable[str] = DEFAULT_SHARED_FIELDS,
        concurrency: int = 4,
    ):
        self._store = store
        self._resolver = resolver
        self._movies = movies
        self._shared_fields = frozenset(shared_fields)
        self._concurrency = max(1, concurrency)

    def shared_field(self, field: str) -> str | None:
        """Return the canonical name of ``field`` when it is shared, else ``None``."""

        canonical = canonical_field_name(field)
        if canonical in self._shared_fields:
            return canonical
        return None

    async def propose(
        self, movie_id: int, field: str, value: Any = None
    ) -> FieldChangeProposal:
        """Report whether the edit needs the this-item/all-members choice.

        A choice is only offered for shared fields on movies whose box set has
        more than one member.
        """

        await self._movies.get_movie(movie_id)
        canonical = self.shared_field(field)
        if canonical is None:
            return FieldChangeProposal(
                movie_id=movie_id,
                field=editable_field_name(field),
                requires_choice=False,
            )

        box_set = await self._resolver.box_set_for(movie_id)
        if box_set is None:
            return FieldChangeProposal(
                movie_id=movie_id, field=canonical, requires_choice=False
            )

        members = await self._store.list_members(box_set.collection.id)
        return FieldChangeProposal(
            movie_id=movie_id,
            field=canonical,
            requires_choice=len(members) > 1,
            box_set_id=box_set.collection.id,
            member_count=len(members),
        )

    async def apply(
        self, movie_id: int, field: str, value: Any, propagate: bool = False
    ) -> PropagationResult:
        """Write the field to the movie, or to every box-set member when chosen.

        Single writes raise on failure. Bulk writes attempt every member and
        raise :class:`PartialBatchFailure` afterwards when any of them failed.
        """

        proposal = await self.propose(movie_id, field, value)
        box_set_id = proposal.box_set_id if proposal.requires_choice else None
        if not propagate or box_set_id is None:
            await self._movies.update_movie_field(movie_id, proposal.field, value)
            return PropagationResult(
                field=proposal.field,
                value=value,
                box_set_id=proposal.box_set_id,
                results=[FieldWriteResult(movie_id=movie_id, ok=True)],
            )

        members = await self._store.list_members(box_set_id)
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _write(member_id: int) -> None:
            async with semaphore:
                await self._movies.update_movie_field(member_id, proposal.field, value)

        outcomes = await asyncio.gather(
            *(_write(member_id) for member_id in members), return_exceptions=True
        )
        results: list[FieldWriteResult] = []
        for member_id, outcome in zip(members, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(
                    "Propagating %s to movie %s failed: %s",
                    proposal.field,
                    member_id,
                    outcome,
                )
                results.append(
                    FieldWriteResult(movie_id=member_id, ok=False, error=str(outcome))
                )
            else:
                results.append(FieldWriteResult(movie_id=member_id, ok=True))

        result = PropagationResult(
            field=proposal.field,
            value=value,
            propagated=True,
            box_set_id=box_set_id,
            results=results,
        )
        logger.info(
            "Propagated %s across box set %s: %d of %d updated",
            proposal.field,
            box_set_id,
            result.succeeded,
            result.total,
        )
        if result.failed:
            raise PartialBatchFailure(result)
        return result
