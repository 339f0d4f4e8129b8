"""Box-set rename/merge decisions and user collection reconciliation.

Decisions are pure functions from the current state and the requested name(s)
to a :class:`Plan`: the case that fired plus the ordered store effects needed
to realise it. :class:`RenameMergeEngine` gathers the state, plans, and applies
the effects through the ordering engine and the sweeper.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Sequence, Union

from ..models import Collection
from ..utils import normalize_name, unique_names
from .ordering import OrderingEngine
from .resolver import MembershipResolver
from .store import CollectionStore
from .sweeper import CleanupSweeper

logger = logging.getLogger(__name__)


class BoxSetCase(str, Enum):
    REMOVE = "remove"
    CREATE = "create"
    JOIN = "join"
    RENAME = "rename"
    MERGE = "merge"
    UNCHANGED = "unchanged"


class UserCollectionsCase(str, Enum):
    UPDATE = "update"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class CreateCollection:
    name: str
    type: str


@dataclass(frozen=True)
class AddMembership:
    """Add a movie to a collection.

    ``collection_id`` is ``None`` when the target is created earlier in the same
    plan; it is then looked up by ``name`` and ``type``.
    """

    movie_id: int
    collection_id: int | None
    name: str
    type: str


@dataclass(frozen=True)
class RemoveMembership:
    movie_id: int
    collection_id: int


@dataclass(frozen=True)
class RenameCollection:
    collection_id: int
    name: str


Effect = Union[CreateCollection, AddMembership, RemoveMembership, RenameCollection]


@dataclass(frozen=True)
class Plan:
    case: BoxSetCase | UserCollectionsCase
    effects: tuple[Effect, ...] = ()
    sweep: tuple[int, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.effects)


def plan_box_set_change(
    movie_id: int,
    current: Collection | None,
    new_name: str | None,
    box_sets: Sequence[Collection],
) -> Plan:
    """Decide the effect of editing a movie's box-set name.

    ``current`` is the movie's box set (if any) and ``box_sets`` every existing
    box set. Cases are checked in order: remove, create, join, rename, merge.
    A blank name without a current box set, or a name that already matches the
    current box set, yields ``UNCHANGED``.
    """

    name = normalize_name(new_name)

    if not name:
        if current is None:
            return Plan(BoxSetCase.UNCHANGED)
        return Plan(
            BoxSetCase.REMOVE,
            (RemoveMembership(movie_id, current.id),),
            (current.id,),
        )

    target = next(
        (collection for collection in box_sets if collection.name == name), None
    )

    if current is None:
        if target is None:
            return Plan(
                BoxSetCase.CREATE,
                (
                    CreateCollection(name, "box_set"),
                    AddMembership(movie_id, None, name, "box_set"),
                ),
            )
        return Plan(
            BoxSetCase.JOIN,
            (AddMembership(movie_id, target.id, target.name, "box_set"),),
            (target.id,),
        )

    if current.name == name or (target is not None and target.id == current.id):
        return Plan(BoxSetCase.UNCHANGED, sweep=(current.id,))

    if target is None:
        return Plan(
            BoxSetCase.RENAME,
            (RenameCollection(current.id, name),),
            (current.id,),
        )

    return Plan(
        BoxSetCase.MERGE,
        (
            RemoveMembership(movie_id, current.id),
            AddMembership(movie_id, target.id, target.name, "box_set"),
        ),
        (current.id, target.id),
    )


def plan_user_collections(
    movie_id: int,
    current: Sequence[Collection],
    names: Sequence[str],
    existing: Sequence[Collection],
) -> Plan:
    """Diff the movie's user collections against the requested names.

    Missing collections are created, missing memberships added and stale
    memberships removed; the stale collections are swept afterwards.
    """

    wanted = unique_names(names)
    current_by_name = {collection.name: collection for collection in current}
    existing_by_name = {
        collection.name: collection
        for collection in existing
        if collection.type == "user"
    }

    effects: list[Effect] = []
    for name in wanted:
        if name in current_by_name:
            continue
        target = existing_by_name.get(name)
        if target is None:
            effects.append(CreateCollection(name, "user"))
            effects.append(AddMembership(movie_id, None, name, "user"))
        else:
            effects.append(AddMembership(movie_id, target.id, name, "user"))

    wanted_set = set(wanted)
    stale = [collection for collection in current if collection.name not in wanted_set]
    for collection in stale:
        effects.append(RemoveMembership(movie_id, collection.id))

    case = UserCollectionsCase.UPDATE if effects else UserCollectionsCase.UNCHANGED
    return Plan(case, tuple(effects), tuple(collection.id for collection in stale))


class RenameMergeEngine:
    """Applies box-set and user collection plans to the store."""

    def __init__(
        self,
        store: CollectionStore,
        resolver: MembershipResolver,
        ordering: OrderingEngine,
        sweeper: CleanupSweeper,
    ):
        self._store = store
        self._resolver = resolver
        self._ordering = ordering
        self._sweeper = sweeper

    async def change_box_set_name(
        self, movie_id: int, new_name: str | None, old_name: str | None = None
    ) -> Plan:
        box_set = await self._resolver.box_set_for(movie_id)
        current = box_set.collection if box_set is not None else None
        if (
            old_name is not None
            and current is not None
            and normalize_name(old_name) != current.name
        ):
            logger.warning(
                "Movie %s box set is %r, caller expected %r",
                movie_id,
                current.name,
                old_name,
            )

        box_sets = await self._store.list_collections("box_set")
        plan = plan_box_set_change(movie_id, current, new_name, box_sets)
        logger.info(
            "Box set change for movie %s resolved to %s", movie_id, plan.case.value
        )
        await self.apply(plan)
        return plan

    async def set_user_collections(
        self, movie_id: int, names: Sequence[str]
    ) -> Plan:
        current = [
            entry.collection
            for entry in await self._resolver.user_collections_for(movie_id)
        ]
        existing = await self._store.list_collections("user")
        plan = plan_user_collections(movie_id, current, names, existing)
        if plan.changed:
            logger.info(
                "Updating user collections for movie %s (%d change(s))",
                movie_id,
                len(plan.effects),
            )
        await self.apply(plan)
        return plan

    async def apply(self, plan: Plan) -> None:
        """Run the plan's effects in order, then sweep the touched collections."""

        created: dict[tuple[str, str], int] = {}
        for effect in plan.effects:
            if isinstance(effect, CreateCollection):
                collection = await self._store.create_collection(
                    effect.name, effect.type
                )
                created[(collection.name, effect.type)] = collection.id
            elif isinstance(effect, AddMembership):
                collection_id = effect.collection_id
                if collection_id is None:
                    collection_id = created[(effect.name, effect.type)]
                await self._ordering.append(collection_id, effect.movie_id)
            elif isinstance(effect, RemoveMembership):
                await self._ordering.remove(effect.collection_id, effect.movie_id)
            elif isinstance(effect, RenameCollection):
                await self._store.rename_collection(effect.collection_id, effect.name)
            else:  # pragma: no cover - exhaustive over Effect
                raise TypeError(f"Unsupported plan effect: {effect!r}")

        await self._sweeper.sweep_many(plan.sweep)
