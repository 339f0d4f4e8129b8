"""Durable collection and membership storage."""

from __future__ import annotations

import logging
from typing import Callable, Mapping, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import CollectionRecord, MembershipRecord
from ..errors import (
    CollectionNotFoundError,
    DuplicateNameError,
    MembershipNotFoundError,
    SingletonViolation,
)
from ..models import COLLECTION_TYPES, Collection, Membership, MovieCollection
from ..utils import normalize_name

logger = logging.getLogger(__name__)

Renumber = Callable[[Sequence[int], str], Mapping[int, int]]


def is_descending(collection_type: str) -> bool:
    """Return whether the collection displays its highest order first."""

    return collection_type == "watch_next"


class CollectionStore:
    """Collections and ordered memberships persisted through SQLAlchemy.

    Every public method runs in its own session and commits at most once, so
    a failing call leaves the database exactly as it was before the call.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_collection(self, collection_id: int) -> Collection:
        async with self._session_factory() as session:
            record = await self._require_collection(session, collection_id)
            count = await self._count_members(session, collection_id)
            return self._to_collection(record, count)

    async def find_collection(
        self, name: str, collection_type: str
    ) -> Collection | None:
        """Return the collection named ``name`` of ``collection_type``, if any."""

        cleaned = normalize_name(name)
        async with self._session_factory() as session:
            stmt = select(CollectionRecord).where(
                CollectionRecord.name == cleaned,
                CollectionRecord.type == collection_type,
            )
            record = (await session.execute(stmt)).scalar_one_or_none()
            if record is None:
                return None
            count = await self._count_members(session, record.id)
            return self._to_collection(record, count)

    async def find_watch_next(self) -> Collection | None:
        async with self._session_factory() as session:
            stmt = (
                select(CollectionRecord)
                .where(CollectionRecord.type == "watch_next")
                .order_by(CollectionRecord.id)
                .limit(1)
            )
            record = (await session.execute(stmt)).scalar_one_or_none()
            if record is None:
                return None
            count = await self._count_members(session, record.id)
            return self._to_collection(record, count)

    async def list_collections(
        self, collection_type: str | None = None
    ) -> list[Collection]:
        """Return collections sorted by name, each with its member count."""

        async with self._session_factory() as session:
            stmt = (
                select(CollectionRecord, func.count(MembershipRecord.id))
                .outerjoin(
                    MembershipRecord,
                    MembershipRecord.collection_id == CollectionRecord.id,
                )
                .group_by(CollectionRecord.id)
                .order_by(CollectionRecord.name, CollectionRecord.id)
            )
            if collection_type is not None:
                stmt = stmt.where(CollectionRecord.type == collection_type)
            result = await session.execute(stmt)
            return [
                self._to_collection(record, count) for record, count in result.all()
            ]

    async def empty_collection_ids(self) -> list[int]:
        async with self._session_factory() as session:
            stmt = (
                select(CollectionRecord.id)
                .outerjoin(
                    MembershipRecord,
                    MembershipRecord.collection_id == CollectionRecord.id,
                )
                .group_by(CollectionRecord.id)
                .having(func.count(MembershipRecord.id) == 0)
                .order_by(CollectionRecord.id)
            )
            result = await session.execute(stmt)
            return [row[0] for row in result.all()]

    async def create_collection(self, name: str, collection_type: str) -> Collection:
        cleaned = normalize_name(name)
        if not cleaned:
            raise ValueError("Collection name may not be blank")
        if collection_type not in COLLECTION_TYPES:
            raise ValueError(f"Unknown collection type: {collection_type}")

        async with self._session_factory() as session:
            if collection_type == "watch_next":
                stmt = select(CollectionRecord.id).where(
                    CollectionRecord.type == "watch_next"
                )
                existing_id = (await session.execute(stmt.limit(1))).scalar_one_or_none()
                if existing_id is not None:
                    raise SingletonViolation(existing_id)
            else:
                stmt = select(CollectionRecord.id).where(
                    CollectionRecord.name == cleaned,
                    CollectionRecord.type == collection_type,
                )
                if (await session.execute(stmt)).scalar_one_or_none() is not None:
                    raise DuplicateNameError(cleaned, collection_type)

            record = CollectionRecord(
                name=cleaned,
                type=collection_type,
                is_system=collection_type == "watch_next",
            )
            session.add(record)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateNameError(cleaned, collection_type) from exc

            logger.info(
                "Created %s collection %r (id %s)", collection_type, cleaned, record.id
            )
            return self._to_collection(record, 0)

    async def rename_collection(self, collection_id: int, new_name: str) -> Collection:
        cleaned = normalize_name(new_name)
        if not cleaned:
            raise ValueError("Collection name may not be blank")

        async with self._session_factory() as session:
            record = await self._require_collection(session, collection_id)
            count = await self._count_members(session, collection_id)
            if record.name == cleaned:
                return self._to_collection(record, count)

            stmt = select(CollectionRecord.id).where(
                CollectionRecord.name == cleaned,
                CollectionRecord.type == record.type,
                CollectionRecord.id != collection_id,
            )
            if (await session.execute(stmt)).scalar_one_or_none() is not None:
                raise DuplicateNameError(cleaned, record.type)

            previous = record.name
            record.name = cleaned
            await session.commit()
            logger.info(
                "Renamed %s collection %s from %r to %r",
                record.type,
                collection_id,
                previous,
                cleaned,
            )
            return self._to_collection(record, count)

    async def add_membership(
        self, movie_id: int, collection_id: int, order: int | None = None
    ) -> Membership:
        """Add ``movie_id`` to the collection, appending when ``order`` is omitted.

        Adding an existing pair returns the stored membership unchanged.
        """

        async with self._session_factory() as session:
            await self._require_collection(session, collection_id)
            existing = await self._find_membership(session, movie_id, collection_id)
            if existing is not None:
                logger.debug(
                    "Movie %s already in collection %s", movie_id, collection_id
                )
                return Membership.model_validate(existing)

            if order is None:
                stmt = select(func.max(MembershipRecord.order)).where(
                    MembershipRecord.collection_id == collection_id
                )
                current_max = (await session.execute(stmt)).scalar_one_or_none()
                order = (current_max or 0) + 1

            record = MembershipRecord(
                movie_id=movie_id, collection_id=collection_id, order=order
            )
            session.add(record)
            await session.commit()
            return Membership.model_validate(record)

    async def remove_membership(self, movie_id: int, collection_id: int) -> None:
        async with self._session_factory() as session:
            record = await self._find_membership(session, movie_id, collection_id)
            if record is None:
                raise MembershipNotFoundError(movie_id, collection_id)
            await session.delete(record)
            await session.commit()

    async def list_memberships(self, collection_id: int) -> list[Membership]:
        """Return the collection's memberships in display order."""

        async with self._session_factory() as session:
            record = await self._require_collection(session, collection_id)
            result = await session.execute(self._display_order(record))
            return [Membership.model_validate(row) for row in result.scalars()]

    async def remove_and_renumber(
        self, movie_id: int, collection_id: int, renumber: Renumber
    ) -> None:
        """Remove a member and rewrite the remaining orders in one transaction.

        ``renumber`` receives the remaining movie ids in display order and the
        collection type, and returns the new order of each movie.
        """

        async with self._session_factory() as session:
            collection = await self._require_collection(session, collection_id)
            record = await self._find_membership(session, movie_id, collection_id)
            if record is None:
                raise MembershipNotFoundError(movie_id, collection_id)
            await session.delete(record)
            await session.flush()

            remaining = list(
                (await session.execute(self._display_order(collection))).scalars()
            )
            orders = renumber(
                [member.movie_id for member in remaining], collection.type
            )
            for member in remaining:
                member.order = orders[member.movie_id]
            await session.commit()

    async def list_members(self, collection_id: int) -> list[int]:
        """Return member movie ids in display order."""

        return [
            membership.movie_id
            for membership in await self.list_memberships(collection_id)
        ]

    async def memberships_for_movie(self, movie_id: int) -> list[MovieCollection]:
        async with self._session_factory() as session:
            stmt = (
                select(CollectionRecord, MembershipRecord.order)
                .join(
                    MembershipRecord,
                    MembershipRecord.collection_id == CollectionRecord.id,
                )
                .where(MembershipRecord.movie_id == movie_id)
                .order_by(CollectionRecord.type, CollectionRecord.name)
            )
            result = await session.execute(stmt)
            return [
                MovieCollection(collection=self._to_collection(record), order=order)
                for record, order in result.all()
            ]

    async def collection_ids_for_movie(self, movie_id: int) -> list[int]:
        async with self._session_factory() as session:
            stmt = (
                select(MembershipRecord.collection_id)
                .where(MembershipRecord.movie_id == movie_id)
                .order_by(MembershipRecord.collection_id)
            )
            result = await session.execute(stmt)
            return [row[0] for row in result.all()]

    async def write_orders(
        self, collection_id: int, orders: Mapping[int, int]
    ) -> None:
        """Rewrite the order of every member in a single transaction.

        ``orders`` maps movie id to its new order and must cover exactly the
        current members; nothing is written when it does not.
        """

        async with self._session_factory() as session:
            await self._require_collection(session, collection_id)
            stmt = select(MembershipRecord).where(
                MembershipRecord.collection_id == collection_id
            )
            current = {
                record.movie_id: record
                for record in (await session.execute(stmt)).scalars()
            }
            missing = [movie_id for movie_id in orders if movie_id not in current]
            if missing:
                raise MembershipNotFoundError(missing[0], collection_id)
            uncovered = set(current) - set(orders)
            if uncovered:
                raise ValueError(
                    f"Order update for collection {collection_id} omits "
                    f"{len(uncovered)} member(s)"
                )

            for movie_id, order in orders.items():
                current[movie_id].order = order
            await session.commit()

    async def delete_collection_if_empty(self, collection_id: int) -> bool:
        """Delete the collection when it has no members.

        Returns ``True`` when a row was deleted; unknown ids are a no-op.
        """

        async with self._session_factory() as session:
            record = await session.get(CollectionRecord, collection_id)
            if record is None:
                return False
            if await self._count_members(session, collection_id):
                return False
            await session.delete(record)
            await session.commit()
            logger.info(
                "Deleted empty %s collection %r (id %s)",
                record.type,
                record.name,
                collection_id,
            )
            return True

    async def delete_collection(self, collection_id: int) -> None:
        """Delete the collection together with its memberships."""

        async with self._session_factory() as session:
            record = await self._require_collection(session, collection_id)
            await session.execute(
                delete(MembershipRecord).where(
                    MembershipRecord.collection_id == collection_id
                )
            )
            await session.delete(record)
            await session.commit()
            logger.info("Deleted collection %r (id %s)", record.name, collection_id)

    async def suggest_names(
        self,
        query: str = "",
        *,
        limit: int = 10,
        collection_types: Sequence[str] | None = None,
    ) -> list[str]:
        """Return distinct collection names containing ``query`` for typeahead."""

        pattern = f"%{normalize_name(query)}%"
        async with self._session_factory() as session:
            stmt = (
                select(CollectionRecord.name)
                .where(CollectionRecord.name.ilike(pattern))
                .distinct()
                .order_by(CollectionRecord.name)
                .limit(limit)
            )
            if collection_types:
                stmt = stmt.where(CollectionRecord.type.in_(list(collection_types)))
            result = await session.execute(stmt)
            return [row[0] for row in result.all()]

    async def _require_collection(
        self, session: AsyncSession, collection_id: int
    ) -> CollectionRecord:
        record = await session.get(CollectionRecord, collection_id)
        if record is None:
            raise CollectionNotFoundError(collection_id)
        return record

    @staticmethod
    def _display_order(collection: CollectionRecord):
        stmt = select(MembershipRecord).where(
            MembershipRecord.collection_id == collection.id
        )
        if is_descending(collection.type):
            return stmt.order_by(
                MembershipRecord.order.desc(), MembershipRecord.id.desc()
            )
        return stmt.order_by(MembershipRecord.order, MembershipRecord.id)

    @staticmethod
    async def _find_membership(
        session: AsyncSession, movie_id: int, collection_id: int
    ) -> MembershipRecord | None:
        stmt = select(MembershipRecord).where(
            MembershipRecord.movie_id == movie_id,
            MembershipRecord.collection_id == collection_id,
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    @staticmethod
    async def _count_members(session: AsyncSession, collection_id: int) -> int:
        stmt = select(func.count(MembershipRecord.id)).where(
            MembershipRecord.collection_id == collection_id
        )
        return int((await session.execute(stmt)).scalar_one())

    @staticmethod
    def _to_collection(
        record: CollectionRecord, member_count: int | None = None
    ) -> Collection:
        return Collection(
            id=record.id,
            name=record.name,
            type=record.type,
            is_system=bool(record.is_system),
            member_count=member_count,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
