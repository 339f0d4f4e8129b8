"""Ordering engine tests."""

from __future__ import annotations

import asyncio

import pytest

from app.errors import MembershipNotFoundError
from app.services.ordering import move_member, renumber


def test_renumber_ascending_and_descending() -> None:
    assert renumber([5, 6, 7], "box_set") == {5: 1, 6: 2, 7: 3}
    assert renumber([5, 6, 7], "watch_next") == {5: 3, 6: 2, 7: 1}
    assert renumber([], "user") == {}

    with pytest.raises(ValueError):
        renumber([5, 5], "user")


def test_move_member_clamps_index() -> None:
    assert move_member([1, 2, 3, 4], 4, 0) == [4, 1, 2, 3]
    assert move_member([1, 2, 3], 1, 10) == [2, 3, 1]
    assert move_member([1, 2, 3], 2, 1) == [1, 2, 3]

    with pytest.raises(ValueError):
        move_member([1, 2, 3], 9, 0)


def test_reorder_box_set_renumbers_every_member(open_service) -> None:
    async def runner() -> None:
        async with open_service() as service:
            store = service.store
            box_set = await store.create_collection("Quadrilogy", "box_set")
            for movie_id in (1, 2, 3, 4):
                await service.ordering.append(box_set.id, movie_id)

            memberships = await service.reorder_member(box_set.id, 4, 0)

            assert [(m.movie_id, m.order) for m in memberships] == [
                (4, 1),
                (1, 2),
                (2, 3),
                (3, 4),
            ]

            with pytest.raises(MembershipNotFoundError):
                await service.reorder_member(box_set.id, 99, 0)

    asyncio.run(runner())


def test_watch_next_lists_most_recent_first(open_service) -> None:
    async def runner() -> None:
        async with open_service() as service:
            store = service.store
            queue = await store.create_collection("Watch Next", "watch_next")
            for movie_id in (1, 2, 3):
                await service.ordering.append(queue.id, movie_id)

            assert await store.list_members(queue.id) == [3, 2, 1]

            memberships = await service.reorder_member(queue.id, 1, 0)
            assert [(m.movie_id, m.order) for m in memberships] == [
                (1, 3),
                (3, 2),
                (2, 1),
            ]

    asyncio.run(runner())


def test_remove_closes_gaps(open_service) -> None:
    async def runner() -> None:
        async with open_service() as service:
            store = service.store
            collection = await store.create_collection("Noir", "user")
            for movie_id in (1, 2, 3):
                await service.ordering.append(collection.id, movie_id)

            assert await service.ordering.remove(collection.id, 2) is True
            assert await service.ordering.remove(collection.id, 2) is False

            memberships = await store.list_memberships(collection.id)
            assert [(m.movie_id, m.order) for m in memberships] == [(1, 1), (3, 2)]

            await service.ordering.append(collection.id, 4)
            memberships = await store.list_memberships(collection.id)
            assert [m.order for m in memberships] == [1, 2, 3]

    asyncio.run(runner())


def test_normalize_all_repairs_gaps_once(open_service) -> None:
    async def runner() -> None:
        async with open_service() as service:
            store = service.store
            gappy = await store.create_collection("Gappy", "user")
            tidy = await store.create_collection("Tidy", "user")
            await store.add_membership(1, gappy.id, order=5)
            await store.add_membership(2, gappy.id, order=9)
            await store.add_membership(3, tidy.id)

            assert await service.normalize_orders() == 1
            assert await service.normalize_orders() == 0

            memberships = await store.list_memberships(gappy.id)
            assert [(m.movie_id, m.order) for m in memberships] == [(1, 1), (2, 2)]

    asyncio.run(runner())


def test_failed_renumber_keeps_the_removed_member(open_service) -> None:
    async def runner() -> None:
        async with open_service() as service:
            store = service.store
            collection = await store.create_collection("Noir", "user")
            for movie_id in (1, 2, 3):
                await service.ordering.append(collection.id, movie_id)

            def broken_renumber(sequence, collection_type):
                raise RuntimeError("renumber failed")

            with pytest.raises(RuntimeError):
                await store.remove_and_renumber(2, collection.id, broken_renumber)

            memberships = await store.list_memberships(collection.id)
            assert [(m.movie_id, m.order) for m in memberships] == [
                (1, 1),
                (2, 2),
                (3, 3),
            ]

            await store.remove_and_renumber(2, collection.id, renumber)
            memberships = await store.list_memberships(collection.id)
            assert [(m.movie_id, m.order) for m in memberships] == [(1, 1), (3, 2)]

    asyncio.run(runner())


def test_watch_next_removal_renumbers_descending(open_service) -> None:
    async def runner() -> None:
        async with open_service() as service:
            store = service.store
            queue = await store.create_collection("Watch Next", "watch_next")
            for movie_id in (1, 2, 3, 4):
                await service.ordering.append(queue.id, movie_id)

            assert await service.ordering.remove(queue.id, 3) is True

            memberships = await store.list_memberships(queue.id)
            assert [(m.movie_id, m.order) for m in memberships] == [
                (4, 3),
                (2, 2),
                (1, 1),
            ]

    asyncio.run(runner())
