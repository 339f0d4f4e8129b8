"""HTTP route tests."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.config import Settings
from app.database import Database
from app.main import register_routes
from app.models import Movie
from app.services.collection_service import CollectionService
from app.services.movies import SqlMovieRepository


class ReadOnlyTitlesRepository(SqlMovieRepository):
    """Repository refusing writes to movies whose title starts with ``Locked``."""

    async def update_movie_field(self, movie_id: int, field: str, value: Any) -> Movie:
        movie = await self.get_movie(movie_id)
        if movie.title.startswith("Locked"):
            raise PermissionError(f"{movie.title} is read-only")
        return await super().update_movie_field(movie_id, field, value)


def _build_app(database_url: str, movies_factory=None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI):
        database = Database(database_url)
        await database.create_all()
        movies = movies_factory(database.session_factory) if movies_factory else None
        fastapi_app.state.collection_service = CollectionService(
            Settings(_env_file=None), database.session_factory, movies
        )
        try:
            yield
        finally:
            await database.dispose()

    app = FastAPI(lifespan=lifespan)
    register_routes(app)
    return app


def _create_movie(client: TestClient, title: str, **fields: Any) -> int:
    response = client.post("/api/movies", json={"title": title, **fields})
    assert response.status_code == 201
    return response.json()["id"]


def test_healthcheck(database_url) -> None:
    with TestClient(_build_app(database_url)) as client:
        response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_routes_require_initialised_service() -> None:
    app = FastAPI()
    register_routes(app)

    with TestClient(app) as client:
        with pytest.raises(RuntimeError, match="not initialised"):
            client.get("/api/collections")


def test_movie_payloads_use_camel_case(database_url) -> None:
    with TestClient(_build_app(database_url)) as client:
        response = client.post(
            "/api/movies",
            json={
                "title": "  Heat ",
                "format": "Blu-ray",
                "purchaseDate": "2020-05-01",
                "titleStatus": "wish",
            },
        )
        assert response.status_code == 201
        payload = response.json()
        assert payload["title"] == "Heat"
        assert payload["acquiredDate"] == "2020-05-01"
        assert payload["titleStatus"] == "wish"

        assert client.get(f"/api/movies/{payload['id']}").json() == payload
        assert client.get("/api/movies/999").status_code == 404
        assert client.post("/api/movies", json={"title": ""}).status_code == 400


def test_box_set_flow_and_reorder(database_url) -> None:
    with TestClient(_build_app(database_url)) as client:
        movie_ids = [_create_movie(client, f"Part {index}") for index in range(1, 5)]

        response = client.put(
            f"/api/movies/{movie_ids[0]}/box-set", json={"name": "Quadrilogy"}
        )
        assert response.status_code == 200
        payload = response.json()
        assert payload["case"] == "create"
        assert payload["changed"] is True
        assert payload["boxSet"]["name"] == "Quadrilogy"
        assert payload["boxSet"]["order"] == 1
        box_set_id = payload["boxSet"]["id"]

        for movie_id in movie_ids[1:]:
            response = client.put(
                f"/api/movies/{movie_id}/box-set", json={"newName": "Quadrilogy"}
            )
            assert response.json()["case"] == "join"

        response = client.put(
            f"/api/collections/{box_set_id}/members/{movie_ids[3]}/position",
            json={"newIndex": 0},
        )
        assert response.status_code == 200
        members = response.json()["members"]
        assert [m["movieId"] for m in members] == [
            movie_ids[3],
            movie_ids[0],
            movie_ids[1],
            movie_ids[2],
        ]
        assert [m["order"] for m in members] == [1, 2, 3, 4]

        response = client.put(
            f"/api/collections/{box_set_id}/members/999/position", json={"index": 0}
        )
        assert response.status_code == 404
        response = client.put(
            f"/api/collections/{box_set_id}/members/{movie_ids[0]}/position",
            json={"index": -1},
        )
        assert response.status_code == 400

        response = client.get(f"/api/collections/{box_set_id}/members")
        assert response.json()["collection"]["movieCount"] == 4

        response = client.put(f"/api/movies/{movie_ids[0]}/box-set", json={"name": None})
        assert response.json()["case"] == "remove"
        assert response.json()["boxSet"] is None


def test_user_collections_and_listing(database_url) -> None:
    with TestClient(_build_app(database_url)) as client:
        movie_id = _create_movie(client, "Heat")

        response = client.put(
            f"/api/movies/{movie_id}/collections",
            json={"collections": ["Noir", "Favourites", "Noir"]},
        )
        assert response.status_code == 200
        assert [c["name"] for c in response.json()["collections"]] == [
            "Favourites",
            "Noir",
        ]

        response = client.get("/api/collections", params={"type": "user"})
        assert [(c["name"], c["movieCount"]) for c in response.json()["collections"]] == [
            ("Favourites", 1),
            ("Noir", 1),
        ]
        assert client.get("/api/collections", params={"type": "shelf"}).status_code == 400

        response = client.get("/api/collections/suggestions", params={"q": "no"})
        assert response.json() == {"suggestions": ["Noir"]}

        response = client.post(
            f"/api/movies/{movie_id}/collections",
            json={"name": "Mann", "type": "box_set"},
        )
        assert response.status_code == 201
        response = client.post(
            f"/api/movies/{movie_id}/collections",
            json={"name": "Other", "type": "box_set"},
        )
        assert response.status_code == 409


def test_watch_next_toggle(database_url) -> None:
    with TestClient(_build_app(database_url)) as client:
        first = _create_movie(client, "X")
        second = _create_movie(client, "Y")

        assert client.post(f"/api/movies/{first}/watch-next").json() == {
            "movieId": first,
            "watchNext": True,
        }
        client.post(f"/api/movies/{second}/watch-next")

        response = client.get("/api/collections/watch-next")
        assert [m["movieId"] for m in response.json()["members"]] == [second, first]

        response = client.post(f"/api/movies/{first}/watch-next")
        assert response.json()["watchNext"] is False
        assert client.post("/api/movies/999/watch-next").status_code == 404


def test_collection_deletion_and_maintenance(database_url) -> None:
    with TestClient(_build_app(database_url)) as client:
        movie_id = _create_movie(client, "Heat")
        response = client.post(
            f"/api/movies/{movie_id}/collections", json={"name": "Mann"}
        )
        collection_id = response.json()["collectionId"]

        assert client.delete(f"/api/collections/{collection_id}").status_code == 409
        assert client.get("/api/collections/999").status_code == 404

        assert client.post("/api/collections/cleanup").json() == {"cleanedCount": 0}
        assert client.post("/api/collections/normalize-orders").json() == {
            "renumberedCount": 0
        }

        response = client.delete(f"/api/collections/{collection_id}/members/{movie_id}")
        assert response.json() == {"removed": True}
        assert client.get(f"/api/collections/{collection_id}").status_code == 404

        response = client.delete(f"/api/movies/{movie_id}")
        assert response.json() == {"deleted": True, "id": movie_id}
        assert client.get(f"/api/movies/{movie_id}/collections").json() == {
            "collections": []
        }


def test_field_propagation_routes(database_url) -> None:
    app = _build_app(database_url, movies_factory=ReadOnlyTitlesRepository)
    with TestClient(app) as client:
        movie_ids = [
            _create_movie(client, title, format="DVD")
            for title in ("One", "Locked Two", "Three")
        ]
        for movie_id in movie_ids:
            client.put(f"/api/movies/{movie_id}/box-set", json={"name": "Trilogy"})

        response = client.post(
            f"/api/movies/{movie_ids[0]}/fields/propose",
            json={"field": "format", "value": "4K"},
        )
        assert response.status_code == 200
        assert response.json()["requiresChoice"] is True
        assert response.json()["memberCount"] == 3

        response = client.put(
            f"/api/movies/{movie_ids[0]}/fields",
            json={"field": "format", "value": "4K", "propagate": True},
        )
        assert response.status_code == 207
        payload = response.json()
        assert (payload["succeeded"], payload["failed"], payload["total"]) == (2, 1, 3)

        response = client.put(
            f"/api/movies/{movie_ids[2]}/fields",
            json={"field": "price", "value": 12.5},
        )
        assert response.status_code == 200
        assert response.json()["propagated"] is False

        response = client.put(
            f"/api/movies/{movie_ids[2]}/fields",
            json={"field": "director", "value": "Mann"},
        )
        assert response.status_code == 400


def test_rename_collection_route(database_url) -> None:
    with TestClient(_build_app(database_url)) as client:
        movie_id = _create_movie(client, "Heat")
        response = client.post(
            f"/api/movies/{movie_id}/collections", json={"name": "Mann"}
        )
        collection_id = response.json()["collectionId"]
        client.post(f"/api/movies/{movie_id}/collections", json={"name": "Crime"})

        response = client.put(
            f"/api/collections/{collection_id}", json={"newName": "Michael Mann"}
        )
        assert response.status_code == 200
        assert response.json()["name"] == "Michael Mann"
        assert response.json()["movieCount"] == 1

        names = [
            c["name"]
            for c in client.get(f"/api/movies/{movie_id}/collections").json()[
                "collections"
            ]
        ]
        assert names == ["Crime", "Michael Mann"]

        response = client.put(f"/api/collections/{collection_id}", json={"name": "Crime"})
        assert response.status_code == 409
        response = client.put("/api/collections/999", json={"name": "Anything"})
        assert response.status_code == 404
        response = client.put(f"/api/collections/{collection_id}", json={"name": "  "})
        assert response.status_code == 400
