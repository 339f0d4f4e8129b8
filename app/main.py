"""Entry point for the FastAPI-powered collections service."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager, contextmanager
from typing import Any, Iterator, TypeVar

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from .config import settings
from .database import Database
from .errors import (
    BoxSetConflictError,
    CollectionNotEmptyError,
    CollectionNotFoundError,
    DuplicateNameError,
    MembershipNotFoundError,
    MovieNotFoundError,
    PartialBatchFailure,
    SingletonViolation,
)
from .models import (
    COLLECTION_TYPES,
    BoxSetNameChange,
    CollectionAdd,
    CollectionRename,
    FieldChange,
    MovieCreate,
    ReorderRequest,
    UserCollectionsUpdate,
)
from .services.collection_service import CollectionService

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app: FastAPI

ModelT = TypeVar("ModelT", bound=BaseModel)


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    database = Database(settings.database_url)
    await database.create_all()

    fastapi_app.state.database = database
    fastapi_app.state.collection_service = CollectionService(
        settings, database.session_factory
    )

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Collection membership and ordering for a personal film library",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_collection_service(app: FastAPI) -> CollectionService:
    service = getattr(app.state, "collection_service", None)
    if not isinstance(service, CollectionService):
        raise RuntimeError("Collection service not initialised")
    return service


@contextmanager
def _domain_errors() -> Iterator[None]:
    """Translate collection errors into HTTP responses."""

    try:
        yield
    except (
        CollectionNotFoundError,
        MembershipNotFoundError,
        MovieNotFoundError,
    ) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (
        DuplicateNameError,
        SingletonViolation,
        BoxSetConflictError,
        CollectionNotEmptyError,
    ) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(
            status_code=400,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


async def _read_payload(request: Request, model: type[ModelT]) -> ModelT:
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        payload = {}
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc


def register_routes(fastapi_app: FastAPI) -> None:
    def _service() -> CollectionService:
        return get_collection_service(fastapi_app)

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/collections")
    async def list_collections(type: str | None = None) -> dict[str, Any]:
        if type is not None and type not in COLLECTION_TYPES:
            raise HTTPException(status_code=400, detail="Unsupported collection type")
        collections = await _service().get_all_collections(type)
        return {"collections": [collection.to_payload() for collection in collections]}

    @fastapi_app.get("/api/collections/suggestions")
    async def collection_suggestions(
        q: str = "", type: str | None = None
    ) -> dict[str, Any]:
        if type is not None and type not in COLLECTION_TYPES:
            raise HTTPException(status_code=400, detail="Unsupported collection type")
        names = await _service().suggest_collection_names(q, type)
        return {"suggestions": names}

    @fastapi_app.post("/api/collections/cleanup")
    async def cleanup_collections() -> dict[str, int]:
        result = await _service().cleanup_empty_collections()
        return result.to_payload()

    @fastapi_app.post("/api/collections/normalize-orders")
    async def normalize_orders() -> dict[str, int]:
        rewritten = await _service().normalize_orders()
        return {"renumberedCount": rewritten}

    @fastapi_app.get("/api/collections/watch-next")
    async def watch_next() -> dict[str, Any]:
        members = await _service().get_watch_next()
        return {"members": [member.to_payload() for member in members]}

    @fastapi_app.get("/api/collections/{collection_id}")
    async def get_collection(collection_id: int) -> dict[str, Any]:
        with _domain_errors():
            collection = await _service().get_collection(collection_id)
        return collection.to_payload()

    @fastapi_app.put("/api/collections/{collection_id}")
    async def rename_collection(request: Request, collection_id: int) -> dict[str, Any]:
        body = await _read_payload(request, CollectionRename)
        with _domain_errors():
            collection = await _service().rename_collection(collection_id, body.name)
        return collection.to_payload()

    @fastapi_app.delete("/api/collections/{collection_id}")
    async def delete_collection(collection_id: int) -> dict[str, Any]:
        with _domain_errors():
            await _service().delete_collection(collection_id)
        return {"deleted": True, "id": collection_id}

    @fastapi_app.get("/api/collections/{collection_id}/members")
    async def collection_members(collection_id: int) -> dict[str, Any]:
        service = _service()
        with _domain_errors():
            collection = await service.get_collection(collection_id)
            members = await service.get_collection_members(collection_id)
        return {
            "collection": collection.to_payload(),
            "members": [member.to_payload() for member in members],
        }

    @fastapi_app.put("/api/collections/{collection_id}/members/{movie_id}/position")
    async def reorder_member(
        request: Request, collection_id: int, movie_id: int
    ) -> dict[str, Any]:
        body = await _read_payload(request, ReorderRequest)
        with _domain_errors():
            members = await _service().reorder_member(
                collection_id, movie_id, body.index
            )
        return {"members": [member.to_payload() for member in members]}

    @fastapi_app.delete("/api/collections/{collection_id}/members/{movie_id}")
    async def remove_member(collection_id: int, movie_id: int) -> dict[str, Any]:
        with _domain_errors():
            removed = await _service().remove_from_collection(movie_id, collection_id)
        return {"removed": removed}

    @fastapi_app.post("/api/movies", status_code=201)
    async def create_movie(request: Request) -> dict[str, Any]:
        body = await _read_payload(request, MovieCreate)
        movie = await _service().create_movie(body)
        return movie.to_payload()

    @fastapi_app.get("/api/movies/{movie_id}")
    async def get_movie(movie_id: int) -> dict[str, Any]:
        with _domain_errors():
            movie = await _service().get_movie(movie_id)
        return movie.to_payload()

    @fastapi_app.delete("/api/movies/{movie_id}")
    async def delete_movie(movie_id: int) -> dict[str, Any]:
        with _domain_errors():
            await _service().delete_movie(movie_id)
        return {"deleted": True, "id": movie_id}

    @fastapi_app.get("/api/movies/{movie_id}/collections")
    async def movie_collections(movie_id: int) -> dict[str, Any]:
        entries = await _service().get_movie_collections(movie_id)
        return {"collections": [entry.to_payload() for entry in entries]}

    @fastapi_app.put("/api/movies/{movie_id}/collections")
    async def set_user_collections(request: Request, movie_id: int) -> dict[str, Any]:
        body = await _read_payload(request, UserCollectionsUpdate)
        with _domain_errors():
            entries = await _service().set_user_collections(movie_id, body.names)
        return {"collections": [entry.to_payload() for entry in entries]}

    @fastapi_app.post("/api/movies/{movie_id}/collections", status_code=201)
    async def add_to_collection(request: Request, movie_id: int) -> dict[str, Any]:
        body = await _read_payload(request, CollectionAdd)
        with _domain_errors():
            membership = await _service().add_to_collection(
                movie_id, body.name, body.type
            )
        return membership.to_payload()

    @fastapi_app.put("/api/movies/{movie_id}/box-set")
    async def change_box_set(request: Request, movie_id: int) -> dict[str, Any]:
        body = await _read_payload(request, BoxSetNameChange)
        service = _service()
        with _domain_errors():
            plan = await service.change_box_set_name(movie_id, body.name, body.old_name)
        box_set = await service.resolver.box_set_for(movie_id)
        return {
            "case": plan.case.value,
            "changed": plan.changed,
            "boxSet": box_set.to_payload() if box_set is not None else None,
        }

    @fastapi_app.post("/api/movies/{movie_id}/watch-next")
    async def toggle_watch_next(movie_id: int) -> dict[str, Any]:
        with _domain_errors():
            in_queue = await _service().toggle_watch_next(movie_id)
        return {"movieId": movie_id, "watchNext": in_queue}

    @fastapi_app.post("/api/movies/{movie_id}/fields/propose")
    async def propose_field_change(request: Request, movie_id: int) -> dict[str, Any]:
        body = await _read_payload(request, FieldChange)
        with _domain_errors():
            proposal = await _service().propose_field_change(
                movie_id, body.field, body.value
            )
        return proposal.to_payload()

    @fastapi_app.put("/api/movies/{movie_id}/fields")
    async def apply_field_change(request: Request, movie_id: int) -> JSONResponse:
        body = await _read_payload(request, FieldChange)
        try:
            with _domain_errors():
                result = await _service().apply_field_change(
                    movie_id, body.field, body.value, body.propagate
                )
        except PartialBatchFailure as exc:
            return JSONResponse(exc.result.to_payload(), status_code=207)
        return JSONResponse(result.to_payload())


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
