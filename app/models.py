"""Pydantic models describing collections, memberships and API payloads."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .utils import normalize_name

CollectionType = Literal["user", "box_set", "watch_next"]
TitleStatus = Literal["owned", "wish"]

COLLECTION_TYPES: tuple[str, ...] = ("user", "box_set", "watch_next")


class Collection(BaseModel):
    """A named group of movies."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: CollectionType
    is_system: bool = False
    member_count: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "isSystem": self.is_system,
        }
        if self.member_count is not None:
            payload["movieCount"] = self.member_count
        return payload


class Membership(BaseModel):
    """A movie's position inside one collection."""

    model_config = ConfigDict(from_attributes=True)

    movie_id: int
    collection_id: int
    order: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "movieId": self.movie_id,
            "collectionId": self.collection_id,
            "order": self.order,
        }


class MovieCollection(BaseModel):
    """A collection as seen from one of its member movies."""

    collection: Collection
    order: int

    @property
    def type(self) -> str:
        return self.collection.type

    @property
    def name(self) -> str:
        return self.collection.name

    def to_payload(self) -> dict[str, Any]:
        return {**self.collection.to_payload(), "order": self.order}


class Movie(BaseModel):
    """Movie fields the collection engines read or propagate."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    format: str | None = None
    price: float | None = None
    acquired_date: date | None = None
    title_status: TitleStatus = "owned"
    release_date: date | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "format": self.format,
            "price": self.price,
            "acquiredDate": (
                self.acquired_date.isoformat() if self.acquired_date else None
            ),
            "titleStatus": self.title_status,
            "releaseDate": (
                self.release_date.isoformat() if self.release_date else None
            ),
        }


class FieldChangeProposal(BaseModel):
    """Whether editing ``field`` needs the "this item / all members" choice."""

    movie_id: int
    field: str
    requires_choice: bool
    box_set_id: int | None = None
    member_count: int = 1

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "movieId": self.movie_id,
            "field": self.field,
            "requiresChoice": self.requires_choice,
            "memberCount": self.member_count,
        }
        if self.box_set_id is not None:
            payload["boxSetId"] = self.box_set_id
        return payload


class FieldWriteResult(BaseModel):
    movie_id: int
    ok: bool
    error: str | None = None


class PropagationResult(BaseModel):
    """Outcome of writing one field to one or more movies."""

    field: str
    value: Any = None
    propagated: bool = False
    box_set_id: int | None = None
    results: list[FieldWriteResult] = Field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if result.ok)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if not result.ok)

    @property
    def total(self) -> int:
        return len(self.results)

    def to_payload(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "propagated": self.propagated,
            "boxSetId": self.box_set_id,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "total": self.total,
            "results": [
                {
                    "movieId": result.movie_id,
                    "ok": result.ok,
                    **({"error": result.error} if result.error else {}),
                }
                for result in self.results
            ],
        }


class CleanupResult(BaseModel):
    cleaned_count: int = 0

    def to_payload(self) -> dict[str, int]:
        return {"cleanedCount": self.cleaned_count}


class MovieCreate(BaseModel):
    """Request body for registering a movie with the repository."""

    title: str = Field(min_length=1, max_length=255)
    format: str | None = None
    price: float | None = Field(default=None, ge=0)
    acquired_date: date | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "acquired_date", "acquiredDate", "purchaseDate", "purchase_date"
        ),
    )
    title_status: TitleStatus = Field(
        default="owned", validation_alias=AliasChoices("title_status", "titleStatus")
    )
    release_date: date | None = Field(
        default=None, validation_alias=AliasChoices("release_date", "releaseDate")
    )

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value


class UserCollectionsUpdate(BaseModel):
    names: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("names", "collections")
    )


class BoxSetNameChange(BaseModel):
    name: str = Field(
        default="", validation_alias=AliasChoices("name", "newName", "boxSetName")
    )
    old_name: str | None = Field(
        default=None, validation_alias=AliasChoices("old_name", "oldName")
    )

    @field_validator("name", mode="before")
    @classmethod
    def _none_to_blank(cls, value: object) -> object:
        if value is None:
            return ""
        return value


class CollectionAdd(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    type: CollectionType = "user"

    @field_validator("name")
    @classmethod
    def _normalize(cls, value: str) -> str:
        cleaned = normalize_name(value)
        if not cleaned:
            raise ValueError("Collection name may not be blank")
        return cleaned


class ReorderRequest(BaseModel):
    index: int = Field(
        ge=0, validation_alias=AliasChoices("index", "newIndex", "position")
    )


class FieldChange(BaseModel):
    field: str = Field(min_length=1)
    value: Any = None
    propagate: bool = False


class CollectionRename(BaseModel):
    name: str = Field(
        min_length=1, max_length=255, validation_alias=AliasChoices("name", "newName")
    )

    @field_validator("name")
    @classmethod
    def _normalize(cls, value: str) -> str:
        cleaned = normalize_name(value)
        if not cleaned:
            raise ValueError("Collection name may not be blank")
        return cleaned
