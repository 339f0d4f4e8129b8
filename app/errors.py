"""Domain errors raised by the collection engines."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .models import PropagationResult


class CollectionError(Exception):
    """Base class for collection membership errors."""


class DuplicateNameError(CollectionError):
    """A collection with the same name and type already exists."""

    def __init__(self, name: str, collection_type: str):
        super().__init__(f'A {collection_type} collection named "{name}" already exists')
        self.name = name
        self.collection_type = collection_type


class SingletonViolation(CollectionError):
    """A second watch_next collection was requested."""

    def __init__(self, existing_id: int):
        super().__init__(
            f"A watch_next collection already exists (id {existing_id})"
        )
        self.existing_id = existing_id


class CollectionNotFoundError(CollectionError, KeyError):
    """No collection exists with the requested identifier."""

    def __init__(self, collection_id: int):
        super().__init__(f"Collection {collection_id} not found")
        self.collection_id = collection_id

    def __str__(self) -> str:
        return str(self.args[0])


class MembershipNotFoundError(CollectionError, KeyError):
    """The movie is not a member of the collection.

    Removals treat this as a benign no-op; it is only surfaced when an
    operation needs the membership to exist, such as a reorder.
    """

    def __init__(self, movie_id: int, collection_id: int):
        super().__init__(f"Movie {movie_id} is not in collection {collection_id}")
        self.movie_id = movie_id
        self.collection_id = collection_id

    def __str__(self) -> str:
        return str(self.args[0])


class MovieNotFoundError(CollectionError, KeyError):
    """The movie repository has no record for the identifier."""

    def __init__(self, movie_id: int):
        super().__init__(f"Movie {movie_id} not found")
        self.movie_id = movie_id

    def __str__(self) -> str:
        return str(self.args[0])


class BoxSetConflictError(CollectionError):
    """The movie already belongs to a different box set."""

    def __init__(self, movie_id: int, current_name: str):
        super().__init__(
            f'Movie {movie_id} already belongs to box set "{current_name}"'
        )
        self.movie_id = movie_id
        self.current_name = current_name


class CollectionNotEmptyError(CollectionError):
    """Explicit deletion was requested for a collection that still has members."""

    def __init__(self, collection_id: int, member_count: int):
        super().__init__(
            f"Collection {collection_id} still contains {member_count} movie(s)"
        )
        self.collection_id = collection_id
        self.member_count = member_count


class UnknownFieldError(CollectionError, ValueError):
    """The movie repository cannot write the requested field."""

    def __init__(self, field: str):
        super().__init__(f"Field {field!r} cannot be edited")
        self.field = field


class PartialBatchFailure(CollectionError):
    """Some writes of an "all members" propagation failed."""

    def __init__(self, result: "PropagationResult"):
        super().__init__(
            f"{result.succeeded} of {result.total} movies updated"
        )
        self.result = result
