"""
Path-addressed references to remote records and record sets.

A reference is an opaque, stable handle. Two references to the same
path compare and hash equal, so they can be used as identity keys.

Paths alternate collection and document segments:

    users                      -> collection
    users/alice                -> document
    users/alice/todos          -> collection
    users/alice/todos/t-1      -> document
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, field, replace
from typing import Any

from .exceptions import InvalidPathError

AUTO_ID_ALPHABET = string.ascii_letters + string.digits
AUTO_ID_LENGTH = 20

FILTER_OPERATORS = frozenset({"==", "!=", "<", "<=", ">", ">=", "in", "not-in", "array-contains"})


def auto_id() -> str:
    """Generate a random 20-character alphanumeric record id."""
    return "".join(secrets.choice(AUTO_ID_ALPHABET) for _ in range(AUTO_ID_LENGTH))


def split_path(path: str) -> list[str]:
    """Split a slash-separated path into its non-empty segments."""
    return [segment for segment in path.strip("/").split("/") if segment]


def join_path(*segments: str) -> str:
    return "/".join(s.strip("/") for s in segments if s.strip("/"))


@dataclass(frozen=True)
class DocumentReference:
    """Reference to a single remote record."""

    path: str

    def __post_init__(self) -> None:
        segments = split_path(self.path)
        if not segments or len(segments) % 2 != 0:
            raise InvalidPathError(self.path, "document")
        object.__setattr__(self, "path", "/".join(segments))

    @property
    def id(self) -> str:
        """The record identity (last path segment)."""
        return self.path.rsplit("/", 1)[-1]

    @property
    def parent(self) -> CollectionReference:
        """The collection this record belongs to."""
        return CollectionReference(self.path.rsplit("/", 1)[0])

    def collection(self, name: str) -> CollectionReference:
        """Reference to a subcollection nested under this record."""
        return CollectionReference(join_path(self.path, name))

    def __str__(self) -> str:
        return self.path


@dataclass(frozen=True)
class FieldFilter:
    """A single ``field <op> value`` condition of a query."""

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")


@dataclass(frozen=True)
class Ordering:
    """Sort key of a query."""

    field: str
    descending: bool = False


@dataclass(frozen=True)
class CollectionReference:
    """Reference to a plain collection of records.

    A plain collection has a canonical insertion location, so records can
    be added to it and member references rebuilt from an identity.
    """

    path: str

    def __post_init__(self) -> None:
        segments = split_path(self.path)
        if not segments or len(segments) % 2 != 1:
            raise InvalidPathError(self.path, "collection")
        object.__setattr__(self, "path", "/".join(segments))

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    def document(self, doc_id: str | None = None) -> DocumentReference:
        """Reference to a member record; generates an id when none is given."""
        return DocumentReference(join_path(self.path, doc_id or auto_id()))

    def where(self, field_path: str, op: str, value: Any) -> Query:
        return Query(self).where(field_path, op, value)

    def order_by(self, field_path: str, descending: bool = False) -> Query:
        return Query(self).order_by(field_path, descending)

    def limit(self, count: int) -> Query:
        return Query(self).limit(count)

    def __str__(self) -> str:
        return self.path


@dataclass(frozen=True)
class Query:
    """A filtered, ordered, possibly limited view over a collection.

    Queries are immutable; each builder method returns a new query.
    """

    collection: CollectionReference
    filters: tuple[FieldFilter, ...] = field(default_factory=tuple)
    orderings: tuple[Ordering, ...] = field(default_factory=tuple)
    limit_to: int | None = None

    @property
    def path(self) -> str:
        return self.collection.path

    def where(self, field_path: str, op: str, value: Any) -> Query:
        # Lists are unhashable; store membership operands as tuples
        if isinstance(value, list):
            value = tuple(value)
        return replace(self, filters=self.filters + (FieldFilter(field_path, op, value),))

    def order_by(self, field_path: str, descending: bool = False) -> Query:
        return replace(self, orderings=self.orderings + (Ordering(field_path, descending),))

    def limit(self, count: int) -> Query:
        if count < 0:
            raise ValueError("limit must be non-negative")
        return replace(self, limit_to=count)

    def __str__(self) -> str:
        return self.path


CollectionLike = CollectionReference | Query


def resolve_document(ref: str | DocumentReference) -> DocumentReference:
    """Resolve a path or reference to a DocumentReference."""
    if isinstance(ref, DocumentReference):
        return ref
    if isinstance(ref, str):
        return DocumentReference(ref)
    raise TypeError(f"Expected a document path or DocumentReference, got {type(ref).__name__}")


def resolve_collection(ref: str | CollectionReference | Query) -> CollectionLike:
    """Resolve a path, collection reference or query."""
    if isinstance(ref, (CollectionReference, Query)):
        return ref
    if isinstance(ref, str):
        return CollectionReference(ref)
    raise TypeError(
        f"Expected a collection path, CollectionReference or Query, got {type(ref).__name__}"
    )


def is_query(ref: CollectionLike) -> bool:
    """True when the reference is a query rather than a plain collection."""
    return isinstance(ref, Query)
