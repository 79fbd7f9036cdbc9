"""
Abstract document backend interface.

Defines the contract that every remote document store must implement
for mirrors to bind to it: path resolution, realtime listeners on
documents and collections/queries, full-record writes, generated-id
inserts and deletes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ..references import (
    CollectionLike,
    CollectionReference,
    DocumentReference,
    Query,
    resolve_collection,
    resolve_document,
)


@dataclass
class DocumentSnapshot:
    """State of one record as delivered by a backend.

    Attributes:
        reference: Reference of the record
        data: Decoded fields, or None if the record does not exist
    """

    reference: DocumentReference
    data: dict[str, Any] | None = None

    @property
    def id(self) -> str:
        return self.reference.id

    @property
    def exists(self) -> bool:
        return self.data is not None


@dataclass
class QuerySnapshot:
    """Ordered state of a collection or query as delivered by a backend."""

    docs: list[DocumentSnapshot] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.docs)

    @property
    def empty(self) -> bool:
        return not self.docs


DocumentListener = Callable[[DocumentSnapshot], None]
QueryListener = Callable[[QuerySnapshot], None]
ListenerHandle = Callable[[], None]


class DocumentBackend(ABC):
    """Abstract remote document store.

    Implementations deliver listener callbacks on the running event loop,
    never synchronously from inside listen() or a write call.
    """

    def document(self, path: str | DocumentReference) -> DocumentReference:
        """Resolve a path to a record reference."""
        return resolve_document(path)

    def collection(self, path: str | CollectionReference | Query) -> CollectionLike:
        """Resolve a path to a collection reference."""
        return resolve_collection(path)

    @abstractmethod
    def listen(
        self,
        ref: DocumentReference | CollectionReference | Query,
        callback: Callable[[Any], None],
    ) -> ListenerHandle:
        """Subscribe to change notifications.

        Document references deliver DocumentSnapshot values, collections
        and queries deliver QuerySnapshot values. The first notification
        carries the current state.

        Args:
            ref: What to observe
            callback: Called with each new snapshot

        Returns:
            Function that stops notifications
        """
        ...

    @abstractmethod
    async def get_document(self, ref: DocumentReference) -> DocumentSnapshot:
        """Read one record."""
        ...

    @abstractmethod
    async def set_document(self, ref: DocumentReference, data: dict[str, Any]) -> None:
        """Overwrite a record with ``data``, creating it if absent.

        Raises:
            MirrorError: If the write fails
        """
        ...

    @abstractmethod
    async def add_document(
        self, collection: CollectionReference, data: dict[str, Any]
    ) -> DocumentReference:
        """Insert a record under a backend-generated identity.

        Returns:
            Reference of the created record
        """
        ...

    @abstractmethod
    async def delete_document(self, ref: DocumentReference) -> None:
        """Delete a record. Deleting a missing record is not an error."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
        return None
