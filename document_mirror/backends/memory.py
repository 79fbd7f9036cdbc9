"""
In-process document backend.

Keeps records in a dictionary keyed by path and delivers realtime
notifications on the running event loop. Useful for development,
offline demos and tests. Notifications are scheduled with
``loop.call_soon``, so a write's echo always arrives after the
writing call has returned, as it would from a networked store.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Callable
from functools import cmp_to_key
from typing import Any

from ..references import (
    CollectionReference,
    DocumentReference,
    FieldFilter,
    Query,
    auto_id,
)
from .base import DocumentBackend, DocumentSnapshot, ListenerHandle, QuerySnapshot

logger = logging.getLogger(__name__)

_MISSING = object()


def get_field(data: dict[str, Any], field_path: str) -> Any:
    """Read a dotted field path (``"address.city"``) from a record."""
    value: Any = data
    for part in field_path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def matches_filter(data: dict[str, Any], flt: FieldFilter) -> bool:
    """Evaluate one query filter against a record payload."""
    value = get_field(data, flt.field)
    if value is _MISSING:
        return False

    try:
        if flt.op == "==":
            return bool(value == flt.value)
        if flt.op == "!=":
            return bool(value != flt.value)
        if flt.op == "<":
            return bool(value < flt.value)
        if flt.op == "<=":
            return bool(value <= flt.value)
        if flt.op == ">":
            return bool(value > flt.value)
        if flt.op == ">=":
            return bool(value >= flt.value)
        if flt.op == "in":
            return value in flt.value
        if flt.op == "not-in":
            return value not in flt.value
        if flt.op == "array-contains":
            return isinstance(value, list) and flt.value in value
    except TypeError:
        # Values of incomparable types never match
        return False
    return False


def run_query(query: Query, docs: list[DocumentSnapshot]) -> list[DocumentSnapshot]:
    """Apply filters, orderings and limit of a query to collection members."""
    selected = [
        d for d in docs if d.data is not None and all(matches_filter(d.data, f) for f in query.filters)
    ]

    # Records lacking an ordered field are excluded
    for ordering in query.orderings:
        selected = [d for d in selected if get_field(d.data or {}, ordering.field) is not _MISSING]

    def compare(a: DocumentSnapshot, b: DocumentSnapshot) -> int:
        for ordering in query.orderings:
            left = get_field(a.data or {}, ordering.field)
            right = get_field(b.data or {}, ordering.field)
            if left == right:
                continue
            try:
                result = -1 if left < right else 1
            except TypeError:
                result = -1 if type(left).__name__ < type(right).__name__ else 1
            return -result if ordering.descending else result
        return (a.id > b.id) - (a.id < b.id)

    selected.sort(key=cmp_to_key(compare))

    if query.limit_to is not None:
        selected = selected[: query.limit_to]
    return selected


class InMemoryBackend(DocumentBackend):
    """Dictionary-backed document store with realtime listeners.

    Example:
        >>> backend = InMemoryBackend()
        >>> await backend.set_document(backend.document("todos/t-1"), {"title": "a"})
        >>> unsubscribe = backend.listen(backend.collection("todos"), print)
    """

    def __init__(self, initial: dict[str, dict[str, Any]] | None = None) -> None:
        """Initialize the backend.

        Args:
            initial: Optional records keyed by document path
        """
        self._documents: dict[str, dict[str, Any]] = {}
        self._listeners: dict[int, tuple[Any, Callable[[Any], None]]] = {}
        self._next_token = 0

        for path, data in (initial or {}).items():
            ref = DocumentReference(path)
            self._documents[ref.path] = copy.deepcopy(data)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def listen(
        self,
        ref: DocumentReference | CollectionReference | Query,
        callback: Callable[[Any], None],
    ) -> ListenerHandle:
        loop = asyncio.get_running_loop()
        token = self._next_token
        self._next_token += 1
        self._listeners[token] = (ref, callback)
        logger.debug(f"Listener {token} opened on {ref}")

        loop.call_soon(self._deliver, token)

        def unsubscribe() -> None:
            if self._listeners.pop(token, None) is not None:
                logger.debug(f"Listener {token} closed on {ref}")

        return unsubscribe

    async def get_document(self, ref: DocumentReference) -> DocumentSnapshot:
        return self._document_snapshot(ref)

    async def set_document(self, ref: DocumentReference, data: dict[str, Any]) -> None:
        self._write(ref, data)

    async def add_document(
        self, collection: CollectionReference, data: dict[str, Any]
    ) -> DocumentReference:
        ref = collection.document(auto_id())
        while ref.path in self._documents:
            ref = collection.document(auto_id())
        self._write(ref, data)
        return ref

    async def delete_document(self, ref: DocumentReference) -> None:
        if self._documents.pop(ref.path, None) is not None:
            self._notify(ref)

    async def close(self) -> None:
        self._listeners.clear()

    def _write(self, ref: DocumentReference, data: dict[str, Any]) -> None:
        self._documents[ref.path] = copy.deepcopy(dict(data))
        self._notify(ref)

    def _document_snapshot(self, ref: DocumentReference) -> DocumentSnapshot:
        data = self._documents.get(ref.path)
        return DocumentSnapshot(reference=ref, data=copy.deepcopy(data) if data is not None else None)

    def _collection_members(self, collection: CollectionReference) -> list[DocumentSnapshot]:
        prefix = collection.path + "/"
        members = []
        for path in sorted(self._documents):
            if path.startswith(prefix) and "/" not in path[len(prefix):]:
                members.append(self._document_snapshot(DocumentReference(path)))
        return members

    def _snapshot_for(self, ref: Any) -> DocumentSnapshot | QuerySnapshot:
        if isinstance(ref, DocumentReference):
            return self._document_snapshot(ref)
        if isinstance(ref, Query):
            return QuerySnapshot(docs=run_query(ref, self._collection_members(ref.collection)))
        return QuerySnapshot(docs=self._collection_members(ref))

    def _deliver(self, token: int) -> None:
        entry = self._listeners.get(token)
        if entry is None:
            return
        ref, callback = entry
        callback(self._snapshot_for(ref))

    def _notify(self, changed: DocumentReference) -> None:
        loop = asyncio.get_running_loop()
        parent = changed.parent.path
        for token, (ref, _) in list(self._listeners.items()):
            if isinstance(ref, DocumentReference):
                affected = ref.path == changed.path
            else:
                affected = ref.path == parent
            if affected:
                loop.call_soon(self._deliver, token)
