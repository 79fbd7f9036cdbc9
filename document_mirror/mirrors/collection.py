"""
Collection mirror: an ordered set of remote records as an observable store.

The mirror keeps two views of the collection:

- the Remote Snapshot, the last state the backend confirmed, used as the
  baseline for every local mutation and never handed out directly;
- the Local Snapshot, what subscribers see, which runs ahead of the
  remote one between a local mutation and the backend's echo.

Removing a record from the list returned by ``update`` only hides it
locally until the next notification. Call ``delete`` to remove it remotely.
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from ..backends.base import DocumentBackend, QuerySnapshot
from ..diff import plan_writes
from ..exceptions import QueryInsertError, UnresolvableReferenceError
from ..records import Record, copy_records
from ..references import (
    CollectionLike,
    CollectionReference,
    DocumentReference,
    Query,
    is_query,
    resolve_collection,
)
from ..store import StartNotifier
from .base import MirrorBase, WriteErrorHook

RecordLike = Record | Mapping[str, Any]
CollectionUpdater = Callable[[list[Record]], Iterable[RecordLike] | None]


def _normalize(values: Iterable[RecordLike] | None) -> list[Record]:
    return [Record.from_value(value) for value in values or []]


class CollectionMirror(MirrorBase[list[Record]]):
    """Keeps a local list of remote records in sync and writes back changes.

    Example:
        >>> todos = CollectionMirror(backend, "users/alice/todos")
        >>> unsubscribe = todos.subscribe(render)
        >>> todos.add({"title": "Write docs", "done": False})
        >>> todos.update(lambda docs: [
        ...     Record(d.id, {**d.data, "done": True}, d.ref) for d in docs
        ... ])
    """

    kind = "collection"

    def __init__(
        self,
        backend: DocumentBackend | None,
        ref: str | CollectionReference | Query,
        start_with: Iterable[RecordLike] | None = None,
        on_write_error: WriteErrorHook | None = None,
    ) -> None:
        """Initialize the mirror.

        Args:
            backend: Document backend, or None to run as a static store
            ref: Collection path, collection reference or query
            start_with: Records published until the first notification arrives
            on_write_error: Called with the exception of any failed remote write
        """
        self.backend = backend
        self._ref: CollectionLike | None = resolve_collection(ref) if backend is not None else None
        self._remote: list[Record] | None = None
        super().__init__(backend, _normalize(start_with), str(ref), on_write_error)
        if not self.is_live:
            self._ref = None

    @property
    def ref(self) -> CollectionLike | None:
        return self._ref

    @property
    def is_query(self) -> bool:
        return self._ref is not None and is_query(self._ref)

    def _make_start(self) -> StartNotifier[list[Record]]:
        def start(set_value: Callable[[list[Record]], None]) -> Callable[[], None]:
            assert self.backend is not None and self._ref is not None

            def on_snapshot(snapshot: QuerySnapshot) -> None:
                self._remote = [
                    Record(id=doc.id, data=doc.data or {}, ref=doc.reference)
                    for doc in snapshot.docs
                ]
                # Subscribers get a copy; the remote list is the diff baseline
                set_value(copy_records(self._remote))

            self._log.debug(f"Opening listener on {self._ref}")
            unsubscribe = self.backend.listen(self._ref, on_snapshot)

            def stop() -> None:
                self._log.debug(f"Closing listener on {self._ref}")
                unsubscribe()
                self._remote = None

            return stop

        return start

    def _baseline(self) -> list[Record]:
        # Before the first notification the local records stand in for the remote ones
        if self._remote is not None:
            return self._remote
        return self._store.get()

    def update(self, fn: CollectionUpdater) -> list[asyncio.Task[None]]:
        """Apply ``fn`` to the last confirmed collection and write what changed.

        ``fn`` receives a copy of the Remote Snapshot, not the Local one, so
        rapid successive edits are each diffed against backend truth.
        Only records whose payload differs from their remote counterpart
        are written. New records (no remote counterpart) are left to add().

        Returns:
            The remote write tasks (not awaited by the mirror)

        Raises:
            MirrorUnavailableError: If the mirror has no backend
        """
        self._require_live("update")
        assert self.backend is not None

        baseline = self._baseline()
        new_records = _normalize(fn(copy_records(baseline)))
        plan = plan_writes(baseline, new_records)

        self._store.set(new_records)

        tasks = [
            self._issue("set", ref.path, self.backend.set_document(ref, copy.deepcopy(record.data)))
            for ref, record in plan.writes
        ]

        self._log.debug(
            f"Collection update: {len(plan.writes)} written, {plan.unchanged} unchanged, "
            f"{len(plan.created)} new, {len(plan.omitted)} omitted"
        )
        if plan.omitted:
            self._log.debug(
                "Records omitted locally, not deleted remotely: "
                + ", ".join(str(r.id) for r in plan.omitted)
            )
        return tasks

    def set(self, value: Iterable[RecordLike]) -> list[asyncio.Task[None]]:
        """Replace the collection with ``value``."""
        return self.update(lambda _: value)

    def add(self, record: RecordLike, explicit_id: str | None = None) -> asyncio.Task[DocumentReference]:
        """Create a record remotely.

        With an identity (``explicit_id``, else the record's own id) the
        record is upserted at that identity; otherwise the backend
        generates one.

        Returns:
            Task resolving to the new record's reference

        Raises:
            QueryInsertError: If the mirror is bound to a query
            MirrorUnavailableError: If the mirror has no backend
        """
        self._require_live("add")
        assert self.backend is not None and self._ref is not None

        if isinstance(self._ref, Query):
            raise QueryInsertError(self._ref.path)

        new_record = Record.from_value(record)
        data = copy.deepcopy(new_record.data)
        doc_id = explicit_id or new_record.id

        if doc_id:
            ref = self._ref.document(doc_id)
            return self._issue("set", ref.path, self._upsert(ref, data))
        return self._issue("add", self._ref.path, self.backend.add_document(self._ref, data))

    def delete(self, record: RecordLike | str) -> asyncio.Task[None]:
        """Delete a record remotely.

        The record's own reference is used when present. Otherwise, on a
        plain collection, the reference is rebuilt from the record's id.

        Raises:
            UnresolvableReferenceError: If no reference can be determined
            MirrorUnavailableError: If the mirror has no backend
        """
        self._require_live("delete")
        assert self.backend is not None and self._ref is not None

        target = Record(id=record) if isinstance(record, str) else Record.from_value(record)
        ref = target.ref
        if ref is None:
            if isinstance(self._ref, Query):
                raise UnresolvableReferenceError(
                    target.id, "mirror is bound to a query and the record has no reference"
                )
            if not target.id:
                raise UnresolvableReferenceError(None, "record has neither a reference nor an id")
            ref = self._ref.document(target.id)

        return self._issue("delete", ref.path, self.backend.delete_document(ref))

    async def _upsert(self, ref: DocumentReference, data: dict[str, Any]) -> DocumentReference:
        assert self.backend is not None
        await self.backend.set_document(ref, data)
        return ref
