"""
Record mirror: one remote record as an observable store.
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Callable
from typing import Any

from ..backends.base import DocumentBackend, DocumentSnapshot
from ..references import DocumentReference, resolve_document
from ..store import StartNotifier
from .base import MirrorBase, WriteErrorHook

DocumentData = dict[str, Any]


class DocumentMirror(MirrorBase[DocumentData | None]):
    """Keeps a local copy of one remote record in sync.

    The backend listener opens when the first consumer subscribes and
    closes when the last one leaves. Each notification publishes the
    record's fields, or None when the record does not exist.

    Local mutations are applied immediately and written in full to the
    backend without waiting; the backend's echo reconciles the mirror.

    Example:
        >>> profile = DocumentMirror(backend, "users/alice")
        >>> unsubscribe = profile.subscribe(print)
        >>> profile.update(lambda doc: {**(doc or {}), "theme": "dark"})
    """

    kind = "document"

    def __init__(
        self,
        backend: DocumentBackend | None,
        ref: str | DocumentReference,
        start_with: DocumentData | None = None,
        on_write_error: WriteErrorHook | None = None,
    ) -> None:
        """Initialize the mirror.

        Args:
            backend: Document backend, or None to run as a static store
            ref: Document path or reference
            start_with: Value published until the first notification arrives
            on_write_error: Called with the exception of any failed remote write
        """
        self.backend = backend
        self._ref: DocumentReference | None = resolve_document(ref) if backend is not None else None
        super().__init__(backend, start_with, str(ref), on_write_error)
        if not self.is_live:
            self._ref = None

    @property
    def ref(self) -> DocumentReference | None:
        return self._ref

    @property
    def id(self) -> str:
        return self._ref.id if self._ref is not None else ""

    def _make_start(self) -> StartNotifier[DocumentData | None]:
        def start(set_value: Callable[[DocumentData | None], None]) -> Callable[[], None]:
            assert self.backend is not None and self._ref is not None

            def on_snapshot(snapshot: DocumentSnapshot) -> None:
                set_value(snapshot.data)

            self._log.debug(f"Opening listener on {self._ref}")
            unsubscribe = self.backend.listen(self._ref, on_snapshot)

            def stop() -> None:
                self._log.debug(f"Closing listener on {self._ref}")
                unsubscribe()

            return stop

        return start

    def update(
        self, fn: Callable[[DocumentData | None], DocumentData | None]
    ) -> asyncio.Task[None]:
        """Apply ``fn`` to the current record and write the result.

        A None result clears the record's fields (an empty-object write)
        without deleting it.

        Returns:
            The remote write task (not awaited by the mirror)

        Raises:
            MirrorUnavailableError: If the mirror has no backend
        """
        self._require_live("update")
        assert self.backend is not None and self._ref is not None

        new_doc = fn(copy.deepcopy(self._store.get()))
        self._store.set(new_doc)

        payload: DocumentData = copy.deepcopy(new_doc) if new_doc else {}
        return self._issue("set", self._ref.path, self.backend.set_document(self._ref, payload))

    def set(self, value: DocumentData | None) -> asyncio.Task[None]:
        """Replace the record with ``value``."""
        return self.update(lambda _: value)
