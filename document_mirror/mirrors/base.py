"""
Shared machinery for mirrors.

Every mirror wraps a Writable store whose start function opens the
backend listener, so the listener exists only while consumers are
attached. Remote writes are fire-and-forget tasks: the mirror keeps a
reference until they finish, logs failures and hands them to an optional
error hook, but never awaits them on the mutation path.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from typing import Any, Generic, TypeVar

from ..exceptions import MirrorUnavailableError
from ..logging_utils import MirrorLoggerAdapter, get_mirror_logger
from ..store import StartNotifier, Subscriber, Unsubscriber, Writable

T = TypeVar("T")
R = TypeVar("R")

WriteErrorHook = Callable[[BaseException], None]


def has_running_loop() -> bool:
    """True when called from inside a running asyncio event loop."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


class MirrorBase(Generic[T]):
    """Base class for document, collection and identity mirrors."""

    kind = "mirror"
    collaborator_name = "backend"

    def __init__(
        self,
        collaborator: Any,
        start_with: T,
        path: str = "",
        on_write_error: WriteErrorHook | None = None,
    ) -> None:
        self.on_write_error = on_write_error
        self._pending: set[asyncio.Task[Any]] = set()
        self._log = MirrorLoggerAdapter(get_mirror_logger(self.kind), {"mirror": self.kind, "path": path})

        self._unavailable_reason: str | None = None
        if collaborator is None:
            self._unavailable_reason = f"{self.collaborator_name} not initialized"
        elif not has_running_loop():
            self._unavailable_reason = "no running event loop"

        if self._unavailable_reason:
            self._log.warning(
                f"{self.kind} mirror for {path or '<unbound>'} running without live updates: "
                f"{self._unavailable_reason}"
            )
            self._store: Writable[T] = Writable(start_with)
        else:
            self._store = Writable(start_with, self._make_start())

    @property
    def is_live(self) -> bool:
        """False when the mirror degraded to a static store."""
        return self._unavailable_reason is None

    @property
    def pending_writes(self) -> frozenset[asyncio.Task[Any]]:
        """Remote writes issued and not yet finished."""
        return frozenset(self._pending)

    @property
    def subscriber_count(self) -> int:
        return self._store.subscriber_count

    def subscribe(self, callback: Subscriber[T]) -> Unsubscriber:
        """Register a consumer; see Writable.subscribe."""
        return self._store.subscribe(callback)

    def get(self) -> T:
        """Current Local Snapshot."""
        return self._store.get()

    async def flush(self) -> None:
        """Wait for the remote writes pending at call time.

        Failures are not raised here; they are reported through logging
        and the on_write_error hook.
        """
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _make_start(self) -> StartNotifier[T]:
        raise NotImplementedError

    def _require_live(self, operation: str) -> None:
        if self._unavailable_reason is not None:
            raise MirrorUnavailableError(operation, self._unavailable_reason)
        if not has_running_loop():
            raise MirrorUnavailableError(operation, "no running event loop")

    def _issue(self, operation: str, target: str, coro: Coroutine[Any, Any, R]) -> asyncio.Task[R]:
        """Schedule a remote write without waiting for it."""
        task = asyncio.ensure_future(coro)
        self._pending.add(task)

        def done(finished: asyncio.Task[Any]) -> None:
            self._pending.discard(finished)
            if finished.cancelled():
                return
            error = finished.exception()
            if error is None:
                return
            self._log.error(f"Remote {operation} failed for {target}: {error}", exc_info=error)
            if self.on_write_error is not None:
                self.on_write_error(error)

        task.add_done_callback(done)
        return task

