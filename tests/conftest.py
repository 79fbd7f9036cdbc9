"""
Shared test configuration and fixtures.

Provides a recording in-memory backend that counts every remote write
and every listener open/close, so tests can assert exactly which
operations a mirror issued.
"""

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import yaml

from document_mirror import InMemoryBackend, MirrorContext
from document_mirror.identity import ConfigFileIdentityProvider
from document_mirror.logging_utils import LOGGER_NAMESPACE
from document_mirror.references import CollectionReference, DocumentReference, Query


class RecordingBackend(InMemoryBackend):
    """In-memory backend that records the operations issued against it."""

    def __init__(self, initial: dict[str, dict[str, Any]] | None = None):
        super().__init__(initial)
        self.calls: list[tuple[str, str]] = []
        self.listeners_opened = 0
        self.listeners_closed = 0

    def listen(
        self,
        ref: DocumentReference | CollectionReference | Query,
        callback: Callable[[Any], None],
    ) -> Callable[[], None]:
        self.listeners_opened += 1
        inner = super().listen(ref, callback)
        closed = False

        def unsubscribe() -> None:
            nonlocal closed
            if not closed:
                closed = True
                self.listeners_closed += 1
            inner()

        return unsubscribe

    async def set_document(self, ref: DocumentReference, data: dict[str, Any]) -> None:
        self.calls.append(("set", ref.path))
        await super().set_document(ref, data)

    async def add_document(
        self, collection: CollectionReference, data: dict[str, Any]
    ) -> DocumentReference:
        self.calls.append(("add", collection.path))
        return await super().add_document(collection, data)

    async def delete_document(self, ref: DocumentReference) -> None:
        self.calls.append(("delete", ref.path))
        await super().delete_document(ref)

    def stored(self, path: str) -> dict[str, Any] | None:
        """Current stored payload for a document path."""
        return self._documents.get(path)


async def drain_loop(rounds: int = 5) -> None:
    """Let pending loop callbacks (listener deliveries, write tasks) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def settle() -> Callable[..., Any]:
    """Fixture providing the loop-draining helper."""
    return drain_loop


@pytest.fixture
def backend() -> RecordingBackend:
    """Empty recording backend."""
    return RecordingBackend()


@pytest.fixture
def seeded_backend() -> RecordingBackend:
    """Recording backend with two records in ``items``."""
    return RecordingBackend(
        {
            "items/a": {"v": 1},
            "items/b": {"v": 2},
        }
    )


@pytest.fixture
def settings_path(tmp_path: Path) -> Path:
    """Settings file with an identity section."""
    path = tmp_path / "settings.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "backend": "memory",
                "identity": {
                    "provider": "config",
                    "uid": "user-123",
                    "display_name": "Test User",
                    "email": "test@example.com",
                },
            }
        )
    )
    return path


@pytest.fixture
def identity_provider(settings_path: Path) -> ConfigFileIdentityProvider:
    return ConfigFileIdentityProvider(settings_path)


@pytest.fixture(autouse=True)
def reset_mirror_context():
    """Keep the process-wide context clean between tests."""
    yield
    MirrorContext.reset()
    namespace = logging.getLogger(LOGGER_NAMESPACE)
    namespace.handlers.clear()
    namespace.setLevel(logging.NOTSET)
