"""
Mirror context singleton.

Provides a process-wide access point for the configured document
backend and identity provider, and factories that bind mirrors to them.
Mirrors built before initialize() (or after reset()) run as static
stores, the same as mirrors built without a backend.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from .backends.base import DocumentBackend
from .backends.memory import InMemoryBackend
from .config import BackendKind, CosmosConfig, MirrorConfig, load_config
from .identity.config_provider import ConfigFileIdentityProvider
from .identity.provider import IdentityProvider
from .logging_utils import LOGGER_NAMESPACE, configure_structured_logging
from .mirrors.collection import CollectionMirror, RecordLike
from .mirrors.document import DocumentData, DocumentMirror
from .mirrors.identity import IdentityMirror
from .references import CollectionReference, DocumentReference, Query
from .store import Writable

logger = logging.getLogger(__name__)


class MirrorContext:
    """Holds the backend and identity provider mirrors bind to.

    Usage:
        # Initialize once at startup
        await MirrorContext.initialize()

        # Build mirrors anywhere in the app
        todos = MirrorContext.collection_store("users/alice/todos")
        me = MirrorContext.identity_store()

    ``MirrorContext.sdk`` is itself a store publishing
    ``{"backend": ..., "identity": ...}`` so host code can react to
    the context being (re)initialized.
    """

    sdk: Writable[dict[str, Any] | None] = Writable(None)

    _backend: DocumentBackend | None = None
    _identity: IdentityProvider | None = None
    _config: MirrorConfig | None = None

    @classmethod
    async def initialize(
        cls,
        config_path: Path | None = None,
        backend: DocumentBackend | None = None,
        identity: IdentityProvider | None = None,
        config: MirrorConfig | None = None,
    ) -> MirrorConfig:
        """Initialize from settings, or from pre-built collaborators.

        Args:
            config_path: Settings file. Defaults to ~/.document_mirror/settings.yaml
            backend: Pre-configured backend (skips building one from settings)
            identity: Pre-configured identity provider
            config: Pre-loaded configuration (skips reading settings)

        Returns:
            The configuration in effect
        """
        cls._config = config or load_config(config_path)
        cls._configure_logging(cls._config)

        cls._backend = backend or await cls._build_backend(cls._config)
        cls._identity = identity or ConfigFileIdentityProvider(
            cls._config.source_path or config_path
        )

        logger.info(f"Mirror context initialized with {type(cls._backend).__name__}")
        cls.sdk.set({"backend": cls._backend, "identity": cls._identity})
        return cls._config

    @classmethod
    async def _build_backend(cls, config: MirrorConfig) -> DocumentBackend:
        if config.backend == BackendKind.COSMOS:
            from .backends.cosmos import CosmosBackend

            backend = CosmosBackend(CosmosConfig.from_env(config.cosmos))
            await backend.initialize()
            return backend
        return InMemoryBackend()

    @staticmethod
    def _configure_logging(config: MirrorConfig) -> None:
        if config.structured_logging:
            configure_structured_logging(config.log_level)
        else:
            logging.getLogger(LOGGER_NAMESPACE).setLevel(config.log_level)

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._backend is not None

    @classmethod
    def get_backend(cls) -> DocumentBackend:
        if cls._backend is None:
            raise RuntimeError(
                "MirrorContext not initialized. Call 'await MirrorContext.initialize()' first."
            )
        return cls._backend

    @classmethod
    def get_identity_provider(cls) -> IdentityProvider:
        if cls._identity is None:
            raise RuntimeError(
                "MirrorContext not initialized. Call 'await MirrorContext.initialize()' first."
            )
        return cls._identity

    @classmethod
    def document_store(
        cls, ref: str | DocumentReference, start_with: DocumentData | None = None
    ) -> DocumentMirror:
        """Mirror one record through the context's backend."""
        return DocumentMirror(cls._backend, ref, start_with)

    @classmethod
    def collection_store(
        cls,
        ref: str | CollectionReference | Query,
        start_with: Iterable[RecordLike] | None = None,
    ) -> CollectionMirror:
        """Mirror a collection or query through the context's backend."""
        return CollectionMirror(cls._backend, ref, start_with)

    @classmethod
    def identity_store(cls) -> IdentityMirror:
        """Mirror the signed-in user through the context's identity provider."""
        return IdentityMirror(cls._identity)

    @classmethod
    async def close(cls) -> None:
        """Close the backend and reset the context."""
        if cls._backend is not None:
            await cls._backend.close()
        cls.reset()

    @classmethod
    def reset(cls) -> None:
        """Reset the context (primarily for testing)."""
        cls._backend = None
        cls._identity = None
        cls._config = None
        cls.sdk.set(None)
