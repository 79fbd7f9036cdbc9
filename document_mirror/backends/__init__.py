"""
Document backends.

The in-memory backend is always available. The Cosmos DB backend needs
the ``azure-cosmos`` package (and ``azure-identity`` for Azure AD auth).
"""

from .base import (
    DocumentBackend,
    DocumentListener,
    DocumentSnapshot,
    ListenerHandle,
    QueryListener,
    QuerySnapshot,
)
from .memory import InMemoryBackend

__all__ = [
    "DocumentBackend",
    "DocumentListener",
    "DocumentSnapshot",
    "ListenerHandle",
    "QueryListener",
    "QuerySnapshot",
    "InMemoryBackend",
]

try:
    from .cosmos import CosmosBackend  # noqa: F401

    __all__.append("CosmosBackend")
except ImportError:
    pass
