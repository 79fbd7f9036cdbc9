"""
Document Mirror

Reactive local mirrors of remote document-store state.

Provides:
- DocumentMirror: one remote record as an observable store
- CollectionMirror: an ordered set of remote records, with minimal write-back
- IdentityMirror: the signed-in user
- Backends: in-memory (dev/tests) and Azure Cosmos DB

Usage:

    >>> from document_mirror import CollectionMirror, InMemoryBackend
    >>> backend = InMemoryBackend()
    >>> todos = CollectionMirror(backend, "users/alice/todos")
    >>> unsubscribe = todos.subscribe(lambda docs: print(len(docs)))
    >>> todos.add({"title": "Write docs", "done": False})
    >>> todos.update(lambda docs: [{**d.to_dict(), "done": True} for d in docs])

Every mutation is applied locally at once and written to the backend in
the background; the backend's change notification reconciles the mirror.
"""

from .backends import DocumentBackend, DocumentSnapshot, InMemoryBackend, QuerySnapshot
from .config import CosmosAuthMethod, CosmosConfig, MirrorConfig, load_config
from .context import MirrorContext
from .diff import WritePlan, plan_writes
from .equality import deep_equal
from .exceptions import (
    AuthenticationError,
    InvalidPathError,
    MirrorError,
    MirrorUnavailableError,
    MirrorUsageError,
    QueryInsertError,
    RemoteWriteError,
    StorageConnectionError,
    UnresolvableReferenceError,
)
from .identity import (
    AuthProvider,
    ConfigFileIdentityProvider,
    IdentityProvider,
    UserIdentity,
)
from .mirrors import CollectionMirror, DocumentMirror, IdentityMirror
from .records import Record
from .references import CollectionReference, DocumentReference, Query, auto_id
from .store import Writable, get

# Conditional import for the optional Cosmos DB backend
try:
    from .backends.cosmos import CosmosBackend  # noqa: F401

    _has_cosmos = True
except ImportError:
    _has_cosmos = False


__all__ = [
    # Mirrors
    "DocumentMirror",
    "CollectionMirror",
    "IdentityMirror",
    "MirrorContext",
    # Store protocol
    "Writable",
    "get",
    # Data model
    "Record",
    "DocumentReference",
    "CollectionReference",
    "Query",
    "auto_id",
    # Diffing
    "deep_equal",
    "plan_writes",
    "WritePlan",
    # Backends
    "DocumentBackend",
    "DocumentSnapshot",
    "QuerySnapshot",
    "InMemoryBackend",
    # Identity
    "IdentityProvider",
    "ConfigFileIdentityProvider",
    "UserIdentity",
    "AuthProvider",
    # Configuration
    "MirrorConfig",
    "CosmosConfig",
    "CosmosAuthMethod",
    "load_config",
    # Exceptions
    "MirrorError",
    "MirrorUnavailableError",
    "MirrorUsageError",
    "QueryInsertError",
    "UnresolvableReferenceError",
    "InvalidPathError",
    "RemoteWriteError",
    "StorageConnectionError",
    "AuthenticationError",
]

if _has_cosmos:
    __all__.append("CosmosBackend")

__version__ = "0.1.0"
