"""
Identity provider abstract interface.

Defines the contract an auth collaborator must implement: the current
identity, readable synchronously, and a stream of identity-change events.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

from .types import AuthProvider, UserIdentity

logger = logging.getLogger(__name__)

IdentityListener = Callable[[UserIdentity | None], None]


class IdentityProvider(ABC):
    """Abstract identity provider.

    Implementations resolve who is signed in and call
    ``_emit_identity_changed`` whenever that changes. Listener
    bookkeeping lives here so every provider notifies the same way.
    """

    def __init__(self) -> None:
        self._listeners: dict[int, IdentityListener] = {}
        self._next_token = 0

    @property
    @abstractmethod
    def current_identity(self) -> UserIdentity | None:
        """The signed-in identity, or None when signed out."""
        ...

    @abstractmethod
    async def get_current_identity(self) -> UserIdentity:
        """Resolve the current identity, loading it if needed.

        Raises:
            AuthenticationRequiredError: If not authenticated
        """
        ...

    @abstractmethod
    async def sign_out(self) -> None:
        """Sign out and clear cached credentials."""
        ...

    @property
    @abstractmethod
    def provider_type(self) -> AuthProvider:
        ...

    def on_identity_changed(self, callback: IdentityListener) -> Callable[[], None]:
        """Register for identity-change events.

        Returns:
            Function that removes the listener
        """
        token = self._next_token
        self._next_token += 1
        self._listeners[token] = callback

        def unsubscribe() -> None:
            self._listeners.pop(token, None)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _emit_identity_changed(self, identity: UserIdentity | None) -> None:
        for callback in list(self._listeners.values()):
            try:
                callback(identity)
            except Exception:
                logger.exception("Identity listener raised")
