"""
Identity mirror: the signed-in user as a read-only observable store.
"""

from __future__ import annotations

from collections.abc import Callable

from ..identity.provider import IdentityProvider
from ..identity.types import UserIdentity
from ..store import StartNotifier
from .base import MirrorBase, has_running_loop


class IdentityMirror(MirrorBase[UserIdentity | None]):
    """Publishes the provider's current identity and every change to it.

    Same lifecycle as the other mirrors: the provider listener is
    registered for the first subscriber and removed after the last.
    There is no write path.
    """

    kind = "identity"
    collaborator_name = "identity provider"

    def __init__(self, provider: IdentityProvider | None) -> None:
        self.provider = provider
        live = provider is not None and has_running_loop()
        start_with = provider.current_identity if live and provider is not None else None
        super().__init__(provider, start_with)

    def _make_start(self) -> StartNotifier[UserIdentity | None]:
        def start(set_value: Callable[[UserIdentity | None], None]) -> Callable[[], None]:
            assert self.provider is not None
            # Catch changes made while nobody was subscribed
            set_value(self.provider.current_identity)
            return self.provider.on_identity_changed(set_value)

        return start
