"""
Identity types.

UserIdentity is the value an IdentityMirror publishes while someone is
signed in (None otherwise).
"""

from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..exceptions import MirrorError


class AuthProvider(Enum):
    """Where an identity came from."""

    CONFIG = "config"  # Settings file (dev/offline)
    ANONYMOUS = "anonymous"  # Derived from the device id alone
    ENTRA = "entra"  # Azure Entra ID
    OAUTH = "oauth"  # Generic OAuth (GitHub, Google)


@dataclass
class UserIdentity:
    """The signed-in user.

    Attributes:
        uid: Stable user id; per-user record paths are keyed by it
        display_name: Human-readable name
        email: Contact address, if known
        photo_url: Avatar location, if known
        anonymous: True when the identity was derived from the device alone
        provider: Where the identity came from
        claims: Custom claims (org, roles, ...) delivered by the provider
        id_token: Bearer token for backends that need one
        token_expiry: When ``id_token`` stops being valid
        device_id: Persistent id of the machine the identity was resolved on
    """

    uid: str
    display_name: str | None = None
    email: str | None = None
    photo_url: str | None = None
    anonymous: bool = False
    provider: AuthProvider = AuthProvider.CONFIG
    claims: dict[str, Any] = field(default_factory=dict)
    id_token: str | None = None
    token_expiry: datetime | None = None
    device_id: str | None = None

    def is_authenticated(self, now: datetime | None = None) -> bool:
        """Whether the identity is usable right now.

        Settings-file and anonymous identities carry no token and are
        always usable. Token-based identities are usable until expiry.
        """
        if self.id_token is None:
            return self.provider in (AuthProvider.CONFIG, AuthProvider.ANONYMOUS)
        if self.token_expiry is None:
            return True
        return (now or datetime.now(UTC)) < self.token_expiry

    def to_dict(self) -> dict[str, Any]:
        """Plain mapping for logs and settings files. The token is left out."""
        data = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "id_token"}
        data["provider"] = self.provider.value
        data["claims"] = dict(self.claims)
        data["token_expiry"] = self.token_expiry.isoformat() if self.token_expiry else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserIdentity":
        expiry = data.get("token_expiry")
        return cls(
            uid=str(data["uid"]),
            display_name=data.get("display_name"),
            email=data.get("email"),
            photo_url=data.get("photo_url"),
            anonymous=bool(data.get("anonymous", False)),
            provider=AuthProvider(data.get("provider", AuthProvider.CONFIG.value)),
            claims=dict(data.get("claims") or {}),
            token_expiry=datetime.fromisoformat(expiry) if expiry else None,
            device_id=data.get("device_id"),
        )


class AuthenticationRequiredError(MirrorError):
    """Raised when an identity is required but nobody is signed in."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)
