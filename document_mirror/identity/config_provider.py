"""
Settings-file identity provider.

Resolves the signed-in user from the ``identity`` section of the YAML
settings file, for development, command-line hosts and offline work
where there is no interactive sign-in.
"""

import getpass
import logging
import uuid
from pathlib import Path
from typing import Any

import yaml

from ..config import DEFAULT_SETTINGS_PATH, load_settings
from .provider import IdentityProvider
from .types import AuthenticationRequiredError, AuthProvider, UserIdentity

logger = logging.getLogger(__name__)

IDENTITY_FIELDS = ("uid", "display_name", "email", "photo_url", "claims")


class ConfigFileIdentityProvider(IdentityProvider):
    """Identity provider backed by the settings file.

    ```yaml
    identity:
      uid: "alice"
      display_name: "Alice Developer"
      email: "alice@example.com"
      claims:
        org: "acme"
    ```

    Without a ``uid`` the provider signs in anonymously, with a uid
    derived from a device id kept in ``.device_id`` next to the settings
    file. Every sign_in() and sign_out() is published to listeners.
    """

    def __init__(self, config_path: Path | None = None):
        super().__init__()
        self.config_path = config_path or DEFAULT_SETTINGS_PATH
        self._identity: UserIdentity | None = None
        self._device_id: str | None = None
        self._signed_out = False

    @property
    def current_identity(self) -> UserIdentity | None:
        if self._signed_out:
            return None
        if self._identity is None:
            self._identity = self._resolve()
        return self._identity

    @property
    def provider_type(self) -> AuthProvider:
        return AuthProvider.CONFIG

    async def get_current_identity(self) -> UserIdentity:
        identity = self.current_identity
        if identity is None:
            raise AuthenticationRequiredError("Signed out; call sign_in() first")
        return identity

    async def sign_in(self, **overrides: Any) -> UserIdentity:
        """Resolve the identity again and publish it.

        Args:
            overrides: Identity fields taking precedence over the settings
                file (uid, display_name, email, photo_url, claims)

        Raises:
            TypeError: If an override names an unknown field
        """
        unknown = set(overrides) - set(IDENTITY_FIELDS)
        if unknown:
            raise TypeError(f"Unknown identity fields: {', '.join(sorted(unknown))}")

        self._signed_out = False
        self._identity = self._resolve(overrides)
        logger.info(f"Signed in as {self._identity.uid}")
        self._emit_identity_changed(self._identity)
        return self._identity

    async def sign_out(self) -> None:
        """Forget the identity and publish None. The settings file is kept."""
        self._signed_out = True
        self._identity = None
        logger.info("Signed out")
        self._emit_identity_changed(None)

    async def save_identity(
        self,
        uid: str | None = None,
        display_name: str | None = None,
        email: str | None = None,
        photo_url: str | None = None,
        claims: dict[str, Any] | None = None,
    ) -> UserIdentity:
        """Write identity fields to the settings file, then sign in with them.

        None values leave the stored field alone. Other sections of the
        settings file are preserved.
        """
        settings = load_settings(self.config_path)
        section = dict(settings.get("identity") or {})
        values = {
            "uid": uid,
            "display_name": display_name,
            "email": email,
            "photo_url": photo_url,
            "claims": claims,
        }
        section.update({k: v for k, v in values.items() if v is not None})
        settings["identity"] = section

        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self.config_path.write_text(yaml.safe_dump(settings, default_flow_style=False))
        return await self.sign_in()

    def get_device_id(self) -> str:
        """Persistent id of this machine, created on first use."""
        if self._device_id is None:
            path = self.config_path.parent / ".device_id"
            stored = path.read_text().strip() if path.exists() else ""
            if not stored:
                stored = uuid.uuid4().hex
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(stored)
            self._device_id = stored
        return self._device_id

    def _resolve(self, overrides: dict[str, Any] | None = None) -> UserIdentity:
        section = dict(load_settings(self.config_path).get("identity") or {})
        section.update(overrides or {})
        device_id = self.get_device_id()

        uid = section.get("uid")
        if not uid:
            return UserIdentity(
                uid=f"anon-{device_id[:12]}",
                display_name=section.get("display_name") or _local_user_name(),
                anonymous=True,
                provider=AuthProvider.ANONYMOUS,
                device_id=device_id,
            )

        return UserIdentity(
            uid=str(uid),
            display_name=section.get("display_name"),
            email=section.get("email"),
            photo_url=section.get("photo_url"),
            claims=dict(section.get("claims") or {}),
            provider=AuthProvider.CONFIG,
            device_id=device_id,
        )


def _local_user_name() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "local user"
