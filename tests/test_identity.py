"""Tests for identity module."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import yaml

from document_mirror.identity import (
    AuthenticationRequiredError,
    AuthProvider,
    ConfigFileIdentityProvider,
    UserIdentity,
)


class TestUserIdentity:
    """Tests for UserIdentity dataclass."""

    def test_minimal_identity(self) -> None:
        """Test identity with minimal fields."""
        identity = UserIdentity(uid="user-123")

        assert identity.display_name is None
        assert identity.claims == {}
        assert identity.anonymous is False
        assert identity.provider == AuthProvider.CONFIG

    @pytest.mark.parametrize("provider", [AuthProvider.CONFIG, AuthProvider.ANONYMOUS])
    def test_tokenless_local_identities_are_authenticated(self, provider: AuthProvider) -> None:
        assert UserIdentity(uid="user-123", provider=provider).is_authenticated() is True

    def test_token_expiry(self) -> None:
        """Token-based identities are usable until expiry."""
        now = datetime.now(UTC)
        identity = UserIdentity(
            uid="user-123",
            provider=AuthProvider.ENTRA,
            id_token="token",
            token_expiry=now + timedelta(hours=1),
        )

        assert identity.is_authenticated(now) is True
        assert identity.is_authenticated(now + timedelta(hours=2)) is False

    def test_token_provider_without_token_is_not_authenticated(self) -> None:
        identity = UserIdentity(uid="user-123", provider=AuthProvider.OAUTH)

        assert identity.is_authenticated() is False

    def test_roundtrip_excludes_token(self) -> None:
        """Test serialization roundtrip drops the token."""
        expiry = datetime.now(UTC) + timedelta(minutes=5)
        original = UserIdentity(
            uid="user-roundtrip",
            display_name="Roundtrip User",
            email="roundtrip@example.com",
            provider=AuthProvider.ENTRA,
            claims={"org": "acme"},
            id_token="super-secret-token",
            token_expiry=expiry,
        )

        data = original.to_dict()
        restored = UserIdentity.from_dict(data)

        assert "id_token" not in data
        assert data["provider"] == "entra"
        assert restored.uid == original.uid
        assert restored.claims == {"org": "acme"}
        assert restored.token_expiry == expiry
        assert restored.id_token is None


class TestConfigFileIdentityProvider:
    """Tests for ConfigFileIdentityProvider."""

    @pytest.mark.asyncio
    async def test_anonymous_identity_without_settings(self, tmp_path: Path) -> None:
        """No settings file yields an anonymous identity tied to the device."""
        provider = ConfigFileIdentityProvider(tmp_path / "settings.yaml")

        identity = await provider.get_current_identity()

        assert identity.anonymous is True
        assert identity.provider == AuthProvider.ANONYMOUS
        assert identity.uid == f"anon-{provider.get_device_id()[:12]}"
        assert identity.display_name

    @pytest.mark.asyncio
    async def test_identity_from_settings(
        self, identity_provider: ConfigFileIdentityProvider
    ) -> None:
        identity = await identity_provider.get_current_identity()

        assert identity.uid == "user-123"
        assert identity.display_name == "Test User"
        assert identity.email == "test@example.com"
        assert identity.anonymous is False
        assert identity.device_id == identity_provider.get_device_id()

    def test_current_identity_is_cached(self, identity_provider: ConfigFileIdentityProvider) -> None:
        assert identity_provider.current_identity is identity_provider.current_identity

    @pytest.mark.asyncio
    async def test_sign_out_and_sign_in_notify(
        self, identity_provider: ConfigFileIdentityProvider
    ) -> None:
        events: list[UserIdentity | None] = []
        unsubscribe = identity_provider.on_identity_changed(events.append)

        await identity_provider.sign_out()
        assert identity_provider.current_identity is None
        with pytest.raises(AuthenticationRequiredError):
            await identity_provider.get_current_identity()

        await identity_provider.sign_in(display_name="Renamed")
        unsubscribe()
        await identity_provider.sign_out()

        assert len(events) == 2
        assert events[0] is None
        assert events[1] is not None
        assert events[1].display_name == "Renamed"
        assert events[1].uid == "user-123"
        assert identity_provider.listener_count == 0

    @pytest.mark.asyncio
    async def test_sign_in_rejects_unknown_fields(
        self, identity_provider: ConfigFileIdentityProvider
    ) -> None:
        with pytest.raises(TypeError):
            await identity_provider.sign_in(role="admin")

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(
        self, identity_provider: ConfigFileIdentityProvider
    ) -> None:
        received: list[UserIdentity | None] = []

        def broken(identity: UserIdentity | None) -> None:
            raise RuntimeError("listener bug")

        identity_provider.on_identity_changed(broken)
        identity_provider.on_identity_changed(received.append)

        await identity_provider.sign_out()

        assert received == [None]

    def test_device_id_persistence(self, settings_path: Path) -> None:
        """Test that device ID is persisted across provider instances."""
        device_id1 = ConfigFileIdentityProvider(settings_path).get_device_id()
        device_id2 = ConfigFileIdentityProvider(settings_path).get_device_id()

        assert device_id1 == device_id2
        assert (settings_path.parent / ".device_id").read_text().strip() == device_id1

    def test_provider_type(self, identity_provider: ConfigFileIdentityProvider) -> None:
        assert identity_provider.provider_type == AuthProvider.CONFIG

    @pytest.mark.asyncio
    async def test_save_identity(self, identity_provider: ConfigFileIdentityProvider) -> None:
        """Saved fields are persisted and published."""
        events: list[UserIdentity | None] = []
        identity_provider.on_identity_changed(events.append)

        identity = await identity_provider.save_identity(
            display_name="Updated User",
            claims={"org": "acme"},
        )

        assert identity.uid == "user-123"
        assert identity.display_name == "Updated User"
        assert identity.claims == {"org": "acme"}
        assert events == [identity]

        # Other settings are kept
        settings = yaml.safe_load(identity_provider.config_path.read_text())
        assert settings["identity"]["claims"] == {"org": "acme"}
        assert settings["identity"]["email"] == "test@example.com"
        assert settings["backend"] == "memory"
