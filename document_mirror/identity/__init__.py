"""
Identity management for document mirrors.

Provides the auth collaborator contract consumed by IdentityMirror
and a settings-file provider for development and offline use.
"""

from .config_provider import ConfigFileIdentityProvider
from .provider import IdentityListener, IdentityProvider
from .types import (
    AuthenticationRequiredError,
    AuthProvider,
    UserIdentity,
)

__all__ = [
    # Types
    "AuthProvider",
    "UserIdentity",
    # Errors
    "AuthenticationRequiredError",
    # Providers
    "IdentityListener",
    "IdentityProvider",
    "ConfigFileIdentityProvider",
]
