"""
Configuration for document mirrors.

Settings are read from a YAML file (default ``~/.document_mirror/settings.yaml``)
and overridden by environment variables:

```yaml
backend: cosmos          # or "memory"
log_level: INFO
structured_logging: false

cosmos:
  endpoint: "https://my-account.documents.azure.com:443/"
  auth_method: default_credential
  database_name: mirrors
  container_name: documents
  poll_interval: 1.0

identity:
  provider: config
  uid: "alice"
  display_name: "Alice Developer"
```

Environment Variables:
    DOCUMENT_MIRROR_BACKEND: Backend kind (memory, cosmos)
    DOCUMENT_MIRROR_LOG_LEVEL: Log level name
    DOCUMENT_MIRROR_COSMOS_ENDPOINT: Cosmos DB endpoint URL
    DOCUMENT_MIRROR_COSMOS_KEY: Cosmos DB key (if using key auth)
    DOCUMENT_MIRROR_COSMOS_DATABASE: Database name
    DOCUMENT_MIRROR_COSMOS_CONTAINER: Container name
    DOCUMENT_MIRROR_COSMOS_AUTH_METHOD: Auth method
    DOCUMENT_MIRROR_COSMOS_POLL_INTERVAL: Listener poll interval (seconds)
    AZURE_TENANT_ID / AZURE_CLIENT_ID / AZURE_CLIENT_SECRET: Service principal
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from .exceptions import AuthenticationError

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path.home() / ".document_mirror" / "settings.yaml"

# Default retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0  # seconds
DEFAULT_POLL_INTERVAL = 1.0  # seconds


class BackendKind(Enum):
    """Supported document backends."""

    MEMORY = "memory"
    COSMOS = "cosmos"


class CosmosAuthMethod(Enum):
    """Authentication method for Cosmos DB.

    KEY: Use account key (development/testing)
    DEFAULT_CREDENTIAL: Use Azure DefaultAzureCredential (recommended)
    MANAGED_IDENTITY: Use Azure Managed Identity explicitly
    SERVICE_PRINCIPAL: Use Service Principal with client_id/client_secret
    """

    KEY = "key"
    DEFAULT_CREDENTIAL = "default_credential"
    MANAGED_IDENTITY = "managed_identity"
    SERVICE_PRINCIPAL = "service_principal"


@dataclass
class CosmosConfig:
    """Configuration for the Cosmos DB backend.

    Attributes:
        endpoint: Cosmos DB account endpoint URL
        auth_method: How to authenticate
        key: Account key (only for KEY auth method)
        database_name: Name of the database to use
        container_name: Container holding all mirrored records
        max_retries: Maximum retry attempts for transient failures
        retry_delay: Base delay between retries (seconds)
        poll_interval: Delay between listener polls (seconds)
    """

    endpoint: str | None = None
    auth_method: CosmosAuthMethod = CosmosAuthMethod.DEFAULT_CREDENTIAL
    key: str | None = None
    database_name: str = "document_mirror"
    container_name: str = "documents"
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY
    poll_interval: float = DEFAULT_POLL_INTERVAL

    # Azure AD settings (for SERVICE_PRINCIPAL / MANAGED_IDENTITY)
    azure_tenant_id: str | None = None
    azure_client_id: str | None = None
    azure_client_secret: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CosmosConfig:
        """Build from the ``cosmos`` section of the settings file."""
        return cls(
            endpoint=data.get("endpoint"),
            auth_method=_parse_auth_method(data.get("auth_method")),
            key=data.get("key"),
            database_name=data.get("database_name", "document_mirror"),
            container_name=data.get("container_name", "documents"),
            max_retries=int(data.get("max_retries", DEFAULT_MAX_RETRIES)),
            retry_delay=float(data.get("retry_delay", DEFAULT_RETRY_DELAY)),
            poll_interval=float(data.get("poll_interval", DEFAULT_POLL_INTERVAL)),
            azure_tenant_id=data.get("azure_tenant_id"),
            azure_client_id=data.get("azure_client_id"),
            azure_client_secret=data.get("azure_client_secret"),
        )

    @classmethod
    def from_env(cls, base: CosmosConfig | None = None) -> CosmosConfig:
        """Create config from environment variables.

        Values not set in the environment are taken from ``base``.

        Raises:
            AuthenticationError: If the endpoint is missing, or the key is
                missing for KEY authentication
        """
        base = base or cls()
        env = os.environ

        auth_env = env.get("DOCUMENT_MIRROR_COSMOS_AUTH_METHOD")
        config = cls(
            endpoint=env.get("DOCUMENT_MIRROR_COSMOS_ENDPOINT", base.endpoint),
            auth_method=_parse_auth_method(auth_env) if auth_env else base.auth_method,
            key=env.get("DOCUMENT_MIRROR_COSMOS_KEY", base.key),
            database_name=env.get("DOCUMENT_MIRROR_COSMOS_DATABASE", base.database_name),
            container_name=env.get("DOCUMENT_MIRROR_COSMOS_CONTAINER", base.container_name),
            max_retries=base.max_retries,
            retry_delay=base.retry_delay,
            poll_interval=float(
                env.get("DOCUMENT_MIRROR_COSMOS_POLL_INTERVAL", base.poll_interval)
            ),
            azure_tenant_id=env.get("AZURE_TENANT_ID", base.azure_tenant_id),
            azure_client_id=env.get("AZURE_CLIENT_ID", base.azure_client_id),
            azure_client_secret=env.get("AZURE_CLIENT_SECRET", base.azure_client_secret),
        )

        if not config.endpoint:
            raise AuthenticationError(
                "cosmos", "DOCUMENT_MIRROR_COSMOS_ENDPOINT environment variable not set"
            )
        if config.auth_method == CosmosAuthMethod.KEY and not config.key:
            raise AuthenticationError(
                "cosmos", "DOCUMENT_MIRROR_COSMOS_KEY environment variable not set"
            )
        return config


@dataclass
class MirrorConfig:
    """Top-level settings.

    Attributes:
        backend: Which document backend to build
        cosmos: Cosmos DB settings (used when backend is COSMOS)
        identity: Raw identity section, consumed by identity providers
        log_level: Level for the document_mirror logger namespace
        structured_logging: Emit single-line JSON logs
    """

    backend: BackendKind = BackendKind.MEMORY
    cosmos: CosmosConfig = field(default_factory=CosmosConfig)
    identity: dict[str, Any] = field(default_factory=dict)
    log_level: str = "INFO"
    structured_logging: bool = False
    source_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], source_path: Path | None = None) -> MirrorConfig:
        try:
            backend = BackendKind(str(data.get("backend", "memory")).lower())
        except ValueError:
            logger.warning(f"Unknown backend {data.get('backend')!r}, using memory backend")
            backend = BackendKind.MEMORY

        return cls(
            backend=backend,
            cosmos=CosmosConfig.from_dict(data.get("cosmos") or {}),
            identity=dict(data.get("identity") or {}),
            log_level=str(data.get("log_level", "INFO")).upper(),
            structured_logging=bool(data.get("structured_logging", False)),
            source_path=source_path,
        )


def _parse_auth_method(value: str | None) -> CosmosAuthMethod:
    if not value:
        return CosmosAuthMethod.DEFAULT_CREDENTIAL
    try:
        return CosmosAuthMethod(value.lower())
    except ValueError:
        return CosmosAuthMethod.DEFAULT_CREDENTIAL


def load_settings(path: Path) -> dict[str, Any]:
    """Load the raw settings mapping from a YAML file.

    A missing, empty or unreadable file yields an empty mapping.
    """
    if not path.exists():
        return {}

    try:
        content = path.read_text()
        data = yaml.safe_load(content) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not read settings from {path}: {e}")
        return {}

    if not isinstance(data, dict):
        logger.warning(f"Ignoring settings in {path}: expected a mapping")
        return {}
    return data


def load_config(path: Path | None = None) -> MirrorConfig:
    """Load settings from YAML and apply environment overrides.

    Args:
        path: Settings file. Defaults to ~/.document_mirror/settings.yaml

    Returns:
        MirrorConfig instance
    """
    path = path or DEFAULT_SETTINGS_PATH
    config = MirrorConfig.from_dict(load_settings(path), source_path=path)

    backend_env = os.environ.get("DOCUMENT_MIRROR_BACKEND")
    if backend_env:
        try:
            config.backend = BackendKind(backend_env.lower())
        except ValueError:
            logger.warning(f"Ignoring unknown DOCUMENT_MIRROR_BACKEND={backend_env!r}")

    level_env = os.environ.get("DOCUMENT_MIRROR_LOG_LEVEL")
    if level_env:
        config.log_level = level_env.upper()

    return config
