"""
HashiCorp Vault provider for secretmap.

Reads KV version 2 secrets with hvac. Keys have the form
"path/to/secret" or "path/to/secret#field".
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Protocol

from secretmap.resolution.context import ResolutionContext
from secretmap.resolution.providers.base import SecretProvider
from secretmap.secrets.errors import (
    ProviderConfigError,
    ProviderError,
    SecretNotFoundError,
)
from secretmap.secrets.reference import SecretReference, SecretSource

logger = logging.getLogger(__name__)

# Import hvac optionally
try:
    import hvac
    from hvac.exceptions import Forbidden, InvalidPath, VaultDown, VaultError

    HVAC_AVAILABLE = True
except ImportError:
    HVAC_AVAILABLE = False
    hvac = None  # type: ignore

DEFAULT_MOUNT = "secret"


def split_vault_key(key: str, mount: str = DEFAULT_MOUNT) -> tuple[str, str]:
    """
    Split a Vault key into (path, field).

    The path is relative to the mount: a leading "<mount>/data/" or
    "<mount>/" is removed.
    """
    path, _, field_name = key.partition("#")
    path = path.strip("/")

    for prefix in (f"{mount}/data/", f"{mount}/"):
        if path.startswith(prefix):
            path = path[len(prefix):]
            break

    return path, field_name


def select_vault_value(data: dict[str, Any], field_name: str) -> str:
    """
    Pick the secret value out of a KV data map.

    With a field, that field is returned (JSON-encoded when not a string).
    Without one, a map holding a single string is unwrapped; anything else
    is returned as JSON.

    Raises:
        KeyError: If the field is not in the map
    """
    if field_name:
        value = data[field_name]
        return value if isinstance(value, str) else json.dumps(value)

    if len(data) == 1:
        (value,) = data.values()
        if isinstance(value, str):
            return value

    return json.dumps(data)


class VaultKVClient(Protocol):
    """Operations the provider needs from Vault."""

    def read_secret(self, path: str, mount_point: str) -> dict[str, Any]:
        """Read the data map of a KV v2 secret."""
        ...

    def list_secrets(self, path: str, mount_point: str) -> list[str]:
        """List keys under a KV v2 path."""
        ...

    def is_authenticated(self) -> bool:
        """Check the token is valid."""
        ...


class HvacVaultClient:
    """VaultKVClient backed by hvac."""

    def __init__(
        self,
        url: str = "",
        token: str = "",
        namespace: str = "",
        verify: bool | str = True,
        timeout: int = 30,
    ) -> None:
        """
        Initialize the client.

        Empty url and token fall back to VAULT_ADDR and VAULT_TOKEN, as hvac
        does.

        Raises:
            ProviderConfigError: If hvac is not installed
        """
        if not HVAC_AVAILABLE:
            raise ProviderConfigError(
                "hvac is required for HashiCorp Vault. Install with: pip install hvac"
            )
        self._kwargs: dict[str, Any] = {"verify": verify, "timeout": timeout}
        if url:
            self._kwargs["url"] = url
        if token:
            self._kwargs["token"] = token
        if namespace:
            self._kwargs["namespace"] = namespace
        self._client: Any | None = None
        self._lock = threading.Lock()

    def _get_client(self) -> Any:
        """Get or create the underlying hvac client."""
        if self._client is None:
            with self._lock:
                if self._client is None:
                    self._client = hvac.Client(**self._kwargs)
        return self._client

    def read_secret(self, path: str, mount_point: str) -> dict[str, Any]:
        try:
            response = self._get_client().secrets.kv.v2.read_secret_version(
                path=path,
                mount_point=mount_point,
                raise_on_deleted_version=True,
            )
        except InvalidPath as e:
            raise SecretNotFoundError(path, f"no secret at {mount_point}/{path}") from e
        except Forbidden as e:
            raise ProviderConfigError(f"Vault denied access to {path}: {e}") from e
        except VaultDown as e:
            raise ProviderError(f"Vault server is unreachable: {e}") from e
        except VaultError as e:
            raise ProviderError(f"Vault error for {path}: {e}") from e

        return response.get("data", {}).get("data", {}) or {}

    def list_secrets(self, path: str, mount_point: str) -> list[str]:
        try:
            response = self._get_client().secrets.kv.v2.list_secrets(
                path=path,
                mount_point=mount_point,
            )
        except InvalidPath:
            return []
        except VaultError as e:
            raise ProviderError(f"failed to list Vault secrets at {path}: {e}") from e
        return response.get("data", {}).get("keys", [])

    def is_authenticated(self) -> bool:
        try:
            return bool(self._get_client().is_authenticated())
        except VaultError as e:
            raise ProviderConfigError(f"Vault not reachable: {e}") from e


class HashiCorpVaultProvider(SecretProvider):
    """Resolves secrets from a HashiCorp Vault KV v2 engine."""

    def __init__(
        self,
        address: str = "",
        token: str = "",
        namespace: str = "",
        mount: str = DEFAULT_MOUNT,
        client: VaultKVClient | None = None,
    ) -> None:
        self.address = address
        self.token = token
        self.namespace = namespace
        self.mount = mount or DEFAULT_MOUNT
        self._client = client

    def name(self) -> SecretSource:
        return SecretSource.HASHICORP_VAULT

    def _get_client(self) -> VaultKVClient:
        if self._client is None:
            self._client = HvacVaultClient(
                url=self.address,
                token=self.token,
                namespace=self.namespace,
            )
        return self._client

    def resolve(self, ref: SecretReference, ctx: ResolutionContext | None = None) -> str:
        """
        Read a secret and select its value.

        Raises:
            SecretNotFoundError: If the path or field does not exist
        """
        self._check_can_resolve(ref)
        path, field_name = split_vault_key(ref.key, self.mount)

        if ctx is not None:
            ctx.check()

        data = self._get_client().read_secret(path, self.mount)
        try:
            return select_vault_value(data, field_name)
        except KeyError:
            raise SecretNotFoundError(ref.name, f"field {field_name} not found in secret") from None

    def list_secrets(self, path: str = "") -> list[str]:
        """List keys under a path of the mount."""
        return self._get_client().list_secrets(path.strip("/"), self.mount)

    def validate_config(self) -> None:
        if not self._get_client().is_authenticated():
            raise ProviderConfigError("Vault token is missing or invalid")
