"""
Azure Key Vault provider for secretmap.

Fetches secrets with azure-keyvault-secrets, authenticating through
azure-identity's DefaultAzureCredential.
"""

from __future__ import annotations

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

# Import Azure SDK optionally
try:
    from azure.core.exceptions import (
        AzureError,
        ClientAuthenticationError,
        ResourceNotFoundError,
    )
    from azure.identity import DefaultAzureCredential
    from azure.keyvault.secrets import SecretClient

    AZURE_AVAILABLE = True
except ImportError:
    AZURE_AVAILABLE = False

# Token scope used to check credentials without touching a vault
KEY_VAULT_SCOPE = "https://vault.azure.net/.default"


def vault_url(vault_name: str) -> str:
    """Get the endpoint of a Key Vault from its name."""
    return f"https://{vault_name}.vault.azure.net"


def parse_key_vault_key(key: str, default_vault: str = "") -> tuple[str, str, str]:
    """
    Split a Key Vault secret key into (vault, secret, version).

    Accepted forms:
        "secret-name"                        uses default_vault
        "vault-name/secret-name"
        "https://vault-name.vault.azure.net/secrets/secret-name[/version]"

    An empty vault in the result means none could be determined.
    """
    if key.startswith("https://"):
        parts = key[len("https://"):].split("/")
        if len(parts) >= 3:
            vault = parts[0].split(".")[0]
            version = parts[3] if len(parts) > 3 else ""
            return vault, parts[2], version
        return default_vault, key, ""

    if "/" in key:
        vault, secret = key.split("/", 1)
        return vault, secret, ""

    return default_vault, key, ""


class KeyVaultClient(Protocol):
    """Operations the provider needs from Key Vault."""

    def get_secret(self, vault_name: str, secret_name: str, version: str = "") -> str:
        """Fetch a secret value."""
        ...

    def list_secret_names(self, vault_name: str) -> list[str]:
        """List the secret names in a vault."""
        ...

    def check_credentials(self) -> None:
        """Verify a token can be obtained."""
        ...


class AzureSDKKeyVaultClient:
    """KeyVaultClient backed by azure-keyvault-secrets."""

    def __init__(self, credential: Any | None = None) -> None:
        """
        Initialize the client.

        Args:
            credential: Azure credential; DefaultAzureCredential when None

        Raises:
            ProviderConfigError: If the Azure SDK is not installed
        """
        if not AZURE_AVAILABLE:
            raise ProviderConfigError(
                "Azure SDK is required for Azure Key Vault. "
                "Install with: pip install azure-identity azure-keyvault-secrets"
            )
        self._credential = credential or DefaultAzureCredential()
        self._clients: dict[str, Any] = {}
        self._lock = threading.Lock()

    def _get_client(self, vault_name: str) -> Any:
        with self._lock:
            if vault_name not in self._clients:
                self._clients[vault_name] = SecretClient(
                    vault_url=vault_url(vault_name),
                    credential=self._credential,
                )
            return self._clients[vault_name]

    def get_secret(self, vault_name: str, secret_name: str, version: str = "") -> str:
        try:
            secret = self._get_client(vault_name).get_secret(secret_name, version or None)
        except ResourceNotFoundError as e:
            raise SecretNotFoundError(secret_name, f"not found in vault {vault_name}") from e
        except ClientAuthenticationError as e:
            raise ProviderConfigError(f"Azure credentials not configured: {e}") from e
        except AzureError as e:
            raise ProviderError(f"Azure Key Vault error for {secret_name}: {e}") from e
        return secret.value or ""

    def list_secret_names(self, vault_name: str) -> list[str]:
        try:
            return [
                props.name
                for props in self._get_client(vault_name).list_properties_of_secrets()
            ]
        except AzureError as e:
            raise ProviderError(f"failed to list secrets in vault {vault_name}: {e}") from e

    def check_credentials(self) -> None:
        try:
            self._credential.get_token(KEY_VAULT_SCOPE)
        except (ClientAuthenticationError, AzureError) as e:
            raise ProviderConfigError(f"Azure credentials not configured: {e}") from e


class AzureKeyVaultProvider(SecretProvider):
    """Resolves secrets from Azure Key Vault."""

    def __init__(
        self,
        vault_name: str = "",
        client: KeyVaultClient | None = None,
    ) -> None:
        """
        Initialize the provider.

        Args:
            vault_name: Vault used for keys that name only a secret
            client: Key Vault client; SDK-backed when None
        """
        self.vault_name = vault_name
        self._client = client

    def name(self) -> SecretSource:
        return SecretSource.AZURE_KEY_VAULT

    def _get_client(self) -> KeyVaultClient:
        if self._client is None:
            self._client = AzureSDKKeyVaultClient()
        return self._client

    def resolve(self, ref: SecretReference, ctx: ResolutionContext | None = None) -> str:
        """
        Fetch a secret value.

        Raises:
            ProviderConfigError: If no vault can be determined for the key
            SecretNotFoundError: If the secret does not exist
        """
        self._check_can_resolve(ref)

        vault, secret, version = parse_key_vault_key(ref.key, self.vault_name)
        if not vault:
            raise ProviderConfigError(f"vault name not specified for secret {ref.name}")

        if ctx is not None:
            ctx.check()

        return self._get_client().get_secret(vault, secret, version or ref.version).strip()

    def list_secrets(self) -> list[str]:
        """
        List secret names in the configured vault, sorted.

        Raises:
            ProviderConfigError: If no vault name is configured
        """
        if not self.vault_name:
            raise ProviderConfigError("vault name not configured")
        return sorted(self._get_client().list_secret_names(self.vault_name))

    def validate_config(self) -> None:
        self._get_client().check_credentials()
