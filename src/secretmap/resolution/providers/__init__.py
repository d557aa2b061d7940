"""
Secret providers for secretmap.

Each provider retrieves secret values from one kind of source. Cloud
providers import their SDKs lazily, so only the SDKs of providers actually
used need to be installed.
"""

from secretmap.resolution.providers.base import (
    BatchProvider,
    BatchResult,
    SecretProvider,
)
from secretmap.resolution.providers.manual import ManualProvider
from secretmap.resolution.providers.env import EnvProvider
from secretmap.resolution.providers.file import FileProvider, split_file_key
from secretmap.resolution.providers.aws import (
    AWSSecretsManagerProvider,
    Boto3SecretsManagerClient,
    extract_field_name,
)
from secretmap.resolution.providers.gcp import (
    GCPSecretManagerProvider,
    GoogleSecretManagerClient,
)
from secretmap.resolution.providers.azure import (
    AzureKeyVaultProvider,
    AzureSDKKeyVaultClient,
    parse_key_vault_key,
)
from secretmap.resolution.providers.vault import (
    HashiCorpVaultProvider,
    HvacVaultClient,
    split_vault_key,
)

__all__ = [
    # Base
    "BatchProvider",
    "BatchResult",
    "SecretProvider",
    # Local providers
    "EnvProvider",
    "FileProvider",
    "ManualProvider",
    "split_file_key",
    # Cloud providers
    "AWSSecretsManagerProvider",
    "Boto3SecretsManagerClient",
    "extract_field_name",
    "GCPSecretManagerProvider",
    "GoogleSecretManagerClient",
    "AzureKeyVaultProvider",
    "AzureSDKKeyVaultClient",
    "parse_key_vault_key",
    # Key/value stores
    "HashiCorpVaultProvider",
    "HvacVaultClient",
    "split_vault_key",
]
