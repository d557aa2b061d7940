"""
Resolver configuration for secretmap.

Provides configuration management for secret resolution: the resolution
chain options and the settings of each credential store provider.
Configurations are loaded from JSON or YAML files, or from SECRETMAP_*
environment variables. They never contain secret values.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from secretmap.resolution.providers.aws import AWSSecretsManagerProvider
from secretmap.resolution.providers.azure import AzureKeyVaultProvider
from secretmap.resolution.providers.env import EnvProvider
from secretmap.resolution.providers.file import FileProvider
from secretmap.resolution.providers.gcp import GCPSecretManagerProvider
from secretmap.resolution.providers.manual import ManualProvider
from secretmap.resolution.providers.vault import DEFAULT_MOUNT, HashiCorpVaultProvider
from secretmap.resolution.resolver import (
    DEFAULT_ENV_PREFIX,
    DEFAULT_TIMEOUT,
    Resolver,
    ResolverOptions,
)

_TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass
class AWSProviderConfig:
    """Configuration for AWS Secrets Manager."""

    enabled: bool = True
    profile: str = ""
    region: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "enabled": self.enabled,
            "profile": self.profile,
            "region": self.region,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AWSProviderConfig:
        """Create from dictionary."""
        return cls(
            enabled=data.get("enabled", True),
            profile=data.get("profile", ""),
            region=data.get("region", ""),
        )


@dataclass
class GCPProviderConfig:
    """Configuration for GCP Secret Manager."""

    enabled: bool = True
    project: str = ""  # Default: project of application default credentials

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"enabled": self.enabled, "project": self.project}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GCPProviderConfig:
        """Create from dictionary."""
        return cls(
            enabled=data.get("enabled", True),
            project=data.get("project", ""),
        )


@dataclass
class AzureProviderConfig:
    """Configuration for Azure Key Vault."""

    enabled: bool = True
    vault_name: str = ""  # Used for keys that name only a secret

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"enabled": self.enabled, "vault_name": self.vault_name}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AzureProviderConfig:
        """Create from dictionary."""
        return cls(
            enabled=data.get("enabled", True),
            vault_name=data.get("vault_name", ""),
        )


@dataclass
class VaultProviderConfig:
    """
    Configuration for HashiCorp Vault.

    The token is not part of the configuration; it is read from
    VAULT_TOKEN or ~/.vault-token by hvac.
    """

    enabled: bool = True
    address: str = ""  # Default: VAULT_ADDR
    namespace: str = ""
    mount: str = DEFAULT_MOUNT

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "enabled": self.enabled,
            "address": self.address,
            "namespace": self.namespace,
            "mount": self.mount,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VaultProviderConfig:
        """Create from dictionary."""
        return cls(
            enabled=data.get("enabled", True),
            address=data.get("address", ""),
            namespace=data.get("namespace", ""),
            mount=data.get("mount", DEFAULT_MOUNT),
        )


@dataclass
class FileProviderConfig:
    """Configuration for file-sourced secrets."""

    enabled: bool = True
    base_path: str = ""  # Default: working directory

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"enabled": self.enabled, "base_path": self.base_path}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileProviderConfig:
        """Create from dictionary."""
        return cls(
            enabled=data.get("enabled", True),
            base_path=data.get("base_path", ""),
        )


@dataclass
class ResolverConfiguration:
    """
    Complete resolver configuration.

    This is the main configuration class: resolution chain options plus
    per-provider settings. build_resolver() turns it into a ready Resolver.
    """

    secrets_file: str = ""
    pull_from: str = ""
    env_prefix: str = DEFAULT_ENV_PREFIX
    allow_interactive: bool = True
    fail_on_missing: bool = True
    timeout: float = DEFAULT_TIMEOUT
    max_workers: int = 1
    aws: AWSProviderConfig = field(default_factory=AWSProviderConfig)
    gcp: GCPProviderConfig = field(default_factory=GCPProviderConfig)
    azure: AzureProviderConfig = field(default_factory=AzureProviderConfig)
    vault: VaultProviderConfig = field(default_factory=VaultProviderConfig)
    file: FileProviderConfig = field(default_factory=FileProviderConfig)

    def to_options(self) -> ResolverOptions:
        """
        Get the resolver options.

        Raises:
            ProviderConfigError: If pull_from names an unknown provider
        """
        return ResolverOptions(
            secrets_file_path=os.path.expanduser(self.secrets_file) if self.secrets_file else "",
            pull_from=self.pull_from,
            env_prefix=self.env_prefix,
            allow_interactive=self.allow_interactive,
            fail_on_missing=self.fail_on_missing,
            timeout=self.timeout,
            max_workers=self.max_workers,
        )

    def build_resolver(
        self,
        environ: Mapping[str, str] | None = None,
        manual: ManualProvider | None = None,
    ) -> Resolver:
        """
        Create a Resolver with every enabled provider registered.

        Cloud SDK clients are created on first use, so building a resolver
        needs no credentials.

        Args:
            environ: Environment for the resolver and the env provider;
                a snapshot of os.environ when None
            manual: Provider used for interactive prompts; a terminal
                prompt when None

        Returns:
            Configured Resolver
        """
        resolver = Resolver(self.to_options(), environ=environ)
        resolver.register_provider(EnvProvider(environ))

        if self.file.enabled:
            resolver.register_provider(FileProvider(base_path=self.file.base_path))
        if self.aws.enabled:
            resolver.register_provider(
                AWSSecretsManagerProvider(profile=self.aws.profile, region=self.aws.region)
            )
        if self.gcp.enabled:
            resolver.register_provider(GCPSecretManagerProvider(project=self.gcp.project))
        if self.azure.enabled:
            resolver.register_provider(AzureKeyVaultProvider(vault_name=self.azure.vault_name))
        if self.vault.enabled:
            resolver.register_provider(
                HashiCorpVaultProvider(
                    address=self.vault.address,
                    namespace=self.vault.namespace,
                    mount=self.vault.mount,
                )
            )

        # Manual secrets go through the interactive step only
        if self.allow_interactive:
            manual = manual or ManualProvider()
            resolver.set_prompt_func(manual.prompt_callback())

        return resolver

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "secrets_file": self.secrets_file,
            "pull_from": self.pull_from,
            "env_prefix": self.env_prefix,
            "allow_interactive": self.allow_interactive,
            "fail_on_missing": self.fail_on_missing,
            "timeout": self.timeout,
            "max_workers": self.max_workers,
            "aws": self.aws.to_dict(),
            "gcp": self.gcp.to_dict(),
            "azure": self.azure.to_dict(),
            "vault": self.vault.to_dict(),
            "file": self.file.to_dict(),
        }

    def to_json(self, indent: int = 2) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResolverConfiguration:
        """Create from dictionary."""
        return cls(
            secrets_file=data.get("secrets_file", ""),
            pull_from=data.get("pull_from", ""),
            env_prefix=data.get("env_prefix", DEFAULT_ENV_PREFIX),
            allow_interactive=data.get("allow_interactive", True),
            fail_on_missing=data.get("fail_on_missing", True),
            timeout=float(data.get("timeout", DEFAULT_TIMEOUT)),
            max_workers=int(data.get("max_workers", 1)),
            aws=AWSProviderConfig.from_dict(data.get("aws") or {}),
            gcp=GCPProviderConfig.from_dict(data.get("gcp") or {}),
            azure=AzureProviderConfig.from_dict(data.get("azure") or {}),
            vault=VaultProviderConfig.from_dict(data.get("vault") or {}),
            file=FileProviderConfig.from_dict(data.get("file") or {}),
        )

    @classmethod
    def from_json(cls, json_str: str) -> ResolverConfiguration:
        """Create from JSON string."""
        return cls.from_dict(json.loads(json_str))

    @classmethod
    def from_file(cls, path: str) -> ResolverConfiguration:
        """Load configuration from a JSON or YAML file."""
        path = os.path.expanduser(path)
        with open(path, "r", encoding="utf-8") as f:
            if path.endswith(".json"):
                return cls.from_dict(json.load(f))
            try:
                import yaml
            except ImportError:
                raise ValueError(
                    "YAML support requires PyYAML. Use JSON format instead."
                )
            return cls.from_dict(yaml.safe_load(f) or {})

    def save(self, path: str) -> None:
        """Save configuration to a JSON or YAML file."""
        path = os.path.expanduser(path)
        Path(path).parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            if path.endswith(".json"):
                json.dump(self.to_dict(), f, indent=2)
            else:
                try:
                    import yaml
                except ImportError:
                    raise ValueError(
                        "YAML support requires PyYAML. Use JSON format instead."
                    )
                yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


def _env_bool(value: str) -> bool:
    return value.strip().lower() in _TRUE_VALUES


def load_config_from_env(environ: Mapping[str, str] | None = None) -> ResolverConfiguration:
    """
    Load configuration from environment variables.

    Environment variables:
        SECRETMAP_CONFIG_FILE: Path to configuration file (takes precedence)
        SECRETMAP_SECRETS_FILE: .env file with secret values
        SECRETMAP_PULL_SECRETS_FROM: Cloud store override (aws, gcp, azure)
        SECRETMAP_ENV_PREFIX: Prefix of secret environment variables
        SECRETMAP_NON_INTERACTIVE: Disable prompting (true/false)
        SECRETMAP_FAIL_ON_MISSING: Fail when required secrets are missing
        SECRETMAP_TIMEOUT: Per-secret timeout in seconds
        SECRETMAP_MAX_WORKERS: Secrets resolved concurrently
        SECRETMAP_AWS_PROFILE / SECRETMAP_AWS_REGION: AWS session settings
        SECRETMAP_GCP_PROJECT: GCP project
        SECRETMAP_AZURE_VAULT: Default Key Vault name
        SECRETMAP_VAULT_ADDR / SECRETMAP_VAULT_NAMESPACE / SECRETMAP_VAULT_MOUNT:
            HashiCorp Vault settings

    Args:
        environ: Environment to read; os.environ when None

    Returns:
        ResolverConfiguration instance
    """
    env = os.environ if environ is None else environ

    # Check for config file
    config_file = env.get("SECRETMAP_CONFIG_FILE")
    if config_file and os.path.exists(os.path.expanduser(config_file)):
        return ResolverConfiguration.from_file(config_file)

    config = ResolverConfiguration()

    # Resolution chain
    config.secrets_file = env.get("SECRETMAP_SECRETS_FILE", "")
    config.pull_from = env.get("SECRETMAP_PULL_SECRETS_FROM", "")
    config.env_prefix = env.get("SECRETMAP_ENV_PREFIX", DEFAULT_ENV_PREFIX)

    non_interactive = env.get("SECRETMAP_NON_INTERACTIVE")
    if non_interactive:
        config.allow_interactive = not _env_bool(non_interactive)

    fail_on_missing = env.get("SECRETMAP_FAIL_ON_MISSING")
    if fail_on_missing:
        config.fail_on_missing = _env_bool(fail_on_missing)

    timeout = env.get("SECRETMAP_TIMEOUT")
    if timeout:
        config.timeout = float(timeout)

    max_workers = env.get("SECRETMAP_MAX_WORKERS")
    if max_workers:
        config.max_workers = int(max_workers)

    # Providers
    config.aws.profile = env.get("SECRETMAP_AWS_PROFILE", "")
    config.aws.region = env.get("SECRETMAP_AWS_REGION", "")
    config.gcp.project = env.get("SECRETMAP_GCP_PROJECT", "")
    config.azure.vault_name = env.get("SECRETMAP_AZURE_VAULT", "")
    config.vault.address = env.get("SECRETMAP_VAULT_ADDR", "")
    config.vault.namespace = env.get("SECRETMAP_VAULT_NAMESPACE", "")
    config.vault.mount = env.get("SECRETMAP_VAULT_MOUNT", DEFAULT_MOUNT)

    return config
