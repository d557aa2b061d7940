"""
Configuration management for secretmap.

Provides configuration classes for the resolution chain and the
credential store providers.
"""

from secretmap.config.resolver_config import (
    AWSProviderConfig,
    AzureProviderConfig,
    FileProviderConfig,
    GCPProviderConfig,
    ResolverConfiguration,
    VaultProviderConfig,
    load_config_from_env,
)

__all__ = [
    "AWSProviderConfig",
    "AzureProviderConfig",
    "FileProviderConfig",
    "GCPProviderConfig",
    "ResolverConfiguration",
    "VaultProviderConfig",
    "load_config_from_env",
]
