"""
secretmap - Secret reference detection, deduplication and resolution

Finds the secrets a set of cloud resources depends on, records them in a
manifest that never holds a value, and resolves that manifest to actual
values at deploy time.

Key Features:
- Offline detection: detectors only read resource configuration
- Stable manifests: shared secrets are deduplicated across resources
- Fixed resolution chain: secrets file, environment, cloud stores, prompt
- Minimal exposure: values are masked in logs and wiped on clear

Quick Start:
    >>> from secretmap import CloudResource, Resolver, create_default_registry
    >>>
    >>> registry = create_default_registry()
    >>> manifest = registry.detect_all(resources)
    >>> print(manifest.generate_env_template())
    >>>
    >>> resolved = Resolver().resolve_all(manifest)
"""

from __future__ import annotations

__version__ = "0.1.0"

# Core models
from secretmap.models import CloudResource

# Secret references
from secretmap.secrets import (
    ResolutionError,
    ResolvedSecret,
    ResolvedSecrets,
    SecretEncoding,
    SecretError,
    SecretReference,
    SecretSource,
    SecretsManifest,
    SecretType,
)

# Detection
from secretmap.detection import (
    DetectedSecret,
    DetectorRegistry,
    create_default_registry,
)

# Resolution
from secretmap.resolution import (
    ResolvabilityReport,
    ResolvabilityStatus,
    Resolver,
    ResolverOptions,
    create_env_file,
    create_env_template,
)

# Configuration
from secretmap.config import ResolverConfiguration, load_config_from_env

# Observability
from secretmap.observability import configure_logging, get_logger

__all__ = [
    "__version__",
    # Models
    "CloudResource",
    # Secret references
    "ResolutionError",
    "ResolvedSecret",
    "ResolvedSecrets",
    "SecretEncoding",
    "SecretError",
    "SecretReference",
    "SecretSource",
    "SecretsManifest",
    "SecretType",
    # Detection
    "DetectedSecret",
    "DetectorRegistry",
    "create_default_registry",
    # Resolution
    "ResolvabilityReport",
    "ResolvabilityStatus",
    "Resolver",
    "ResolverOptions",
    "create_env_file",
    "create_env_template",
    # Configuration
    "ResolverConfiguration",
    "load_config_from_env",
    # Observability
    "configure_logging",
    "get_logger",
]
