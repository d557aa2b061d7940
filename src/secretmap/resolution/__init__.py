"""
Secret resolution for secretmap.

Resolves SecretsManifest entries to values at deploy time through the
resolution chain, and classifies resolvability without fetching.
"""

from secretmap.resolution.context import ResolutionCancelledError, ResolutionContext
from secretmap.resolution.resolver import (
    DEFAULT_ENV_PREFIX,
    PULL_FROM_SOURCES,
    ResolvabilityReport,
    ResolvabilityStatus,
    Resolver,
    ResolverOptions,
    SecretResolvability,
    create_env_file,
    create_env_template,
)

__all__ = [
    # Context
    "ResolutionCancelledError",
    "ResolutionContext",
    # Resolver
    "DEFAULT_ENV_PREFIX",
    "PULL_FROM_SOURCES",
    "Resolver",
    "ResolverOptions",
    # Dry run
    "ResolvabilityReport",
    "ResolvabilityStatus",
    "SecretResolvability",
    # Output files
    "create_env_file",
    "create_env_template",
]
