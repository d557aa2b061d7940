"""
Secret references for secretmap.

Provides the reference model that manifests are built from:
- SecretReference and SecretsManifest (persistable, never hold values)
- ResolvedSecrets (in-memory only)
- Naming and classification utilities used by the detectors
- Env file parsing and escaping
- Value masking for display and logs
"""

from __future__ import annotations

from secretmap.secrets.errors import (
    DuplicateNameError,
    EmptyNameError,
    InvalidEncodingError,
    InvalidNameError,
    InvalidSourceError,
    InvalidTypeError,
    MissingKeyError,
    NoProviderForSourceError,
    ProviderConfigError,
    ProviderError,
    ProviderTimeoutError,
    ResolutionError,
    SecretError,
    SecretNotFoundError,
    SecretNotResolvedError,
    SecretValidationError,
)
from secretmap.secrets.reference import (
    SECRET_NAME_PATTERN,
    SECRETS_MANIFEST_VERSION,
    ResolvedSecret,
    ResolvedSecrets,
    SecretEncoding,
    SecretReference,
    SecretSource,
    SecretsManifest,
    SecretType,
    is_valid_secret_name,
)
from secretmap.secrets.patterns import (
    EXPLICIT_SECRET_NAMES,
    SENSITIVE_PATTERNS,
    extract_secret_key_from_arn,
    generate_secret_name,
    infer_secret_type,
    is_sensitive_env_name,
    normalize_env_name,
)
from secretmap.secrets.envfile import (
    escape_env_value,
    parse_env_file,
    read_env_file,
)
from secretmap.secrets.masking import (
    SecretMaskingFilter,
    get_masking_filter,
    mask_value,
    redact_value,
    register_secret_value,
)

__all__ = [
    # Errors
    "SecretError",
    "SecretValidationError",
    "EmptyNameError",
    "InvalidNameError",
    "InvalidSourceError",
    "InvalidTypeError",
    "InvalidEncodingError",
    "MissingKeyError",
    "DuplicateNameError",
    "SecretNotFoundError",
    "SecretNotResolvedError",
    "NoProviderForSourceError",
    "ProviderError",
    "ProviderConfigError",
    "ProviderTimeoutError",
    "ResolutionError",
    # Reference model
    "SECRET_NAME_PATTERN",
    "SECRETS_MANIFEST_VERSION",
    "SecretSource",
    "SecretType",
    "SecretEncoding",
    "SecretReference",
    "SecretsManifest",
    "ResolvedSecret",
    "ResolvedSecrets",
    "is_valid_secret_name",
    # Patterns
    "EXPLICIT_SECRET_NAMES",
    "SENSITIVE_PATTERNS",
    "extract_secret_key_from_arn",
    "generate_secret_name",
    "infer_secret_type",
    "is_sensitive_env_name",
    "normalize_env_name",
    # Env files
    "escape_env_value",
    "parse_env_file",
    "read_env_file",
    # Masking
    "SecretMaskingFilter",
    "get_masking_filter",
    "mask_value",
    "redact_value",
    "register_secret_value",
]
