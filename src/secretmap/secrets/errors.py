"""
Exceptions for secret handling.

Callers branch on exception type, never on message text.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from secretmap.secrets.reference import ResolvedSecrets


class SecretError(Exception):
    """Base exception for secret handling errors."""

    pass


# Validation-time errors


class SecretValidationError(SecretError):
    """Raised when a secret reference fails validation."""

    pass


class EmptyNameError(SecretValidationError):
    """Raised when a secret name is empty."""

    def __init__(self) -> None:
        super().__init__("secret name cannot be empty")


class InvalidNameError(SecretValidationError):
    """Raised when a secret name is not uppercase alphanumeric with underscores."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            f"invalid secret name: must be uppercase alphanumeric with underscores: {name}"
        )


class InvalidSourceError(SecretValidationError):
    """Raised when a secret source is not recognized."""

    def __init__(self, source: object) -> None:
        self.source = source
        super().__init__(f"invalid secret source: {source}")


class InvalidTypeError(SecretValidationError):
    """Raised when a secret type is not recognized."""

    def __init__(self, secret_type: object) -> None:
        self.secret_type = secret_type
        super().__init__(f"invalid secret type: {secret_type}")


class InvalidEncodingError(SecretValidationError):
    """Raised when a secret encoding is not recognized."""

    def __init__(self, encoding: object) -> None:
        self.encoding = encoding
        super().__init__(f"invalid secret encoding: {encoding}")


class MissingKeyError(SecretValidationError):
    """Raised when a non-manual secret has no key."""

    def __init__(self, source: object) -> None:
        self.source = source
        super().__init__(f"secret key is required for source {source}")


# Manifest-insertion errors


class DuplicateNameError(SecretError):
    """Raised when a manifest already holds a secret with the same name."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"duplicate secret name: {name}")


# Resolution-time errors


class SecretNotFoundError(SecretError):
    """Raised when a secret does not exist in its source."""

    def __init__(self, name: str, detail: str = "") -> None:
        self.name = name
        message = f"secret not found: {name}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class SecretNotResolvedError(SecretError):
    """Raised when no step of the resolution chain produced a value."""

    def __init__(self, name: str, reason: str = "") -> None:
        self.name = name
        self.reason = reason
        message = f"required secret not resolved: {name}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class NoProviderForSourceError(SecretError):
    """Raised when no provider is registered for a secret source."""

    def __init__(self, source: object) -> None:
        self.source = source
        super().__init__(f"no provider found for secret source: {source}")


class ProviderError(SecretError):
    """Raised when a provider fails to fetch a secret."""

    pass


class ProviderConfigError(ProviderError):
    """Raised when a provider is not usable (client missing, not authenticated)."""

    pass


class ProviderTimeoutError(ProviderError):
    """Raised when a provider call exceeds the per-secret deadline."""

    pass


class ResolutionError(SecretError):
    """
    Aggregate error listing every required secret that was not resolved.

    Attributes:
        missing_secrets: Names of unresolved required secrets
        resolved: The partial result, for callers that want to inspect it
    """

    def __init__(
        self,
        missing_secrets: list[str],
        resolved: ResolvedSecrets | None = None,
    ) -> None:
        self.missing_secrets = list(missing_secrets)
        self.resolved = resolved
        super().__init__(
            f"failed to resolve {len(self.missing_secrets)} required secrets: "
            + ", ".join(self.missing_secrets)
        )
