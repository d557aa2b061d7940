"""
Secret reference model for secretmap.

Manifests NEVER contain secret values, only references describing where
each value lives. Values are resolved at deploy time into ResolvedSecrets,
which exist in memory only.
"""

from __future__ import annotations

import base64
import json
import os
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterator

from secretmap.secrets.envfile import escape_env_value
from secretmap.secrets.errors import (
    DuplicateNameError,
    EmptyNameError,
    InvalidEncodingError,
    InvalidNameError,
    InvalidSourceError,
    InvalidTypeError,
    MissingKeyError,
)
from secretmap.secrets.masking import unregister_secret_values

SECRET_NAME_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*$")

SECRETS_MANIFEST_VERSION = "1.0.0"


class SecretSource(Enum):
    """Source systems a secret can be resolved from."""

    MANUAL = "manual"
    ENV = "env"
    FILE = "file"

    # Managed cloud stores
    AWS_SECRETS_MANAGER = "aws-secrets-manager"
    GCP_SECRET_MANAGER = "gcp-secret-manager"
    AZURE_KEY_VAULT = "azure-key-vault"

    # Generic key/value store
    HASHICORP_VAULT = "hashicorp-vault"

    def __str__(self) -> str:
        return self.value

    def is_cloud_provider(self) -> bool:
        """Check if the source is a managed cloud secret store."""
        return self in _CLOUD_SOURCES

    def requires_credentials(self) -> bool:
        """Check if the source needs credentials to access."""
        return self not in _LOCAL_SOURCES

    @classmethod
    def is_valid(cls, value: Any) -> bool:
        """Check if a value is a recognized source."""
        if isinstance(value, cls):
            return True
        return isinstance(value, str) and value in _SOURCE_VALUES


_CLOUD_SOURCES = frozenset({
    SecretSource.AWS_SECRETS_MANAGER,
    SecretSource.GCP_SECRET_MANAGER,
    SecretSource.AZURE_KEY_VAULT,
})
_LOCAL_SOURCES = frozenset({
    SecretSource.MANUAL,
    SecretSource.ENV,
    SecretSource.FILE,
})
_SOURCE_VALUES = frozenset(s.value for s in SecretSource)


class SecretType(Enum):
    """Categories of secrets, used for validation and prompting."""

    PASSWORD = "password"
    API_KEY = "api_key"
    CERTIFICATE = "certificate"
    PRIVATE_KEY = "private_key"
    CONNECTION_STRING = "connection_string"
    GENERIC = "generic"

    def __str__(self) -> str:
        return self.value


class SecretEncoding(Enum):
    """How a secret value is encoded in its source."""

    PLAIN = "plain"
    BASE64 = "base64"

    def __str__(self) -> str:
        return self.value


def is_valid_secret_name(name: str) -> bool:
    """Check if a name is uppercase alphanumeric with underscores."""
    return bool(SECRET_NAME_PATTERN.match(name))


@dataclass
class SecretReference:
    """
    Describes a secret that must be provided at deploy time.

    Contains references only, NEVER actual secret values.

    Attributes:
        name: Environment variable name (e.g., "DATABASE_PASSWORD")
        source: Where the secret should be retrieved from
        key: Locator in the source, such as an ARN, a Secret Manager path,
            a file path or a Vault path. Required unless source is manual.
        description: Human-readable context
        required: Whether deployment needs this secret
        used_by: Ordered consumer names, without duplicates
        type: Secret category
        version: Specific version for versioned stores
        encoding: Encoding of the value in the source
    """

    name: str
    source: SecretSource
    key: str = ""
    description: str = ""
    required: bool = True
    used_by: list[str] = field(default_factory=list)
    type: SecretType = SecretType.GENERIC
    version: str = ""
    encoding: SecretEncoding = SecretEncoding.PLAIN

    def __post_init__(self) -> None:
        if isinstance(self.source, str) and SecretSource.is_valid(self.source):
            self.source = SecretSource(self.source)
        if isinstance(self.type, str):
            self.type = SecretType(self.type)
        if isinstance(self.encoding, str):
            self.encoding = SecretEncoding(self.encoding)
        deduped: list[str] = []
        for consumer in self.used_by:
            if consumer not in deduped:
                deduped.append(consumer)
        self.used_by = deduped

    def with_key(self, key: str) -> SecretReference:
        """Set the key/path for the secret."""
        self.key = key
        return self

    def with_description(self, description: str) -> SecretReference:
        """Set the description."""
        self.description = description
        return self

    def with_type(self, secret_type: SecretType) -> SecretReference:
        """Set the secret type."""
        self.type = secret_type
        return self

    def optional(self) -> SecretReference:
        """Mark the secret as not required."""
        self.required = False
        return self

    def add_used_by(self, consumer: str) -> SecretReference:
        """Record a consumer, keeping insertion order and skipping duplicates."""
        if consumer and consumer not in self.used_by:
            self.used_by.append(consumer)
        return self

    @property
    def is_cloud_sourced(self) -> bool:
        """Check if the secret lives in a managed cloud store."""
        return isinstance(self.source, SecretSource) and self.source.is_cloud_provider()

    def validate(self) -> None:
        """
        Validate the reference.

        Raises:
            EmptyNameError: If the name is empty
            InvalidNameError: If the name does not match ^[A-Z][A-Z0-9_]*$
            InvalidSourceError: If the source is not recognized
            MissingKeyError: If a non-manual source has no key
        """
        if not self.name:
            raise EmptyNameError()
        if not is_valid_secret_name(self.name):
            raise InvalidNameError(self.name)
        if not isinstance(self.source, SecretSource):
            raise InvalidSourceError(self.source)
        if self.source != SecretSource.MANUAL and not self.key:
            raise MissingKeyError(self.source)

    def decode(self, value: str) -> str:
        """Decode a fetched value according to the reference encoding."""
        if self.encoding == SecretEncoding.BASE64:
            return base64.b64decode(value).decode("utf-8")
        return value

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data: dict[str, Any] = {
            "name": self.name,
            "source": str(self.source),
            "required": self.required,
        }
        if self.key:
            data["key"] = self.key
        if self.description:
            data["description"] = self.description
        if self.used_by:
            data["used_by"] = list(self.used_by)
        data["type"] = self.type.value
        if self.version:
            data["version"] = self.version
        data["encoding"] = self.encoding.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SecretReference:
        """
        Create from dictionary.

        Raises:
            InvalidTypeError: If the type is not a SecretType value
            InvalidEncodingError: If the encoding is not a SecretEncoding value
        """
        raw_type = data.get("type") or SecretType.GENERIC.value
        try:
            secret_type = SecretType(raw_type)
        except ValueError:
            raise InvalidTypeError(raw_type) from None

        raw_encoding = data.get("encoding") or SecretEncoding.PLAIN.value
        try:
            encoding = SecretEncoding(raw_encoding)
        except ValueError:
            raise InvalidEncodingError(raw_encoding) from None

        return cls(
            name=data.get("name", ""),
            source=data.get("source", ""),
            key=data.get("key", ""),
            description=data.get("description", ""),
            required=data.get("required", True),
            used_by=list(data.get("used_by") or []),
            type=secret_type,
            version=data.get("version", ""),
            encoding=encoding,
        )


@dataclass
class SecretsManifest:
    """
    The deduplicated, persistable set of secret references for a scan.

    Names are unique. required_count and sources are derived on every
    read, so mutating an entry after insertion cannot desynchronize them.
    """

    version: str = SECRETS_MANIFEST_VERSION
    secrets: list[SecretReference] = field(default_factory=list)
    env_template: str = ""

    def __len__(self) -> int:
        return len(self.secrets)

    def __iter__(self) -> Iterator[SecretReference]:
        return iter(self.secrets)

    @property
    def required_count(self) -> int:
        """Get the number of required secrets."""
        return sum(1 for s in self.secrets if s.required)

    @property
    def sources(self) -> list[SecretSource]:
        """Get the distinct sources referenced, in first-seen order."""
        seen: list[SecretSource] = []
        for s in self.secrets:
            if s.source not in seen:
                seen.append(s.source)
        return seen

    def add_secret(self, ref: SecretReference) -> None:
        """
        Add a secret reference to the manifest.

        Raises:
            SecretValidationError: If the reference is invalid
            DuplicateNameError: If a secret with the same name exists
        """
        ref.validate()
        if any(existing.name == ref.name for existing in self.secrets):
            raise DuplicateNameError(ref.name)
        self.secrets.append(ref)

    def get_secret(self, name: str) -> SecretReference | None:
        """Get a secret reference by name."""
        for s in self.secrets:
            if s.name == name:
                return s
        return None

    def get_required(self) -> list[SecretReference]:
        """Get all required secret references."""
        return [s for s in self.secrets if s.required]

    def get_by_source(self, source: SecretSource) -> list[SecretReference]:
        """Get secrets from a specific source."""
        return [s for s in self.secrets if s.source == source]

    def get_cloud_secrets(self) -> list[SecretReference]:
        """Get secrets that must be pulled from managed cloud stores."""
        return [s for s in self.secrets if s.is_cloud_sourced]

    def sort(self) -> None:
        """Sort secrets by name for deterministic output."""
        self.secrets.sort(key=lambda s: s.name)

    def validate(self) -> None:
        """
        Validate every reference and check name uniqueness.

        Raises:
            SecretValidationError: If any reference is invalid
            DuplicateNameError: If two references share a name
        """
        seen: set[str] = set()
        for s in self.secrets:
            s.validate()
            if s.name in seen:
                raise DuplicateNameError(s.name)
            seen.add(s.name)

    def generate_env_template(self) -> str:
        """Generate the content of a .env.template file."""
        lines = [
            "# Environment Variables Template",
            "# Generated by secretmap - DO NOT commit actual values",
            "#",
            "# Instructions:",
            "# 1. Copy this file to .env",
            "# 2. Fill in the actual secret values",
            "# 3. Keep .env out of version control",
            "#",
            "",
        ]

        for s in self.secrets:
            if s.description:
                lines.append(f"# {s.description}")
            lines.append("# REQUIRED" if s.required else "# OPTIONAL")
            if s.source != SecretSource.MANUAL:
                lines.append(f"# Source: {s.source}")
                if s.key:
                    lines.append(f"# Key: {s.key}")
            lines.append(f"{s.name}=")
            lines.append("")

        return "\n".join(lines) + "\n"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data: dict[str, Any] = {
            "version": self.version,
            "secrets": [s.to_dict() for s in self.secrets],
            "required_count": self.required_count,
            "sources": [str(s) for s in self.sources],
        }
        if self.env_template:
            data["env_template"] = self.env_template
        return data

    def to_json(self, indent: int = 2) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SecretsManifest:
        """
        Create from dictionary.

        Every entry goes through add_secret, so invalid or duplicate
        entries raise. Derived fields in the input are ignored.
        """
        manifest = cls(
            version=data.get("version", SECRETS_MANIFEST_VERSION),
            env_template=data.get("env_template", ""),
        )
        for item in data.get("secrets") or []:
            manifest.add_secret(SecretReference.from_dict(item))
        return manifest

    @classmethod
    def from_json(cls, json_str: str) -> SecretsManifest:
        """Create from JSON string."""
        return cls.from_dict(json.loads(json_str))

    @classmethod
    def load(cls, path: str) -> SecretsManifest:
        """Load a manifest snapshot from a JSON or YAML file."""
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
        """Save the manifest snapshot to a JSON or YAML file."""
        path = os.path.expanduser(path)
        Path(path).parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            if path.endswith(".json"):
                json.dump(self.to_dict(), f, indent=2)
                return
            try:
                import yaml
            except ImportError:
                raise ValueError(
                    "YAML support requires PyYAML. Use JSON format instead."
                )
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


class ResolvedSecret:
    """
    A secret resolved to its actual value.

    Used at deploy time only and never persisted. The value is kept in a
    mutable buffer so it can be overwritten on wipe().
    """

    __slots__ = ("reference", "resolved_from", "resolved_at", "_buffer")

    def __init__(
        self,
        reference: SecretReference | None,
        value: str,
        resolved_from: str,
        resolved_at: datetime | None = None,
    ) -> None:
        self.reference = reference
        self.resolved_from = resolved_from
        self.resolved_at = resolved_at or datetime.now(timezone.utc)
        self._buffer = bytearray(value.encode("utf-8"))

    @property
    def value(self) -> str:
        """Get the secret value. Never log this."""
        return self._buffer.decode("utf-8")

    def wipe(self) -> None:
        """Overwrite the value buffer with zeros and drop the reference."""
        for i in range(len(self._buffer)):
            self._buffer[i] = 0
        self._buffer = bytearray()
        self.reference = None

    def __repr__(self) -> str:
        name = self.reference.name if self.reference else "?"
        return f"ResolvedSecret(name={name!r}, resolved_from={self.resolved_from!r}, value=***)"

    def __reduce__(self) -> Any:
        raise TypeError("ResolvedSecret cannot be serialized")


class ResolvedSecrets:
    """In-memory collection of resolved secrets, keyed by name."""

    def __init__(self) -> None:
        self._secrets: dict[str, ResolvedSecret] = {}
        self._lock = threading.Lock()

    def add(
        self,
        name: str,
        value: str,
        resolved_from: str,
        ref: SecretReference | None = None,
    ) -> None:
        """Add a resolved secret."""
        with self._lock:
            previous = self._secrets.get(name)
            if previous is not None:
                previous.wipe()
            self._secrets[name] = ResolvedSecret(ref, value, resolved_from)

    def get(self, name: str) -> ResolvedSecret | None:
        """Get a resolved secret by name."""
        return self._secrets.get(name)

    def get_value(self, name: str) -> str | None:
        """Get just the value of a resolved secret."""
        secret = self._secrets.get(name)
        return secret.value if secret is not None else None

    def has(self, name: str) -> bool:
        """Check if a secret is resolved."""
        return name in self._secrets

    def names(self) -> list[str]:
        """Get all resolved secret names, sorted."""
        return sorted(self._secrets)

    def count(self) -> int:
        """Get the number of resolved secrets."""
        return len(self._secrets)

    def __len__(self) -> int:
        return len(self._secrets)

    def __contains__(self, name: object) -> bool:
        return name in self._secrets

    def to_env_map(self) -> dict[str, str]:
        """Convert to an environment variable mapping."""
        return {name: s.value for name, s in self._secrets.items()}

    def to_env_file(self) -> str:
        """Generate the content of a .env file."""
        lines = [
            "# Generated by secretmap",
            "# WARNING: This file contains sensitive values",
            "",
        ]
        for name in self.names():
            lines.append(f"{name}={escape_env_value(self._secrets[name].value)}")
        return "\n".join(lines) + "\n"

    def clear(self) -> None:
        """
        Overwrite every value, then remove all entries.

        The values are also removed from the process-wide masking filter,
        so no plaintext copy outlives the collection.
        """
        with self._lock:
            values = [s.value for s in self._secrets.values()]
            for name in list(self._secrets):
                self._secrets[name].wipe()
                del self._secrets[name]
        unregister_secret_values(values)

    def __repr__(self) -> str:
        return f"ResolvedSecrets(names={self.names()!r})"

    def __reduce__(self) -> Any:
        raise TypeError("ResolvedSecrets cannot be serialized")
