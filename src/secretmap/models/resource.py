"""
Cloud resource data model for secretmap.

This module defines the CloudResource record consumed by the secret
detectors, plus typed accessors for its untyped configuration bag.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

PROVIDER_AWS = "aws"
PROVIDER_GCP = "gcp"
PROVIDER_AZURE = "azure"

# Terraform-style type prefixes
_PROVIDER_PREFIXES = (
    ("aws_", PROVIDER_AWS),
    ("google_", PROVIDER_GCP),
    ("azurerm_", PROVIDER_AZURE),
)


def resource_provider(resource_type: str) -> str:
    """
    Derive the cloud provider from a resource type name.

    Args:
        resource_type: Resource type (e.g., "aws_db_instance")

    Returns:
        Provider name ("aws", "gcp", "azure") or "" when unknown
    """
    for prefix, provider in _PROVIDER_PREFIXES:
        if resource_type.startswith(prefix) and len(resource_type) > len(prefix):
            return provider
    return ""


@dataclass(frozen=True)
class CloudResource:
    """
    Represents a discovered cloud resource.

    Attributes:
        id: Unique identifier of the resource
        name: Human-readable name
        type: Resource type (e.g., "aws_lambda_function")
        config: Raw configuration as collected
        arn: Provider ARN or fully qualified ID, if known
    """

    id: str
    name: str
    type: str
    config: dict[str, Any] = field(default_factory=dict)
    arn: str = ""

    @property
    def provider(self) -> str:
        """Get the cloud provider for this resource."""
        return resource_provider(self.type)

    @property
    def display_name(self) -> str:
        """Get the name, falling back to the ID."""
        return self.name or self.id

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "arn": self.arn,
            "config": self.config,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CloudResource:
        """Create from dictionary."""
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            type=data["type"],
            config=data.get("config", {}) or {},
            arn=data.get("arn", ""),
        )


# Typed configuration accessors. Each returns None when the key is absent
# or holds a value of a different type.


def get_str(config: dict[str, Any] | None, key: str) -> str | None:
    """Get a string value from a configuration mapping."""
    if not config:
        return None
    value = config.get(key)
    return value if isinstance(value, str) else None


def get_map(config: dict[str, Any] | None, key: str) -> dict[str, Any] | None:
    """Get a nested mapping from a configuration mapping."""
    if not config:
        return None
    value = config.get(key)
    return value if isinstance(value, dict) else None


def get_list(config: dict[str, Any] | None, key: str) -> list[Any] | None:
    """Get a list value from a configuration mapping."""
    if not config:
        return None
    value = config.get(key)
    return value if isinstance(value, list) else None


def get_bool(config: dict[str, Any] | None, key: str) -> bool | None:
    """Get a boolean value from a configuration mapping."""
    if not config:
        return None
    value = config.get(key)
    return value if isinstance(value, bool) else None


def iter_maps(items: list[Any] | None) -> list[dict[str, Any]]:
    """Return the mapping entries of a list, skipping anything else."""
    if not items:
        return []
    return [item for item in items if isinstance(item, dict)]
