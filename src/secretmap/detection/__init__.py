"""
Secret detection for secretmap.

Provides detectors that inspect cloud resource configurations and
propose the secrets each resource implies, plus the registry that
deduplicates those candidates into a SecretsManifest.

Detection is deterministic and offline: detectors only read the
resource configuration they are given.
"""

from __future__ import annotations

from secretmap.detection.base import (
    BaseDetector,
    DetectedSecret,
    DetectorRegistry,
    DroppedSecret,
    SecretDetector,
)
from secretmap.detection.aws import AWSDetector
from secretmap.detection.gcp import GCPDetector
from secretmap.detection.azure import AzureDetector, extract_key_vault_reference


def create_default_registry(strict: bool = False) -> DetectorRegistry:
    """
    Create a registry with the AWS, GCP and Azure detectors.

    Args:
        strict: Raise instead of logging when a secret cannot be added

    Returns:
        Configured DetectorRegistry
    """
    registry = DetectorRegistry(strict=strict)
    registry.register(AWSDetector())
    registry.register(GCPDetector())
    registry.register(AzureDetector())
    return registry


__all__ = [
    # Framework
    "BaseDetector",
    "DetectedSecret",
    "DetectorRegistry",
    "DroppedSecret",
    "SecretDetector",
    "create_default_registry",
    # Detectors
    "AWSDetector",
    "GCPDetector",
    "AzureDetector",
    "extract_key_vault_reference",
]
