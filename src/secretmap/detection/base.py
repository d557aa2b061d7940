"""
Base detector framework for secretmap.

This module provides the abstract base class for secret detectors,
along with the DetectorRegistry that dispatches resources to detectors
and assembles the deduplicated SecretsManifest.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable

from secretmap.models import CloudResource
from secretmap.observability.logging import get_logger
from secretmap.secrets.errors import DuplicateNameError, SecretError
from secretmap.secrets.patterns import normalize_env_name
from secretmap.secrets.reference import (
    SecretEncoding,
    SecretReference,
    SecretSource,
    SecretsManifest,
    SecretType,
    is_valid_secret_name,
)

logger = get_logger("detection")


@dataclass
class DetectedSecret:
    """
    A candidate secret discovered while analyzing a cloud resource.

    Transient: produced by a detector, merged by the registry, then
    converted to a SecretReference.

    Attributes:
        name: Environment variable name (e.g., "PROD_DB_PASSWORD")
        source: Where the secret should be retrieved from
        key: Locator in the source system
        description: Human-readable context
        required: Whether deployment needs this secret
        type: Secret category
        resource_id: ID of the resource the secret was detected on
        resource_name: Name of that resource
        resource_type: Type of that resource
        deduplication_key: Identity shared by candidates that refer to the
            same underlying secret. Derived when empty.
    """

    name: str
    source: SecretSource
    key: str = ""
    description: str = ""
    required: bool = True
    type: SecretType = SecretType.GENERIC
    resource_id: str = ""
    resource_name: str = ""
    resource_type: str = ""
    deduplication_key: str = ""
    version: str = ""
    encoding: SecretEncoding = SecretEncoding.PLAIN

    def effective_deduplication_key(self) -> str:
        """
        Get the deduplication key, deriving one when none was set.

        Cloud-store secrets with a key are identified by source and key;
        everything else by name.
        """
        if self.deduplication_key:
            return self.deduplication_key
        if self.source.is_cloud_provider() and self.key:
            return f"{self.source.value}:{self.key}"
        return f"manual:{self.name}"

    def to_secret_reference(self) -> SecretReference:
        """Convert to a SecretReference, seeding used_by with the resource name."""
        ref = SecretReference(
            name=self.name,
            source=self.source,
            key=self.key,
            description=self.description,
            required=self.required,
            type=self.type,
            version=self.version,
            encoding=self.encoding,
        )
        if self.resource_name:
            ref.add_used_by(self.resource_name)
        return ref


class SecretDetector(ABC):
    """
    Abstract base class for secret detectors.

    A detector inspects one resource and proposes the secrets it implies.
    Detectors must not call cloud APIs; they only read resource config.
    """

    @abstractmethod
    def detect(self, resource: CloudResource) -> list[DetectedSecret]:
        """
        Analyze a resource and return detected secrets.

        Args:
            resource: Resource to analyze

        Returns:
            Detected secrets; empty when the resource implies none
        """
        pass

    @abstractmethod
    def supported_types(self) -> list[str]:
        """Get the resource types this detector handles."""
        pass

    @abstractmethod
    def provider(self) -> str:
        """Get the cloud provider this detector is for."""
        pass


class BaseDetector(SecretDetector):
    """
    Common functionality for detectors.

    Subclasses set provider_name and resource_types and implement detect().
    """

    provider_name: str = ""
    resource_types: list[str] = []

    def provider(self) -> str:
        return self.provider_name

    def supported_types(self) -> list[str]:
        return list(self.resource_types)

    def _candidate(
        self,
        resource: CloudResource,
        name: str,
        source: SecretSource = SecretSource.MANUAL,
        **kwargs: object,
    ) -> DetectedSecret:
        """
        Build a DetectedSecret attributed to a resource.

        Cloud-store candidates get an explicit "<source>:<key>" dedup key.
        """
        secret = DetectedSecret(
            name=name,
            source=source,
            resource_id=resource.id,
            resource_name=resource.display_name,
            resource_type=resource.type,
            **kwargs,  # type: ignore[arg-type]
        )
        if source.is_cloud_provider() and secret.key and not secret.deduplication_key:
            secret.deduplication_key = f"{source.value}:{secret.key}"
        return secret


@dataclass
class DroppedSecret:
    """A candidate that could not be added to the manifest."""

    name: str
    deduplication_key: str
    resource_id: str
    error: str


class DetectorRegistry:
    """
    Dispatches resources to detectors and builds the secrets manifest.

    Detectors are keyed by (provider, resource type); registering a
    detector for a type that already has one replaces it.
    """

    def __init__(self, strict: bool = False) -> None:
        """
        Initialize the registry.

        Args:
            strict: Raise when a secret cannot be added to the manifest
                even after the collision retry. When False, the secret is
                logged and recorded in `dropped`.
        """
        self.strict = strict
        self.dropped: list[DroppedSecret] = []
        self._detectors: dict[str, dict[str, SecretDetector]] = {}
        self._lock = threading.RLock()

    def register(self, detector: SecretDetector) -> None:
        """Register a detector for all its supported types."""
        with self._lock:
            by_type = self._detectors.setdefault(detector.provider(), {})
            for resource_type in detector.supported_types():
                by_type[resource_type] = detector

    def get_detector(self, resource_type: str) -> SecretDetector | None:
        """Get the detector for a resource type, if one is registered."""
        provider = CloudResource(id="", name="", type=resource_type).provider
        with self._lock:
            return self._detectors.get(provider, {}).get(resource_type)

    @property
    def detector_count(self) -> int:
        """Get the number of distinct registered detectors."""
        with self._lock:
            unique = {
                id(d) for by_type in self._detectors.values() for d in by_type.values()
            }
        return len(unique)

    def supported_types(self) -> list[str]:
        """Get all resource types with a registered detector, sorted."""
        with self._lock:
            return sorted(t for by_type in self._detectors.values() for t in by_type)

    def detect_all(self, resources: Iterable[CloudResource]) -> SecretsManifest:
        """
        Analyze all resources and return a deduplicated secrets manifest.

        A failing detector is logged and skipped. Candidates sharing a
        deduplication key are merged: used_by accumulates resource names in
        first-seen order and required is the logical OR of the inputs.

        Args:
            resources: Resources to analyze

        Returns:
            Manifest sorted by secret name

        Raises:
            SecretError: In strict mode, when a secret cannot be added
        """
        resources = list(resources)
        start_time = time.time()
        logger.detection_started(len(resources), self.detector_count)

        with self._lock:
            self.dropped = []
            canonical: dict[str, DetectedSecret] = {}
            used_by: dict[str, list[str]] = {}

            for resource in resources:
                detector = self.get_detector(resource.type)
                if detector is None:
                    continue

                try:
                    detected = detector.detect(resource)
                except Exception as e:
                    logger.detector_failed(resource.id, resource.type, str(e))
                    continue

                for secret in detected:
                    key = secret.effective_deduplication_key()
                    existing = canonical.get(key)
                    if existing is None:
                        canonical[key] = secret
                        used_by[key] = [resource.name] if resource.name else []
                        continue

                    if resource.name and resource.name not in used_by[key]:
                        used_by[key].append(resource.name)
                    if secret.required and not existing.required:
                        existing.required = True

            manifest = SecretsManifest()
            for key, secret in canonical.items():
                ref = secret.to_secret_reference()
                ref.used_by = list(used_by[key])
                if ref.source == SecretSource.MANUAL:
                    ref.key = ""
                self._add_to_manifest(manifest, ref, secret, key)

        manifest.sort()

        logger.detection_completed(
            secret_count=len(manifest),
            required_count=manifest.required_count,
            dropped_count=len(self.dropped),
            duration_seconds=time.time() - start_time,
        )
        return manifest

    def _add_to_manifest(
        self,
        manifest: SecretsManifest,
        ref: SecretReference,
        secret: DetectedSecret,
        dedup_key: str,
    ) -> None:
        try:
            manifest.add_secret(ref)
            return
        except DuplicateNameError:
            ref.name = self._suffixed_name(ref.name, secret.resource_id)
        except SecretError as e:
            self._drop(ref, secret, dedup_key, e)
            return

        try:
            manifest.add_secret(ref)
        except SecretError as e:
            self._drop(ref, secret, dedup_key, e)

    @staticmethod
    def _suffixed_name(name: str, resource_id: str) -> str:
        suffixed = f"{name}_{resource_id[:4].upper()}"
        if not is_valid_secret_name(suffixed):
            suffixed = normalize_env_name(suffixed)
        return suffixed

    def _drop(
        self,
        ref: SecretReference,
        secret: DetectedSecret,
        dedup_key: str,
        error: SecretError,
    ) -> None:
        if self.strict:
            raise error
        logger.secret_dropped(ref.name, dedup_key, secret.resource_id, str(error))
        self.dropped.append(
            DroppedSecret(
                name=ref.name,
                deduplication_key=dedup_key,
                resource_id=secret.resource_id,
                error=str(error),
            )
        )
