"""
Base provider framework for secretmap.

A provider retrieves secret values from one kind of source. Providers
are registered with the Resolver, which calls them as steps of the
resolution chain.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from secretmap.resolution.context import ResolutionContext
from secretmap.secrets.errors import SecretError
from secretmap.secrets.reference import SecretReference, SecretSource

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """
    Result of resolving several secrets in one round trip.

    Attributes:
        secrets: Resolved values keyed by secret name
        errors: Failures keyed by secret name
    """

    secrets: dict[str, str] = field(default_factory=dict)
    errors: dict[str, Exception] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        """Check if every secret resolved."""
        return len(self.errors) == 0


class SecretProvider(ABC):
    """
    Abstract base class for secret providers.

    Implementations must never log or display a value they return.
    """

    @abstractmethod
    def name(self) -> SecretSource:
        """Get the source this provider resolves."""
        pass

    def can_resolve(self, ref: SecretReference) -> bool:
        """
        Check if this provider can resolve a reference.

        The default matches the provider's source and requires a key.
        """
        return ref.source == self.name() and bool(ref.key)

    @abstractmethod
    def resolve(self, ref: SecretReference, ctx: ResolutionContext | None = None) -> str:
        """
        Retrieve the value for a reference.

        Args:
            ref: Reference to resolve
            ctx: Deadline and cancellation for the call

        Returns:
            The secret value

        Raises:
            SecretError: If the value cannot be retrieved
        """
        pass

    @abstractmethod
    def validate_config(self) -> None:
        """
        Check that the provider is usable.

        Must not fetch or display any secret value.

        Raises:
            ProviderConfigError: If the provider is not configured or not
                authenticated
        """
        pass

    def clear_cache(self) -> None:
        """Drop any cached values. Providers without caches do nothing."""
        pass

    def _check_can_resolve(self, ref: SecretReference) -> None:
        if not self.can_resolve(ref):
            raise SecretError(
                f"cannot resolve secret {ref.name}: invalid source or missing key"
            )


class BatchProvider(SecretProvider):
    """
    Provider that can fetch many secrets in one external round trip.

    resolve_batch is an optimization: when the batch call fails, each
    secret is resolved individually.
    """

    def resolve_batch(
        self,
        refs: list[SecretReference],
        ctx: ResolutionContext | None = None,
    ) -> BatchResult:
        """
        Resolve several references at once.

        Args:
            refs: References to resolve; ones this provider cannot resolve
                are reported as errors
            ctx: Deadline and cancellation for the batch

        Returns:
            BatchResult with one entry per reference
        """
        resolvable = [ref for ref in refs if self.can_resolve(ref)]
        result = BatchResult()
        for ref in refs:
            if ref not in resolvable:
                result.errors[ref.name] = SecretError(
                    f"cannot resolve secret {ref.name}: invalid source or missing key"
                )

        if not resolvable:
            return result

        try:
            batch = self._fetch_batch(resolvable, ctx)
        except SecretError as e:
            logger.debug(f"Batch fetch failed, resolving individually: {e}")
            batch = BatchResult()

        for ref in resolvable:
            if ref.name in batch.secrets:
                result.secrets[ref.name] = batch.secrets[ref.name]
                continue
            if ref.name in batch.errors:
                result.errors[ref.name] = batch.errors[ref.name]
                continue
            try:
                result.secrets[ref.name] = self.resolve(ref, ctx)
            except SecretError as e:
                result.errors[ref.name] = e

        return result

    def _fetch_batch(
        self,
        refs: list[SecretReference],
        ctx: ResolutionContext | None,
    ) -> BatchResult:
        """
        Fetch values in one round trip.

        Secrets missing from the returned result are resolved individually.
        The default fetches nothing.
        """
        return BatchResult()
