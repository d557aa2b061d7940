"""
Secret resolution for secretmap.

The Resolver turns a SecretsManifest into actual values at deploy time.
Each secret goes through a fixed chain of sources, first hit wins:

    1. secrets file (KEY=VALUE, matched by secret name)
    2. environment variable <prefix><NAME>
    3. forced cloud provider (pull_from), for cloud-sourced secrets
    4. the provider registered for the secret's own source
    5. interactive prompt

Values fetched from a provider (steps 3 and 4) are decoded according to
the reference encoding. Failures of individual steps are logged at debug
level and advance the chain. Values are never logged; each resolved value
is registered with the masking filter so it is redacted if it ever reaches
a log record.
"""

from __future__ import annotations

import dataclasses
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping

from secretmap.observability.logging import get_logger
from secretmap.resolution.context import ResolutionContext
from secretmap.resolution.providers.base import SecretProvider
from secretmap.secrets.envfile import read_env_file, write_env_content
from secretmap.secrets.errors import (
    NoProviderForSourceError,
    ProviderConfigError,
    ResolutionError,
    SecretError,
    SecretNotResolvedError,
)
from secretmap.secrets.masking import register_secret_value
from secretmap.secrets.reference import (
    ResolvedSecrets,
    SecretReference,
    SecretsManifest,
    SecretSource,
)

logger = get_logger("resolution")

DEFAULT_ENV_PREFIX = "SECRETMAP_SECRET_"
DEFAULT_TIMEOUT = 30.0

# Values accepted for ResolverOptions.pull_from
PULL_FROM_SOURCES = {
    "aws": SecretSource.AWS_SECRETS_MANAGER,
    "gcp": SecretSource.GCP_SECRET_MANAGER,
    "azure": SecretSource.AZURE_KEY_VAULT,
}

PROVENANCE_INTERACTIVE = "interactive"

# One terminal per process: prompts never overlap
_PROMPT_LOCK = threading.Lock()

PromptFunc = Callable[[SecretReference], str]


@dataclass
class ResolverOptions:
    """
    Resolver behavior.

    Attributes:
        secrets_file_path: .env file consulted first; "" disables it
        pull_from: Cloud store ("aws", "gcp", "azure") that all cloud-sourced
            secrets are redirected through; "" disables it
        env_prefix: Prefix of environment variables holding secret values
        allow_interactive: Prompt for secrets no other step resolved
        fail_on_missing: Raise ResolutionError when required secrets are missing
        timeout: Seconds the whole chain may take per secret; <= 0 disables
        max_workers: Secrets resolved concurrently by resolve_all
    """

    secrets_file_path: str = ""
    pull_from: str = ""
    env_prefix: str = DEFAULT_ENV_PREFIX
    allow_interactive: bool = True
    fail_on_missing: bool = True
    timeout: float = DEFAULT_TIMEOUT
    max_workers: int = 1

    def __post_init__(self) -> None:
        self.pull_from = self.pull_from.strip().lower()
        if self.pull_from and self.pull_from not in PULL_FROM_SOURCES:
            raise ProviderConfigError(
                f"unknown cloud provider: {self.pull_from} "
                f"(expected one of: {', '.join(sorted(PULL_FROM_SOURCES))})"
            )
        if self.max_workers < 1:
            self.max_workers = 1

    @property
    def pull_from_source(self) -> SecretSource | None:
        """Get the source pull_from redirects to, if any."""
        return PULL_FROM_SOURCES.get(self.pull_from)


class ResolvabilityStatus(Enum):
    """Outcome of the resolvability dry run for one secret."""

    RESOLVABLE = "resolvable"
    MAYBE_RESOLVABLE = "maybe-resolvable"
    NEEDS_INTERACTIVE = "needs-interactive"
    UNRESOLVABLE = "unresolvable"

    def __str__(self) -> str:
        return self.value


@dataclass
class SecretResolvability:
    """
    Dry-run classification of one secret.

    Attributes:
        status: How likely the secret is to resolve
        method: What would resolve it ("secrets-file", "environment", a
            source name, "interactive-prompt" or "none")
    """

    status: ResolvabilityStatus
    method: str

    def to_dict(self) -> dict[str, str]:
        return {"status": self.status.value, "method": self.method}


@dataclass
class ResolvabilityReport:
    """Resolvability of every secret in a manifest."""

    secrets: dict[str, SecretResolvability] = field(default_factory=dict)
    resolvable: list[str] = field(default_factory=list)
    maybe_resolvable: list[str] = field(default_factory=list)
    needs_interactive: list[str] = field(default_factory=list)
    unresolvable: list[str] = field(default_factory=list)

    def add(self, name: str, result: SecretResolvability) -> None:
        """Record the classification of a secret."""
        self.secrets[name] = result
        {
            ResolvabilityStatus.RESOLVABLE: self.resolvable,
            ResolvabilityStatus.MAYBE_RESOLVABLE: self.maybe_resolvable,
            ResolvabilityStatus.NEEDS_INTERACTIVE: self.needs_interactive,
            ResolvabilityStatus.UNRESOLVABLE: self.unresolvable,
        }[result.status].append(name)

    def status_of(self, name: str) -> ResolvabilityStatus | None:
        """Get the status recorded for a secret."""
        result = self.secrets.get(name)
        return result.status if result else None

    def can_resolve_all(self, manifest: SecretsManifest) -> bool:
        """Check that no required secret of the manifest is unresolvable."""
        for ref in manifest.get_required():
            if self.status_of(ref.name) in (None, ResolvabilityStatus.UNRESOLVABLE):
                return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "secrets": {name: r.to_dict() for name, r in self.secrets.items()},
            "resolvable": list(self.resolvable),
            "maybe_resolvable": list(self.maybe_resolvable),
            "needs_interactive": list(self.needs_interactive),
            "unresolvable": list(self.unresolvable),
        }


class Resolver:
    """
    Resolves secret references through the resolution chain.

    Example:
        >>> resolver = Resolver(ResolverOptions(secrets_file_path=".env.secrets"))
        >>> resolver.register_provider(EnvProvider())
        >>> resolved = resolver.resolve_all(manifest)
    """

    def __init__(
        self,
        options: ResolverOptions | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        """
        Initialize the resolver.

        Args:
            options: Resolver behavior; defaults when None
            environ: Environment to read; a snapshot of os.environ when None
        """
        self.options = options or ResolverOptions()
        self._environ = dict(os.environ if environ is None else environ)
        self._providers: dict[SecretSource, SecretProvider] = {}
        self._prompt_func: PromptFunc | None = None
        self._file_values: dict[str, str] | None = None
        self._file_lock = threading.Lock()

    def register_provider(self, provider: SecretProvider) -> None:
        """Register a provider, replacing any previous one for its source."""
        self._providers[provider.name()] = provider

    def get_provider(self, source: SecretSource) -> SecretProvider | None:
        """Get the provider registered for a source."""
        return self._providers.get(source)

    @property
    def providers(self) -> dict[SecretSource, SecretProvider]:
        """Registered providers by source."""
        return dict(self._providers)

    def set_prompt_func(self, func: PromptFunc | None) -> None:
        """Set the callback used by the interactive step."""
        self._prompt_func = func

    # -------------------------------------------------------------------------
    # Single secret
    # -------------------------------------------------------------------------

    def resolve(
        self,
        ref: SecretReference,
        cancel_event: threading.Event | None = None,
    ) -> str:
        """
        Resolve one secret.

        Raises:
            SecretNotResolvedError: If no step of the chain produced a value
        """
        value, _ = self.resolve_with_provenance(ref, cancel_event)
        return value

    def resolve_with_provenance(
        self,
        ref: SecretReference,
        cancel_event: threading.Event | None = None,
    ) -> tuple[str, str]:
        """
        Resolve one secret and report where the value came from.

        Provenance is one of "file:<path>", "env:<VAR>",
        "cloud:<pull_from>", "provider:<source>" or "interactive".

        Raises:
            SecretNotResolvedError: If no step of the chain produced a value
        """
        ctx = ResolutionContext(self.options.timeout, cancel_event)
        value, resolved_from = self._resolve_one(ref, ctx)
        register_secret_value(value)
        logger.secret_resolved(ref.name, resolved_from)
        return value, resolved_from

    def _resolve_one(self, ref: SecretReference, ctx: ResolutionContext) -> tuple[str, str]:
        steps: list[tuple[str, Callable[[], tuple[str, str] | None]]] = [
            ("secrets file", lambda: self._from_file(ref)),
            ("environment", lambda: self._from_env(ref)),
            ("cloud override", lambda: self._from_cloud(ref, ctx)),
            ("provider", lambda: self._from_provider(ref, ctx)),
            ("interactive prompt", lambda: self._from_prompt(ref, ctx)),
        ]

        last_error = ""
        for step_name, step in steps:
            if ctx.cancelled:
                raise SecretNotResolvedError(ref.name, "resolution cancelled")
            if ctx.expired:
                raise SecretNotResolvedError(
                    ref.name, f"resolution deadline of {ctx.timeout}s exceeded"
                )
            try:
                result = step()
            except SecretError as e:
                logger.debug(
                    f"Step {step_name} failed for {ref.name}: {e}",
                    secret_name=ref.name,
                    step=step_name,
                )
                last_error = str(e)
                continue
            except Exception as e:
                # Unexpected provider failures advance the chain too
                logger.debug(
                    f"Step {step_name} raised {type(e).__name__} for {ref.name}: {e}",
                    secret_name=ref.name,
                    step=step_name,
                )
                last_error = str(e)
                continue
            if result is not None:
                return result

        raise SecretNotResolvedError(ref.name, last_error)

    def _from_file(self, ref: SecretReference) -> tuple[str, str] | None:
        path = self.options.secrets_file_path
        if not path:
            return None
        value = self._secrets_file_values().get(ref.name, "")
        if not value:
            return None
        return value, f"file:{path}"

    def _secrets_file_values(self) -> dict[str, str]:
        with self._file_lock:
            if self._file_values is None:
                path = self.options.secrets_file_path
                try:
                    self._file_values = read_env_file(path)
                except (OSError, ValueError) as e:
                    logger.warning(
                        f"Secrets file {path} skipped: {e}",
                        secrets_file=path,
                        error_type=type(e).__name__,
                    )
                    self._file_values = {}
            return self._file_values

    def _from_env(self, ref: SecretReference) -> tuple[str, str] | None:
        var = self.options.env_prefix + ref.name
        value = self._environ.get(var, "")
        if value:
            return value, f"env:{var}"

        # Env-sourced secrets may also be found under their own key
        if ref.source == SecretSource.ENV and ref.key:
            value = self._environ.get(ref.key, "")
            if value:
                return value, f"env:{ref.key}"
        return None

    def _from_cloud(
        self,
        ref: SecretReference,
        ctx: ResolutionContext,
    ) -> tuple[str, str] | None:
        forced = self.options.pull_from_source
        if forced is None or not ref.is_cloud_sourced:
            return None

        provider = self._providers.get(forced)
        if provider is None:
            raise NoProviderForSourceError(forced)

        forced_ref = dataclasses.replace(ref, source=forced)
        value = ctx.run(provider.resolve, forced_ref, ctx)
        value = ref.decode(value)
        return value, f"cloud:{self.options.pull_from}"

    def _from_provider(
        self,
        ref: SecretReference,
        ctx: ResolutionContext,
    ) -> tuple[str, str] | None:
        provider = self._providers.get(ref.source)
        if provider is None or not provider.can_resolve(ref):
            return None
        value = ctx.run(provider.resolve, ref, ctx)
        value = ref.decode(value)
        return value, f"provider:{ref.source.value}"

    def _from_prompt(
        self,
        ref: SecretReference,
        ctx: ResolutionContext,
    ) -> tuple[str, str] | None:
        if not self.options.allow_interactive or self._prompt_func is None:
            return None

        with _PROMPT_LOCK:
            ctx.check()
            value = self._prompt_func(ref)

        if not value:
            if ref.required:
                raise SecretNotResolvedError(ref.name, "required but no value provided")
            return None
        return value, PROVENANCE_INTERACTIVE

    # -------------------------------------------------------------------------
    # Manifest
    # -------------------------------------------------------------------------

    def resolve_all(
        self,
        manifest: SecretsManifest,
        cancel_event: threading.Event | None = None,
    ) -> ResolvedSecrets:
        """
        Resolve every secret of a manifest.

        Secrets are independent: each failure is recorded and the run goes
        on. Once cancel_event is set no further secret is started, and
        entries already resolved are kept.

        Returns:
            The resolved secrets

        Raises:
            ResolutionError: If fail_on_missing is set and required secrets
                were not resolved; its resolved attribute holds the partial
                result
        """
        start_time = time.time()
        refs = list(manifest.secrets)
        resolved = ResolvedSecrets()
        failures: dict[str, str] = {}

        def work(ref: SecretReference) -> None:
            if cancel_event is not None and cancel_event.is_set():
                failures[ref.name] = "resolution cancelled"
                return
            try:
                value, resolved_from = self.resolve_with_provenance(ref, cancel_event)
            except SecretError as e:
                failures[ref.name] = str(e)
                return
            resolved.add(ref.name, value, resolved_from, ref)

        if self.options.max_workers > 1 and len(refs) > 1:
            with ThreadPoolExecutor(
                max_workers=self.options.max_workers,
                thread_name_prefix="secretmap-resolver",
            ) as executor:
                for future in [executor.submit(work, ref) for ref in refs]:
                    future.result()
        else:
            for ref in refs:
                work(ref)

        missing: list[str] = []
        for ref in refs:
            if ref.name in failures:
                logger.secret_unresolved(ref.name, ref.required, failures[ref.name])
                if ref.required:
                    missing.append(ref.name)

        logger.info(
            f"Resolved {resolved.count()} of {len(refs)} secrets",
            event_type="resolution.completed",
            resolved_count=resolved.count(),
            missing_count=len(missing),
            duration_seconds=round(time.time() - start_time, 3),
        )

        if self.options.fail_on_missing and missing:
            raise ResolutionError(missing, resolved)
        return resolved

    def check_resolvability(self, manifest: SecretsManifest) -> ResolvabilityReport:
        """
        Classify every secret without fetching or prompting.

        File and environment lookups are performed for real. Providers are
        only asked to validate their configuration.
        """
        report = ResolvabilityReport()
        for ref in manifest.secrets:
            report.add(ref.name, self._check_one(ref))
        return report

    def _check_one(self, ref: SecretReference) -> SecretResolvability:
        if self._from_file(ref) is not None:
            return SecretResolvability(ResolvabilityStatus.RESOLVABLE, "secrets-file")

        if self._from_env(ref) is not None:
            return SecretResolvability(ResolvabilityStatus.RESOLVABLE, "environment")

        for provider in self._candidate_providers(ref):
            try:
                provider.validate_config()
            except SecretError as e:
                logger.debug(f"Provider {provider.name()} not usable for {ref.name}: {e}")
                continue
            return SecretResolvability(
                ResolvabilityStatus.MAYBE_RESOLVABLE, provider.name().value
            )

        if self.options.allow_interactive and self._prompt_func is not None:
            return SecretResolvability(
                ResolvabilityStatus.NEEDS_INTERACTIVE, "interactive-prompt"
            )

        return SecretResolvability(ResolvabilityStatus.UNRESOLVABLE, "none")

    def _candidate_providers(self, ref: SecretReference) -> list[SecretProvider]:
        candidates = []
        forced = self.options.pull_from_source
        if forced is not None and ref.is_cloud_sourced and forced in self._providers:
            candidates.append(self._providers[forced])

        native = self._providers.get(ref.source)
        if (
            native is not None
            and native.can_resolve(ref)
            and native not in candidates
        ):
            candidates.append(native)
        return candidates

    def clear_cache(self) -> None:
        """Forget the parsed secrets file and clear every provider's cache."""
        with self._file_lock:
            self._file_values = None
        for provider in self._providers.values():
            provider.clear_cache()


def create_env_file(resolved: ResolvedSecrets, path: str) -> None:
    """Write resolved values to a .env file readable only by its owner."""
    write_env_content(path, resolved.to_env_file(), 0o600)
    logger.info(f"Wrote {resolved.count()} secrets to {path}")


def create_env_template(manifest: SecretsManifest, path: str) -> None:
    """Write the manifest's environment template, without values."""
    write_env_content(path, manifest.generate_env_template(), 0o644)
