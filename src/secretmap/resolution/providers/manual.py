"""
Interactive secret provider for secretmap.

Prompts the operator for secret values on the terminal. Sensitive values
are read without echo. Entered values are cached for the process so the
same secret is never asked for twice.
"""

from __future__ import annotations

import getpass
import sys
import threading
from typing import Callable, TextIO

from secretmap.resolution.context import ResolutionContext
from secretmap.resolution.providers.base import SecretProvider
from secretmap.secrets.errors import (
    ProviderConfigError,
    SecretError,
    SecretNotResolvedError,
)
from secretmap.secrets.masking import mask_value
from secretmap.secrets.reference import (
    ResolvedSecrets,
    SecretReference,
    SecretSource,
    SecretType,
)

# Name fragments that get hidden input
_MASK_PATTERNS = (
    "password",
    "passwd",
    "secret",
    "key",
    "token",
    "credential",
    "auth",
    "private",
    "apikey",
    "api_key",
)

_MASKED_TYPES = frozenset({
    SecretType.PASSWORD,
    SecretType.API_KEY,
    SecretType.PRIVATE_KEY,
})


class ManualProvider(SecretProvider):
    """
    Prompts users for secret values interactively.

    Also serves as the Resolver's prompt callback via prompt_callback().
    """

    def __init__(
        self,
        input_func: Callable[[str], str] | None = None,
        password_func: Callable[[str], str] | None = None,
        output: TextIO | None = None,
        mask_input: bool = True,
        defaults: dict[str, str] | None = None,
        non_interactive: bool = False,
    ) -> None:
        """
        Initialize the provider.

        Args:
            input_func: Reads a visible line (default: input)
            password_func: Reads a hidden line (default: getpass.getpass)
            output: Stream for prompts and messages (default: stderr)
            mask_input: Hide input for sensitive secrets
            defaults: Values returned without prompting
            non_interactive: Never prompt; only cache and defaults resolve
        """
        self._input = input_func or input
        self._password = password_func or getpass.getpass
        self._output = output or sys.stderr
        self.mask_input = mask_input
        self.defaults = dict(defaults or {})
        self.non_interactive = non_interactive
        self._cache: dict[str, str] = {}
        self._lock = threading.Lock()

    def name(self) -> SecretSource:
        return SecretSource.MANUAL

    def can_resolve(self, ref: SecretReference) -> bool:
        # Fallback for any named secret
        return ref.source == SecretSource.MANUAL or bool(ref.name)

    def resolve(self, ref: SecretReference, ctx: ResolutionContext | None = None) -> str:
        """
        Get a secret value from cache, defaults, or a prompt.

        Raises:
            SecretNotResolvedError: In non-interactive mode without a cached
                or default value, or when a required secret gets no value
        """
        with self._lock:
            if ref.name in self._cache:
                return self._cache[ref.name]

            if ref.name in self.defaults:
                self._cache[ref.name] = self.defaults[ref.name]
                return self._cache[ref.name]

            if self.non_interactive:
                raise SecretNotResolvedError(ref.name, "non-interactive mode")

            if ctx is not None:
                ctx.check()

            value = self._prompt(ref)
            self._cache[ref.name] = value
            return value

    def _prompt(self, ref: SecretReference) -> str:
        prompt = self._build_prompt(ref)
        try:
            if self.mask_input and self._is_sensitive(ref):
                value = self._password(prompt)
            else:
                value = self._input(prompt).strip()
        except (EOFError, KeyboardInterrupt) as e:
            raise SecretNotResolvedError(ref.name, "input aborted") from e

        if not value and ref.required:
            raise SecretNotResolvedError(ref.name, "required but no value provided")
        return value

    def _build_prompt(self, ref: SecretReference) -> str:
        parts = []
        if ref.description:
            parts.append(f"\n# {ref.description}\n")
        parts.append("[REQUIRED] " if ref.required else "[OPTIONAL] ")
        parts.append(f"Enter value for {ref.name}")
        if ref.type != SecretType.GENERIC:
            parts.append(f" ({ref.type.value})")
        parts.append(": ")
        return "".join(parts)

    @staticmethod
    def _is_sensitive(ref: SecretReference) -> bool:
        if ref.type in _MASKED_TYPES:
            return True
        lower = ref.name.lower()
        return any(pattern in lower for pattern in _MASK_PATTERNS)

    def validate_config(self) -> None:
        """
        Check that prompting is possible.

        Raises:
            ProviderConfigError: If stdin is not a terminal
        """
        if self.non_interactive:
            return
        if not sys.stdin.isatty():
            raise ProviderConfigError("stdin is not a terminal, cannot prompt for secrets")

    def clear_cache(self) -> None:
        """Forget all entered values."""
        with self._lock:
            self._cache.clear()

    def preload_cache(self, values: dict[str, str]) -> None:
        """Add values to the cache without prompting."""
        with self._lock:
            self._cache.update(values)

    def prompt_callback(self) -> Callable[[SecretReference], str]:
        """Get a function suitable for Resolver.set_prompt_func."""

        def prompt(ref: SecretReference) -> str:
            return self.resolve(ref)

        return prompt

    def prompt_batch(
        self,
        refs: list[SecretReference],
        ctx: ResolutionContext | None = None,
    ) -> ResolvedSecrets:
        """
        Prompt for several secrets in one session.

        Optional secrets that get no value are skipped.

        Raises:
            SecretNotResolvedError: If a required secret gets no value
        """
        resolved = ResolvedSecrets()

        self._write("\n=== Secret Entry ===\n")
        self._write(f"Please provide values for {len(refs)} secrets:\n")

        for ref in refs:
            try:
                value = self.resolve(ref, ctx)
            except SecretError as e:
                if ref.required:
                    raise SecretNotResolvedError(ref.name, str(e)) from e
                continue
            if not value:
                continue
            resolved.add(ref.name, value, SecretSource.MANUAL.value, ref)

        self._write("=== Secret Entry Complete ===\n\n")
        return resolved

    def confirm_secrets(self, refs: list[SecretReference]) -> bool:
        """
        Show entered secrets masked and ask for confirmation.

        Returns:
            True if the operator answered yes
        """
        self._write("\nSecrets to be used:\n")
        with self._lock:
            for ref in refs:
                if ref.name in self._cache:
                    self._write(f"  {ref.name}: {mask_value(self._cache[ref.name])}\n")
                else:
                    self._write(f"  {ref.name}: (not set)\n")

        try:
            answer = self._input("\nProceed with these secrets? [y/N]: ")
        except EOFError:
            return False
        return answer.strip().lower() in ("y", "yes")

    def _write(self, text: str) -> None:
        self._output.write(text)
        self._output.flush()
