"""
Environment variable secret provider for secretmap.
"""

from __future__ import annotations

import os
from typing import Mapping

from secretmap.resolution.context import ResolutionContext
from secretmap.resolution.providers.base import SecretProvider
from secretmap.secrets.errors import SecretNotFoundError
from secretmap.secrets.reference import SecretReference, SecretSource


class EnvProvider(SecretProvider):
    """
    Resolves env-sourced secrets from the variable named by their key.

    The environment is snapshotted at construction unless one is given.
    """

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = dict(os.environ if environ is None else environ)

    def name(self) -> SecretSource:
        return SecretSource.ENV

    def resolve(self, ref: SecretReference, ctx: ResolutionContext | None = None) -> str:
        self._check_can_resolve(ref)
        value = self._environ.get(ref.key, "")
        if not value:
            raise SecretNotFoundError(ref.name, f"environment variable {ref.key} is not set")
        return value

    def validate_config(self) -> None:
        pass
