"""
File secret provider for secretmap.

Resolves file-sourced secrets. A key is either a path whose whole
(stripped) content is the secret, or "path:KEY" to look KEY up in an
env file.
"""

from __future__ import annotations

import logging
import os
import re
import threading

from secretmap.resolution.context import ResolutionContext
from secretmap.resolution.providers.base import SecretProvider
from secretmap.secrets.envfile import read_env_file
from secretmap.secrets.errors import (
    ProviderConfigError,
    ProviderError,
    SecretNotFoundError,
)
from secretmap.secrets.reference import SecretReference, SecretSource

logger = logging.getLogger(__name__)

_ENV_KEY = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def split_file_key(key: str) -> tuple[str, str]:
    """
    Split a file secret key into path and env key.

    "config/.env:DB_PASSWORD" -> ("config/.env", "DB_PASSWORD")
    "secrets/db_password.txt" -> ("secrets/db_password.txt", "")

    A single-letter prefix is a Windows drive, not a path.
    """
    path, sep, env_key = key.rpartition(":")
    if sep and len(path) > 1 and _ENV_KEY.match(env_key):
        return path, env_key
    return key, ""


class FileProvider(SecretProvider):
    """Reads secrets from local files and env files."""

    def __init__(self, base_path: str = "") -> None:
        """
        Initialize the provider.

        Args:
            base_path: Directory relative paths are resolved against;
                defaults to the working directory
        """
        self.base_path = base_path
        self._env_cache: dict[str, dict[str, str]] = {}
        self._lock = threading.Lock()

    def name(self) -> SecretSource:
        return SecretSource.FILE

    def resolve(self, ref: SecretReference, ctx: ResolutionContext | None = None) -> str:
        """
        Read a secret from a file.

        Raises:
            SecretNotFoundError: If the file or the env key does not exist
            ProviderError: If the file cannot be read
        """
        self._check_can_resolve(ref)

        path, env_key = split_file_key(ref.key)
        path = self._absolute(path)

        if not os.path.exists(path):
            raise SecretNotFoundError(ref.name, f"secret file not found: {path}")

        if env_key:
            env = self._load_env_file(path)
            if env_key not in env:
                raise SecretNotFoundError(ref.name, f"key {env_key} not found in {path}")
            return env[env_key]

        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read().strip()
        except OSError as e:
            raise ProviderError(f"failed to read secret file {path}: {e}") from e

    def _absolute(self, path: str) -> str:
        path = os.path.expanduser(path)
        if os.path.isabs(path):
            return path
        return os.path.join(self.base_path or os.getcwd(), path)

    def _load_env_file(self, path: str) -> dict[str, str]:
        with self._lock:
            cached = self._env_cache.get(path)
            if cached is not None:
                return cached

            try:
                env = read_env_file(path)
            except OSError as e:
                raise ProviderError(f"failed to read env file {path}: {e}") from e

            self._env_cache[path] = env
            logger.debug(f"Loaded {len(env)} keys from {path}")
            return env

    def list_keys_in_env_file(self, path: str) -> list[str]:
        """
        List the keys defined in an env file, sorted.

        Raises:
            ProviderError: If the file cannot be read
        """
        return sorted(self._load_env_file(self._absolute(path)))

    def validate_config(self) -> None:
        if self.base_path and not os.path.isdir(os.path.expanduser(self.base_path)):
            raise ProviderConfigError(f"base path does not exist: {self.base_path}")

    def clear_cache(self) -> None:
        """Forget all parsed env files."""
        with self._lock:
            self._env_cache.clear()
