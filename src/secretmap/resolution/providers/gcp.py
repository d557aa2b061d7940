"""
GCP Secret Manager provider for secretmap.

Fetches secret versions with google-cloud-secret-manager. The provider
talks to Secret Manager through the SecretManagerClient protocol so tests
can substitute a fake client.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from secretmap.resolution.context import ResolutionContext
from secretmap.resolution.providers.base import SecretProvider
from secretmap.secrets.errors import (
    ProviderConfigError,
    ProviderError,
    SecretNotFoundError,
)
from secretmap.secrets.reference import SecretReference, SecretSource

logger = logging.getLogger(__name__)

# Import google-cloud-secret-manager optionally
try:
    import google.auth
    from google.api_core import exceptions as google_exceptions
    from google.auth import exceptions as google_auth_exceptions
    from google.cloud import secretmanager

    GCP_SECRET_MANAGER_AVAILABLE = True
except ImportError:
    GCP_SECRET_MANAGER_AVAILABLE = False
    secretmanager = None  # type: ignore


class SecretManagerClient(Protocol):
    """Operations the provider needs from Secret Manager."""

    def access_secret_version(self, name: str) -> str:
        """Fetch the payload of a fully qualified secret version."""
        ...

    def default_project(self) -> str:
        """Get the project of the active credentials; raises if none."""
        ...


class GoogleSecretManagerClient:
    """SecretManagerClient backed by google-cloud-secret-manager."""

    def __init__(self, client: Any | None = None) -> None:
        """
        Initialize the client.

        Raises:
            ProviderConfigError: If the SDK is not installed
        """
        if not GCP_SECRET_MANAGER_AVAILABLE:
            raise ProviderConfigError(
                "google-cloud-secret-manager is required for GCP Secret Manager. "
                "Install with: pip install google-cloud-secret-manager"
            )
        self._client = client

    @property
    def client(self) -> Any:
        """Lazy-initialize the SDK client."""
        if self._client is None:
            self._client = secretmanager.SecretManagerServiceClient()
        return self._client

    def access_secret_version(self, name: str) -> str:
        try:
            response = self.client.access_secret_version(request={"name": name})
        except google_exceptions.NotFound as e:
            raise SecretNotFoundError(name) from e
        except google_exceptions.GoogleAPIError as e:
            raise ProviderError(f"GCP Secret Manager error for {name}: {e}") from e
        except google_auth_exceptions.GoogleAuthError as e:
            raise ProviderConfigError(f"GCP credentials not configured: {e}") from e
        return response.payload.data.decode("UTF-8")

    def default_project(self) -> str:
        try:
            _, project = google.auth.default()
        except google_auth_exceptions.DefaultCredentialsError as e:
            raise ProviderConfigError(f"GCP credentials not configured: {e}") from e
        if not project:
            raise ProviderConfigError("GCP project not set in application default credentials")
        return project


class GCPSecretManagerProvider(SecretProvider):
    """
    Resolves secrets from GCP Secret Manager.

    Accepted key forms:
        "name"                                  latest version
        "name/version"
        "projects/P/secrets/S"                  latest version
        "projects/P/secrets/S/versions/V"
    """

    def __init__(
        self,
        project: str = "",
        client: SecretManagerClient | None = None,
    ) -> None:
        self.project = project
        self._client = client

    def name(self) -> SecretSource:
        return SecretSource.GCP_SECRET_MANAGER

    def _get_client(self) -> SecretManagerClient:
        if self._client is None:
            self._client = GoogleSecretManagerClient()
        return self._client

    def version_name(self, ref: SecretReference) -> str:
        """
        Build the fully qualified version name for a reference.

        The reference's own version is used when the key names none.
        """
        key = ref.key.strip("/")
        default_version = ref.version or "latest"

        if key.startswith("projects/"):
            if "/versions/" in key:
                return key
            return f"{key}/versions/{default_version}"

        secret, _, version = key.partition("/")
        project = self.project or self._get_client().default_project()
        return f"projects/{project}/secrets/{secret}/versions/{version or default_version}"

    def resolve(self, ref: SecretReference, ctx: ResolutionContext | None = None) -> str:
        self._check_can_resolve(ref)
        if ctx is not None:
            ctx.check()
        return self._get_client().access_secret_version(self.version_name(ref))

    def validate_config(self) -> None:
        """
        Check that credentials and a project are available.

        Raises:
            ProviderConfigError: If the SDK or credentials are missing
        """
        project = self._get_client().default_project()
        if not self.project:
            self.project = project
