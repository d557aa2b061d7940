"""
AWS Secrets Manager provider for secretmap.

Fetches secret values with boto3. The provider talks to Secrets Manager
through the narrow SecretsManagerClient protocol so tests can substitute
a fake client.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from secretmap.resolution.context import ResolutionContext
from secretmap.resolution.providers.base import BatchProvider, BatchResult
from secretmap.secrets.errors import (
    ProviderConfigError,
    ProviderError,
    SecretNotFoundError,
)
from secretmap.secrets.reference import SecretReference, SecretSource

logger = logging.getLogger(__name__)

# Import boto3 optionally
try:
    import boto3
    from botocore.exceptions import BotoCoreError, ClientError

    BOTO3_AVAILABLE = True
except ImportError:
    BOTO3_AVAILABLE = False
    boto3 = None  # type: ignore

# BatchGetSecretValue accepts at most 20 IDs per call
BATCH_SIZE = 20


class SecretsManagerClient(Protocol):
    """Operations the provider needs from Secrets Manager."""

    def get_secret_string(self, secret_id: str, version_stage: str = "") -> str:
        """Fetch a secret value as a string."""
        ...

    def batch_get_secret_strings(
        self, secret_ids: list[str]
    ) -> tuple[dict[str, str], dict[str, str]]:
        """Fetch several values; returns (values, errors) keyed by requested ID."""
        ...

    def check_identity(self) -> None:
        """Verify credentials are usable."""
        ...


class Boto3SecretsManagerClient:
    """SecretsManagerClient backed by boto3."""

    def __init__(
        self,
        profile: str = "",
        region: str = "",
        session: Any | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            profile: AWS profile name; default credential chain when empty
            region: AWS region; session default when empty
            session: Optional boto3 Session to use instead

        Raises:
            ProviderConfigError: If boto3 is not installed
        """
        if not BOTO3_AVAILABLE:
            raise ProviderConfigError(
                "boto3 is required for AWS Secrets Manager. Install with: pip install boto3"
            )

        if session is None:
            session_kwargs: dict[str, Any] = {}
            if profile:
                session_kwargs["profile_name"] = profile
            if region:
                session_kwargs["region_name"] = region
            session = boto3.Session(**session_kwargs)

        self._session = session
        self._region = region
        self._clients: dict[str, Any] = {}

    def _get_client(self, service: str) -> Any:
        if service not in self._clients:
            kwargs = {"region_name": self._region} if self._region else {}
            self._clients[service] = self._session.client(service, **kwargs)
        return self._clients[service]

    def get_secret_string(self, secret_id: str, version_stage: str = "") -> str:
        kwargs: dict[str, Any] = {"SecretId": secret_id}
        if version_stage:
            kwargs["VersionStage"] = version_stage

        try:
            response = self._get_client("secretsmanager").get_secret_value(**kwargs)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code == "ResourceNotFoundException":
                raise SecretNotFoundError(secret_id) from e
            raise ProviderError(f"AWS Secrets Manager error for {secret_id}: {code}") from e
        except BotoCoreError as e:
            raise ProviderError(f"AWS Secrets Manager request failed: {e}") from e

        if "SecretString" in response:
            return response["SecretString"]
        return response["SecretBinary"].decode("utf-8")

    def batch_get_secret_strings(
        self, secret_ids: list[str]
    ) -> tuple[dict[str, str], dict[str, str]]:
        client = self._get_client("secretsmanager")
        requested = set(secret_ids)
        values: dict[str, str] = {}
        errors: dict[str, str] = {}

        for start in range(0, len(secret_ids), BATCH_SIZE):
            chunk = secret_ids[start:start + BATCH_SIZE]
            try:
                response = client.batch_get_secret_value(SecretIdList=chunk)
            except (ClientError, BotoCoreError) as e:
                raise ProviderError(f"AWS batch request failed: {e}") from e

            for item in response.get("SecretValues", []):
                # Results carry both ARN and Name; match whichever was asked for
                for candidate in (item.get("ARN"), item.get("Name")):
                    if candidate in requested and "SecretString" in item:
                        values[candidate] = item["SecretString"]
                        break

            for item in response.get("Errors", []):
                secret_id = item.get("SecretId", "")
                if secret_id in requested:
                    errors[secret_id] = item.get("Message") or item.get("ErrorCode", "")

        return values, errors

    def check_identity(self) -> None:
        try:
            self._get_client("sts").get_caller_identity()
        except (ClientError, BotoCoreError) as e:
            raise ProviderConfigError(f"AWS credentials not configured: {e}") from e


def extract_field_name(key: str) -> str:
    """
    Get the JSON field a key points into.

    The field is the text after the last hyphen of the last path segment:
    "prod/db-password" -> "password". Returns "" when there is no hyphen.
    """
    last_part = key.split("/")[-1]
    idx = last_part.rfind("-")
    if idx == -1:
        return ""
    return last_part[idx + 1:]


def _select_field(value: str, key: str) -> str:
    """Return the matching field of a JSON secret, or the value unchanged."""
    if not value.startswith("{"):
        return value
    try:
        data = json.loads(value)
    except ValueError:
        return value

    field_name = extract_field_name(key)
    if field_name and isinstance(data, dict) and isinstance(data.get(field_name), str):
        return data[field_name]
    return value


class AWSSecretsManagerProvider(BatchProvider):
    """Resolves secrets from AWS Secrets Manager."""

    def __init__(
        self,
        profile: str = "",
        region: str = "",
        client: SecretsManagerClient | None = None,
    ) -> None:
        self.profile = profile
        self.region = region
        self._client = client

    def name(self) -> SecretSource:
        return SecretSource.AWS_SECRETS_MANAGER

    def _get_client(self) -> SecretsManagerClient:
        if self._client is None:
            self._client = Boto3SecretsManagerClient(profile=self.profile, region=self.region)
        return self._client

    def resolve(self, ref: SecretReference, ctx: ResolutionContext | None = None) -> str:
        """
        Fetch a secret value.

        When the stored value is a JSON object containing the field named by
        the key's last hyphen segment, that field is returned.
        """
        self._check_can_resolve(ref)
        if ctx is not None:
            ctx.check()

        value = self._get_client().get_secret_string(ref.key, ref.version)
        return _select_field(value, ref.key)

    def _fetch_batch(
        self,
        refs: list[SecretReference],
        ctx: ResolutionContext | None,
    ) -> BatchResult:
        if ctx is not None:
            ctx.check()

        by_key: dict[str, list[SecretReference]] = {}
        for ref in refs:
            by_key.setdefault(ref.key, []).append(ref)

        values, errors = self._get_client().batch_get_secret_strings(list(by_key))

        result = BatchResult()
        for key, key_refs in by_key.items():
            for ref in key_refs:
                if key in values:
                    result.secrets[ref.name] = _select_field(values[key], key)
                elif key in errors:
                    result.errors[ref.name] = ProviderError(f"aws error: {errors[key]}")
        return result

    def validate_config(self) -> None:
        """
        Check credentials with STS GetCallerIdentity.

        Raises:
            ProviderConfigError: If boto3 is missing or credentials fail
        """
        self._get_client().check_identity()
