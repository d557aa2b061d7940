"""
Pytest configuration and fixtures for secretmap tests.

This module provides common fixtures used across the unit tests. Cloud
SDKs are never called: providers get fake clients.
"""

from __future__ import annotations

import logging
from typing import Any, Generator
from unittest.mock import MagicMock

import pytest

from secretmap.models import CloudResource
from secretmap.resolution.providers.base import SecretProvider
from secretmap.secrets import (
    ProviderConfigError,
    SecretNotFoundError,
    SecretReference,
    SecretSource,
    SecretsManifest,
    SecretType,
    get_masking_filter,
)


# Resource fixtures


@pytest.fixture
def rds_instance() -> CloudResource:
    """Return an RDS instance without a managed password."""
    return CloudResource(
        id="db-abc123",
        name="prod-db",
        type="aws_db_instance",
        config={"engine": "postgres", "instance_class": "db.t3.micro"},
    )


@pytest.fixture
def lambda_function() -> CloudResource:
    """Return a Lambda function with mixed environment variables."""
    return CloudResource(
        id="fn-1",
        name="api",
        type="aws_lambda_function",
        config={
            "environment": {
                "variables": {
                    "API_KEY": "abc",
                    "STRIPE_TOKEN": "tok",
                    "LOG_LEVEL": "info",
                },
            },
        },
    )


@pytest.fixture
def ecs_task_definition() -> CloudResource:
    """Return an ECS task definition referencing Secrets Manager and SSM."""
    return CloudResource(
        id="task-1",
        name="web",
        type="aws_ecs_task_definition",
        config={
            "container_definitions": [
                {
                    "name": "app",
                    "secrets": [
                        {
                            "name": "DB_PASSWORD",
                            "valueFrom": "arn:aws:secretsmanager:us-east-1:123456789012:secret:prod/db-password-AbCdEf",
                        },
                        {
                            "name": "API_TOKEN",
                            "valueFrom": "arn:aws:ssm:us-east-1:123456789012:parameter/api-token",
                        },
                    ],
                    "environment": [
                        {"name": "SESSION_SECRET", "value": "x"},
                        {"name": "PORT", "value": "8080"},
                    ],
                },
            ],
        },
    )


# Manifest fixtures


@pytest.fixture
def sample_reference() -> SecretReference:
    """Return a valid manual SecretReference."""
    return SecretReference(
        name="DB_PASSWORD",
        source=SecretSource.MANUAL,
        description="Database password",
        type=SecretType.PASSWORD,
    )


@pytest.fixture
def sample_manifest() -> SecretsManifest:
    """Return a manifest with manual, env and cloud secrets."""
    manifest = SecretsManifest()
    manifest.add_secret(
        SecretReference(
            name="DB_PASSWORD",
            source=SecretSource.MANUAL,
            description="Database password",
            type=SecretType.PASSWORD,
        )
    )
    manifest.add_secret(
        SecretReference(
            name="API_KEY",
            source=SecretSource.AWS_SECRETS_MANAGER,
            key="prod/api-key",
            type=SecretType.API_KEY,
        )
    )
    manifest.add_secret(
        SecretReference(
            name="FEATURE_TOKEN",
            source=SecretSource.ENV,
            key="FEATURE_TOKEN",
            required=False,
        )
    )
    return manifest


# Provider fixtures


class StubProvider(SecretProvider):
    """Provider with canned values, recording every resolve call."""

    def __init__(
        self,
        source: SecretSource,
        values: dict[str, str] | None = None,
        valid: bool = True,
    ) -> None:
        self.source = source
        self.values = dict(values or {})
        self.valid = valid
        self.resolve_calls: list[str] = []
        self.cache_cleared = False

    def name(self) -> SecretSource:
        return self.source

    def resolve(self, ref: SecretReference, ctx: Any = None) -> str:
        self.resolve_calls.append(ref.name)
        if ref.key not in self.values:
            raise SecretNotFoundError(ref.name)
        return self.values[ref.key]

    def validate_config(self) -> None:
        if not self.valid:
            raise ProviderConfigError("not configured")

    def clear_cache(self) -> None:
        self.cache_cleared = True


@pytest.fixture
def stub_provider_factory():
    """Return the StubProvider class for building canned providers."""
    return StubProvider


@pytest.fixture
def mock_prompt() -> MagicMock:
    """Return a prompt callback answering "typed-value"."""
    return MagicMock(return_value="typed-value")


# Environment and logging


@pytest.fixture(autouse=True)
def clear_masking_filter() -> Generator[None, None, None]:
    """Reset the process-wide masking filter between tests."""
    get_masking_filter().clear()
    yield
    get_masking_filter().clear()


@pytest.fixture
def capture_secretmap_logs(caplog: pytest.LogCaptureFixture) -> pytest.LogCaptureFixture:
    """Capture DEBUG logs from the secretmap logger tree."""
    caplog.set_level(logging.DEBUG, logger="secretmap")
    return caplog
