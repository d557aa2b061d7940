"""
AWS secret detector for secretmap.

Detects secrets implied by AWS resources: database master passwords,
cache auth tokens, sensitive function and container environment
variables, container secret references, Secrets Manager secrets and
Cognito app client secrets.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from secretmap.detection.base import BaseDetector, DetectedSecret
from secretmap.models import (
    PROVIDER_AWS,
    CloudResource,
    get_bool,
    get_list,
    get_map,
    get_str,
    iter_maps,
)
from secretmap.secrets.patterns import (
    generate_secret_name,
    infer_secret_type,
    is_sensitive_env_name,
    normalize_env_name,
)
from secretmap.secrets.reference import SecretSource, SecretType

logger = logging.getLogger(__name__)

SECRETS_MANAGER_ARN_PREFIX = "arn:aws:secretsmanager:"
SSM_ARN_PREFIX = "arn:aws:ssm:"

# Resource types
TYPE_RDS_INSTANCE = "aws_db_instance"
TYPE_RDS_CLUSTER = "aws_rds_cluster"
TYPE_ELASTICACHE = "aws_elasticache_cluster"
TYPE_DYNAMODB_TABLE = "aws_dynamodb_table"
TYPE_LAMBDA_FUNCTION = "aws_lambda_function"
TYPE_ECS_SERVICE = "aws_ecs_service"
TYPE_ECS_TASK_DEFINITION = "aws_ecs_task_definition"
TYPE_SECRETS_MANAGER = "aws_secretsmanager_secret"
TYPE_COGNITO_USER_POOL = "aws_cognito_user_pool"


def _managed_secret_arn(config: dict[str, Any]) -> str | None:
    """Find a Secrets Manager ARN for an RDS managed master password."""
    arn = get_str(config, "master_user_secret_arn")
    if arn and arn.startswith(SECRETS_MANAGER_ARN_PREFIX):
        return arn

    block = get_map(config, "master_user_secret")
    arn = get_str(block, "secret_arn")
    if arn and arn.startswith(SECRETS_MANAGER_ARN_PREFIX):
        return arn
    return None


class AWSDetector(BaseDetector):
    """Detects secrets from AWS resources."""

    provider_name = PROVIDER_AWS
    resource_types = [
        # Databases
        TYPE_RDS_INSTANCE,
        TYPE_RDS_CLUSTER,
        TYPE_ELASTICACHE,
        TYPE_DYNAMODB_TABLE,
        # Compute
        TYPE_LAMBDA_FUNCTION,
        TYPE_ECS_SERVICE,
        TYPE_ECS_TASK_DEFINITION,
        # Security
        TYPE_SECRETS_MANAGER,
        TYPE_COGNITO_USER_POOL,
    ]

    def __init__(self) -> None:
        self._handlers: dict[str, Callable[[CloudResource], list[DetectedSecret]]] = {
            TYPE_RDS_INSTANCE: self._detect_rds_instance,
            TYPE_RDS_CLUSTER: self._detect_rds_cluster,
            TYPE_ELASTICACHE: self._detect_elasticache,
            TYPE_LAMBDA_FUNCTION: self._detect_lambda,
            TYPE_ECS_SERVICE: self._detect_ecs,
            TYPE_ECS_TASK_DEFINITION: self._detect_ecs,
            TYPE_SECRETS_MANAGER: self._detect_secrets_manager,
            TYPE_COGNITO_USER_POOL: self._detect_cognito,
        }

    def detect(self, resource: CloudResource) -> list[DetectedSecret]:
        handler = self._handlers.get(resource.type)
        if handler is None:
            return []
        return handler(resource)

    def _detect_rds_instance(self, resource: CloudResource) -> list[DetectedSecret]:
        config = resource.config
        res_name = resource.display_name

        # Aurora members: the cluster owns the password
        cluster_id = get_str(config, "db_cluster_identifier") or get_str(
            config, "cluster_identifier"
        )
        if cluster_id:
            return []

        name = generate_secret_name(res_name, "rds", "password")

        arn = _managed_secret_arn(config)
        if arn:
            return [
                self._candidate(
                    resource,
                    name,
                    SecretSource.AWS_SECRETS_MANAGER,
                    key=arn,
                    description=(
                        f"Database master password for RDS instance {res_name} "
                        "(managed by Secrets Manager)"
                    ),
                    type=SecretType.PASSWORD,
                )
            ]

        engine = get_str(config, "engine") or "database"
        return [
            self._candidate(
                resource,
                name,
                description=f"Database master password for {res_name} ({engine})",
                type=SecretType.PASSWORD,
            )
        ]

    def _detect_rds_cluster(self, resource: CloudResource) -> list[DetectedSecret]:
        config = resource.config
        res_name = resource.display_name
        name = generate_secret_name(res_name, "aurora", "password")

        arn = _managed_secret_arn(config)
        if arn:
            return [
                self._candidate(
                    resource,
                    name,
                    SecretSource.AWS_SECRETS_MANAGER,
                    key=arn,
                    description=(
                        f"Database master password for Aurora cluster {res_name} "
                        "(managed by Secrets Manager)"
                    ),
                    type=SecretType.PASSWORD,
                )
            ]

        engine = get_str(config, "engine") or "aurora"
        return [
            self._candidate(
                resource,
                name,
                description=f"Database master password for Aurora cluster {res_name} ({engine})",
                type=SecretType.PASSWORD,
            )
        ]

    def _detect_elasticache(self, resource: CloudResource) -> list[DetectedSecret]:
        config = resource.config
        res_name = resource.display_name

        auth_enabled = (
            get_bool(config, "auth_token_enabled")
            or bool(get_str(config, "auth_token"))
            or get_bool(config, "transit_encryption_enabled")
        )
        if not auth_enabled:
            return []

        engine = get_str(config, "engine") or "redis"
        return [
            self._candidate(
                resource,
                generate_secret_name(res_name, "elasticache", "auth_token"),
                description=f"Auth token for ElastiCache {engine} cluster {res_name}",
                type=SecretType.PASSWORD,
            )
        ]

    def _detect_lambda(self, resource: CloudResource) -> list[DetectedSecret]:
        res_name = resource.display_name

        env_vars = get_map(resource.config, "environment")
        if env_vars is None:
            return []
        env_vars = get_map(env_vars, "variables") or env_vars

        return [
            self._candidate(
                resource,
                normalize_env_name(key),
                description=f"Environment variable {key} from Lambda function {res_name}",
                type=infer_secret_type(key),
            )
            for key in env_vars
            if is_sensitive_env_name(key)
        ]

    def _detect_ecs(self, resource: CloudResource) -> list[DetectedSecret]:
        res_name = resource.display_name

        container_defs = get_list(resource.config, "container_definitions")
        if container_defs is None:
            raw = get_str(resource.config, "container_definitions")
            if not raw:
                return []
            try:
                decoded = json.loads(raw)
            except ValueError as e:
                logger.warning(
                    f"Could not decode container definitions for {resource.id}: {e}"
                )
                return []
            if isinstance(decoded, dict):
                decoded = [decoded]
            container_defs = decoded if isinstance(decoded, list) else []

        detected: list[DetectedSecret] = []
        for container in iter_maps(container_defs):
            container_name = get_str(container, "name") or res_name

            for secret in iter_maps(get_list(container, "secrets")):
                name = get_str(secret, "name")
                value_from = get_str(secret, "valueFrom")
                if name and value_from:
                    detected.append(
                        self._container_secret(resource, container_name, name, value_from)
                    )

            for env in iter_maps(get_list(container, "environment")):
                name = get_str(env, "name")
                if name and is_sensitive_env_name(name):
                    detected.append(
                        self._candidate(
                            resource,
                            normalize_env_name(name),
                            description=(
                                f"Environment variable {name} from ECS container {container_name}"
                            ),
                            type=infer_secret_type(name),
                        )
                    )

        return detected

    def _container_secret(
        self,
        resource: CloudResource,
        container_name: str,
        name: str,
        value_from: str,
    ) -> DetectedSecret:
        """
        Classify an ECS container secret by its valueFrom.

        valueFrom can be a Secrets Manager ARN, an SSM parameter ARN, a bare
        Secrets Manager name such as "prod/myapp/db-password", or some other
        ARN. SSM and unknown ARNs become manual secrets.
        """
        env_name = normalize_env_name(name)
        secret_type = infer_secret_type(name)

        if value_from.startswith(SECRETS_MANAGER_ARN_PREFIX):
            return self._candidate(
                resource,
                env_name,
                SecretSource.AWS_SECRETS_MANAGER,
                key=value_from,
                description=f"Secret {name} for ECS container {container_name} (from Secrets Manager)",
                type=secret_type,
            )
        if value_from.startswith(SSM_ARN_PREFIX):
            return self._candidate(
                resource,
                env_name,
                description=(
                    f"Secret {name} for ECS container {container_name} "
                    f"(from SSM Parameter Store: {value_from})"
                ),
                type=secret_type,
            )
        if not value_from.startswith("arn:"):
            return self._candidate(
                resource,
                env_name,
                SecretSource.AWS_SECRETS_MANAGER,
                key=value_from,
                description=(
                    f"Secret {name} for ECS container {container_name} "
                    f"(from Secrets Manager: {value_from})"
                ),
                type=secret_type,
            )
        return self._candidate(
            resource,
            env_name,
            description=f"Secret {name} for ECS container {container_name} (reference: {value_from})",
            type=secret_type,
        )

    def _detect_secrets_manager(self, resource: CloudResource) -> list[DetectedSecret]:
        config = resource.config
        res_name = resource.display_name

        arn = resource.arn or get_str(config, "arn") or get_str(config, "id") or ""
        secret_name = get_str(config, "name") or res_name

        if not arn.startswith(SECRETS_MANAGER_ARN_PREFIX):
            return [
                self._candidate(
                    resource,
                    normalize_env_name(secret_name),
                    description=f"Secret from AWS Secrets Manager: {secret_name} (ARN not available)",
                )
            ]

        description = get_str(config, "description") or (
            f"Secret from AWS Secrets Manager: {secret_name}"
        )
        return [
            self._candidate(
                resource,
                normalize_env_name(secret_name),
                SecretSource.AWS_SECRETS_MANAGER,
                key=arn,
                description=description,
            )
        ]

    def _detect_cognito(self, resource: CloudResource) -> list[DetectedSecret]:
        res_name = resource.display_name

        detected: list[DetectedSecret] = []
        for client in iter_maps(get_list(resource.config, "app_clients")):
            if not get_bool(client, "generate_secret"):
                continue
            client_name = get_str(client, "name") or "app"
            detected.append(
                self._candidate(
                    resource,
                    generate_secret_name(f"{res_name}_{client_name}", "cognito", "client_secret"),
                    description=f"Cognito app client secret for {client_name} in pool {res_name}",
                    # Public clients often do without
                    required=False,
                    type=SecretType.API_KEY,
                )
            )
        return detected
