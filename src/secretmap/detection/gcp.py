"""
GCP secret detector for secretmap.

Detects secrets implied by GCP resources: Cloud SQL passwords,
Memorystore auth strings, Cloud Run and Cloud Functions environment
and Secret Manager references, and Secret Manager secrets.
"""

from __future__ import annotations

from typing import Callable

from secretmap.detection.base import BaseDetector, DetectedSecret
from secretmap.models import (
    PROVIDER_GCP,
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

# Resource types
TYPE_CLOUD_SQL = "google_sql_database_instance"
TYPE_MEMORYSTORE = "google_redis_instance"
TYPE_FIRESTORE = "google_firestore_database"
TYPE_SPANNER = "google_spanner_instance"
TYPE_BIGTABLE = "google_bigtable_instance"
TYPE_CLOUD_RUN = "google_cloud_run_service"
TYPE_CLOUD_FUNCTION = "google_cloudfunctions_function"
TYPE_SECRET_MANAGER = "google_secret_manager_secret"

_DATABASE_VERSION_PREFIXES = (
    ("POSTGRES", "postgres"),
    ("MYSQL", "mysql"),
    ("SQLSERVER", "sqlserver"),
)


def secret_manager_path(secret_id: str, project: str = "", version: str = "") -> str:
    """
    Build a Secret Manager locator.

    Returns the bare secret ID when no project is known, else the full
    "projects/P/secrets/S" resource name, with "/versions/V" appended
    when a version is given.
    """
    path = f"projects/{project}/secrets/{secret_id}" if project else secret_id
    if version:
        path += f"/versions/{version}"
    return path


class GCPDetector(BaseDetector):
    """Detects secrets from GCP resources."""

    provider_name = PROVIDER_GCP
    resource_types = [
        # Databases
        TYPE_CLOUD_SQL,
        TYPE_MEMORYSTORE,
        TYPE_FIRESTORE,
        TYPE_SPANNER,
        TYPE_BIGTABLE,
        # Compute
        TYPE_CLOUD_RUN,
        TYPE_CLOUD_FUNCTION,
        # Security
        TYPE_SECRET_MANAGER,
    ]

    def __init__(self) -> None:
        # Firestore, Spanner and Bigtable use IAM; no secrets to detect
        self._handlers: dict[str, Callable[[CloudResource], list[DetectedSecret]]] = {
            TYPE_CLOUD_SQL: self._detect_cloud_sql,
            TYPE_MEMORYSTORE: self._detect_memorystore,
            TYPE_CLOUD_RUN: self._detect_cloud_run,
            TYPE_CLOUD_FUNCTION: self._detect_cloud_function,
            TYPE_SECRET_MANAGER: self._detect_secret_manager,
        }

    def detect(self, resource: CloudResource) -> list[DetectedSecret]:
        handler = self._handlers.get(resource.type)
        if handler is None:
            return []
        return handler(resource)

    def _detect_cloud_sql(self, resource: CloudResource) -> list[DetectedSecret]:
        config = resource.config
        res_name = resource.display_name

        database_version = get_str(config, "database_version") or ""
        db_type = "database"
        for prefix, name in _DATABASE_VERSION_PREFIXES:
            if database_version.startswith(prefix):
                db_type = name
                break

        detected = [
            self._candidate(
                resource,
                generate_secret_name(res_name, "cloudsql", "password"),
                description=f"Root password for Cloud SQL instance {res_name} ({db_type})",
                type=SecretType.PASSWORD,
            )
        ]

        for user in iter_maps(get_list(config, "users")):
            user_name = get_str(user, "name")
            if user_name and user_name != "root":
                detected.append(
                    self._candidate(
                        resource,
                        generate_secret_name(f"{res_name}_{user_name}", "cloudsql", "password"),
                        description=f"Password for Cloud SQL user {user_name} in instance {res_name}",
                        type=SecretType.PASSWORD,
                    )
                )

        return detected

    def _detect_memorystore(self, resource: CloudResource) -> list[DetectedSecret]:
        if not get_bool(resource.config, "auth_enabled"):
            return []

        res_name = resource.display_name
        return [
            self._candidate(
                resource,
                generate_secret_name(res_name, "memorystore", "auth_string"),
                description=f"Auth string for Memorystore Redis instance {res_name}",
                type=SecretType.PASSWORD,
            )
        ]

    def _detect_cloud_run(self, resource: CloudResource) -> list[DetectedSecret]:
        res_name = resource.display_name

        spec = get_map(get_map(resource.config, "template"), "spec")
        if spec is None:
            return []

        detected: list[DetectedSecret] = []
        for container in iter_maps(get_list(spec, "containers")):
            for env in iter_maps(get_list(container, "env")):
                name = get_str(env, "name") or ""

                secret_ref = get_map(get_map(env, "value_from"), "secret_key_ref")
                secret_name = get_str(secret_ref, "name")
                if secret_name:
                    secret_key = get_str(secret_ref, "key")
                    path = f"{secret_name}/{secret_key}" if secret_key else secret_name
                    detected.append(
                        self._candidate(
                            resource,
                            normalize_env_name(name),
                            SecretSource.GCP_SECRET_MANAGER,
                            key=path,
                            description=(
                                f"Secret {name} for Cloud Run service {res_name} "
                                "(from Secret Manager)"
                            ),
                            type=infer_secret_type(name),
                        )
                    )
                    continue

                if is_sensitive_env_name(name):
                    detected.append(
                        self._candidate(
                            resource,
                            normalize_env_name(name),
                            description=f"Environment variable {name} from Cloud Run service {res_name}",
                            type=infer_secret_type(name),
                        )
                    )

        return detected

    def _detect_cloud_function(self, resource: CloudResource) -> list[DetectedSecret]:
        config = resource.config
        res_name = resource.display_name

        detected = [
            self._candidate(
                resource,
                normalize_env_name(key),
                description=f"Environment variable {key} from Cloud Function {res_name}",
                type=infer_secret_type(key),
            )
            for key in get_map(config, "environment_variables") or {}
            if is_sensitive_env_name(key)
        ]

        for secret in iter_maps(get_list(config, "secret_environment_variables")):
            secret_id = get_str(secret, "secret")
            if not secret_id:
                continue
            key = get_str(secret, "key") or ""
            path = secret_manager_path(
                secret_id,
                project=get_str(secret, "project_id") or "",
                version=get_str(secret, "version") or "",
            )
            detected.append(
                self._candidate(
                    resource,
                    normalize_env_name(key),
                    SecretSource.GCP_SECRET_MANAGER,
                    key=path,
                    description=f"Secret {key} for Cloud Function {res_name} (from Secret Manager)",
                    type=infer_secret_type(key),
                )
            )

        return detected

    def _detect_secret_manager(self, resource: CloudResource) -> list[DetectedSecret]:
        config = resource.config
        secret_id = get_str(config, "secret_id") or resource.display_name
        path = secret_manager_path(secret_id, project=get_str(config, "project") or "")

        return [
            self._candidate(
                resource,
                normalize_env_name(secret_id),
                SecretSource.GCP_SECRET_MANAGER,
                key=path,
                description=f"Secret from GCP Secret Manager: {secret_id}",
            )
        ]
