"""
Azure secret detector for secretmap.

Detects secrets implied by Azure resources: database administrator
passwords, Cosmos DB and Redis keys, App Service and Function App
settings, container group environment and registry credentials, and
Key Vault references.
"""

from __future__ import annotations

import re
from typing import Callable

from secretmap.detection.base import BaseDetector, DetectedSecret
from secretmap.models import (
    PROVIDER_AZURE,
    CloudResource,
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

KEY_VAULT_REFERENCE_PREFIX = "@Microsoft.KeyVault"

# Resource types
TYPE_SQL_DATABASE = "azurerm_mssql_database"
TYPE_POSTGRES = "azurerm_postgresql_flexible_server"
TYPE_MYSQL = "azurerm_mysql_flexible_server"
TYPE_COSMOSDB = "azurerm_cosmosdb_account"
TYPE_REDIS_CACHE = "azurerm_redis_cache"
TYPE_APP_SERVICE = "azurerm_app_service"
TYPE_FUNCTION_APP = "azurerm_function_app"
TYPE_CONTAINER_GROUP = "azurerm_container_group"
TYPE_KEY_VAULT = "azurerm_key_vault"

_REFERENCE_FIELD = re.compile(r"(SecretUri|VaultName|SecretName)=([^;)]*)")


def extract_key_vault_reference(value: str) -> str:
    """
    Extract the locator from an App Service Key Vault reference.

    Supports both reference forms:
        @Microsoft.KeyVault(SecretUri=https://v.vault.azure.net/secrets/s/)
        @Microsoft.KeyVault(VaultName=v;SecretName=s)

    Returns:
        The secret URI, "vault/secret", or "" when the value is not a
        recognizable reference
    """
    fields = {name: val.strip() for name, val in _REFERENCE_FIELD.findall(value)}

    if fields.get("SecretUri"):
        return fields["SecretUri"]
    if fields.get("VaultName") and fields.get("SecretName"):
        return f"{fields['VaultName']}/{fields['SecretName']}"
    return ""


class AzureDetector(BaseDetector):
    """Detects secrets from Azure resources."""

    provider_name = PROVIDER_AZURE
    resource_types = [
        # Databases
        TYPE_SQL_DATABASE,
        TYPE_POSTGRES,
        TYPE_MYSQL,
        TYPE_COSMOSDB,
        TYPE_REDIS_CACHE,
        # Compute
        TYPE_APP_SERVICE,
        TYPE_FUNCTION_APP,
        TYPE_CONTAINER_GROUP,
        # Security
        TYPE_KEY_VAULT,
    ]

    def __init__(self) -> None:
        self._handlers: dict[str, Callable[[CloudResource], list[DetectedSecret]]] = {
            TYPE_SQL_DATABASE: self._detect_sql,
            TYPE_POSTGRES: self._detect_postgres,
            TYPE_MYSQL: self._detect_mysql,
            TYPE_COSMOSDB: self._detect_cosmosdb,
            TYPE_REDIS_CACHE: self._detect_redis_cache,
            TYPE_APP_SERVICE: self._detect_app_service,
            TYPE_FUNCTION_APP: self._detect_app_service,
            TYPE_CONTAINER_GROUP: self._detect_container_group,
            TYPE_KEY_VAULT: self._detect_key_vault,
        }

    def detect(self, resource: CloudResource) -> list[DetectedSecret]:
        handler = self._handlers.get(resource.type)
        if handler is None:
            return []
        return handler(resource)

    def _admin_password(
        self,
        resource: CloudResource,
        server_name: str,
        kind: str,
        label: str,
        dedup_prefix: str,
        key_vault_field: str,
    ) -> list[DetectedSecret]:
        """
        Build the administrator password candidate for a database server.

        Deduplicated per server, so several databases on one server share
        one secret. A Key Vault secret ID in the config overrides the
        manual source.
        """
        name = generate_secret_name(server_name, kind, "password")

        kv_ref = get_str(resource.config, key_vault_field)
        if kv_ref:
            return [
                self._candidate(
                    resource,
                    name,
                    SecretSource.AZURE_KEY_VAULT,
                    key=kv_ref,
                    description=f"Administrator password for {label} {server_name} (from Key Vault)",
                    type=SecretType.PASSWORD,
                )
            ]

        return [
            self._candidate(
                resource,
                name,
                description=f"Administrator password for {label} {server_name}",
                type=SecretType.PASSWORD,
                deduplication_key=f"{dedup_prefix}:server:{server_name}",
            )
        ]

    def _detect_sql(self, resource: CloudResource) -> list[DetectedSecret]:
        server_name = get_str(resource.config, "server_name") or resource.display_name
        return self._admin_password(
            resource,
            server_name,
            "azuresql",
            "Azure SQL Server",
            "azuresql",
            "administrator_login_password_key_vault_secret_id",
        )

    def _detect_postgres(self, resource: CloudResource) -> list[DetectedSecret]:
        return self._admin_password(
            resource,
            resource.display_name,
            "postgres",
            "Azure PostgreSQL",
            "azurepostgres",
            "administrator_password_key_vault_secret_id",
        )

    def _detect_mysql(self, resource: CloudResource) -> list[DetectedSecret]:
        return self._admin_password(
            resource,
            resource.display_name,
            "mysql",
            "Azure MySQL",
            "azuremysql",
            "administrator_password_key_vault_secret_id",
        )

    def _detect_cosmosdb(self, resource: CloudResource) -> list[DetectedSecret]:
        res_name = resource.display_name
        return [
            self._candidate(
                resource,
                generate_secret_name(res_name, "cosmosdb", "primary_key"),
                description=f"Primary key for CosmosDB account {res_name}",
                type=SecretType.API_KEY,
                deduplication_key=f"cosmosdb:account:{res_name}:primary_key",
            ),
            self._candidate(
                resource,
                generate_secret_name(res_name, "cosmosdb", "connection_string"),
                description=f"Connection string for CosmosDB account {res_name}",
                required=False,
                type=SecretType.CONNECTION_STRING,
                deduplication_key=f"cosmosdb:account:{res_name}:connection_string",
            ),
        ]

    def _detect_redis_cache(self, resource: CloudResource) -> list[DetectedSecret]:
        res_name = resource.display_name
        return [
            self._candidate(
                resource,
                generate_secret_name(res_name, "redis", "primary_access_key"),
                description=f"Primary access key for Azure Cache for Redis {res_name}",
                type=SecretType.API_KEY,
                deduplication_key=f"azurecache:redis:{res_name}",
            )
        ]

    def _detect_app_service(self, resource: CloudResource) -> list[DetectedSecret]:
        config = resource.config
        res_name = resource.display_name
        detected: list[DetectedSecret] = []

        app_settings = get_map(config, "app_settings")
        if app_settings is None:
            app_settings = get_map(get_map(config, "site_config"), "app_settings")

        for key, value in (app_settings or {}).items():
            kv_ref = ""
            if isinstance(value, str) and value.startswith(KEY_VAULT_REFERENCE_PREFIX):
                kv_ref = extract_key_vault_reference(value)

            if kv_ref:
                detected.append(
                    self._candidate(
                        resource,
                        normalize_env_name(key),
                        SecretSource.AZURE_KEY_VAULT,
                        key=kv_ref,
                        description=f"App setting {key} for {res_name} (from Key Vault)",
                        type=infer_secret_type(key),
                    )
                )
            elif is_sensitive_env_name(key):
                detected.append(
                    self._candidate(
                        resource,
                        normalize_env_name(key),
                        description=f"App setting {key} from {res_name}",
                        type=infer_secret_type(key),
                    )
                )

        for conn in iter_maps(get_list(config, "connection_string")):
            name = get_str(conn, "name")
            if not name:
                continue
            env_name = normalize_env_name(f"{name}_CONNECTION_STRING")

            value = get_str(conn, "value") or ""
            kv_ref = ""
            if value.startswith(KEY_VAULT_REFERENCE_PREFIX):
                kv_ref = extract_key_vault_reference(value)

            if kv_ref:
                detected.append(
                    self._candidate(
                        resource,
                        env_name,
                        SecretSource.AZURE_KEY_VAULT,
                        key=kv_ref,
                        description=f"Connection string {name} for {res_name} (from Key Vault)",
                        type=SecretType.CONNECTION_STRING,
                    )
                )
            else:
                detected.append(
                    self._candidate(
                        resource,
                        env_name,
                        description=f"Connection string {name} for {res_name}",
                        type=SecretType.CONNECTION_STRING,
                    )
                )

        return detected

    def _detect_container_group(self, resource: CloudResource) -> list[DetectedSecret]:
        config = resource.config
        res_name = resource.display_name
        detected: list[DetectedSecret] = []

        for container in iter_maps(get_list(config, "container")):
            container_name = get_str(container, "name") or res_name

            # Everything in secure_environment_variables is a secret
            for key in get_map(container, "secure_environment_variables") or {}:
                detected.append(
                    self._candidate(
                        resource,
                        normalize_env_name(key),
                        description=f"Secure environment variable {key} from container {container_name}",
                        type=infer_secret_type(key),
                    )
                )

            for key in get_map(container, "environment_variables") or {}:
                if is_sensitive_env_name(key):
                    detected.append(
                        self._candidate(
                            resource,
                            normalize_env_name(key),
                            description=f"Environment variable {key} from container {container_name}",
                            type=infer_secret_type(key),
                        )
                    )

        for cred in iter_maps(get_list(config, "image_registry_credential")):
            server = get_str(cred, "server")
            if server:
                detected.append(
                    self._candidate(
                        resource,
                        normalize_env_name(f"{server}_REGISTRY_PASSWORD"),
                        description=f"Container registry password for {server}",
                        type=SecretType.PASSWORD,
                    )
                )

        return detected

    def _detect_key_vault(self, resource: CloudResource) -> list[DetectedSecret]:
        vault_name = get_str(resource.config, "name") or resource.display_name
        return [
            self._candidate(
                resource,
                f"{normalize_env_name(vault_name)}_VAULT_URL",
                SecretSource.AZURE_KEY_VAULT,
                key=vault_name,
                description=f"Azure Key Vault reference: {vault_name}",
                required=False,
                deduplication_key=f"{SecretSource.AZURE_KEY_VAULT.value}:vault:{vault_name}",
            )
        ]
