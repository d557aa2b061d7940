"""
Naming and classification utilities for secret detection.

Pure functions used by the detectors to decide whether a value is
sensitive, what kind of secret it is, and what to call it.
"""

from __future__ import annotations

import re

from secretmap.secrets.reference import SecretType

# Case-insensitive substring patterns for sensitive variable names
SENSITIVE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"PASSWORD",
        r"SECRET",
        r"API[_-]?KEY",
        r"TOKEN",
        r"CREDENTIAL",
        r"AUTH",
        r"PRIVATE[_-]?KEY",
        r"ACCESS[_-]?KEY",
        r"CLIENT[_-]?SECRET",
        r"ENCRYPTION[_-]?KEY",
        r"SIGNING[_-]?KEY",
        r"MASTER[_-]?KEY",
        r"DB[_-]?PASS",
        r"DATABASE[_-]?PASS",
        r"CERT",
        r"SSH[_-]?KEY",
        r"RSA[_-]?KEY",
        r"JWT[_-]?SECRET",
        r"HMAC",
        r"BEARER",
    )
]

# Names that are always sensitive
EXPLICIT_SECRET_NAMES = frozenset({
    "PASSWORD",
    "SECRET",
    "API_KEY",
    "APIKEY",
    "TOKEN",
    "AUTH_TOKEN",
    "ACCESS_TOKEN",
    "REFRESH_TOKEN",
    "PRIVATE_KEY",
    "SECRET_KEY",
    "ENCRYPTION_KEY",
    "MASTER_PASSWORD",
    "DB_PASSWORD",
    "DATABASE_PASSWORD",
    "REDIS_PASSWORD",
    "POSTGRES_PASSWORD",
    "MYSQL_PASSWORD",
    "MONGO_PASSWORD",
    "JWT_SECRET",
    "SESSION_SECRET",
    "COOKIE_SECRET",
    "SIGNING_KEY",
    "SSH_KEY",
    "SSH_PRIVATE_KEY",
    "TLS_KEY",
    "SSL_KEY",
})

# First matching rule wins
_TYPE_RULES: list[tuple[tuple[str, ...], SecretType]] = [
    (("PASSWORD", "PASSWD"), SecretType.PASSWORD),
    (("API_KEY", "APIKEY"), SecretType.API_KEY),
    (("TOKEN",), SecretType.API_KEY),
    (("CERT",), SecretType.CERTIFICATE),
    (("PRIVATE_KEY", "SSH_KEY", "RSA_KEY", "TLS_KEY"), SecretType.PRIVATE_KEY),
    (
        ("CONNECTION_STRING", "DATABASE_URL", "DB_URL", "REDIS_URL"),
        SecretType.CONNECTION_STRING,
    ),
]

_TYPE_HINTS: list[tuple[tuple[str, ...], str]] = [
    (("rds", "postgres", "mysql", "sql"), "DB"),
    (("redis", "elasticache", "cache"), "CACHE"),
    (("lambda", "function"), "FN"),
]

_SEPARATORS = re.compile(r"[-./ ]")
_INVALID_CHARS = re.compile(r"[^A-Z0-9_]")
_REPEATED_UNDERSCORES = re.compile(r"_{2,}")


def is_sensitive_env_name(name: str) -> bool:
    """
    Check if an environment variable name likely holds a secret.

    Exact matches against EXPLICIT_SECRET_NAMES are checked first, then
    case-insensitive substring matches against SENSITIVE_PATTERNS.
    """
    if name.upper() in EXPLICIT_SECRET_NAMES:
        return True
    return any(pattern.search(name) for pattern in SENSITIVE_PATTERNS)


def infer_secret_type(name: str) -> SecretType:
    """Guess the secret type from its name."""
    upper = name.upper()
    for keywords, secret_type in _TYPE_RULES:
        if any(keyword in upper for keyword in keywords):
            return secret_type
    return SecretType.GENERIC


def normalize_env_name(name: str) -> str:
    """
    Convert a string to a valid environment variable name.

    Example: "my-secret.key" -> "MY_SECRET_KEY"
    """
    result = _SEPARATORS.sub("_", name).upper()
    result = _INVALID_CHARS.sub("", result)

    if result and result[0].isdigit():
        result = "VAR_" + result

    result = _REPEATED_UNDERSCORES.sub("_", result)
    return result.strip("_")


def generate_secret_name(resource_name: str, resource_kind: str, field: str) -> str:
    """
    Build a descriptive secret name from resource and field information.

    A type hint (DB, CACHE or FN) is inserted when the resource kind calls
    for one and the normalized resource name does not already contain it.

    Args:
        resource_name: Name of the resource (e.g., "prod-db")
        resource_kind: Kind of resource (e.g., "postgres", "aws_lambda_function")
        field: Field the secret belongs to (e.g., "password")

    Returns:
        Secret name, e.g. "PROD_DB_PASSWORD" or "API_FN_API_KEY"
    """
    base_name = normalize_env_name(resource_name)

    type_hint = ""
    for keywords, hint in _TYPE_HINTS:
        if any(keyword in resource_kind for keyword in keywords):
            type_hint = hint
            break

    parts = [base_name]
    if type_hint and type_hint not in base_name:
        parts.append(type_hint)
    parts.append(normalize_env_name(field))

    return "_".join(parts)


def extract_secret_key_from_arn(arn: str) -> str:
    """
    Extract the secret name from a Secrets Manager ARN.

    The trailing hyphen segment is treated as the random suffix AWS appends
    and is removed only when it is exactly 6 characters long. This is a
    heuristic: a human-chosen final segment of 6 characters is removed too.

    Example:
        "arn:aws:secretsmanager:us-east-1:123:secret:prod/db-password-AbCdEf"
        -> "prod/db-password"

    Returns:
        The secret name, or the input unchanged when it has fewer than
        7 colon-separated parts
    """
    parts = arn.split(":")
    if len(parts) < 7:
        return arn

    secret_part = parts[6]
    idx = secret_part.rfind("-")
    if idx > 0 and len(secret_part) - idx == 7:
        secret_part = secret_part[:idx]
    return secret_part
