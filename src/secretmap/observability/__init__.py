"""
Observability for secretmap.

Provides structured logging with secret redaction.
"""

from secretmap.observability.logging import (
    HumanReadableFormatter,
    SecretmapLogger,
    StructuredFormatter,
    configure_logging,
    get_logger,
)

__all__ = [
    "HumanReadableFormatter",
    "SecretmapLogger",
    "StructuredFormatter",
    "configure_logging",
    "get_logger",
]
