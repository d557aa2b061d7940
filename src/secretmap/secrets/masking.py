"""
Secret value masking for secretmap.

Provides masked display of values and a logging filter that redacts
any registered secret value from log records.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

REDACTED = "***REDACTED***"

# Values shorter than this are not redacted from logs; they would match
# too much ordinary text.
MIN_REDACT_LENGTH = 4


def mask_value(value: str) -> str:
    """
    Mask a secret value for display.

    Shows the first and last two characters of values longer than four
    characters.

    Examples:
        "" -> "(empty)"
        "abc" -> "****"
        "supersecret" -> "su*******et"
    """
    if not value:
        return "(empty)"
    if len(value) <= 4:
        return "****"
    return value[:2] + "*" * (len(value) - 4) + value[-2:]


def redact_value(value: str, visible_chars: int = 4) -> str:
    """
    Redact a value, keeping a few characters at each end.

    Args:
        value: Value to redact
        visible_chars: Number of characters to show at start/end

    Returns:
        Redacted value
    """
    if len(value) <= visible_chars * 2:
        return "*" * len(value)
    return f"{value[:visible_chars]}{'*' * (len(value) - visible_chars * 2)}{value[-visible_chars:]}"


class SecretMaskingFilter(logging.Filter):
    """
    Logging filter that replaces known secret values with a marker.

    Values are registered as they are resolved. The filter rewrites the
    formatted message and any string attributes passed through `extra`.
    """

    def __init__(self, name: str = "") -> None:
        super().__init__(name)
        self._values: set[str] = set()
        self._lock = threading.Lock()

    def add_value(self, value: str) -> None:
        """Register a value to redact."""
        if value and len(value) >= MIN_REDACT_LENGTH:
            with self._lock:
                self._values.add(value)

    def remove_value(self, value: str) -> None:
        """Stop redacting a value."""
        with self._lock:
            self._values.discard(value)

    def clear(self) -> None:
        """Forget all registered values."""
        with self._lock:
            self._values.clear()

    def __len__(self) -> int:
        return len(self._values)

    def redact(self, text: str) -> str:
        """Replace every registered value in text."""
        with self._lock:
            # Longest first so a value containing another is fully replaced
            values = sorted(self._values, key=len, reverse=True)
        for value in values:
            if value in text:
                text = text.replace(value, REDACTED)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._values:
            return True

        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None

        for key, value in list(record.__dict__.items()):
            if key in ("msg", "args") or key.startswith("_"):
                continue
            if isinstance(value, str):
                new_value = self.redact(value)
                if new_value != value:
                    setattr(record, key, new_value)

        return True


_default_filter = SecretMaskingFilter()


def get_masking_filter() -> SecretMaskingFilter:
    """Get the process-wide masking filter."""
    return _default_filter


def register_secret_value(value: str) -> None:
    """Register a resolved value with the process-wide masking filter."""
    _default_filter.add_value(value)


def unregister_secret_values(values: Any) -> None:
    """Remove values from the process-wide masking filter."""
    for value in values:
        _default_filter.remove_value(value)
