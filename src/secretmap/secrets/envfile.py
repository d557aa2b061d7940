"""
Env file reading and writing for secretmap.

Handles the operator-supplied secrets file (KEY=VALUE lines) and the
escaping used when resolved values are written back out.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

logger = logging.getLogger(__name__)

# Characters that force a value to be double-quoted, besides any
# str.isspace() character, which the parser would strip
_QUOTE_TRIGGERS = frozenset("\"'`$\\")

_ESCAPE_SEQUENCE = re.compile(r"\\(.)", re.DOTALL)

_UNESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    '"': '"',
    "'": "'",
    "\\": "\\",
    "$": "$",
}

_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "$": "\\$",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}


def _unescape(value: str) -> str:
    # Single left-to-right pass so "\\n" stays a backslash followed by "n".
    # Unknown sequences are kept verbatim.
    return _ESCAPE_SEQUENCE.sub(
        lambda m: _UNESCAPES.get(m.group(1), m.group(0)), value
    )


def parse_env_file(content: str) -> dict[str, str]:
    """
    Parse .env file content into a mapping.

    Blank lines and lines starting with '#' are skipped, as are lines
    without '='. An "export " prefix is tolerated. Values wrapped in
    matching single or double quotes are unquoted, then escape sequences
    are decoded.

    Args:
        content: File content

    Returns:
        Dictionary of key to value; later lines override earlier ones
    """
    env: dict[str, str] = {}

    for raw_line in content.split("\n"):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue

        key, sep, value = line.partition("=")
        if not sep:
            continue

        key = key.strip()
        if key.startswith("export "):
            key = key[len("export "):].strip()
        if not key:
            continue

        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]

        env[key] = _unescape(value)

    return env


def read_env_file(path: str) -> dict[str, str]:
    """
    Read and parse an env file.

    Bytes that are not valid UTF-8 are kept as surrogate escapes, so one
    stray byte in a comment does not make the whole file unreadable.

    Raises:
        OSError: If the file cannot be read
    """
    with open(
        os.path.expanduser(path), "r", encoding="utf-8", errors="surrogateescape"
    ) as f:
        return parse_env_file(f.read())


def escape_env_value(value: str) -> str:
    """
    Escape a value for a .env line.

    Values containing whitespace or any of " ' ` $ \\ are double-quoted,
    with backslash, double quote and dollar escaped and line breaks written
    as escape sequences. The result parses back to the original value.

    Example: 'pass word$1' -> '"pass word\\$1"'
    """
    if not any(ch.isspace() or ch in _QUOTE_TRIGGERS for ch in value):
        return value
    escaped = "".join(_ESCAPES.get(ch, ch) for ch in value)
    return f'"{escaped}"'


def write_env_content(path: str, content: str, mode: int) -> None:
    """
    Write env file content with the given permission bits.

    The file is created with the mode applied, so sensitive content is
    never readable under looser permissions, even briefly.
    """
    path = os.path.expanduser(path)
    Path(path).parent.mkdir(parents=True, exist_ok=True)

    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)
    os.chmod(path, mode)

    logger.debug(f"Wrote env file {path} with mode {oct(mode)}")
