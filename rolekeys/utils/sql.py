"""SQL text helpers for privilege-management commands.

Role and schema names end up inside DDL, which cannot use bind parameters,
so everything that reaches a command string goes through these helpers.
"""

from __future__ import annotations

import re

# PostgreSQL truncates identifiers to NAMEDATALEN - 1 bytes
MAX_IDENTIFIER_LENGTH = 63

_INVALID_IDENTIFIER_CHARS = re.compile(r"[^a-z0-9_]")


def sanitize_identifier(name: str) -> str:
    """Turn an arbitrary string into a plain lower-case identifier.

    Rules:
    1. Lower-case
    2. Every char outside [a-z0-9_] becomes "_"
    3. Must not start with a digit (prefixed with "_")
    4. Truncated to MAX_IDENTIFIER_LENGTH

    Examples:
        >>> sanitize_identifier("Ana-Lopez_role_ab12")
        'ana_lopez_role_ab12'
        >>> sanitize_identifier("9lives")
        '_9lives'
    """
    sanitized = _INVALID_IDENTIFIER_CHARS.sub("_", name.lower())
    if not sanitized or sanitized[0].isdigit():
        sanitized = f"_{sanitized}"
    return sanitized[:MAX_IDENTIFIER_LENGTH]


def quote_identifier(name: str) -> str:
    """Double-quote an identifier, escaping embedded quotes."""
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Single-quote a string literal, escaping embedded quotes."""
    return "'" + value.replace("'", "''") + "'"
