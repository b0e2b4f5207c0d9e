"""Checks for values that end up inside storage keys.

Storage keys are built as ``<kind>:<scope>:<CONNECTOR>``, so scope ids
must never contain ``:`` and connector keys must stay upper-case slugs.
"""

import re

from connector_core.exceptions import InvalidIdentifierError

# user and project ids; ':' excluded
SCOPE_ID_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.@-]{0,127}")

CONNECTOR_KEY_RE = re.compile(r"[A-Z][A-Z0-9_]{0,63}")


def validate_identifier(value: str, name: str = "identifier") -> str:
    """Return ``value`` if it is usable as a user or project id.

    Accepted: 1 to 128 characters from letters, digits and ``_ . @ -``,
    starting with a letter or digit, with no ``..``.

    Raises:
        InvalidIdentifierError: Naming the offending field
    """
    if not value:
        raise InvalidIdentifierError(f"{name} cannot be empty", name)
    if not isinstance(value, str) or not SCOPE_ID_RE.fullmatch(value) or ".." in value:
        raise InvalidIdentifierError(
            f"Invalid {name} {str(value)[:32]!r}: use up to 128 letters, digits, "
            "'_', '.', '@' or '-', starting with a letter or digit",
            name,
        )
    return value


def validate_connector_key(key: str) -> str:
    """Return ``key`` if it is an upper-case slug such as ``GOOGLE_DRIVE``.

    Raises:
        InvalidIdentifierError: If it is not
    """
    if not key or not isinstance(key, str) or not CONNECTOR_KEY_RE.fullmatch(key):
        raise InvalidIdentifierError(
            f"Invalid connector key {key!r}: expected an upper-case slug like 'NOTION'",
            "connector_key",
        )
    return key
