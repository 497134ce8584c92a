"""
Key namespacing for grouped cache entries.

A cache entry is addressed by ``(group, key)``. The backend stores it under
the namespaced key ``group + SEP + key``; group flushes match the pattern
``group + SEP + "*"``. Neither part may contain ``SEP`` so that the
namespaced key always decomposes back into exactly one pair.
"""

from typing import Tuple

from .exceptions import InvalidKeyError

SEP = ":"

# Characters with a meaning in backend glob patterns
_GLOB_SPECIAL = "\\*?[]"


def _validate(name: str, value: str) -> None:
    if not isinstance(value, str):
        raise InvalidKeyError(f"{name} must be a string, got {type(value).__name__}")
    if not value:
        raise InvalidKeyError(f"{name} must not be empty")
    if SEP in value:
        raise InvalidKeyError(f"{name} must not contain {SEP!r}: {value!r}")


def namespaced_key(group: str, key: str) -> str:
    """
    Build the backend key for a group entry.

    Example:
        namespaced_key("users", "42")
        # Returns: "users:42"
    """
    _validate("group", group)
    _validate("key", key)
    return f"{group}{SEP}{key}"


def encode_key(group: str, key: str) -> bytes:
    """Namespaced key as the UTF-8 bytes sent to the backend."""
    return namespaced_key(group, key).encode("utf-8")


def escape_pattern(text: str) -> str:
    """Escape glob metacharacters so ``text`` matches literally."""
    return "".join("\\" + char if char in _GLOB_SPECIAL else char for char in text)


def group_pattern(group: str) -> str:
    """
    Build the pattern matching every key of a group.

    Example:
        group_pattern("users")
        # Returns: "users:*"
    """
    _validate("group", group)
    return f"{escape_pattern(group)}{SEP}*"


def split_key(namespaced: str) -> Tuple[str, str]:
    """
    Decompose a namespaced key into ``(group, key)``.

    Raises:
        InvalidKeyError: If the value is not a well-formed namespaced key
    """
    group, sep, key = namespaced.partition(SEP)
    if not sep or not group or not key:
        raise InvalidKeyError(f"Not a namespaced key: {namespaced!r}")
    return group, key
