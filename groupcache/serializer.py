"""
Value serializers.

The cache stores opaque bytes; a serializer turns in-process values into
bytes and back. Both directions raise ``SerializationError`` on failure.
"""

import json
import pickle
from typing import Any, Optional, Protocol

from .exceptions import SerializationError


class Serializer(Protocol):
    """Marshal values to bytes and back."""

    def serialize(self, value: Any) -> bytes:
        ...

    def unserialize(self, data: Optional[bytes]) -> Any:
        ...


class PickleSerializer:
    """Serializer for arbitrary picklable Python objects."""

    def __init__(self, protocol: int = pickle.HIGHEST_PROTOCOL):
        self.protocol = protocol

    def serialize(self, value: Any) -> bytes:
        try:
            return pickle.dumps(value, protocol=self.protocol)
        except (pickle.PicklingError, TypeError, AttributeError) as e:
            raise SerializationError(f"Cannot serialize {type(value).__name__}: {e}") from e

    def unserialize(self, data: Optional[bytes]) -> Any:
        if data is None:
            return None
        try:
            return pickle.loads(data)
        except Exception as e:
            # pickle reports corrupt input through many unrelated exception types
            raise SerializationError(f"Cannot unserialize {len(data)} bytes: {e}") from e


class JsonSerializer:
    """Serializer for JSON-compatible values (dicts, lists, strings, numbers)."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def serialize(self, value: Any) -> bytes:
        try:
            return json.dumps(value, separators=(",", ":")).encode(self.encoding)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Cannot serialize {type(value).__name__}: {e}") from e

    def unserialize(self, data: Optional[bytes]) -> Any:
        if data is None:
            return None
        try:
            return json.loads(data.decode(self.encoding))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise SerializationError(f"Cannot unserialize {len(data)} bytes: {e}") from e
