"""
Abstract interface for request/response (de)serialization, and the default JSON implementation.
"""

from __future__ import annotations

import dataclasses
import json
from abc import ABC, abstractmethod
from typing import Any

from resource_client.errors import DecodingError, EncodingError

JSON_API_MIMETYPE = "application/vnd.api+json"
JSON_MIMETYPE = "application/json"


class Serializer(ABC):
    """Interface for encoding request bodies and decoding response bodies."""

    @abstractmethod
    def serialize(self, value: Any) -> bytes:
        """Encode value. Raises EncodingError if it cannot be represented."""
        ...

    @abstractmethod
    def serialization_compatible_mimetype(self) -> str:
        """MIME type sent as Content-Type with an encoded body."""
        ...

    @abstractmethod
    def deserialize(self, data: bytes) -> Any:
        """Decode data into a structured value. Raises DecodingError on malformed or empty input."""
        ...

    @abstractmethod
    def deserialization_compatible_mimetypes(self) -> list[str]:
        """MIME types this serializer can read, most preferred first."""
        ...


def _encode_default(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class JsonSerializer(Serializer):
    """Reads and writes JSON; writes the JSON:API media type."""

    def serialize(self, value: Any) -> bytes:
        try:
            return json.dumps(
                value,
                default=_encode_default,
                allow_nan=False,
                separators=(",", ":"),
            ).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise EncodingError(f"Cannot encode body as JSON: {e}") from e

    def serialization_compatible_mimetype(self) -> str:
        return JSON_API_MIMETYPE

    def deserialize(self, data: bytes) -> Any:
        if not data:
            raise DecodingError("Cannot decode an empty JSON document")
        try:
            return json.loads(data)
        except ValueError as e:
            raise DecodingError(f"Malformed JSON: {e}") from e

    def deserialization_compatible_mimetypes(self) -> list[str]:
        return [JSON_API_MIMETYPE, JSON_MIMETYPE]
