"""
Error taxonomy for resource calls.
Configuration and encoding errors are raised before any network activity;
the others are carried by Response.error alongside the status code.
"""

from __future__ import annotations


class ResourceClientError(Exception):
    """Base class for every error produced by the request pipeline."""


class ConfigurationError(ResourceClientError):
    """Programmer misuse, e.g. a resource without an endpoint. Never retried."""


class EncodingError(ResourceClientError):
    """The request body could not be serialized."""


class DecodingError(ResourceClientError):
    """The response body could not be deserialized."""


class IncompatibleContentTypeError(DecodingError):
    """The response declared a content type the serializer cannot read."""

    def __init__(self, content_types: list[str], accepted: list[str]) -> None:
        self.content_types = list(content_types)
        self.accepted = list(accepted)
        super().__init__(
            f"Cannot deserialize the response: {', '.join(self.content_types)} "
            f"(accepted: {', '.join(self.accepted)})"
        )


class TransportError(ResourceClientError):
    """The transport failed to produce a response."""


class TransportTimeoutError(TransportError):
    """A single transport attempt timed out. Retryable."""


class CancellationError(ResourceClientError):
    """The call was cancelled before completion."""


class CallTimeoutError(CancellationError):
    """The call ran past its overall deadline."""
