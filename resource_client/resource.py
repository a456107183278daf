"""
Resource: a reusable REST client bound to one endpoint template.
Prepares requests (URL resolution, body encoding, headers) and returns a deferred call
that drives the retry policy and decodes the response.
"""

from __future__ import annotations

import logging
from contextlib import closing
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

import requests
from requests.structures import CaseInsensitiveDict

from resource_client.context import CallContext
from resource_client.errors import (
    CancellationError,
    ConfigurationError,
    DecodingError,
    EncodingError,
    IncompatibleContentTypeError,
    TransportError,
)
from resource_client.finder import find
from resource_client.retry import ExponentialRetryPolicy, RetryPolicy
from resource_client.serializers import JsonSerializer, Serializer
from resource_client.transport import RequestsTransport, Transport, shutdown_connection
from resource_client.url_template import resolve

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 30
USER_AGENT = "resource-client/1.0"


@dataclass
class Response:
    """Result of a call: status code (0 = no response received), decoded body, and error."""

    status_code: int
    body: Any = None
    error: Exception | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    tries: int = 0

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300 and self.error is None


@dataclass(frozen=True)
class ResourceConfig:
    """Frozen snapshot of a resource's collaborators."""

    endpoint: str | None
    transport: Transport
    serializer: Serializer
    retry_policy: RetryPolicy
    timeout_sec: float = DEFAULT_TIMEOUT_SEC


CallFunc = Callable[[], Response]
CancelFunc = Callable[[], None]


def encode_request_body(
    body: Any, serializer: Serializer
) -> tuple[str | None, bytes | None]:
    """
    Encode body with serializer if there is one.

    Returns:
        (content type, encoded body), or (None, None) when body is None

    Raises:
        EncodingError: If the body cannot be serialized
    """
    if body is None:
        return None, None
    encoded = serializer.serialize(body)
    return serializer.serialization_compatible_mimetype(), encoded


def decode_response_body(
    raw: bytes | Any,
    content_types: list[str] | None,
    serializer: Serializer,
) -> Any:
    """
    Decode a response body, checking the declared content types first.

    Args:
        raw: Body bytes, or a readable stream
        content_types: Content types declared by the response; None or empty skips the check
        serializer: Serializer whose accepted MIME types must match one declared type

    Returns:
        Decoded value, or None for an empty body

    Raises:
        IncompatibleContentTypeError: If no declared content type is accepted
        DecodingError: If the body is malformed
    """
    data = raw.read() if hasattr(raw, "read") else raw
    accepted = serializer.deserialization_compatible_mimetypes()
    if content_types and all(
        find(content_types, mimetype, partial=True) == -1 for mimetype in accepted
    ):
        raise IncompatibleContentTypeError(content_types, accepted)
    if not data:
        return None
    return serializer.deserialize(data)


def _declared_content_types(response: requests.Response) -> list[str] | None:
    header = response.headers.get("Content-Type")
    if not header:
        return None
    return [value.strip() for value in header.split(",") if value.strip()]


def _call(
    config: ResourceConfig, request: requests.PreparedRequest, context: CallContext
) -> Response:
    """Run the retry policy for a prepared request and decode the final response."""
    err = context.error()
    if err is not None:
        return Response(status_code=0, error=err)

    result = config.retry_policy.try_send(config.transport, request, context)
    if result.error is not None:
        if result.response is not None:
            result.response.close()
        if not isinstance(result.error, CancellationError):
            logger.warning(
                "%s %s failed after %d tries: %s",
                request.method,
                request.url,
                result.tries,
                result.error,
            )
        return Response(status_code=0, error=result.error, tries=result.tries)
    if result.response is None:
        # Only a custom RetryPolicy can end with neither a response nor an error
        return Response(
            status_code=0,
            error=TransportError("No response received"),
            tries=result.tries,
        )

    # Drain and close the body on every path so the connection can be reused
    with closing(result.response) as response:
        status = response.status_code
        headers = CaseInsensitiveDict(response.headers)
        remove = context.on_abort(
            lambda: shutdown_connection(getattr(response.raw, "connection", None))
        )
        try:
            content = context.run(lambda: response.content)
        except CancellationError as e:
            return Response(status, error=e, headers=headers, tries=result.tries)
        except requests.RequestException as e:
            error = TransportError(f"Failed to read response body: {e}")
            error.__cause__ = e
            return Response(status, error=error, headers=headers, tries=result.tries)
        finally:
            remove()
        try:
            body = decode_response_body(
                content, _declared_content_types(response), config.serializer
            )
        except IncompatibleContentTypeError as e:
            logger.warning("%s %s: %s", request.method, request.url, e)
            return Response(status, error=e, headers=headers, tries=result.tries)
        except DecodingError as e:
            logger.debug("%s %s: decoding failed: %s", request.method, request.url, e)
            return Response(status, error=e, headers=headers, tries=result.tries)
    return Response(status, body=body, headers=headers, tries=result.tries)


class Resource:
    """
    Reusable REST client for one parameterized endpoint.
    Defaults: JSON serializer, requests transport, exponential retry policy, 30s timeout.
    Finish configuring before sharing a resource across threads.
    """

    def __init__(
        self,
        endpoint: str | None,
        transport: Transport | None = None,
        serializer: Serializer | None = None,
        retry_policy: RetryPolicy | None = None,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
    ) -> None:
        """
        Args:
            endpoint: URL template with {name} placeholders in path, query or fragment
            transport: HTTP transport (a RequestsTransport is created if None)
            serializer: Body (de)serializer (JSON if None)
            retry_policy: Retry policy (exponential backoff if None)
            timeout_sec: Per-call timeout in seconds, 0 means unbounded
        """
        self._endpoint = endpoint
        self._transport = transport if transport is not None else RequestsTransport()
        self._serializer = serializer if serializer is not None else JsonSerializer()
        self._retry_policy = (
            retry_policy if retry_policy is not None else ExponentialRetryPolicy()
        )
        self._timeout = max(0.0, timeout_sec)

    @classmethod
    def from_config(cls, config: ResourceConfig) -> Resource:
        """Build a resource from a validated configuration snapshot."""
        if config.endpoint is None or not str(config.endpoint).strip():
            raise ConfigurationError("The endpoint to query cannot be empty")
        if config.timeout_sec < 0:
            raise ConfigurationError(f"Invalid timeout: {config.timeout_sec}")
        return cls(
            config.endpoint,
            transport=config.transport,
            serializer=config.serializer,
            retry_policy=config.retry_policy,
            timeout_sec=config.timeout_sec,
        )

    @property
    def endpoint(self) -> str | None:
        return self._endpoint

    @property
    def timeout_sec(self) -> float:
        return self._timeout

    @property
    def config(self) -> ResourceConfig:
        return ResourceConfig(
            endpoint=self._endpoint,
            transport=self._transport,
            serializer=self._serializer,
            retry_policy=self._retry_policy,
            timeout_sec=self._timeout,
        )

    def with_serializer(self, serializer: Serializer | None) -> Resource:
        if serializer is not None:
            self._serializer = serializer
        return self

    def with_timeout(self, timeout_sec: float | None) -> Resource:
        """Set the per-call timeout in seconds; 0 means unbounded, None or negative is ignored."""
        if timeout_sec is not None and timeout_sec >= 0:
            self._timeout = timeout_sec
        return self

    def with_transport(self, transport: Transport | None) -> Resource:
        if transport is not None:
            self._transport = transport
        return self

    def with_retry_policy(self, retry_policy: RetryPolicy | None) -> Resource:
        if retry_policy is not None:
            self._retry_policy = retry_policy
        return self

    def request(
        self,
        verb: str,
        params: Mapping[str, str] | None = None,
        body: Any = None,
    ) -> tuple[CallFunc, CancelFunc]:
        """
        Prepare a request on this resource.

        Args:
            verb: HTTP method, case-insensitive
            params: Values for the endpoint's {name} placeholders; unmatched names
                    become query parameters
            body: Optional payload, encoded with the serializer

        Returns:
            (call, cancel): call() sends the request and returns a Response; cancel()
            aborts a pending or in-flight call

        Raises:
            ConfigurationError: If the endpoint is missing or not a valid URL
            EncodingError: If body cannot be serialized (nothing is sent)
        """
        config = self.config
        context = CallContext(config.timeout_sec)

        url = resolve(config.endpoint, params)
        if url is None:
            context.cancel()
            raise ConfigurationError("The endpoint to query cannot be None")

        try:
            content_type, encoded = encode_request_body(body, config.serializer)
        except EncodingError:
            context.cancel()
            raise

        headers = {
            "Accept": ",".join(config.serializer.deserialization_compatible_mimetypes()),
            "User-Agent": USER_AGENT,
        }
        if content_type:
            headers["Content-Type"] = content_type

        try:
            prepared = requests.Request(
                method=verb.upper(), url=url, headers=headers, data=encoded
            ).prepare()
        except requests.RequestException as e:
            context.cancel()
            raise ConfigurationError(f"Invalid request for {url}: {e}") from e
        logger.debug("Prepared %s %s", prepared.method, prepared.url)

        def call() -> Response:
            return _call(config, prepared, context)

        return call, context.cancel

    def close(self) -> None:
        """Close the transport."""
        self._transport.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
