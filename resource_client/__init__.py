"""
Resource client: REST request pipeline with URL templates, pluggable serializers,
exponential-backoff retries, and cancellable calls.

Example:
    from resource_client import Resource

    res = Resource("http://localhost:8080/v1/users/{user_id}")
    call, cancel = res.request("GET", {"user_id": "42"})
    response = call()
    if response.ok:
        print(response.body)
"""

from __future__ import annotations

from resource_client.config import (
    build_resource,
    configure_logging,
    configure_logging_from_config,
    get_resource_section,
    get_section,
    load_yaml_file,
)
from resource_client.context import CallContext
from resource_client.errors import (
    CallTimeoutError,
    CancellationError,
    ConfigurationError,
    DecodingError,
    EncodingError,
    IncompatibleContentTypeError,
    ResourceClientError,
    TransportError,
    TransportTimeoutError,
)
from resource_client.finder import find
from resource_client.resource import Resource, ResourceConfig, Response
from resource_client.retry import ExponentialRetryPolicy, RetryPolicy, RetryResult
from resource_client.serializers import JsonSerializer, Serializer
from resource_client.transport import AbortableHTTPAdapter, RequestsTransport, Transport
from resource_client.url_template import resolve

__all__ = [
    "AbortableHTTPAdapter",
    "CallContext",
    "CallTimeoutError",
    "CancellationError",
    "ConfigurationError",
    "DecodingError",
    "EncodingError",
    "ExponentialRetryPolicy",
    "IncompatibleContentTypeError",
    "JsonSerializer",
    "RequestsTransport",
    "Resource",
    "ResourceClientError",
    "ResourceConfig",
    "Response",
    "RetryPolicy",
    "RetryResult",
    "Serializer",
    "Transport",
    "TransportError",
    "TransportTimeoutError",
    "build_resource",
    "configure_logging",
    "configure_logging_from_config",
    "find",
    "get_resource_section",
    "get_section",
    "load_yaml_file",
    "resolve",
]
