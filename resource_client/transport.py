"""
Transport boundary: send one prepared HTTP request, get a response or an error.
The default implementation wraps a requests.Session whose connections can be shut
down from another thread when a call is abandoned.
"""

from __future__ import annotations

import logging
import socket
import threading
from abc import ABC, abstractmethod
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPConnection, HTTPSConnection
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool

from resource_client.context import CallContext

logger = logging.getLogger(__name__)

# Connections checked out by the send running on the current thread
_local = threading.local()


def shutdown_connection(conn: Any) -> None:
    """Shut down conn's socket so a read blocked on it fails at once. No-op if not connected."""
    sock = getattr(conn, "sock", None)
    if sock is None:
        return
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError as e:
        logger.debug("Socket shutdown failed: %s", e)


class _InFlight:
    """Connections used by one send; abort() shuts them all down, now and on later use."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connections: list[Any] = []
        self.aborted = False

    def add(self, conn: Any) -> None:
        with self._lock:
            self._connections.append(conn)
            aborted = self.aborted
        if aborted:
            shutdown_connection(conn)

    def abort(self) -> None:
        with self._lock:
            self.aborted = True
            connections = list(self._connections)
        for conn in connections:
            shutdown_connection(conn)


def _track(conn: Any) -> None:
    in_flight = getattr(_local, "in_flight", None)
    if in_flight is not None:
        in_flight.add(conn)


def _check_aborted(conn: Any) -> None:
    in_flight = getattr(_local, "in_flight", None)
    if in_flight is not None and in_flight.aborted:
        shutdown_connection(conn)


class _TrackedHTTPConnection(HTTPConnection):
    def connect(self) -> None:
        super().connect()
        _check_aborted(self)


class _TrackedHTTPSConnection(HTTPSConnection):
    def connect(self) -> None:
        super().connect()
        _check_aborted(self)


class _TrackedHTTPConnectionPool(HTTPConnectionPool):
    ConnectionCls = _TrackedHTTPConnection

    def _get_conn(self, timeout=None):
        conn = super()._get_conn(timeout)
        _track(conn)
        return conn


class _TrackedHTTPSConnectionPool(HTTPSConnectionPool):
    ConnectionCls = _TrackedHTTPSConnection

    def _get_conn(self, timeout=None):
        conn = super()._get_conn(timeout)
        _track(conn)
        return conn


class AbortableHTTPAdapter(HTTPAdapter):
    """
    HTTPAdapter whose pools record the connection each send uses, so that
    RequestsTransport can shut it down when the call is abandoned.
    Proxied requests go through requests' proxy managers and are not tracked.
    """

    def init_poolmanager(self, *args, **kwargs) -> None:
        super().init_poolmanager(*args, **kwargs)
        self.poolmanager.pool_classes_by_scheme = {
            "http": _TrackedHTTPConnectionPool,
            "https": _TrackedHTTPSConnectionPool,
        }


class Transport(ABC):
    """Interface for a blocking HTTP client."""

    @abstractmethod
    def send(
        self,
        request: requests.PreparedRequest,
        timeout: float | None = None,
        context: CallContext | None = None,
    ) -> requests.Response:
        """
        Send request once and return the response; its body may not be read yet.
        Raises requests.Timeout (or TransportTimeoutError) when the attempt times out,
        and requests.RequestException (or TransportError) on other failures.
        When context is given, an implementation may register context.on_abort() to
        unblock the send if the call is abandoned.
        """
        ...

    def close(self) -> None:
        """Release any pooled resources."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def new_session() -> requests.Session:
    """A requests.Session with AbortableHTTPAdapter mounted for http and https."""
    session = requests.Session()
    session.mount("http://", AbortableHTTPAdapter())
    session.mount("https://", AbortableHTTPAdapter())
    return session


class RequestsTransport(Transport):
    """
    Sends requests through a requests.Session (connection pooling is left to requests).
    Abandoned sends are aborted only when the session mounts AbortableHTTPAdapter,
    which is the case for the session this transport creates itself.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        allow_redirects: bool = True,
    ) -> None:
        """
        Args:
            session: Session to use; a new one is created (and owned) if None
            allow_redirects: Follow redirects
        """
        self._owns_session = session is None
        self._session = session if session is not None else new_session()
        self._allow_redirects = allow_redirects

    def send(
        self,
        request: requests.PreparedRequest,
        timeout: float | None = None,
        context: CallContext | None = None,
    ) -> requests.Response:
        logger.debug("%s %s (timeout=%s)", request.method, request.url, timeout)
        in_flight = _InFlight()
        remove = context.on_abort(in_flight.abort) if context is not None else None
        _local.in_flight = in_flight
        try:
            if context is not None:
                context.raise_if_done()
            # stream=True: the caller reads the body and closes the response itself
            return self._session.send(
                request,
                timeout=timeout,
                allow_redirects=self._allow_redirects,
                stream=True,
            )
        finally:
            _local.in_flight = None
            if remove is not None:
                remove()

    def close(self) -> None:
        """Close the session if this transport created it."""
        if self._owns_session:
            self._session.close()
