"""Shared and per-reader requests sessions.

Sessions built here mount a TrackingAdapter: while a request runs inside
``watching(watch)``, the connection it uses is recorded on the watch so
another thread can cut it off with ``watch.abort()``.
"""

from __future__ import annotations

import socket
import threading
from contextlib import contextmanager, suppress

import requests
from loguru import logger
from requests.adapters import HTTPAdapter
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool
from urllib3.contrib.socks import (
    SOCKSHTTPConnectionPool,
    SOCKSHTTPSConnectionPool,
    SOCKSProxyManager,
)

from .config import Settings

_default_session: requests.Session | None = None
_default_lock = threading.Lock()
_local = threading.local()


class ConnectionWatch:
    """The connection one open() call is using, abortable from any thread."""

    def __init__(self):
        self._lock = threading.Lock()
        self._conn = None
        self._aborted = False

    @property
    def aborted(self) -> bool:
        return self._aborted

    def attach(self, conn) -> None:
        # Redirect hops replace the previous, already released connection.
        with self._lock:
            self._conn = conn
            aborted = self._aborted
        if aborted:
            _shutdown(conn)

    def detach(self) -> None:
        """Forget the connection once it has gone back to the pool."""
        with self._lock:
            self._conn = None

    def abort(self) -> None:
        with self._lock:
            self._aborted = True
            conn = self._conn
        if conn is not None:
            _shutdown(conn)


def _shutdown(conn) -> None:
    """Shut the socket down so reads blocked on it in other threads return."""
    sock = getattr(conn, "sock", None)
    if sock is None:
        return
    with suppress(OSError):
        # Plain socket shutdown, also for SSL and SOCKS sockets.
        socket.socket.shutdown(sock, socket.SHUT_RDWR)


@contextmanager
def watching(watch: ConnectionWatch):
    """Record connections taken from tracked pools on this thread into *watch*."""
    _local.watch = watch
    try:
        yield watch
    finally:
        _local.watch = None


class _TrackedPoolMixin:
    def _get_conn(self, timeout=None):
        conn = super()._get_conn(timeout=timeout)
        watch = getattr(_local, "watch", None)
        if watch is not None:
            watch.attach(conn)
        return conn


class TrackedHTTPConnectionPool(_TrackedPoolMixin, HTTPConnectionPool):
    pass


class TrackedHTTPSConnectionPool(_TrackedPoolMixin, HTTPSConnectionPool):
    pass


class TrackedSOCKSHTTPConnectionPool(_TrackedPoolMixin, SOCKSHTTPConnectionPool):
    pass


class TrackedSOCKSHTTPSConnectionPool(_TrackedPoolMixin, SOCKSHTTPSConnectionPool):
    pass


TRACKED_POOLS = {"http": TrackedHTTPConnectionPool, "https": TrackedHTTPSConnectionPool}
TRACKED_SOCKS_POOLS = {
    "http": TrackedSOCKSHTTPConnectionPool,
    "https": TrackedSOCKSHTTPSConnectionPool,
}


class TrackingAdapter(HTTPAdapter):
    """HTTPAdapter whose pools report checked-out connections to the current watch."""

    def init_poolmanager(self, *args, **kwargs):
        super().init_poolmanager(*args, **kwargs)
        self.poolmanager.pool_classes_by_scheme = TRACKED_POOLS

    def proxy_manager_for(self, proxy, **proxy_kwargs):
        manager = super().proxy_manager_for(proxy, **proxy_kwargs)
        if isinstance(manager, SOCKSProxyManager):
            manager.pool_classes_by_scheme = TRACKED_SOCKS_POOLS
        else:
            manager.pool_classes_by_scheme = TRACKED_POOLS
        return manager


def build_session(settings: Settings, proxy_url: str | None = None) -> requests.Session:
    """Build a session from *settings*, optionally pinned to *proxy_url*.

    A proxied session ignores environment proxy settings so NO_PROXY cannot
    route around the configured proxy.
    """
    session = requests.Session()
    session.mount("https://", TrackingAdapter())
    session.mount("http://", TrackingAdapter())
    session.trust_env = settings.trust_env
    if settings.user_agent:
        session.headers["User-Agent"] = settings.user_agent
    if proxy_url:
        session.trust_env = False
        session.proxies = {"http": proxy_url, "https": proxy_url}
    return session


def default_session() -> requests.Session:
    """Return the process-wide session, creating it on first use."""
    global _default_session
    with _default_lock:
        if _default_session is None:
            settings = Settings.from_env()
            _default_session = build_session(settings)
            logger.debug(f"Created default session (trust_env={settings.trust_env})")
        return _default_session


def proxy_session(proxy_url: str) -> requests.Session:
    """Session routing every request through *proxy_url*."""
    return build_session(Settings.from_env(), proxy_url=proxy_url)
