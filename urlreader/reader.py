"""URLReader: open a URL and hand back its body as a stream."""

from __future__ import annotations

import threading
from base64 import b64encode
from concurrent.futures import Future
from urllib.parse import urlparse

import requests
import urllib3
from loguru import logger

from .base import EXCERPT_LIMIT, PROXY_SCHEMES, SUPPORTED_SCHEMES, RequestSpec
from .context import Context
from .exceptions import (
    DeadlineExceeded,
    InvalidRequestError,
    TransportError,
    UnexpectedStatusError,
)
from .stream import BodyStream
from .transport import ConnectionWatch, default_session, proxy_session, watching

EXCERPT_CHUNK_SIZE = 1024


class URLReader:
    """Configurable GET request whose body is returned as a BodyStream.

    Configuration calls return the reader so they can be chained:

        reader = URLReader("https://example.com/data.json").bearer_token(token)
        with reader.open(Context.with_timeout(10)) as body:
            payload = body.read()

    A reader is not safe for concurrent mutation and use; give each thread
    its own reader or serialize access.
    """

    def __init__(self, location: str, session: requests.Session | None = None):
        _validate_location(location)
        self._spec = RequestSpec(location=location)
        self._session = session

    @property
    def location(self) -> str:
        return self._spec.location

    @property
    def status(self) -> int:
        """The expected status code."""
        return self._spec.expected_status

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._spec.headers)

    @property
    def proxy_url(self) -> str | None:
        return self._spec.proxy

    def basic_auth(self, user: str, password: str) -> URLReader:
        """Set HTTP Basic credentials, replacing any Authorization header."""
        token = b64encode(f"{user}:{password}".encode("utf-8")).decode("ascii")
        self._spec.headers["Authorization"] = f"Basic {token}"
        return self

    def bearer_token(self, token: str) -> URLReader:
        """Set an OAuth2 bearer token, replacing any Authorization header."""
        self._spec.headers["Authorization"] = f"Bearer {token}"
        return self

    def header(self, name: str, value: str) -> URLReader:
        """Set a header, overwriting an existing one with the same name."""
        self._spec.headers[name] = value
        return self

    def proxy(self, proxy_url: str) -> URLReader:
        """Route the request through *proxy_url* (socks5, http or https).

        Replaces any earlier transport override, including a session passed
        to the constructor.
        """
        self._spec.proxy = proxy_url
        self._session = proxy_session(proxy_url)
        return self

    def expected_status(self, status: int) -> URLReader:
        """Treat *status* instead of 200 as success."""
        self._spec.expected_status = status
        return self

    def open(self, ctx: Context) -> BodyStream:
        """Send the request and return the response body as an open stream.

        *ctx* governs the whole exchange: connecting, sending, waiting for the
        response and reading the body, including the stream returned here.
        Give it a deadline so the call cannot block indefinitely. When *ctx*
        is done the connection is cut and pending reads fail. The returned
        stream must be closed by the caller. On any error nothing is left open.

        Raises TransportError if the request could not be completed or *ctx*
        was done first, and UnexpectedStatusError if the response status is
        not the expected one.
        """
        location = self._spec.location
        err = ctx.err()
        if err is not None:
            raise TransportError(
                f"request to {location} not sent: {err}", location, cause=err, cancelled=True
            )
        _check_proxy(self._spec.proxy, location)

        watch = ConnectionWatch()
        ctx.add_done_callback(watch.abort)
        try:
            response = self._send(ctx, watch)
            logger.debug(f"{location} returned status {response.status_code}")

            if response.status_code != self._spec.expected_status:
                excerpt = _discard_body(response, ctx, watch)
                logger.debug(
                    f"Expected status {self._spec.expected_status} from {location}, "
                    f"got {response.status_code}"
                )
                raise UnexpectedStatusError(location, response.status_code, excerpt)
        finally:
            ctx.remove_done_callback(watch.abort)

        return BodyStream(response, location, ctx=ctx, watch=watch)

    def read_bytes(self, ctx: Context) -> bytes:
        """Open the location and return its whole body."""
        with self.open(ctx) as body:
            return body.read()

    def _send(self, ctx: Context, watch: ConnectionWatch) -> requests.Response:
        location = self._spec.location
        session = self._session or default_session()
        prepared = session.prepare_request(self._spec.to_request())
        settings = session.merge_environment_settings(
            prepared.url, {}, True, None, None
        )
        timeout = ctx.remaining()
        if timeout is not None and timeout <= 0:
            err = ctx.err() or DeadlineExceeded("context deadline exceeded")
            raise TransportError(
                f"request to {location} not sent: {err}", location, cause=err, cancelled=True
            )

        logger.debug(f"GET {location} (timeout={timeout})")
        future: Future = Future()

        def send() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                with watching(watch):
                    response = session.send(prepared, timeout=timeout, **settings)
                future.set_result(response)
            except BaseException as exc:
                future.set_exception(exc)

        # Daemon thread: an abandoned request must not hold up interpreter exit.
        threading.Thread(target=send, name=_thread_name(location), daemon=True).start()

        finished = threading.Event()
        future.add_done_callback(lambda _: finished.set())
        ctx.add_done_callback(finished.set)
        try:
            while not finished.wait(ctx.remaining()):
                if ctx.done():
                    break
        finally:
            ctx.remove_done_callback(finished.set)

        err = ctx.err()
        if not future.done() or (err is not None and future.exception() is not None):
            future.add_done_callback(_close_abandoned)
            logger.warning(f"GET {location} abandoned: {err}")
            raise TransportError(
                f"request to {location} aborted: {err}", location, cause=err, cancelled=True
            )

        try:
            return future.result()
        except Exception as exc:
            logger.warning(f"GET {location} failed: {exc}")
            raise TransportError(
                f"request to {location} failed: {exc}",
                location,
                cause=exc,
                cancelled=ctx.done(),
            ) from exc


def _validate_location(location: str) -> None:
    """Raise InvalidRequestError unless *location* makes a valid GET request."""
    if not location or not location.strip():
        raise InvalidRequestError("empty location", location)
    try:
        scheme = urlparse(location).scheme.lower()
        if scheme and scheme not in SUPPORTED_SCHEMES:
            raise InvalidRequestError(f"unsupported scheme {scheme!r} in {location}", location)
        requests.Request("GET", location).prepare()
    except (requests.RequestException, ValueError) as exc:
        raise InvalidRequestError(f"invalid location {location}: {exc}", location) from exc


def _check_proxy(proxy: str | None, location: str) -> None:
    if proxy is None:
        return
    try:
        scheme = urlparse(proxy).scheme.lower()
    except ValueError as exc:
        raise TransportError(f"invalid proxy {proxy} for {location}: {exc}", location, cause=exc) from exc
    if scheme not in PROXY_SCHEMES:
        raise TransportError(f"unsupported proxy {proxy} for {location}", location)


def _thread_name(location: str) -> str:
    """Worker thread name; host only, so credentials in the URL stay out of dumps."""
    return f"urlreader-send {urlparse(location).hostname}"


def _discard_body(response: requests.Response, ctx: Context, watch: ConnectionWatch) -> bytes:
    """Read up to EXCERPT_LIMIT bytes, drain the rest and close *response*.

    Reading stops when *ctx* is done; the connection is then dropped instead
    of returned to the pool. Read errors leave the excerpt short; the error
    being reported is the status, not the body.
    """
    excerpt = b""
    with response:
        chunks = response.iter_content(chunk_size=EXCERPT_CHUNK_SIZE)
        try:
            for chunk in chunks:
                excerpt += chunk
                if len(excerpt) >= EXCERPT_LIMIT or ctx.done():
                    break
            if not ctx.done():
                # Drain whatever is left so the connection can be reused.
                for _ in chunks:
                    if ctx.done():
                        break
                else:
                    watch.detach()
        except (requests.RequestException, urllib3.exceptions.HTTPError, OSError):
            pass
    return excerpt[:EXCERPT_LIMIT]


def _close_abandoned(future: Future) -> None:
    """Close a response that arrived after the caller stopped waiting."""
    if future.cancelled() or future.exception() is not None:
        return
    future.result().close()
