"""BodyStream: lazily read response body handed to the caller."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING, Iterator

import requests
import urllib3

from .exceptions import TransportError

if TYPE_CHECKING:
    from .context import Context
    from .transport import ConnectionWatch

CHUNK_SIZE = 64 * 1024


class BodyStream(io.RawIOBase):
    """Readable, closable view of a streamed response body.

    Nothing is buffered ahead of the caller's reads. Closing the stream
    releases the connection: back to the pool when the body was read to the
    end, otherwise the socket is closed. The caller must close it on every
    exit path, which ``with`` does.

    Once *ctx* is done the connection is cut and further reads raise
    TransportError; the stream still has to be closed.
    """

    def __init__(
        self,
        response: requests.Response,
        location: str,
        ctx: Context | None = None,
        watch: ConnectionWatch | None = None,
        chunk_size: int = CHUNK_SIZE,
    ):
        super().__init__()
        self._response = response
        self._location = location
        self._chunks = response.iter_content(chunk_size=chunk_size)
        self._pending = b""
        self._eof = False
        self._ctx = ctx
        self._watch = watch
        if ctx is not None and watch is not None:
            ctx.add_done_callback(watch.abort)

    @property
    def location(self) -> str:
        return self._location

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self):
        return self._response.headers

    @property
    def url(self) -> str:
        """Final URL after redirects."""
        return self._response.url

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed stream")
        while not self._pending and not self._eof:
            self._pending = self._next_chunk()
        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size

    def iter_chunks(self) -> Iterator[bytes]:
        """Yield the rest of the body chunk by chunk."""
        if self.closed:
            raise ValueError("I/O operation on closed stream")
        if self._pending:
            pending, self._pending = self._pending, b""
            yield pending
        while not self._eof:
            chunk = self._next_chunk()
            if chunk:
                yield chunk

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._release_watch()
            self._response.close()
        finally:
            super().close()

    def _next_chunk(self) -> bytes:
        err = self._ctx.err() if self._ctx is not None else None
        if err is not None:
            raise TransportError(
                f"reading {self._location} aborted: {err}", self._location, cause=err, cancelled=True
            )
        try:
            return next(self._chunks)
        except StopIteration:
            self._eof = True
            self._release_watch()
            return b""
        except (requests.RequestException, urllib3.exceptions.HTTPError, OSError) as exc:
            cancelled = self._ctx is not None and self._ctx.done()
            raise TransportError(
                f"reading {self._location} failed: {exc}",
                self._location,
                cause=exc,
                cancelled=cancelled,
            ) from exc

    def _release_watch(self) -> None:
        """Stop cutting the connection on cancellation; it is no longer ours."""
        if self._watch is None:
            return
        self._ctx.remove_done_callback(self._watch.abort)
        self._watch.detach()
        self._watch = None

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<BodyStream {self._location} status={self.status_code} {state}>"
