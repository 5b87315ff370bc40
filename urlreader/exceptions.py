"""Custom exceptions for the urlreader package."""

from __future__ import annotations


class URLReaderError(Exception):
    """Base class for every error raised for a location."""

    def __init__(self, message: str, location: str):
        self.location = location
        super().__init__(message)


class InvalidRequestError(URLReaderError):
    """The location cannot form a valid GET request."""


class TransportError(URLReaderError):
    """The request could not be completed at the transport layer.

    ``cancelled`` is True when the caller's context was cancelled or its
    deadline passed before the transport call finished.
    """

    def __init__(
        self,
        message: str,
        location: str,
        cause: BaseException | None = None,
        cancelled: bool = False,
    ):
        self.cause = cause
        self.cancelled = cancelled
        super().__init__(message, location)


class UnexpectedStatusError(URLReaderError):
    """The response status did not match the expected status."""

    def __init__(self, location: str, status_code: int, body_excerpt: bytes = b""):
        self.status_code = status_code
        self.body_excerpt = body_excerpt
        super().__init__(
            f"{location} returned status {status_code}; error = {self.text}",
            location,
        )

    @property
    def text(self) -> str:
        return self.body_excerpt.decode("utf-8", errors="replace")


class ContextCanceled(Exception):
    """The context was cancelled explicitly."""


class DeadlineExceeded(Exception):
    """The context's deadline passed."""
