"""urlreader: open a URL and read its body as a stream, or fail with a typed error."""

from loguru import logger

from .config import Settings
from .context import Context
from .exceptions import (
    ContextCanceled,
    DeadlineExceeded,
    InvalidRequestError,
    TransportError,
    UnexpectedStatusError,
    URLReaderError,
)
from .reader import URLReader
from .stream import BodyStream

if not Settings.from_env().log_enabled:
    logger.disable(__name__)

__all__ = [
    "URLReader",
    "BodyStream",
    "Context",
    "Settings",
    "URLReaderError",
    "InvalidRequestError",
    "TransportError",
    "UnexpectedStatusError",
    "ContextCanceled",
    "DeadlineExceeded",
]
