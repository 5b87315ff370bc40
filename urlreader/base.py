"""Base types for the urlreader package."""

from __future__ import annotations

from dataclasses import dataclass, field

import requests
from requests.structures import CaseInsensitiveDict

DEFAULT_STATUS = requests.codes.ok

# Upper bound on the error body kept for an unexpected status.
EXCERPT_LIMIT = 8192

SUPPORTED_SCHEMES = ("http", "https")

PROXY_SCHEMES = ("socks5", "socks5h", "http", "https")


@dataclass
class RequestSpec:
    """Everything needed to send one GET request."""

    location: str
    expected_status: int = DEFAULT_STATUS
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    proxy: str | None = None

    def to_request(self) -> requests.Request:
        # A set auth keeps requests from replacing Authorization with .netrc credentials.
        auth = _keep_headers if "Authorization" in self.headers else None
        return requests.Request("GET", self.location, headers=dict(self.headers), auth=auth)


def _keep_headers(request: requests.PreparedRequest) -> requests.PreparedRequest:
    return request
