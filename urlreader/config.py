"""Settings for urlreader, read from the environment and an optional .env file."""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in TRUTHY


@dataclass(frozen=True)
class Settings:
    """Process-wide defaults for the shared transport.

    - user_agent: User-Agent sent by the default session (requests' own if unset).
    - trust_env: let the default session honour HTTP_PROXY, NO_PROXY, .netrc etc.
    - log_enabled: emit urlreader's loguru records without calling logger.enable.
    """

    user_agent: str | None = None
    trust_env: bool = True
    log_enabled: bool = False

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            user_agent=os.getenv("URLREADER_USER_AGENT") or None,
            trust_env=_env_flag("URLREADER_TRUST_ENV", True),
            log_enabled=_env_flag("URLREADER_LOG", False),
        )
