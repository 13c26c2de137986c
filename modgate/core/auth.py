"""Bearer-key check for inbound calls."""

from __future__ import annotations

import hmac
from typing import Mapping

from modgate.config.settings import settings
from modgate.core.errors import InvalidAuthKeyError


def _bearer_token(headers: Mapping[str, str]) -> str:
    raw = ""
    for key, value in headers.items():
        if key.lower() == "authorization":
            raw = value
            break
    return raw.replace("Bearer ", "", 1).strip()


def verify_auth(headers: Mapping[str, str], expected: str | None = None) -> None:
    """Raise InvalidAuthKeyError unless the bearer key matches; no key configured means open access."""
    valid_key = settings.auth_key if expected is None else expected
    if not valid_key:
        return
    presented = _bearer_token(headers)
    if not presented or not hmac.compare_digest(presented.encode("utf-8"), valid_key.encode("utf-8")):
        raise InvalidAuthKeyError()
