"""Pass-through request for the relay provider."""

from __future__ import annotations

from typing import Any

from modgate.config.settings import settings
from modgate.core.models import InboundRequest


def build_relay_request(inbound: InboundRequest, *, default_max_tokens: int | None = None) -> dict[str, Any]:
    """Copy the caller's request for provider 2.

    Messages are the caller's originals, non-text parts included. Only
    ``stream`` and ``max_tokens`` get defaults; an absent ``temperature``,
    ``response_format`` or ``tools`` is omitted rather than sent as null.
    """
    fallback_max_tokens = settings.relay_default_max_tokens if default_max_tokens is None else default_max_tokens
    relay_request: dict[str, Any] = {
        "model": inbound.model,
        "messages": inbound.messages,
        "stream": bool(inbound.stream),
        "max_tokens": fallback_max_tokens if inbound.max_tokens is None else inbound.max_tokens,
    }
    if inbound.temperature is not None:
        relay_request["temperature"] = inbound.temperature
    if inbound.response_format:
        relay_request["response_format"] = inbound.response_format
    if inbound.tools:
        relay_request["tools"] = inbound.tools
    return relay_request
