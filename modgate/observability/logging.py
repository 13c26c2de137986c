"""Structured one-line events for the gate lifecycle."""

from __future__ import annotations

from modgate.core.context import RequestContext
from modgate.util.logger import get_logger

_event_logger = get_logger("event")


def log_event(event: str, **payload: object) -> None:
    fields = " ".join(f"{key}={value}" for key, value in payload.items())
    _event_logger.info("event=%s %s", event, fields)


def log_gate_finished(ctx: RequestContext, **extra: object) -> None:
    log_event(
        "gate_finished",
        request_id=ctx.request_id,
        route=ctx.route,
        stream=ctx.stream,
        outcome=ctx.outcome,
        moderation_ms=ctx.moderation_ms,
        elapsed_ms=ctx.elapsed_ms(),
        **extra,
    )
