"""Moderation request building and fail-closed verdict interpretation."""

from __future__ import annotations

import json
from typing import Any, Sequence

from pydantic import ValidationError

from modgate.config.moderation_policy import ModerationPolicy
from modgate.config.settings import settings
from modgate.core.errors import ContentViolationError, ModerationFormatError
from modgate.core.models import ModerationVerdict, NormalizedMessage
from modgate.util.logger import logger


MODERATION_TEMPERATURE = 0


def build_moderation_request(
    messages: Sequence[NormalizedMessage],
    *,
    model: str,
    policy: ModerationPolicy,
    max_tokens: int | None = None,
) -> dict[str, Any]:
    """Wrap the normalized conversation between the policy preamble and the review directive.

    The result is always a buffered request: the gate has to finish before
    anything is relayed.
    """
    moderation_messages = [
        {"role": "system", "content": policy.system_prompt},
        *({"role": message.role, "content": message.content} for message in messages),
        {"role": "user", "content": policy.review_directive},
    ]
    return {
        "messages": moderation_messages,
        "model": model,
        "temperature": MODERATION_TEMPERATURE,
        "max_tokens": settings.moderation_max_tokens if max_tokens is None else max_tokens,
        "response_format": {"type": "json_object"},
    }


def _reply_content(body: Any) -> str:
    try:
        content = body["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ModerationFormatError() from exc
    if not isinstance(content, str):
        raise ModerationFormatError()
    return content


def interpret_verdict(body: Any) -> ModerationVerdict:
    """Parse provider 1's reply; anything but a boolean ``isViolation`` raises."""
    content = _reply_content(body)
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as exc:
        logger.error("moderation parsing error: %s", exc)
        raise ModerationFormatError() from exc
    if not isinstance(parsed, dict):
        logger.error("moderation parsing error: reply is %s, not an object", type(parsed).__name__)
        raise ModerationFormatError()
    try:
        return ModerationVerdict.model_validate(parsed)
    except ValidationError as exc:
        logger.error("moderation parsing error: %s", exc.errors(include_url=False))
        raise ModerationFormatError() from exc


def enforce_verdict(verdict: ModerationVerdict) -> None:
    if verdict.is_violation:
        raise ContentViolationError()
