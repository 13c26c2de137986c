"""Moderation policy text: built-in default with optional YAML override."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from threading import Lock

import yaml

from modgate.config.settings import settings
from modgate.util.logger import logger


DEFAULT_SYSTEM_PROMPT = """
# CONTEXT #
You are a senior content-safety reviewer with extensive moderation experience.
Review strictly according to the platform's content-safety rules and identify:
- Sexual and explicit content (including but not limited to nudity and sexual innuendo)
- Violent and gory content (including but not limited to bloodshed and violence)
- Illegal content (including but not limited to drugs, gambling and fraud)
- Any other content that may violate laws or regulations

# OBJECTIVE #
As a professional content-safety reviewer you must:
1. Strictly review every submitted message for safety compliance
2. Identify violations across all of the categories above
3. Output an accurate boolean review result

# STYLE #
- Professional reviewer perspective
- Strict review standard
- Well-formed output

# TONE #
- Serious and professional
- Objective and impartial
- No emotional language

# RESPONSE #
Output the review result strictly in the following JSON format:
{
    "isViolation": false
}
Set "isViolation" to true if any violating content is detected, otherwise false.

No explanation or any other text outside the JSON object is allowed.
The object must contain exactly one field named "isViolation" whose value is a boolean.
"""

DEFAULT_REVIEW_DIRECTIVE = "Review all of the messages above for safety according to the moderation rules."


@dataclass(frozen=True, slots=True)
class ModerationPolicy:
    system_prompt: str
    review_directive: str


DEFAULT_POLICY = ModerationPolicy(
    system_prompt=DEFAULT_SYSTEM_PROMPT,
    review_directive=DEFAULT_REVIEW_DIRECTIVE,
)

_cache_lock = Lock()
_cache: dict[str, tuple[float, ModerationPolicy]] = {}


def _policy_from_mapping(raw: object, source: Path) -> ModerationPolicy:
    if not isinstance(raw, dict):
        logger.warning("moderation policy ignored, top level is not a mapping path=%s", source)
        return DEFAULT_POLICY
    system_prompt = raw.get("system_prompt")
    review_directive = raw.get("review_directive")
    if system_prompt is not None and not (isinstance(system_prompt, str) and system_prompt.strip()):
        logger.warning("moderation policy system_prompt invalid, using built-in path=%s", source)
        system_prompt = None
    if review_directive is not None and not (isinstance(review_directive, str) and review_directive.strip()):
        logger.warning("moderation policy review_directive invalid, using built-in path=%s", source)
        review_directive = None
    return ModerationPolicy(
        system_prompt=system_prompt or DEFAULT_POLICY.system_prompt,
        review_directive=review_directive or DEFAULT_POLICY.review_directive,
    )


def load_policy(path: str | None = None) -> ModerationPolicy:
    """Return the active policy; re-reads the YAML file only when its mtime changes."""
    raw_path = (settings.moderation_policy_path if path is None else path).strip()
    if not raw_path:
        return DEFAULT_POLICY

    source = Path(raw_path)
    try:
        mtime = source.stat().st_mtime
    except OSError:
        logger.warning("moderation policy file missing, using built-in path=%s", source)
        return DEFAULT_POLICY

    key = str(source.resolve())
    with _cache_lock:
        cached = _cache.get(key)
        if cached and cached[0] == mtime:
            return cached[1]

    try:
        with source.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle)
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("moderation policy load failed, using built-in path=%s error=%s", source, exc)
        return DEFAULT_POLICY

    policy = _policy_from_mapping(raw, source)
    with _cache_lock:
        _cache[key] = (mtime, policy)
    logger.info("moderation policy loaded path=%s", source)
    return policy
