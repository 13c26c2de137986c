"""Flatten inbound message content into plain text for moderation."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Iterable, Mapping

from modgate.core.models import NormalizedMessage


class ContentShape(str, Enum):
    FLAT_TEXT = "flat_text"
    PART_LIST = "part_list"
    JSON_STRING = "json_string"
    EMPTY = "empty"


def classify_content(content: Any) -> ContentShape:
    if isinstance(content, list):
        return ContentShape.PART_LIST
    if isinstance(content, str):
        if content.startswith("{") or content.startswith("["):
            return ContentShape.JSON_STRING
        return ContentShape.FLAT_TEXT
    return ContentShape.EMPTY


def _join_text_parts(parts: list[Any]) -> str:
    texts = [
        part["text"]
        for part in parts
        if isinstance(part, Mapping) and part.get("type") == "text" and isinstance(part.get("text"), str)
    ]
    return "\n".join(texts)


def _pretty_json_or_original(content: str) -> str:
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        return content
    return json.dumps(parsed, ensure_ascii=False, indent=2)


def normalize_content(content: Any) -> str:
    shape = classify_content(content)
    if shape is ContentShape.PART_LIST:
        return _join_text_parts(content)
    if shape is ContentShape.JSON_STRING:
        return _pretty_json_or_original(content)
    if shape is ContentShape.FLAT_TEXT:
        return content
    return ""


def normalize_messages(messages: Iterable[Mapping[str, Any]]) -> list[NormalizedMessage]:
    """Same length and order as *messages*; roles are kept, only text content survives."""
    return [
        NormalizedMessage(role=str(message.get("role", "")), content=normalize_content(message.get("content")))
        for message in messages
    ]
