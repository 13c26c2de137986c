"""
日志用请求摘要：数组形式的消息内容（图片、附件等）不落日志，长文本截断，密钥打码。
"""

from __future__ import annotations

import re
from typing import Any, Mapping

ARRAY_CONTENT_PLACEHOLDER = "Array content (not displayed)"
DEFAULT_EXCERPT_MAX_LEN = 500


def excerpt_for_log(text: str, max_len: int = DEFAULT_EXCERPT_MAX_LEN) -> str:
    if not text:
        return ""
    s = str(text).strip()
    if len(s) <= max_len:
        return s
    return f"{s[:max_len]} ... [truncated, total {len(s)} chars]"


def mask_for_log(value: str) -> str:
    """Keep the first 3 and last 2 chars of a secret, mask the rest."""
    normalized = re.sub(r"\s+", " ", value or "").strip()
    length = len(normalized)
    if length <= 0:
        return ""
    if length <= 4:
        return "*" * length
    head = 3 if length >= 10 else 1
    tail = 2 if length >= 10 else 1
    return f"{normalized[:head]}{'*' * (length - head - tail)}{normalized[-tail:]}"


def summarize_messages_for_log(messages: Any, max_len: int = DEFAULT_EXCERPT_MAX_LEN) -> list[Any]:
    if not isinstance(messages, list):
        return []
    summarized: list[Any] = []
    for message in messages:
        if not isinstance(message, Mapping):
            summarized.append(message)
            continue
        item = dict(message)
        content = item.get("content")
        if isinstance(content, list):
            item["content"] = ARRAY_CONTENT_PLACEHOLDER
        elif isinstance(content, str):
            item["content"] = excerpt_for_log(content, max_len=max_len)
        summarized.append(item)
    return summarized


def summarize_payload_for_log(payload: Mapping[str, Any], max_len: int = DEFAULT_EXCERPT_MAX_LEN) -> dict[str, Any]:
    """Shallow copy of *payload* safe for INFO logs; the input is not mutated."""
    summarized = dict(payload)
    if "messages" in summarized:
        summarized["messages"] = summarize_messages_for_log(summarized["messages"], max_len=max_len)
    return summarized
