"""
SSE 帧构建与流式响应封装。转发流本身不解析，只在失败时写入错误帧。
"""

from __future__ import annotations

import json
from typing import AsyncIterable, Iterable

from fastapi.responses import StreamingResponse

from modgate.core.models import ErrorEnvelope

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _stream_error_sse_chunk(envelope: ErrorEnvelope) -> bytes:
    return f"data: {json.dumps(envelope.to_payload(), ensure_ascii=False)}\n\n".encode("utf-8")


def _stream_done_sse_chunk() -> bytes:
    return b"data: [DONE]\n\n"


def _stream_error_frames(envelope: ErrorEnvelope) -> list[bytes]:
    """Error frame followed by the terminator; nothing is written after these."""
    return [_stream_error_sse_chunk(envelope), _stream_done_sse_chunk()]


def _build_streaming_response(generator: Iterable[bytes] | AsyncIterable[bytes]) -> StreamingResponse:
    return StreamingResponse(
        generator,
        status_code=200,
        media_type="text/event-stream",
        headers=dict(SSE_HEADERS),
    )
