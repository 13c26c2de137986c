"""OpenAI-compatible gated completion route."""

from __future__ import annotations

import asyncio
import json
import logging
from time import perf_counter
from typing import Any, AsyncGenerator, Mapping

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from modgate.adapters.openai_compat.stream_utils import (
    _build_streaming_response,
    _stream_error_frames,
)
from modgate.adapters.openai_compat.upstream import (
    _post_json,
    _stream_bytes,
    moderation_provider_config,
    relay_provider_config,
)
from modgate.config.moderation_policy import load_policy
from modgate.config.settings import settings
from modgate.core.auth import verify_auth
from modgate.core.context import RequestContext
from modgate.core.error_normalizer import normalize_error, resolve_status
from modgate.core.errors import InvalidRequestError
from modgate.core.models import InboundRequest
from modgate.core.moderation import build_moderation_request, enforce_verdict, interpret_verdict
from modgate.core.normalizer import normalize_messages
from modgate.core.relay import build_relay_request
from modgate.observability.logging import log_gate_finished
from modgate.observability.metrics import record_outcome, record_verdict
from modgate.util.log_payload import summarize_payload_for_log
from modgate.util.logger import logger


router = APIRouter()

# 调试时完整请求内容最大输出长度，避免日志过长
_DEBUG_REQUEST_BODY_MAX_CHARS = 32000
_DEBUG_HEADERS_REDACT = frozenset({"authorization", "cookie", "x-api-key"})


def _should_stream(payload: Any) -> bool:
    return isinstance(payload, Mapping) and payload.get("stream") is True


def _log_request_if_debug(request: Request, payload: Any, ctx: RequestContext) -> None:
    """DEBUG 时打请求概要，headers 打码；正文按 log_full_request_body 决定是否打印。"""
    if not logger.isEnabledFor(logging.DEBUG):
        return
    headers_safe = {
        k: ("***" if k.lower() in _DEBUG_HEADERS_REDACT or "key" in k.lower() or "token" in k.lower() else v)
        for k, v in request.headers.items()
    }
    try:
        body_str = json.dumps(payload, ensure_ascii=False, indent=2)
    except (TypeError, ValueError):
        body_str = str(payload)
    logger.debug(
        "incoming request request_id=%s method=%s path=%s headers=%s body_size=%d",
        ctx.request_id,
        request.method,
        request.url.path,
        headers_safe,
        len(body_str),
    )
    if settings.log_full_request_body:
        logger.debug("incoming request body request_id=%s:\n%s", ctx.request_id, body_str[:_DEBUG_REQUEST_BODY_MAX_CHARS])


def _parse_inbound(payload: Any) -> InboundRequest:
    if not isinstance(payload, Mapping):
        raise InvalidRequestError("Request body must be a JSON object")
    try:
        return InboundRequest.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors(include_url=False)[0] if exc.errors() else {}
        param = ".".join(str(part) for part in first.get("loc", ())) or None
        raise InvalidRequestError(f"Invalid request: {first.get('msg', 'malformed body')}", param=param) from exc


async def _run_moderation(inbound: InboundRequest, ctx: RequestContext) -> None:
    """Buffered gate call; returns only when the verdict clears."""
    provider = moderation_provider_config()
    normalized = normalize_messages(inbound.messages)
    moderation_request = build_moderation_request(
        normalized,
        model=provider.model or "",
        policy=load_policy(),
    )
    logger.debug(
        "moderation request request_id=%s payload=%s",
        ctx.request_id,
        summarize_payload_for_log(moderation_request),
    )

    started = perf_counter()
    try:
        reply = await _post_json(provider, moderation_request)
    finally:
        ctx.moderation_ms = round((perf_counter() - started) * 1000.0, 2)

    verdict = interpret_verdict(reply)
    record_verdict(verdict.is_violation, stream=ctx.stream)
    logger.info(
        "moderation verdict request_id=%s is_violation=%s moderation_ms=%s",
        ctx.request_id,
        verdict.is_violation,
        ctx.moderation_ms,
    )
    enforce_verdict(verdict)


def _relay_request_for(inbound: InboundRequest, ctx: RequestContext) -> dict[str, Any]:
    relay_request = build_relay_request(inbound)
    logger.info(
        "relay request request_id=%s payload=%s",
        ctx.request_id,
        summarize_payload_for_log(relay_request),
    )
    return relay_request


def _finish(ctx: RequestContext, outcome: str, **extra: object) -> None:
    ctx.outcome = outcome
    record_outcome(outcome, stream=ctx.stream)
    log_gate_finished(ctx, **extra)


def _outcome_for(code: object) -> str:
    return "blocked" if code == "content_violation" else "error"


def _error_response(exc: Exception, ctx: RequestContext) -> JSONResponse:
    envelope = normalize_error(exc)
    status_code = resolve_status(envelope, exc)
    if status_code >= 500:
        logger.error("normal handler error request_id=%s error=%s", ctx.request_id, exc)
    else:
        logger.warning("normal handler rejected request_id=%s status=%s code=%s", ctx.request_id, status_code, envelope.error.code)
    _finish(ctx, _outcome_for(envelope.error.code), status=status_code, code=envelope.error.code)
    return JSONResponse(status_code=status_code, content=envelope.to_payload())


async def _execute_chat_once(payload: Any, ctx: RequestContext) -> JSONResponse:
    try:
        inbound = _parse_inbound(payload)
        await _run_moderation(inbound, ctx)
        relay_body = await _post_json(relay_provider_config(), _relay_request_for(inbound, ctx))
    except Exception as exc:
        return _error_response(exc, ctx)

    _finish(ctx, "relayed", status=200)
    return JSONResponse(status_code=200, content=relay_body)


async def _execute_chat_stream(payload: Any, ctx: RequestContext) -> AsyncGenerator[bytes, None]:
    """Gate then relay inside the response body, so headers go out before any upstream call."""
    forwarded_bytes = 0
    try:
        inbound = _parse_inbound(payload)
        await _run_moderation(inbound, ctx)
        async for chunk in _stream_bytes(relay_provider_config(), _relay_request_for(inbound, ctx)):
            forwarded_bytes += len(chunk)
            yield chunk
    except (asyncio.CancelledError, GeneratorExit):
        # 客户端断开：停止转发，不再写错误帧
        logger.info(
            "stream client disconnected request_id=%s forwarded_bytes=%d",
            ctx.request_id,
            forwarded_bytes,
        )
        _finish(ctx, "client_disconnected", forwarded_bytes=forwarded_bytes)
        raise
    except Exception as exc:
        envelope = normalize_error(exc)
        logger.error("stream handler error request_id=%s error=%s", ctx.request_id, exc)
        _finish(ctx, _outcome_for(envelope.error.code), code=envelope.error.code, forwarded_bytes=forwarded_bytes)
        for frame in _stream_error_frames(envelope):
            yield frame
        return

    _finish(ctx, "relayed", forwarded_bytes=forwarded_bytes)


@router.post("/chat/completions")
async def chat_completions(request: Request) -> Response:
    ctx = RequestContext(route=request.url.path)
    try:
        verify_auth(request.headers)
        raw_body = await request.body()
        try:
            payload = json.loads(raw_body)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise InvalidRequestError("Request body is not valid JSON") from exc
    except Exception as exc:
        return _error_response(exc, ctx)

    ctx.stream = _should_stream(payload)
    _log_request_if_debug(request, payload, ctx)
    logger.info("completion request request_id=%s stream=%s", ctx.request_id, ctx.stream)

    if ctx.stream:
        return _build_streaming_response(_execute_chat_stream(payload, ctx))
    return await _execute_chat_once(payload, ctx)


@router.options("/chat/completions")
async def chat_completions_options() -> Response:
    # 非预检的 OPTIONS 同样应答 200；预检由 CORS 中间件处理
    return Response(status_code=200)
