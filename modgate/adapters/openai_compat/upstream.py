"""
上游 provider 配置与 HTTP 转发：审核调用只走 JSON，转发调用可走 JSON 或字节流。
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncGenerator

import httpx

from modgate.config.settings import settings
from modgate.core.errors import UpstreamConnectionError, UpstreamHTTPError
from modgate.core.models import ProviderConfig
from modgate.util.logger import logger

MODERATION_PROVIDER = "moderation"
RELAY_PROVIDER = "relay"

# 视为「上游不可达」的 httpx 异常；其余 httpx 异常按内部错误处理
_CONNECTION_ERRORS = (httpx.NetworkError, httpx.TimeoutException, httpx.RemoteProtocolError)

_upstream_async_client: httpx.AsyncClient | None = None
_upstream_client_lock: Any = None


def moderation_provider_config() -> ProviderConfig:
    return ProviderConfig(
        name=MODERATION_PROVIDER,
        base_url=settings.first_provider_url,
        api_key=settings.first_provider_key,
        timeout_seconds=float(settings.moderation_timeout_seconds),
        model=settings.first_provider_model,
    )


def relay_provider_config() -> ProviderConfig:
    return ProviderConfig(
        name=RELAY_PROVIDER,
        base_url=settings.second_provider_url,
        api_key=settings.second_provider_key,
        timeout_seconds=float(settings.relay_timeout_seconds),
    )


def _upstream_http_limits() -> httpx.Limits:
    return httpx.Limits(
        max_connections=max(10, int(settings.upstream_max_connections)),
        max_keepalive_connections=max(5, int(settings.upstream_max_keepalive_connections)),
    )


def _request_timeout(provider: ProviderConfig) -> httpx.Timeout:
    timeout = float(provider.timeout_seconds)
    return httpx.Timeout(connect=timeout, read=timeout, write=timeout, pool=timeout)


async def _get_upstream_async_client() -> httpx.AsyncClient:
    global _upstream_async_client, _upstream_client_lock
    if _upstream_async_client is not None:
        return _upstream_async_client
    if _upstream_client_lock is None:
        _upstream_client_lock = asyncio.Lock()
    async with _upstream_client_lock:
        if _upstream_async_client is None:
            _upstream_async_client = httpx.AsyncClient(
                http2=False,
                limits=_upstream_http_limits(),
            )
    return _upstream_async_client


async def close_upstream_async_client() -> None:
    global _upstream_async_client
    if _upstream_async_client is not None:
        await _upstream_async_client.aclose()
        _upstream_async_client = None


def _build_provider_headers(provider: ProviderConfig) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {provider.api_key}",
        "Content-Type": "application/json",
        "Accept": "application/json",
    }


def _decode_json_or_text(body: bytes) -> Any:
    """Parsed JSON value of any shape; raw text only when the body is not JSON."""
    text = body.decode("utf-8", errors="replace")
    if not text:
        return ""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _connection_detail(exc: httpx.HTTPError) -> str:
    return (str(exc) or "").strip() or type(exc).__name__


async def _post_json(provider: ProviderConfig, payload: dict[str, Any]) -> Any:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    url = provider.completions_url
    logger.debug("post_json start provider=%s url=%s payload_bytes=%d", provider.name, url, len(body))
    client = await _get_upstream_async_client()
    try:
        response = await client.post(
            url=url,
            content=body,
            headers=_build_provider_headers(provider),
            timeout=_request_timeout(provider),
        )
    except _CONNECTION_ERRORS as exc:
        detail = _connection_detail(exc)
        logger.warning("post_json unreachable provider=%s url=%s error=%s", provider.name, url, detail)
        raise UpstreamConnectionError(provider.name, detail) from exc

    logger.debug("post_json done provider=%s status=%s", provider.name, response.status_code)
    decoded = _decode_json_or_text(response.content)
    if response.status_code >= 400:
        logger.warning("post_json upstream error provider=%s status=%s", provider.name, response.status_code)
        raise UpstreamHTTPError(provider.name, response.status_code, decoded)
    return decoded


async def _stream_bytes(provider: ProviderConfig, payload: dict[str, Any]) -> AsyncGenerator[bytes, None]:
    """Yield the upstream body exactly as received; ends when the upstream stream ends."""
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    url = provider.completions_url
    logger.debug("stream start provider=%s url=%s payload_bytes=%d", provider.name, url, len(body))
    client = await _get_upstream_async_client()
    try:
        async with client.stream(
            "POST",
            url=url,
            content=body,
            headers=_build_provider_headers(provider),
            timeout=_request_timeout(provider),
        ) as resp:
            logger.debug("stream connected provider=%s status=%s", provider.name, resp.status_code)
            if resp.status_code >= 400:
                decoded = _decode_json_or_text(await resp.aread())
                logger.warning("stream upstream error provider=%s status=%s", provider.name, resp.status_code)
                raise UpstreamHTTPError(provider.name, resp.status_code, decoded)
            async for chunk in resp.aiter_bytes():
                if chunk:
                    yield chunk
    except _CONNECTION_ERRORS as exc:
        detail = _connection_detail(exc)
        logger.warning("stream unreachable provider=%s url=%s error=%s", provider.name, url, detail)
        raise UpstreamConnectionError(provider.name, detail) from exc
    logger.debug("stream finished provider=%s", provider.name)
