import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from modgate.adapters.openai_compat import router as openai_router
from modgate.adapters.openai_compat import upstream
from modgate.config.settings import settings
from modgate.core.context import RequestContext
from modgate.core.errors import UpstreamConnectionError, UpstreamHTTPError
from modgate.core.gateway import app
from modgate.observability import metrics


RELAY_BODY = {"id": "cmpl-1", "object": "chat.completion", "choices": [{"index": 0, "message": {"role": "assistant", "content": "hi"}}]}


def _verdict(flag: str) -> dict:
    return {"choices": [{"index": 0, "message": {"role": "assistant", "content": flag}}]}


class FakeUpstream:
    def __init__(self, verdict_content='{"isViolation": false}', relay_body=None, stream_chunks=None, stream_error=None):
        self.verdict_content = verdict_content
        self.relay_body = RELAY_BODY if relay_body is None else relay_body
        self.stream_chunks = stream_chunks or []
        self.stream_error = stream_error
        self.calls: list[tuple[str, dict]] = []

    async def post_json(self, provider, payload):
        self.calls.append((provider.name, payload))
        if provider.name == "moderation":
            if isinstance(self.verdict_content, Exception):
                raise self.verdict_content
            return _verdict(self.verdict_content)
        if isinstance(self.relay_body, Exception):
            raise self.relay_body
        return self.relay_body

    async def stream_bytes(self, provider, payload):
        self.calls.append((provider.name + ":stream", payload))
        for chunk in self.stream_chunks:
            yield chunk
        if self.stream_error is not None:
            raise self.stream_error

    def relay_calls(self) -> list[tuple[str, dict]]:
        return [call for call in self.calls if call[0].startswith("relay")]


@pytest.fixture
def fake_upstream(monkeypatch):
    fake = FakeUpstream()
    monkeypatch.setattr(openai_router, "_post_json", fake.post_json)
    monkeypatch.setattr(openai_router, "_stream_bytes", fake.stream_bytes)
    monkeypatch.setattr(settings, "auth_key", "")
    return fake


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def test_buffered_clear_relays_and_returns_provider_body(fake_upstream, client):
    response = client.post(
        "/v1/chat/completions",
        json={"model": "m", "messages": [{"role": "user", "content": "hello"}], "stream": False},
    )

    assert response.status_code == 200
    assert response.json() == RELAY_BODY
    assert fake_upstream.relay_calls() == [
        (
            "relay",
            {"model": "m", "messages": [{"role": "user", "content": "hello"}], "stream": False, "max_tokens": 2000},
        )
    ]
    moderation_name, moderation_payload = fake_upstream.calls[0]
    assert moderation_name == "moderation"
    assert moderation_payload["messages"][1] == {"role": "user", "content": "hello"}
    assert moderation_payload["temperature"] == 0


def test_buffered_violation_returns_403_and_never_relays(fake_upstream, client):
    fake_upstream.verdict_content = '{"isViolation": true}'

    response = client.post(
        "/v1/chat/completions",
        json={"model": "m", "messages": [{"role": "user", "content": "hello"}], "stream": False},
    )

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "content_violation"
    assert response.json()["error"]["type"] == "content_filter_error"
    assert fake_upstream.relay_calls() == []


def test_buffered_unparsable_verdict_fails_closed(fake_upstream, client):
    fake_upstream.verdict_content = "not json"

    response = client.post("/v1/chat/completions", json={"model": "m", "messages": [{"role": "user", "content": "x"}]})

    assert response.status_code == 500
    body = response.json()
    assert body["error"]["type"] == "internal_error"
    assert body["error"]["message"] == "Invalid moderation response format"
    assert fake_upstream.relay_calls() == []


def test_buffered_relay_upstream_error_is_normalized(fake_upstream, client):
    fake_upstream.relay_body = UpstreamHTTPError(
        "relay", 429, {"error": {"message": "slow down", "type": "rate_limit", "code": "rate_limit_exceeded"}}
    )

    response = client.post("/v1/chat/completions", json={"model": "m", "messages": [{"role": "user", "content": "x"}]})

    assert response.status_code == 429
    body = response.json()
    assert body["error"]["message"] == "slow down"
    assert body["error"]["code"] == "rate_limit_exceeded"
    assert body["error"]["provider_details"]["error"]["type"] == "rate_limit"


def test_buffered_moderation_unreachable_is_503(fake_upstream, client):
    fake_upstream.verdict_content = UpstreamConnectionError("moderation", "connection refused")

    response = client.post("/v1/chat/completions", json={"model": "m", "messages": [{"role": "user", "content": "x"}]})

    assert response.status_code == 503
    assert response.json()["error"]["type"] == "connection_error"
    assert fake_upstream.relay_calls() == []


def test_moderation_sees_text_only_while_relay_gets_all_parts(fake_upstream, client):
    content = [
        {"type": "image_url", "image_url": {"url": "https://example.com/a.png"}},
        {"type": "text", "text": "a"},
        {"type": "text", "text": "b"},
    ]
    response = client.post("/v1/chat/completions", json={"model": "m", "messages": [{"role": "user", "content": content}]})

    assert response.status_code == 200
    moderation_payload = fake_upstream.calls[0][1]
    assert moderation_payload["messages"][1] == {"role": "user", "content": "a\nb"}
    assert fake_upstream.relay_calls()[0][1]["messages"] == [{"role": "user", "content": content}]


def test_invalid_json_body_returns_invalid_request(fake_upstream, client):
    response = client.post("/v1/chat/completions", content=b"{oops", headers={"content-type": "application/json"})

    assert response.status_code == 400
    assert response.json()["error"]["type"] == "invalid_request_error"
    assert fake_upstream.calls == []


def test_missing_messages_returns_invalid_request(fake_upstream, client):
    response = client.post("/v1/chat/completions", json={"model": "m"})

    assert response.status_code == 400
    assert response.json()["error"]["param"] == "messages"
    assert fake_upstream.calls == []


def test_auth_key_mismatch_is_rejected_before_moderation(fake_upstream, client, monkeypatch):
    monkeypatch.setattr(settings, "auth_key", "secret")

    response = client.post(
        "/v1/chat/completions",
        json={"model": "m", "messages": [{"role": "user", "content": "x"}]},
        headers={"Authorization": "Bearer wrong"},
    )

    assert response.status_code == 401
    assert response.json()["error"] == {
        "message": "Invalid authentication key",
        "type": "invalid_request_error",
        "code": "invalid_auth_key",
    }
    assert fake_upstream.calls == []

    accepted = client.post(
        "/v1/chat/completions",
        json={"model": "m", "messages": [{"role": "user", "content": "x"}]},
        headers={"Authorization": "Bearer secret"},
    )
    assert accepted.status_code == 200


def test_legacy_route_and_method_not_allowed(fake_upstream, client):
    ok = client.post("/api/completions", json={"model": "m", "messages": [{"role": "user", "content": "x"}]})
    assert ok.status_code == 200

    rejected = client.get("/v1/chat/completions")
    assert rejected.status_code == 405
    assert rejected.json()["error"]["type"] == "invalid_request_error"


def test_streaming_clear_forwards_bytes_without_premature_done(fake_upstream, client):
    fake_upstream.stream_chunks = [
        b'data: {"choices":[{"delta":{"content":"he"}}]}\n\n',
        b'data: {"choices":[{"delta":{"content":"llo"}}]}\n\n',
        b"data: [DONE]\n\n",
    ]

    response = client.post(
        "/v1/chat/completions",
        json={"model": "m", "messages": [{"role": "user", "content": "hello"}], "stream": True},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    assert response.content == b"".join(fake_upstream.stream_chunks)
    assert response.content.count(b"[DONE]") == 1
    relay_name, relay_payload = fake_upstream.relay_calls()[0]
    assert relay_name == "relay:stream"
    assert relay_payload["stream"] is True


def test_streaming_violation_emits_error_frame_then_done(fake_upstream, client):
    fake_upstream.verdict_content = '{"isViolation": true}'

    response = client.post(
        "/v1/chat/completions",
        json={"model": "m", "messages": [{"role": "user", "content": "hello"}], "stream": True},
    )

    assert response.status_code == 200
    frames = response.content.split(b"\n\n")
    assert frames[-1] == b""
    assert frames[-2] == b"data: [DONE]"
    envelope = json.loads(frames[0][len(b"data: "):])
    assert envelope == {
        "error": {"message": "Content violation detected", "type": "content_filter_error", "code": "content_violation"}
    }
    assert len(frames) == 3
    assert fake_upstream.relay_calls() == []


def test_streaming_error_mid_stream_appends_error_frame(fake_upstream, client):
    fake_upstream.stream_chunks = [b'data: {"choices":[{"delta":{"content":"he"}}]}\n\n']
    fake_upstream.stream_error = UpstreamConnectionError("relay", "connection reset")

    response = client.post(
        "/v1/chat/completions",
        json={"model": "m", "messages": [{"role": "user", "content": "hello"}], "stream": True},
    )

    body = response.content
    assert body.startswith(fake_upstream.stream_chunks[0])
    assert b'"type": "connection_error"' in body
    assert body.endswith(b"data: [DONE]\n\n")


def test_streaming_headers_sent_before_moderation_call(monkeypatch):
    events: list[str] = []

    async def fake_post_json(provider, payload):
        events.append(f"post:{provider.name}")
        return _verdict('{"isViolation": false}')

    async def fake_stream_bytes(provider, payload):
        events.append(f"stream:{provider.name}")
        yield b"data: [DONE]\n\n"

    monkeypatch.setattr(openai_router, "_post_json", fake_post_json)
    monkeypatch.setattr(openai_router, "_stream_bytes", fake_stream_bytes)
    monkeypatch.setattr(settings, "auth_key", "")

    body = json.dumps({"model": "m", "messages": [{"role": "user", "content": "hi"}], "stream": True}).encode("utf-8")
    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": "/v1/chat/completions",
        "raw_path": b"/v1/chat/completions",
        "query_string": b"",
        "headers": [(b"content-type", b"application/json")],
        "client": ("127.0.0.1", 54321),
        "server": ("testserver", 80),
    }

    async def receive_body() -> dict:
        return {"type": "http.request", "body": body, "more_body": False}

    async def receive_idle() -> dict:
        await asyncio.sleep(3600)
        return {"type": "http.disconnect"}

    async def send(message: dict) -> None:
        if message["type"] == "http.response.start":
            events.append("headers")
            headers = dict(message["headers"])
            assert headers[b"content-type"].startswith(b"text/event-stream")
        elif message["type"] == "http.response.body" and message.get("body"):
            events.append("body")

    async def run_case() -> None:
        response = await openai_router.chat_completions(Request(scope, receive_body))
        await response(scope, receive_idle, send)

    asyncio.run(run_case())

    assert events == ["headers", "post:moderation", "stream:relay", "body"]


@pytest.mark.asyncio
async def test_stream_generator_stops_quietly_on_client_disconnect(monkeypatch):
    async def fake_post_json(provider, payload):
        return _verdict('{"isViolation": false}')

    async def endless_stream(provider, payload):
        while True:
            yield b"data: {}\n\n"

    monkeypatch.setattr(openai_router, "_post_json", fake_post_json)
    monkeypatch.setattr(openai_router, "_stream_bytes", endless_stream)

    ctx = RequestContext(stream=True)
    payload = {"model": "m", "messages": [{"role": "user", "content": "hi"}], "stream": True}

    generator = openai_router._execute_chat_stream(payload, ctx)
    received = [await generator.__anext__(), await generator.__anext__()]
    await generator.aclose()

    assert received == [b"data: {}\n\n", b"data: {}\n\n"]
    assert ctx.outcome == "client_disconnected"


def test_buffered_relay_returns_non_object_json_unchanged(monkeypatch, client):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "moderation.test":
            return httpx.Response(200, json=_verdict('{"isViolation": false}'))
        return httpx.Response(200, json=[{"x": 1}])

    async_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

    async def fake_get_client():
        return async_client

    monkeypatch.setattr(upstream, "_get_upstream_async_client", fake_get_client)
    monkeypatch.setattr(settings, "auth_key", "")
    monkeypatch.setattr(settings, "first_provider_url", "https://moderation.test")
    monkeypatch.setattr(settings, "second_provider_url", "https://relay.test")

    response = client.post("/v1/chat/completions", json={"model": "m", "messages": [{"role": "user", "content": "x"}]})

    assert response.status_code == 200
    assert response.json() == [{"x": 1}]


def test_plain_options_request_is_accepted(client):
    for path in ("/v1/chat/completions", "/api/completions"):
        response = client.options(path)
        assert response.status_code == 200
        assert response.content == b""

    preflight = client.options(
        "/v1/chat/completions",
        headers={"Origin": "https://app.example.com", "Access-Control-Request-Method": "POST"},
    )
    assert preflight.status_code == 200
    assert preflight.headers["access-control-allow-origin"] == "*"


def test_gate_records_verdict_and_outcome_counters(fake_upstream, client):
    metrics.reset_counters()
    fake_upstream.verdict_content = '{"isViolation": true}'
    client.post("/v1/chat/completions", json={"model": "m", "messages": [{"role": "user", "content": "x"}]})
    fake_upstream.verdict_content = '{"isViolation": false}'
    client.post("/v1/chat/completions", json={"model": "m", "messages": [{"role": "user", "content": "x"}]})

    assert metrics.counter_value("moderation_verdict", violation=True, stream=False) == 1
    assert metrics.counter_value("moderation_verdict", violation=False, stream=False) == 1
    assert metrics.counter_value("gate_outcome", outcome="blocked", stream=False) == 1
    assert metrics.counter_value("gate_outcome", outcome="relayed", stream=False) == 1
    metrics.reset_counters()
