"""Tests for the Gemini REST client (HTTP served by httpx.MockTransport)."""

from __future__ import annotations

import json

import httpx
import pytest

from conftest import sse_body, sse_frame
from gemini_chat.ai.request_builder import RequestBuilder
from gemini_chat.errors import ApiError, ConfigError, ParseError, TransportError


@pytest.fixture
def payload(settings, store):
    return RequestBuilder(settings, store).build("Hello there")


@pytest.mark.asyncio
async def test_stream_posts_to_sse_endpoint(make_client, payload):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = sse_body(sse_frame("Hel"), sse_frame("lo", finish_reason="STOP"))
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    async with make_client(handler) as client:
        fragments = [f async for f in client.stream(payload)]

    assert fragments == ["Hel", "lo"]
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/v1beta/models/gemini-2.0-flash:streamGenerateContent"
    assert request.url.params["alt"] == "sse"
    assert request.url.params["key"] == "test-key"
    assert json.loads(request.content)["contents"][0]["parts"][0]["text"] == "Hello there"


@pytest.mark.asyncio
async def test_open_stream_exposes_finish_reason(make_client, payload):
    def handler(request):
        return httpx.Response(200, content=sse_body(sse_frame("x"), "data: [DONE]"))

    async with make_client(handler) as client:
        async with client.open_stream(payload) as reader:
            assert [f async for f in reader] == ["x"]

    assert reader.finish_reason == "[DONE]"


@pytest.mark.asyncio
async def test_stream_http_error_is_api_error(make_client, payload):
    def handler(request):
        return httpx.Response(
            400, json={"error": {"code": 400, "message": "API key not valid.", "status": "INVALID_ARGUMENT"}}
        )

    async with make_client(handler) as client:
        with pytest.raises(ApiError) as excinfo:
            [f async for f in client.stream(payload)]

    assert excinfo.value.message == "API key not valid."
    assert excinfo.value.status_code == 400


@pytest.mark.asyncio
async def test_connection_failure_is_transport_error(make_client, payload):
    def handler(request):
        raise httpx.ConnectError("connection refused")

    async with make_client(handler) as client:
        with pytest.raises(TransportError):
            [f async for f in client.stream(payload)]
        with pytest.raises(TransportError):
            await client.generate(payload)


@pytest.mark.asyncio
async def test_timeout_is_transport_error(make_client, payload):
    def handler(request):
        raise httpx.ReadTimeout("timed out")

    async with make_client(handler) as client:
        with pytest.raises(TransportError):
            await client.generate(payload)


@pytest.mark.asyncio
async def test_placeholder_key_fails_before_any_request(make_client, payload):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    async with make_client(handler, api_key="api-key-value") as client:
        with pytest.raises(ConfigError):
            await client.generate(payload)
        with pytest.raises(ConfigError):
            [f async for f in client.stream(payload)]

    assert calls == []


@pytest.mark.asyncio
async def test_generate_returns_first_candidate_text(make_client, payload):
    def handler(request):
        assert request.url.path.endswith(":generateContent")
        return httpx.Response(
            200,
            json={
                "candidates": [{"content": {"parts": [{"text": "Full answer"}]}, "finishReason": "STOP"}],
                "usageMetadata": {"promptTokenCount": 5, "candidatesTokenCount": 2},
            },
        )

    async with make_client(handler) as client:
        response = await client.generate(payload)

    assert response.text == "Full answer"
    assert response.finish_reason == "STOP"
    assert response.input_tokens == 5
    assert response.output_tokens == 2


@pytest.mark.asyncio
async def test_generate_error_object_with_200_is_api_error(make_client, payload):
    def handler(request):
        return httpx.Response(200, json={"error": {"message": "quota"}})

    async with make_client(handler) as client:
        with pytest.raises(ApiError, match="quota"):
            await client.generate(payload)


@pytest.mark.asyncio
@pytest.mark.parametrize("content", [b"", b"<html>oops</html>", b'{"candidates": []}'])
async def test_generate_unusable_body_is_parse_error(make_client, payload, content):
    def handler(request):
        return httpx.Response(200, content=content)

    async with make_client(handler) as client:
        with pytest.raises(ParseError):
            await client.generate(payload)


@pytest.mark.asyncio
async def test_list_models(make_client):
    def handler(request):
        assert request.url.path == "/v1beta/models"
        return httpx.Response(
            200,
            json={"models": [{"name": "models/gemini-2.0-flash", "displayName": "Gemini 2.0 Flash"}, {"name": "models/x"}]},
        )

    async with make_client(handler) as client:
        models = await client.list_models()

    assert [(m.name, m.display_name) for m in models] == [
        ("models/gemini-2.0-flash", "Gemini 2.0 Flash"),
        ("models/x", "No description"),
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [[{"name": "models/x"}], {"models": {"name": "models/x"}}])
async def test_list_models_unexpected_shape_is_parse_error(make_client, body):
    def handler(request):
        return httpx.Response(200, json=body)

    async with make_client(handler) as client:
        with pytest.raises(ParseError):
            await client.list_models()


@pytest.mark.asyncio
async def test_list_models_without_models_member(make_client):
    def handler(request):
        return httpx.Response(200, json={})

    async with make_client(handler) as client:
        assert await client.list_models() == []
