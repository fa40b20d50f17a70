"""Tests for the SSE stream reader."""

from __future__ import annotations

import httpx
import pytest

from conftest import aiter_lines, sse_frame
from gemini_chat.ai.sse import SSEStreamReader
from gemini_chat.core.types import StreamState
from gemini_chat.errors import ApiError, TransportError


async def _drain(reader: SSEStreamReader) -> list[str]:
    return [fragment async for fragment in reader]


@pytest.mark.asyncio
async def test_reassembles_fragments_until_finish_reason():
    lines = [
        'data: {"candidates":[{"content":{"parts":[{"text":"Hel"}]}}]}',
        "",
        'data: {"candidates":[{"content":{"parts":[{"text":"lo"}]},"finishReason":"STOP"}]}',
        "",
    ]
    reader = SSEStreamReader(aiter_lines(lines))

    fragments = await _drain(reader)

    assert fragments == ["Hel", "lo"]
    assert "".join(fragments) == "Hello"
    assert reader.state is StreamState.DONE
    assert reader.finish_reason == "STOP"


@pytest.mark.asyncio
async def test_malformed_chunk_is_skipped():
    lines = [
        sse_frame("one "),
        "data: {not json",
        sse_frame("two", finish_reason="STOP"),
    ]
    reader = SSEStreamReader(aiter_lines(lines))

    assert await _drain(reader) == ["one ", "two"]
    assert reader.state is StreamState.DONE
    assert reader.skipped_chunks == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "junk",
    [
        "data: null",
        'data: "ping"',
        "data: 42",
        'data: {"candidates":[{"content":["x"]}]}',
        'data: {"usageMetadata":[1]}',
    ],
)
async def test_wrongly_shaped_frame_is_skipped(junk):
    lines = [sse_frame("Hel"), junk, sse_frame("lo", finish_reason="STOP")]
    reader = SSEStreamReader(aiter_lines(lines))

    assert await _drain(reader) == ["Hel", "lo"]
    assert reader.state is StreamState.DONE
    assert reader.skipped_chunks == 1


@pytest.mark.asyncio
async def test_done_sentinel_ends_stream_and_ignores_the_rest():
    lines = [sse_frame("a"), "data: [DONE]", sse_frame("never")]
    reader = SSEStreamReader(aiter_lines(lines))

    assert await _drain(reader) == ["a"]
    assert reader.state is StreamState.DONE


@pytest.mark.asyncio
async def test_non_data_lines_are_ignored():
    lines = [
        ": keep-alive",
        "event: message",
        "id: 7",
        "",
        b'data: {"candidates":[{"content":{"parts":[{"text":"bytes ok"}]}}]}\r\n',
        sse_frame(finish_reason="MAX_TOKENS"),
    ]
    reader = SSEStreamReader(aiter_lines(lines))

    assert await _drain(reader) == ["bytes ok"]
    assert reader.finish_reason == "MAX_TOKENS"


@pytest.mark.asyncio
async def test_null_and_empty_finish_reason_do_not_terminate():
    lines = [
        'data: {"candidates":[{"content":{"parts":[{"text":"x"}]},"finishReason":null}]}',
        'data: {"candidates":[{"content":{"parts":[{"text":"y"}]},"finishReason":""}]}',
        sse_frame("z", finish_reason="STOP"),
    ]
    reader = SSEStreamReader(aiter_lines(lines))

    assert await _drain(reader) == ["x", "y", "z"]


@pytest.mark.asyncio
async def test_close_after_fragments_without_finish_is_success():
    reader = SSEStreamReader(aiter_lines([sse_frame("partial")]))

    assert await _drain(reader) == ["partial"]
    assert reader.state is StreamState.DONE


@pytest.mark.asyncio
async def test_close_without_any_fragment_is_transport_error():
    reader = SSEStreamReader(aiter_lines([": ping", ""]))

    with pytest.raises(TransportError):
        await _drain(reader)
    assert reader.state is StreamState.ERRORED


@pytest.mark.asyncio
async def test_error_object_in_frame_raises_api_error():
    lines = [
        sse_frame("before "),
        'data: {"error":{"code":429,"message":"Resource has been exhausted","status":"RESOURCE_EXHAUSTED"}}',
    ]
    reader = SSEStreamReader(aiter_lines(lines))
    received: list[str] = []

    with pytest.raises(ApiError) as excinfo:
        async for fragment in reader:
            received.append(fragment)

    assert received == ["before "]
    assert excinfo.value.message == "Resource has been exhausted"
    assert excinfo.value.status_code == 429
    assert reader.state is StreamState.ERRORED


@pytest.mark.asyncio
async def test_connection_failure_mid_stream_is_transport_error():
    async def broken():
        yield sse_frame("half")
        raise httpx.ReadError("connection reset")

    reader = SSEStreamReader(broken())

    with pytest.raises(TransportError):
        await _drain(reader)
    assert reader.state is StreamState.ERRORED


@pytest.mark.asyncio
async def test_reader_is_single_pass():
    reader = SSEStreamReader(aiter_lines([sse_frame("once", finish_reason="STOP")]))
    await _drain(reader)

    with pytest.raises(RuntimeError):
        reader.__aiter__()
