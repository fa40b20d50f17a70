"""Server-Sent-Events reader for streamGenerateContent responses."""

from __future__ import annotations

import asyncio
from typing import AsyncIterable, AsyncIterator, Optional

import httpx

from gemini_chat.ai.response import GenerateChunk
from gemini_chat.core.types import StreamState
from gemini_chat.errors import ApiError, StreamParseError, TransportError
from gemini_chat.log import get_logger

logger = get_logger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class SSEStreamReader:
    """Turns a line stream into a lazy, single-pass sequence of text fragments.

    Lines without a ``data:`` prefix (blank separators, ``event:``/``id:``
    fields, keep-alive comments) are ignored. The sequence ends in ``DONE`` on
    a ``[DONE]`` payload or the first chunk carrying a non-empty
    ``finishReason``, after yielding that chunk's text. A data frame that is
    not valid JSON or does not have the shape of a response chunk is logged
    and skipped.

    A connection that closes before a finish signal still counts as success if
    at least one fragment was yielded; otherwise it raises TransportError.
    Provider error objects inside a frame raise ApiError.
    """

    def __init__(self, lines: AsyncIterable[str | bytes]):
        self._lines = lines
        self._state = StreamState.READING
        self._consumed = False
        self.finish_reason: Optional[str] = None
        self.fragments_yielded = 0
        self.skipped_chunks = 0
        self.prompt_tokens = 0
        self.output_tokens = 0

    @property
    def state(self) -> StreamState:
        return self._state

    def __aiter__(self) -> AsyncIterator[str]:
        if self._consumed:
            raise RuntimeError("SSE stream can only be iterated once")
        self._consumed = True
        return self._iterate()

    def _finish(self, reason: str) -> None:
        self._state = StreamState.DONE
        self.finish_reason = reason

    async def _iterate(self) -> AsyncIterator[str]:
        try:
            async for raw in self._lines:
                line = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
                line = line.rstrip("\r\n")
                if not line.startswith(DATA_PREFIX):
                    continue

                payload = line[len(DATA_PREFIX):].strip()
                if payload == DONE_SENTINEL:
                    self._finish(DONE_SENTINEL)
                    return

                try:
                    chunk = GenerateChunk.from_sse_payload(payload)
                except StreamParseError as e:
                    self.skipped_chunks += 1
                    logger.warning("sse_chunk_skipped", error=str(e), payload=payload[:200])
                    continue

                if chunk.prompt_tokens or chunk.output_tokens:
                    self.prompt_tokens = chunk.prompt_tokens
                    self.output_tokens = chunk.output_tokens

                if chunk.text:
                    self.fragments_yielded += 1
                    yield chunk.text

                if chunk.finished:
                    self._finish(chunk.finish_reason or "")
                    return
        except ApiError:
            self._state = StreamState.ERRORED
            raise
        except (httpx.TransportError, httpx.StreamError) as e:
            self._state = StreamState.ERRORED
            raise TransportError(f"Connection failed while streaming: {e}") from e
        except (GeneratorExit, asyncio.CancelledError):
            # Consumer stopped reading early.
            self._state = StreamState.ERRORED
            raise

        if self.fragments_yielded:
            logger.warning("sse_closed_without_finish", fragments=self.fragments_yielded)
            self._finish("CONNECTION_CLOSED")
            return
        self._state = StreamState.ERRORED
        raise TransportError("Stream closed before any response was received")
