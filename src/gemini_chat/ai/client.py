"""Gemini REST client: streaming and non-streaming generateContent over httpx."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator

import httpx

from gemini_chat.ai.request_builder import RequestPayload
from gemini_chat.ai.response import GenerateChunk, api_error_from_body
from gemini_chat.ai.sse import SSEStreamReader
from gemini_chat.config import GeminiSettings
from gemini_chat.errors import ParseError, TransportError
from gemini_chat.log import get_logger

logger = get_logger(__name__)

_HEADERS = {"Content-Type": "application/json"}


@dataclass
class AIResponse:
    """Complete response from a non-streaming call."""

    text: str
    finish_reason: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    raw: Any = None


@dataclass(frozen=True, slots=True)
class ModelInfo:
    name: str
    display_name: str


class GeminiClient:
    """Thin async wrapper over the generativelanguage REST endpoints.

    Never retries: a TransportError is safe to retry, but that is the
    caller's decision.
    """

    def __init__(self, settings: GeminiSettings, http_client: httpx.AsyncClient | None = None):
        self._settings = settings
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.timeout, connect=settings.connect_timeout)
        )

    @property
    def model_name(self) -> str:
        return self._settings.model

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> GeminiClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @staticmethod
    async def _raise_for_status(response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        body = (await response.aread()).decode("utf-8", errors="replace")
        error = api_error_from_body(body, response.status_code, response.reason_phrase)
        logger.error("api_error", status=response.status_code, message=error.message)
        raise error

    @asynccontextmanager
    async def open_stream(self, payload: RequestPayload) -> AsyncIterator[SSEStreamReader]:
        """POST to streamGenerateContent and yield a reader over the response body.

        Leaving the block closes the HTTP connection, including when the
        consumer stops iterating early.
        """
        params = {"alt": "sse", "key": self._settings.require_api_key()}
        url = self._settings.model_url("streamGenerateContent")
        logger.debug("api_stream_request", url=url, turns=len(payload.contents))
        try:
            async with self._client.stream(
                "POST", url, params=params, json=payload.to_dict(), headers=_HEADERS
            ) as response:
                await self._raise_for_status(response)
                yield SSEStreamReader(response.aiter_lines())
        except httpx.TimeoutException as e:
            raise TransportError(f"Request to {url} timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransportError(f"Failed to connect to {url}: {e}") from e

    async def stream(self, payload: RequestPayload) -> AsyncIterator[str]:
        """Yield text fragments in arrival order."""
        async with self.open_stream(payload) as reader:
            async for fragment in reader:
                yield fragment

    async def generate(self, payload: RequestPayload) -> AIResponse:
        """POST to generateContent and return the first candidate's text."""
        params = {"key": self._settings.require_api_key()}
        url = self._settings.model_url("generateContent")
        logger.debug("api_request", url=url, turns=len(payload.contents))
        try:
            response = await self._client.post(
                url, params=params, json=payload.to_dict(), headers=_HEADERS
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"Request to {url} timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransportError(f"Failed to connect to {url}: {e}") from e

        await self._raise_for_status(response)
        if not response.content:
            raise ParseError("Empty response from Gemini API")
        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise ParseError(f"Gemini API returned invalid JSON: {e}") from e

        chunk = GenerateChunk.from_json(data)
        if chunk.text is None:
            raise ParseError("Gemini API response has no candidate text")
        logger.debug(
            "api_response",
            finish_reason=chunk.finish_reason,
            input_tokens=chunk.prompt_tokens,
            output_tokens=chunk.output_tokens,
        )
        return AIResponse(
            text=chunk.text,
            finish_reason=chunk.finish_reason,
            input_tokens=chunk.prompt_tokens,
            output_tokens=chunk.output_tokens,
            raw=data,
        )

    async def list_models(self) -> list[ModelInfo]:
        params = {"key": self._settings.require_api_key()}
        url = f"{self._settings.endpoint.rstrip('/')}/models"
        try:
            response = await self._client.get(url, params=params, headers=_HEADERS)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request to {url} timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransportError(f"Failed to connect to {url}: {e}") from e

        await self._raise_for_status(response)
        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise ParseError(f"Gemini API returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ParseError(f"Expected a JSON object, got {type(data).__name__}")
        models = data.get("models") or []
        if not isinstance(models, list):
            raise ParseError(f"Expected 'models' to be a list, got {type(models).__name__}")
        return [
            ModelInfo(name=str(m.get("name", "")), display_name=str(m.get("displayName") or "No description"))
            for m in models
            if isinstance(m, dict)
        ]
