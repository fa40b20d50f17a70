"""Shared test fixtures."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Callable

import httpx
import pytest

from gemini_chat.ai.client import GeminiClient
from gemini_chat.config import GeminiSettings
from gemini_chat.storage.conversation_store import ConversationStore


class FakeClock:
    """Mutable clock so tests can roll the calendar forward."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 15, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def store(tmp_path: Path, clock: FakeClock) -> ConversationStore:
    return ConversationStore(tmp_path / "workspace", max_messages=50, lock_timeout=1.0, clock=clock)


@pytest.fixture
def settings() -> GeminiSettings:
    return GeminiSettings(api_key="test-key", endpoint="https://gemini.test/v1beta")


def sse_frame(text: str | None = None, finish_reason: str | None = None) -> str:
    candidate: dict[str, Any] = {}
    if text is not None:
        candidate["content"] = {"parts": [{"text": text}], "role": "model"}
    if finish_reason is not None:
        candidate["finishReason"] = finish_reason
    return "data: " + json.dumps({"candidates": [candidate]})


async def aiter_lines(lines: list[str | bytes]) -> AsyncIterator[str | bytes]:
    for line in lines:
        yield line


def sse_body(*frames: str) -> bytes:
    return "".join(f"{frame}\n\n" for frame in frames).encode("utf-8")


@pytest.fixture
def make_client(settings: GeminiSettings) -> Callable[..., GeminiClient]:
    """Build a GeminiClient whose HTTP traffic is served by *handler*."""

    def _make(handler: Callable[[httpx.Request], httpx.Response], **overrides: Any) -> GeminiClient:
        cfg = settings.model_copy(update=overrides) if overrides else settings
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return GeminiClient(cfg, http_client=http)

    return _make
