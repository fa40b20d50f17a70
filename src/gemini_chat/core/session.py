"""Chat session: build request -> call Gemini -> stream -> commit to the conversation log."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import AsyncIterator, Callable, Sequence

from gemini_chat.ai.client import GeminiClient
from gemini_chat.ai.request_builder import RequestBuilder, RequestPayload
from gemini_chat.config import GeminiSettings
from gemini_chat.core.notify import NotificationSink
from gemini_chat.core.types import Role
from gemini_chat.errors import TurnCancelled
from gemini_chat.log import bind_turn, get_logger
from gemini_chat.storage.conversation_store import ConversationStore

logger = get_logger(__name__)


async def _next_fragment(
    fragments: AsyncIterator[str], cancel_event: asyncio.Event | None
) -> str | None:
    """Return the next fragment, None at the end, or raise TurnCancelled.

    The pending read is abandoned as soon as *cancel_event* is set, so a
    stalled stream is cancelled too.
    """
    if cancel_event is None:
        return await anext(fragments, None)
    if cancel_event.is_set():
        raise TurnCancelled("Streaming cancelled by caller")

    read = asyncio.ensure_future(anext(fragments, None))
    cancelled = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({read, cancelled}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        cancelled.cancel()
        if not read.done():
            read.cancel()
            await asyncio.wait({read})
    if cancel_event.is_set() or read.cancelled():
        if not read.cancelled():
            read.exception()
        raise TurnCancelled("Streaming cancelled by caller")
    return read.result()


class ChatSession:
    """Runs one conversational turn end-to-end.

    Nothing is written to the conversation log until the full response has
    been received; a failed or cancelled turn leaves the log untouched.
    """

    def __init__(
        self,
        settings: GeminiSettings,
        store: ConversationStore,
        client: GeminiClient,
        builder: RequestBuilder | None = None,
        sinks: Sequence[NotificationSink] = (),
    ):
        self._settings = settings
        self._store = store
        self._client = client
        self._builder = builder or RequestBuilder(settings, store)
        self._sinks = list(sinks)

    @property
    def store(self) -> ConversationStore:
        return self._store

    async def run(
        self,
        prompt: str,
        attachments: Sequence[str | Path] = (),
        continue_conversation: bool = False,
        stream: bool = True,
        schema_path: str | Path | None = None,
        on_fragment: Callable[[str], None] | None = None,
        cancel_event: asyncio.Event | None = None,
        load_date: str | None = None,
        clear: bool = False,
    ) -> str:
        """Execute a turn and return the full response text."""
        bind_turn(model=self._settings.model, streaming=stream)

        if clear:
            self._store.clear(archive_first=True)
        if load_date:
            self._store.load(load_date)
        if not (clear or load_date):
            self._store.archive_if_stale()

        payload = self._builder.build(
            prompt,
            attachments,
            continue_conversation=continue_conversation,
            schema_path=schema_path,
        )

        if stream:
            text = await self._run_streaming(payload, on_fragment, cancel_event)
        else:
            response = await self._client.generate(payload)
            text = response.text
            if on_fragment:
                on_fragment(text)

        self._commit(payload, text)
        await self._notify(text)
        return text

    async def _run_streaming(
        self,
        payload: RequestPayload,
        on_fragment: Callable[[str], None] | None,
        cancel_event: asyncio.Event | None,
    ) -> str:
        buffer: list[str] = []
        async with self._client.open_stream(payload) as reader:
            fragments = aiter(reader)
            while True:
                try:
                    fragment = await _next_fragment(fragments, cancel_event)
                except TurnCancelled:
                    logger.info("turn_cancelled", fragments=len(buffer))
                    raise
                if fragment is None:
                    break
                buffer.append(fragment)
                if on_fragment:
                    on_fragment(fragment)
        logger.debug(
            "stream_complete",
            fragments=len(buffer),
            finish_reason=reader.finish_reason,
            skipped_chunks=reader.skipped_chunks,
        )
        return "".join(buffer)

    def _commit(self, payload: RequestPayload, text: str) -> None:
        user_message = self._store.make_message(Role.USER, payload.prompt, payload.user_parts)
        model_message = self._store.make_message(Role.MODEL, text)
        self._store.append_messages([user_message, model_message])
        self._store.touch_session(self._settings.model, self._settings.temperature)
        logger.info("turn_committed", response_chars=len(text))

    async def _notify(self, text: str) -> None:
        for sink in self._sinks:
            try:
                await sink.notify(text, title=f"Gemini ({self._settings.model})")
            except Exception as e:
                logger.error("notification_failed", sink=sink.sink_name, error=str(e))
