"""Assemble generateContent request payloads, optionally continuing the active conversation."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence

from gemini_chat.ai.mime import detect_mime, encode_base64
from gemini_chat.config import GeminiSettings
from gemini_chat.core.types import Role
from gemini_chat.errors import BuildError, EncodingError
from gemini_chat.log import get_logger
from gemini_chat.storage.conversation_store import ConversationStore
from gemini_chat.storage.models import InlineData, Part

logger = get_logger(__name__)


@dataclass
class RequestPayload:
    prompt: str
    user_parts: tuple[Part, ...]
    contents: list[dict[str, Any]]
    generation_config: dict[str, Any]
    system_instruction: Optional[dict[str, Any]] = None
    attachments: list[Path] = field(default_factory=list)
    structured: bool = False

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "contents": self.contents,
            "generationConfig": self.generation_config,
        }
        if self.system_instruction is not None:
            body["systemInstruction"] = self.system_instruction
        return body


def _load_schema(schema_path: str | Path) -> dict[str, Any]:
    path = Path(schema_path).expanduser()
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise BuildError(f"Cannot read response schema {path}: {e}") from e
    try:
        schema = json.loads(text)
    except json.JSONDecodeError as e:
        raise BuildError(f"Response schema {path} is not valid JSON: {e}") from e
    if not isinstance(schema, dict):
        raise BuildError(f"Response schema {path} must be a JSON object")
    return schema


class RequestBuilder:
    """Builds fresh or continuation requests from settings and the conversation store."""

    def __init__(self, settings: GeminiSettings, store: ConversationStore | None = None):
        self._settings = settings
        self._store = store

    def generation_config(self) -> dict[str, Any]:
        s = self._settings
        return {
            "temperature": s.temperature,
            "maxOutputTokens": s.max_tokens,
            "topP": s.top_p,
            "topK": s.top_k,
        }

    def attachment_parts(self, attachment_paths: Sequence[str | Path]) -> tuple[list[Part], list[Path]]:
        """Encode existing attachments as inline data; missing ones are skipped."""
        parts: list[Part] = []
        used: list[Path] = []
        for raw_path in attachment_paths:
            path = Path(raw_path).expanduser()
            if not path.is_file():
                logger.warning("attachment_skipped", path=str(path), reason="not found")
                continue
            try:
                data = encode_base64(path)
            except EncodingError as e:
                logger.warning("attachment_skipped", path=str(path), reason=str(e))
                continue
            parts.append(Part(inline_data=InlineData(mime_type=detect_mime(path), data=data)))
            used.append(path)
        return parts, used

    def _prior_turns(self) -> tuple[list[dict[str, Any]], Optional[dict[str, Any]]]:
        if self._store is None:
            raise BuildError("Continuing a conversation requires a conversation store")
        contents: list[dict[str, Any]] = []
        system_parts: list[dict[str, Any]] = []
        for message in self._store.active().contents:
            if message.role is Role.SYSTEM:
                system_parts.extend(p.to_dict() for p in message.parts)
            else:
                contents.append(message.to_request_turn())
        system = {"parts": system_parts} if system_parts else None
        return contents, system

    def build(
        self,
        prompt: str,
        attachment_paths: Sequence[str | Path] = (),
        continue_conversation: bool = False,
        schema_path: str | Path | None = None,
    ) -> RequestPayload:
        parts: list[Part] = []
        if prompt:
            parts.append(Part(text=prompt))
        inline_parts, used = self.attachment_parts(attachment_paths)
        parts.extend(inline_parts)
        if not parts:
            raise BuildError("A prompt or at least one readable attachment is required")

        user_turn = {"role": Role.USER.value, "parts": [p.to_dict() for p in parts]}
        contents: list[dict[str, Any]] = []
        system_instruction = None
        if continue_conversation:
            contents, system_instruction = self._prior_turns()
        contents.append(user_turn)

        generation_config = self.generation_config()
        if schema_path is not None:
            generation_config["responseMimeType"] = "application/json"
            generation_config["responseSchema"] = _load_schema(schema_path)

        logger.debug(
            "request_built",
            turns=len(contents),
            attachments=len(used),
            structured=schema_path is not None,
        )
        return RequestPayload(
            prompt=prompt,
            user_parts=tuple(parts),
            contents=contents,
            generation_config=generation_config,
            system_instruction=system_instruction,
            attachments=used,
            structured=schema_path is not None,
        )
