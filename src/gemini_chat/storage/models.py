"""Data models for the conversation workspace."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Optional

from gemini_chat.core.types import Role
from gemini_chat.errors import ParseError


def utc_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC instant with a ``Z`` suffix."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True, slots=True)
class InlineData:
    mime_type: str
    data: str  # Base64, single line


@dataclass(frozen=True, slots=True)
class Part:
    """One element of a turn: either text or inline binary data."""

    text: Optional[str] = None
    inline_data: Optional[InlineData] = None

    def to_dict(self) -> dict[str, Any]:
        if self.inline_data is not None:
            return {
                "inlineData": {
                    "mimeType": self.inline_data.mime_type,
                    "data": self.inline_data.data,
                }
            }
        return {"text": self.text or ""}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Part:
        inline = raw.get("inlineData")
        if isinstance(inline, dict):
            return cls(
                inline_data=InlineData(
                    mime_type=str(inline.get("mimeType", "text/plain")),
                    data=str(inline.get("data", "")),
                )
            )
        return cls(text=str(raw.get("text", "")))


@dataclass(frozen=True, slots=True)
class Message:
    role: Role
    content: str
    parts: tuple[Part, ...]
    timestamp: str

    def __post_init__(self) -> None:
        if not self.parts:
            raise ValueError("a message needs at least one part")

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.timestamp, self.role.value, self.content)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "role": self.role.value,
            "content": self.content,
            "parts": [p.to_dict() for p in self.parts],
        }

    def to_request_turn(self) -> dict[str, Any]:
        return {"role": self.role.value, "parts": [p.to_dict() for p in self.parts]}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Message:
        try:
            role = Role(raw["role"])
        except (KeyError, ValueError) as e:
            raise ParseError(f"Invalid message role: {raw.get('role')!r}") from e
        content = str(raw.get("content", ""))
        parts = tuple(Part.from_dict(p) for p in raw.get("parts") or [] if isinstance(p, dict))
        if not parts:
            # Files written before parts were recorded only carry content.
            parts = (Part(text=content),)
        return cls(role=role, content=content, parts=parts, timestamp=str(raw.get("timestamp", "")))


@dataclass
class Conversation:
    date: str  # YYYY-MM-DD
    created_at: str
    contents: list[Message] = field(default_factory=list)
    loaded_from: Optional[str] = None
    loaded_at: Optional[str] = None
    archived_at: Optional[str] = None

    @classmethod
    def empty(cls, day: date, now: datetime) -> Conversation:
        return cls(date=day.isoformat(), created_at=now.isoformat(timespec="seconds"))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "contents": [m.to_dict() for m in self.contents],
            "date": self.date,
            "created_at": self.created_at,
        }
        for name in ("loaded_from", "loaded_at", "archived_at"):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        return data

    @classmethod
    def from_dict(cls, raw: Any) -> Conversation:
        if not isinstance(raw, dict) or not isinstance(raw.get("contents", []), list):
            raise ParseError("Conversation file must be an object with a 'contents' array")
        return cls(
            date=str(raw.get("date", "")),
            created_at=str(raw.get("created_at", "")),
            contents=[Message.from_dict(m) for m in raw.get("contents", []) if isinstance(m, dict)],
            loaded_from=raw.get("loaded_from"),
            loaded_at=raw.get("loaded_at"),
            archived_at=raw.get("archived_at"),
        )


@dataclass
class SessionRecord:
    model: str
    temperature: float
    last_used: str

    def to_dict(self) -> dict[str, Any]:
        return {"model": self.model, "temperature": self.temperature, "last_used": self.last_used}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> SessionRecord:
        return cls(
            model=str(raw.get("model", "")),
            temperature=float(raw.get("temperature", 0.0)),
            last_used=str(raw.get("last_used", "")),
        )


@dataclass(frozen=True, slots=True)
class HistorySummary:
    date: str
    message_count: int
    created_at: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ConversationSummary:
    total: int
    by_role: dict[str, int]
    date: str
    loaded_from: Optional[str] = None
