"""Date-partitioned conversation log: active conversation plus dated history files."""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

from gemini_chat.core.types import Role
from gemini_chat.errors import NotFoundError, StorageError
from gemini_chat.log import get_logger
from gemini_chat.storage.files import atomic_write_json, read_json, workspace_lock
from gemini_chat.storage.models import (
    Conversation,
    ConversationSummary,
    HistorySummary,
    Message,
    Part,
    SessionRecord,
    utc_timestamp,
)

logger = get_logger(__name__)

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
CONVERSATION_FILE = "conversation.json"
SESSION_FILE = "session.json"
HISTORY_DIR = "history"
LOCK_FILE = ".workspace.lock"


def _local_now() -> datetime:
    return datetime.now().astimezone()


def _parse_instant(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo is not None else None


def validate_date(value: str) -> date:
    """Parse a ``YYYY-MM-DD`` key, rejecting anything else."""
    if not DATE_PATTERN.match(value):
        raise ValueError(f"Invalid date '{value}', expected YYYY-MM-DD")
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise ValueError(f"Invalid date '{value}': {e}") from e


class ConversationStore:
    """Owns ``conversation.json``, ``session.json`` and ``history/{date}.json``.

    Every mutation is one read-modify-write cycle under the workspace lock,
    and every file is replaced atomically.
    """

    def __init__(
        self,
        workspace_dir: str | Path,
        max_messages: int = 50,
        lock_timeout: float = 10.0,
        clock: Callable[[], datetime] = _local_now,
    ):
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        self.root = Path(workspace_dir).expanduser()
        self.max_messages = max_messages
        self._lock_timeout = lock_timeout
        self._clock = clock

    @property
    def conversation_path(self) -> Path:
        return self.root / CONVERSATION_FILE

    @property
    def session_path(self) -> Path:
        return self.root / SESSION_FILE

    @property
    def history_dir(self) -> Path:
        return self.root / HISTORY_DIR

    def history_path(self, day: str) -> Path:
        return self.history_dir / f"{day}.json"

    def _today(self) -> date:
        return self._clock().date()

    def _now_iso(self) -> str:
        return self._clock().isoformat(timespec="seconds")

    def _lock(self):
        self._ensure_dirs()
        return workspace_lock(self.root / LOCK_FILE, self._lock_timeout)

    def _ensure_dirs(self) -> None:
        try:
            self.history_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create workspace {self.root}: {e}") from e

    # -- raw file access (callers hold the lock for writes) ------------------

    def _read_active(self) -> Conversation:
        if not self.conversation_path.exists():
            return Conversation.empty(self._today(), self._clock())
        return Conversation.from_dict(read_json(self.conversation_path))

    def _write_active(self, conversation: Conversation) -> None:
        atomic_write_json(self.conversation_path, conversation.to_dict())

    def _read_history(self, day: str) -> Optional[Conversation]:
        path = self.history_path(day)
        if not path.exists():
            return None
        return Conversation.from_dict(read_json(path))

    def _reset_active(self) -> Conversation:
        fresh = Conversation.empty(self._today(), self._clock())
        self._write_active(fresh)
        return fresh

    def _trim(self, messages: list[Message]) -> list[Message]:
        overflow = len(messages) - self.max_messages
        if overflow > 0:
            logger.info("conversation_trimmed", evicted=overflow, kept=self.max_messages)
            return messages[overflow:]
        return messages

    def _archive_targets(self, active: Conversation) -> dict[str, list[Message]]:
        """Group active turns by the history entry they belong to.

        Turns stamped before a load go back to the entry they were loaded
        from; everything else belongs to the active conversation's date.
        """
        day = active.date or self._today().isoformat()
        loaded_at = _parse_instant(active.loaded_at)
        targets: dict[str, list[Message]] = {}
        for message in active.contents:
            target = day
            if active.loaded_from and loaded_at is not None:
                stamped = _parse_instant(message.timestamp)
                if stamped is not None and stamped < loaded_at:
                    target = active.loaded_from
            targets.setdefault(target, []).append(message)
        return targets

    def _merge_into_history(self, day: str, messages: list[Message], created_at: str) -> int:
        """Append turns to ``history[day]``, skipping ones already there."""
        entry = self._read_history(day)
        if entry is None:
            entry = Conversation(date=day, created_at=created_at)
        seen = {m.key for m in entry.contents}
        new = [m for m in messages if m.key not in seen]
        if not new and self.history_path(day).exists():
            return 0
        entry.contents.extend(new)
        entry.archived_at = self._now_iso()
        atomic_write_json(self.history_path(day), entry.to_dict())
        logger.info("conversation_archived", date=day, merged=len(new), total=len(entry.contents))
        return len(new)

    def _archive_locked(self, only_if_stale: bool) -> bool:
        active = self._read_active()
        today = self._today().isoformat()
        if only_if_stale and active.date == today:
            return False
        archived = False
        if active.contents:
            for day, messages in self._archive_targets(active).items():
                self._merge_into_history(day, messages, active.created_at)
            archived = True
        if archived or active.date != today:
            self._reset_active()
        return archived

    # -- public operations ----------------------------------------------------

    def init(self, model: str = "gemini-2.0-flash", temperature: float = 0.7) -> None:
        """Create the workspace layout if it does not exist yet."""
        with self._lock():
            if not self.conversation_path.exists():
                self._reset_active()
            if not self.session_path.exists():
                self._write_session(SessionRecord(model, temperature, self._now_iso()))
        logger.info("workspace_initialized", path=str(self.root))

    def active(self) -> Conversation:
        """Return the active conversation (an empty one dated today if none exists)."""
        return self._read_active()

    def make_message(
        self,
        role: Role | str,
        content: str,
        parts: Iterable[Part] | None = None,
    ) -> Message:
        """Build a message stamped with the current UTC instant."""
        parts = tuple(parts or ())
        if not parts:
            parts = (Part(text=content),)
        return Message(
            role=Role(role),
            content=content,
            parts=parts,
            timestamp=utc_timestamp(self._clock()),
        )

    def append(self, role: Role | str, content: str, parts: Iterable[Part] | None = None) -> Message:
        """Append one turn, evicting the oldest so the ceiling is never exceeded."""
        message = self.make_message(role, content, parts)
        self.append_messages([message])
        return message

    def append_messages(self, messages: list[Message]) -> None:
        """Append several turns in a single locked write."""
        if not messages:
            return
        with self._lock():
            active = self._read_active()
            active.contents = self._trim(active.contents + list(messages))
            self._write_active(active)
        logger.debug("conversation_appended", added=len(messages), total=len(active.contents))

    def archive_if_stale(self) -> bool:
        """Archive the active conversation if its date is not today.

        Returns True only when turns were written to a history entry.
        """
        with self._lock():
            return self._archive_locked(only_if_stale=True)

    def archive(self) -> bool:
        """Archive the active conversation regardless of its date."""
        with self._lock():
            return self._archive_locked(only_if_stale=False)

    def load(self, day: str) -> Conversation:
        """Archive whatever is active, then make the history entry for *day* active.

        The copy is dated today; when it is archived later, its original turns
        go back to *day* and only turns added after the load land on the new date.
        """
        validate_date(day)
        with self._lock():
            entry = self._read_history(day)
            if entry is None:
                raise NotFoundError(f"No conversation found for date: {day}")
            self._archive_locked(only_if_stale=False)
            loaded = Conversation(
                date=self._today().isoformat(),
                created_at=self._now_iso(),
                contents=self._trim(list(entry.contents)),
                loaded_from=day,
                loaded_at=self._now_iso(),
            )
            self._write_active(loaded)
        logger.info("conversation_loaded", date=day, messages=len(loaded.contents))
        return loaded

    def history_entry(self, day: str) -> Conversation:
        validate_date(day)
        entry = self._read_history(day)
        if entry is None:
            raise NotFoundError(f"No conversation found for date: {day}")
        return entry

    def _history_days(self) -> list[str]:
        if not self.history_dir.is_dir():
            return []
        days = [p.stem for p in self.history_dir.glob("*.json") if DATE_PATTERN.match(p.stem)]
        return sorted(days, reverse=True)

    def list(self, max_days: int | None = None, detailed: bool = False) -> Iterator[HistorySummary]:
        """Yield history entries, newest first, limited to *max_days* entries."""
        days = self._history_days()
        if max_days is not None:
            days = days[: max(max_days, 0)]
        for day in days:
            entry = self._read_history(day)
            if entry is None:
                continue
            yield HistorySummary(
                date=day,
                message_count=len(entry.contents),
                created_at=entry.created_at if detailed else None,
            )

    def cleanup(self, retention_days: int) -> int:
        """Delete history entries dated strictly before ``today - retention_days``."""
        if retention_days < 0:
            raise ValueError("retention_days must not be negative")
        cutoff = self._today() - timedelta(days=retention_days)
        removed = 0
        with self._lock():
            for day in self._history_days():
                if date.fromisoformat(day) < cutoff:
                    try:
                        self.history_path(day).unlink()
                    except OSError as e:
                        raise StorageError(f"Failed to delete history entry {day}: {e}") from e
                    removed += 1
        logger.info("history_cleaned_up", removed=removed, cutoff=cutoff.isoformat())
        return removed

    def clear(self, archive_first: bool = False) -> bool:
        """Reset the active conversation; returns True if it was archived first."""
        with self._lock():
            archived = self._archive_locked(only_if_stale=False) if archive_first else False
            self._reset_active()
        logger.info("conversation_cleared", archived=archived)
        return archived

    def summary(self) -> ConversationSummary:
        active = self._read_active()
        counts = {role.value: 0 for role in Role}
        for message in active.contents:
            counts[message.role.value] += 1
        return ConversationSummary(
            total=len(active.contents),
            by_role=counts,
            date=active.date,
            loaded_from=active.loaded_from,
        )

    # -- session record -------------------------------------------------------

    def _write_session(self, record: SessionRecord) -> None:
        atomic_write_json(self.session_path, record.to_dict())

    def read_session(self) -> Optional[SessionRecord]:
        if not self.session_path.exists():
            return None
        return SessionRecord.from_dict(read_json(self.session_path))

    def touch_session(self, model: str, temperature: float) -> SessionRecord:
        record = SessionRecord(model=model, temperature=temperature, last_used=self._now_iso())
        with self._lock():
            self._write_session(record)
        return record
