"""Notification sink interface for pushing completed responses elsewhere."""

from __future__ import annotations

from abc import ABC, abstractmethod


class NotificationSink(ABC):
    """Receives the text of every committed model turn.

    Implementations live outside this package (Telegram, desktop
    notifications, ...). Failures are logged by the caller and never affect
    the conversation log.
    """

    @property
    @abstractmethod
    def sink_name(self) -> str:
        ...

    @abstractmethod
    async def notify(self, text: str, title: str = "") -> None:
        ...
