"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    USER = "user"
    MODEL = "model"
    SYSTEM = "system"


class StreamState(StrEnum):
    READING = "reading"
    DONE = "done"
    ERRORED = "errored"
