"""MIME detection and Base64 encoding for multimodal attachments."""

from __future__ import annotations

import base64
from pathlib import Path

from gemini_chat.errors import EncodingError

DEFAULT_MIME_TYPE = "text/plain"

MIME_TYPES: dict[str, str] = {
    "txt": "text/plain",
    "md": "text/markdown",
    "csv": "text/csv",
    "html": "text/html",
    "htm": "text/html",
    "css": "text/css",
    "xml": "text/xml",
    "js": "text/javascript",
    "py": "text/x-python",
    "json": "application/json",
    "yaml": "application/x-yaml",
    "yml": "application/x-yaml",
    "pdf": "application/pdf",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "heic": "image/heic",
    "heif": "image/heif",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "flac": "audio/flac",
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "webm": "video/webm",
}


def detect_mime(path: str | Path) -> str:
    """Map a file extension to a MIME type; unknown extensions are plain text."""
    suffix = Path(path).suffix.lower().lstrip(".")
    return MIME_TYPES.get(suffix, DEFAULT_MIME_TYPE)


def encode_base64(path: str | Path) -> str:
    """Read the whole file and return it as a single-line Base64 string."""
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise EncodingError(f"Failed to read attachment {path}: {e}") from e
    return base64.b64encode(data).decode("ascii")
