"""File name helpers for archive entries."""

from __future__ import annotations

import re
from urllib.parse import urlsplit

__all__ = ["FALLBACK_NAME", "hostname_of", "sanitize_filename", "split_name"]

FALLBACK_NAME = "untitled"
_MAX_BYTES = 255

_ILLEGAL = re.compile(r'[/?<>\\:*|"]')
_CONTROL = re.compile(r"[\x00-\x1f\x80-\x9f]")
_RESERVED = re.compile(r"^\.+$")
_WINDOWS_RESERVED = re.compile(
    r"^(con|prn|aux|nul|com[0-9]|lpt[0-9])(\..*)?$", re.IGNORECASE
)
_TRAILING = re.compile(r"[. ]+$")


def sanitize_filename(name: str, *, fallback: str = FALLBACK_NAME) -> str:
    """Strip characters that are unsafe in file names on common filesystems.

    Path separators, reserved punctuation and control characters are
    removed, as are names consisting only of dots, Windows device names and
    trailing dots or spaces. The result is capped at 255 UTF-8 bytes and
    ``fallback`` is returned when nothing usable is left.
    """

    cleaned = _ILLEGAL.sub("", str(name))
    cleaned = _CONTROL.sub("", cleaned)
    cleaned = _RESERVED.sub("", cleaned)
    cleaned = _WINDOWS_RESERVED.sub("", cleaned)
    cleaned = _TRAILING.sub("", cleaned)
    cleaned = _truncate_utf8(cleaned, _MAX_BYTES)
    return cleaned or fallback


def split_name(filename: str) -> tuple[str, str]:
    """Split ``filename`` into ``(stem, suffix)``; the suffix keeps its dot."""

    stem, dot, suffix = filename.rpartition(".")
    if not dot or not stem:
        return filename, ""
    return stem, f".{suffix}"


def hostname_of(url: str) -> str:
    """Return the host part of ``url`` or an empty string when absent."""

    try:
        return urlsplit(url.strip()).hostname or ""
    except ValueError:
        return ""


def _truncate_utf8(value: str, limit: int) -> str:
    encoded = value.encode("utf-8")
    if len(encoded) <= limit:
        return value
    return encoded[:limit].decode("utf-8", errors="ignore")
