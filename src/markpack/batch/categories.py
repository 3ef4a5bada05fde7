"""Map request kinds and file extensions onto archive categories."""

from __future__ import annotations

from pathlib import PurePath

from .models import Category, ItemKind

# Checked in this order; the first set containing the extension wins, so
# office formats listed under more than one category stay documents.
_EXTENSION_SETS: tuple[tuple[Category, frozenset[str]], ...] = (
    (
        Category.DOCUMENTS,
        frozenset({
            "pdf", "docx", "doc", "odt", "rtf", "txt", "md", "epub", "pptx",
        }),
    ),
    (
        Category.MULTIMEDIA,
        frozenset({
            # audio
            "mp3", "wav", "ogg", "m4a", "flac", "aac",
            # video
            "mp4", "mov", "avi", "webm", "mkv",
        }),
    ),
    (
        Category.DATA,
        frozenset({"csv", "json", "yaml", "yml", "xlsx", "xls", "pptx"}),
    ),
    (
        Category.WEB,
        frozenset({"html", "htm", "xml"}),
    ),
)

_WEB_KINDS = frozenset({ItemKind.URL, ItemKind.PARENT_URL, ItemKind.VIDEO_LINK})

_CREDENTIAL_CATEGORIES = frozenset({Category.MULTIMEDIA})


def classify(kind: ItemKind | str, extension: str | None) -> Category:
    """Return the archive category for ``kind`` and ``extension``."""

    if ItemKind.from_value(kind) in _WEB_KINDS:
        return Category.WEB
    normalized = (extension or "").strip().lower().lstrip(".")
    for category, extensions in _EXTENSION_SETS:
        if normalized in extensions:
            return category
    return Category.OTHER


def requires_credential(category: Category) -> bool:
    return category in _CREDENTIAL_CATEGORIES


def extension_of(name: str) -> str:
    return PurePath(name).suffix.lstrip(".").lower()


def media_extensions() -> frozenset[str]:
    """Raw audio/video extensions handled by the transcription converter."""

    return dict(_EXTENSION_SETS)[Category.MULTIMEDIA]


__all__ = [
    "classify",
    "extension_of",
    "media_extensions",
    "requires_credential",
]
