"""Markdown rendering helpers for archive entries."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Union

from .errors import ConversionFailure

FrontMatterValue = Union[datetime, str, int, float, bool, None]

__all__ = [
    "format_timestamp",
    "markdown_text",
    "render_document",
    "render_error",
]


def render_document(
    metadata: Mapping[str, FrontMatterValue],
    body: str,
) -> str:
    """Prefix ``body`` with YAML front matter built from ``metadata``.

    Keys whose value is ``None`` are omitted. Values are JSON-encoded, which
    is valid YAML for strings, numbers and booleans.
    """

    lines = ["---"]
    for key, value in metadata.items():
        if value is None:
            continue
        encoded = json.dumps(_serialize(value), ensure_ascii=False)
        lines.append(f"{key}: {encoded}")
    lines.append("---")

    front_matter = "\n".join(lines)
    normalized_body = body.rstrip("\n")
    if normalized_body:
        return f"{front_matter}\n\n{normalized_body}\n"
    return f"{front_matter}\n\n"


def render_error(
    *,
    name: str,
    kind: str,
    error: str,
    failed_at: datetime,
    source_url: Optional[str] = None,
) -> str:
    """Render the Markdown written to ``errors/`` for a failed item."""

    body = "\n".join(
        [
            "# Conversion Error",
            "",
            f"Failed to convert {name}",
            "",
            "```",
            f"Error: {error}",
            "```",
            "",
            f"**Time:** {format_timestamp(failed_at)}",
            f"**Type:** {kind}",
        ]
    )
    return render_document(
        {
            "name": name,
            "kind": kind,
            "source_url": source_url,
            "failed_at": failed_at,
        },
        body,
    )


def format_timestamp(value: datetime) -> str:
    """Return ``value`` as a second-precision UTC ISO 8601 string with ``Z``."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    timestamp = value.astimezone(timezone.utc).replace(microsecond=0)
    return timestamp.isoformat().replace("+00:00", "Z")


def _serialize(value: FrontMatterValue) -> Union[str, int, float, bool]:
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, (bool, int, float)):
        return value
    return str(value)


def markdown_text(result: Any) -> str:
    """Extract Markdown from a MarkItDown result across library versions."""

    for attribute in ("markdown", "text_content"):
        value = getattr(result, attribute, None)
        if isinstance(value, str):
            return value
    if isinstance(result, str):
        return result
    raise ConversionFailure(
        "markitdown returned an unsupported response; expected Markdown text."
    )
