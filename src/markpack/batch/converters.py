"""Default converter set and registry wiring."""

from __future__ import annotations

import base64
import binascii
import io
import json
import logging
import mimetypes
import re
from datetime import datetime, timezone
from pathlib import PurePath
from typing import Any, Callable, Optional

from .errors import ConversionFailure
from .media import MediaTranscriber, Splitter, split_audio
from .models import (
    ConversionOptions,
    ConverterOutput,
    ImageAsset,
    RequestContent,
)
from .naming import split_name
from .output import markdown_text, render_document
from .registry import MEDIA_CONVERTER_KEY, ConverterRegistry
from .service import TranscriptionService
from .web import WebConverter

__all__ = [
    "FencedTextConverter",
    "MARKITDOWN_EXTENSIONS",
    "MarkItDownConverter",
    "build_default_registry",
]

MARKITDOWN_EXTENSIONS: tuple[str, ...] = (
    "pdf",
    "docx",
    "pptx",
    "xlsx",
    "xls",
    "epub",
    "txt",
    "md",
    "csv",
    "html",
    "htm",
    "xml",
)

_DATA_URI_IMAGE = re.compile(
    r"!\[[^\]]*\]\((?P<uri>data:(?P<mime>image/[\w.+-]+);base64,"
    r"(?P<data>[A-Za-z0-9+/=]+))\)"
)

_logger = logging.getLogger(__name__)


class MarkItDownConverter:
    """Convert documents, data and markup through ``MarkItDown.convert_stream``.

    With ``include_images`` the engine is asked to keep inline ``data:`` URIs;
    those are lifted out of the Markdown into :class:`ImageAsset` entries so
    the archive can store them as files.
    """

    def __init__(
        self,
        engine: Any,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._engine = engine
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def __call__(
        self,
        content: RequestContent,
        *,
        name: str,
        credential: Optional[str],
        options: ConversionOptions,
    ) -> ConverterOutput:
        extension = PurePath(name).suffix.lower()
        payload = (
            content.encode("utf-8") if isinstance(content, str) else content
        )
        result = self._engine.convert_stream(
            io.BytesIO(payload),  # type: ignore[arg-type]
            file_extension=extension,
            keep_data_uris=options.include_images,
        )
        markdown = markdown_text(result)
        title = getattr(result, "title", None) or None

        stem, _ = split_name(name)
        images: tuple[ImageAsset, ...] = ()
        if options.include_images:
            images = _lift_data_uri_images(markdown, stem)

        if options.include_meta:
            markdown = render_document(
                {
                    "title": title or stem,
                    "source": name,
                    "converted_at": self._clock(),
                },
                markdown,
            )
        return ConverterOutput(content=markdown, images=images, title=title)


class FencedTextConverter:
    """Wrap structured text (JSON, YAML) in a fenced code block."""

    def __init__(self, language: str) -> None:
        self.language = language

    def __call__(
        self,
        content: RequestContent,
        *,
        name: str,
        credential: Optional[str],
        options: ConversionOptions,
    ) -> str:
        if isinstance(content, bytes):
            try:
                text = content.decode("utf-8-sig")
            except UnicodeDecodeError as exc:
                raise ConversionFailure(
                    f"{name} is not valid UTF-8 text"
                ) from exc
        else:
            text = str(content)

        if self.language == "json":
            try:
                parsed = json.loads(text)
                text = json.dumps(parsed, indent=2, ensure_ascii=False)
            except json.JSONDecodeError as exc:
                raise ConversionFailure(
                    f"Invalid JSON in {name}: {exc}"
                ) from exc

        stem, _ = split_name(name)
        body = f"# {stem}\n\n```{self.language}\n{text.strip()}\n```"
        if options.include_meta:
            return render_document({"title": stem, "source": name}, body)
        return body + "\n"


def build_default_registry(
    engine: Any,
    service: TranscriptionService,
    session: Any = None,
    *,
    splitter: Splitter = split_audio,
) -> ConverterRegistry:
    """Register the stock converters on a fresh registry."""

    registry = ConverterRegistry()
    markitdown = MarkItDownConverter(engine)
    for extension in MARKITDOWN_EXTENSIONS:
        registry.register(extension, markitdown)

    registry.register("json", FencedTextConverter("json"))
    yaml_converter = FencedTextConverter("yaml")
    registry.register("yaml", yaml_converter)
    registry.register("yml", yaml_converter)

    registry.register(
        MEDIA_CONVERTER_KEY, MediaTranscriber(service, splitter=splitter)
    )

    web = WebConverter(engine, session=session)
    registry.register("url", web.convert_url)
    registry.register("parent-url", web.crawl_site)
    registry.register("video-link", web.convert_video_link)

    _logger.debug(
        "Built default registry", extra={"keys": list(registry.keys())}
    )
    return registry


def _lift_data_uri_images(markdown: str, stem: str) -> tuple[ImageAsset, ...]:
    images: list[ImageAsset] = []
    seen: set[str] = set()
    for match in _DATA_URI_IMAGE.finditer(markdown):
        uri = match.group("uri")
        if uri in seen:
            continue
        seen.add(uri)
        data = match.group("data")
        try:
            base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError):
            continue
        mime_type = match.group("mime")
        extension = mimetypes.guess_extension(mime_type) or ".bin"
        images.append(
            ImageAsset(
                name=f"{stem}-image-{len(images) + 1:02d}{extension}",
                data=data,
                mime_type=mime_type,
                path=uri,
            )
        )
    return tuple(images)
