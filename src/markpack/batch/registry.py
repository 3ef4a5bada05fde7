"""Converter registry: map a request onto the converter that handles it."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Protocol

from .categories import extension_of, media_extensions
from .errors import (
    InvalidInputShapeError,
    UnsupportedTypeError,
    ValidationError,
)
from .models import ConversionOptions, ConverterOutput, ItemKind, RequestContent

__all__ = [
    "ConversionContext",
    "Converter",
    "ConverterRegistry",
    "InputShape",
    "MEDIA_CONVERTER_KEY",
    "converter_key",
    "normalize_key",
    "validate_input",
]

MEDIA_CONVERTER_KEY = "video"

_logger = logging.getLogger(__name__)


class Converter(Protocol):
    """Callable contract implemented by format-specific converters."""

    def __call__(
        self,
        content: RequestContent,
        *,
        name: str,
        credential: Optional[str],
        options: ConversionOptions,
    ) -> Any:
        """Return Markdown (``ConverterOutput``, mapping or str) or raise."""


@dataclass(frozen=True)
class ConversionContext:
    """Per-item details handed to a converter alongside the content."""

    name: str
    credential: Optional[str] = None
    options: ConversionOptions = field(default_factory=ConversionOptions)


class InputShape(Enum):
    BINARY = "binary"
    TEXT = "text"
    STRUCTURED = "structured"

    @classmethod
    def of(cls, content: object) -> Optional["InputShape"]:
        if isinstance(content, (bytes, bytearray, memoryview)):
            return cls.BINARY
        if isinstance(content, str):
            return cls.TEXT
        if isinstance(content, Mapping):
            return cls.STRUCTURED
        return None


_BINARY = frozenset({InputShape.BINARY})
_TEXT = frozenset({InputShape.TEXT})
_TEXT_OR_BINARY = frozenset({InputShape.TEXT, InputShape.BINARY})

_EXPECTED_SHAPES: Mapping[str, frozenset[InputShape]] = MappingProxyType({
    **{
        key: _BINARY
        for key in ("pdf", "docx", "pptx", "xlsx", "xls", "odt", "rtf", "epub")
    },
    **{key: _BINARY for key in media_extensions()},
    MEDIA_CONVERTER_KEY: _BINARY,
    **{
        key: _TEXT_OR_BINARY
        for key in (
            "txt", "md", "csv", "json", "yaml", "yml", "html", "htm", "xml"
        )
    },
    ItemKind.URL.value: _TEXT,
    ItemKind.VIDEO_LINK.value: _TEXT,
    ItemKind.PARENT_URL.value: frozenset(
        {InputShape.TEXT, InputShape.STRUCTURED}
    ),
})

# Container formats that must start with the ZIP local-file signature. An
# encrypted Office file is an OLE compound document instead, and the parsers
# report that far less clearly than this check does.
_ZIP_SIGNATURE = b"PK"
_ZIP_CONTAINERS = {"docx": "DOCX", "pptx": "PPTX"}

# Second lookup stage: raw media extensions without a dedicated converter
# are transcribed by the video-capable converter.
_FALLBACK_ROUTES: Mapping[str, str] = MappingProxyType(
    {extension: MEDIA_CONVERTER_KEY for extension in media_extensions()}
)

_KEY_ALIASES = {
    "parenturl": ItemKind.PARENT_URL.value,
    "parent_url": ItemKind.PARENT_URL.value,
    "youtube": ItemKind.VIDEO_LINK.value,
}


def normalize_key(key: str) -> str:
    if not isinstance(key, str) or not key.strip():
        raise ValidationError("Converter key must be a non-empty string.")
    normalized = key.strip().lower().lstrip(".")
    return _KEY_ALIASES.get(normalized, normalized)


def converter_key(kind: ItemKind | str, name: str) -> str:
    """Return the lookup key for a request: its kind, or its file extension."""

    resolved = ItemKind.from_value(kind)
    if resolved is not ItemKind.FILE:
        return resolved.value
    extension = extension_of(name)
    if not extension:
        raise UnsupportedTypeError(
            f"Cannot determine a file type for '{name}' (no extension)."
        )
    return extension


def validate_input(key: str, content: object) -> None:
    """Reject ``content`` whose runtime shape does not suit ``key``."""

    normalized = normalize_key(key)
    shape = InputShape.of(content)
    if shape is None:
        raise InvalidInputShapeError(
            f"Unsupported content type {type(content).__name__} "
            f"for {normalized}."
        )

    label = _ZIP_CONTAINERS.get(normalized)
    if label is not None and shape is InputShape.BINARY:
        if bytes(content[:2]) != _ZIP_SIGNATURE:  # type: ignore[index]
            raise InvalidInputShapeError(
                f"Invalid {label} file format: missing ZIP signature (the file "
                "may be password-protected or corrupt)."
            )
        return

    expected = _EXPECTED_SHAPES.get(normalized, _TEXT_OR_BINARY)
    if shape not in expected:
        allowed = " or ".join(sorted(item.value for item in expected))
        raise InvalidInputShapeError(
            f"Invalid input for {normalized}: expected {allowed}, "
            f"got {shape.value}."
        )


class ConverterRegistry:
    """Keyed dispatch table with an explicit media fallback stage.

    The table is meant to be filled once at startup; afterwards it is only
    read, which keeps concurrent ``dispatch`` calls safe.
    """

    def __init__(
        self,
        converters: Optional[Mapping[str, Converter]] = None,
        *,
        fallback_routes: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._table: dict[str, Converter] = {}
        self._fallback = dict(
            _FALLBACK_ROUTES if fallback_routes is None else fallback_routes
        )
        for key, converter in (converters or {}).items():
            self.register(key, converter)

    def register(self, key: str, converter: Converter) -> None:
        if not callable(converter):
            raise TypeError("Converter must be callable")
        normalized = normalize_key(key)
        if normalized in self._table:
            _logger.debug("Replacing converter", extra={"key": normalized})
        self._table[normalized] = converter

    def keys(self) -> tuple[str, ...]:
        return tuple(sorted(self._table))

    def resolve(self, key: str) -> tuple[str, Converter]:
        """Return ``(effective_key, converter)`` for ``key`` or raise."""

        normalized = normalize_key(key)
        converter = self._table.get(normalized)
        if converter is not None:
            return normalized, converter
        routed = self._fallback.get(normalized)
        if routed is not None and routed in self._table:
            return routed, self._table[routed]
        raise UnsupportedTypeError(f"Unsupported file type: {key}")

    def dispatch(
        self,
        kind: ItemKind | str,
        content: RequestContent,
        context: ConversionContext,
    ) -> ConverterOutput:
        """Validate ``content`` and run the converter registered for it."""

        key = converter_key(kind, context.name)
        validate_input(key, content)
        effective_key, converter = self.resolve(key)
        _logger.debug(
            "Dispatching converter",
            extra={
                "key": key,
                "converter_key": effective_key,
                "item": context.name,
            },
        )
        result = converter(
            _prepare_content(key, content),
            name=context.name,
            credential=context.credential,
            options=context.options,
        )
        return ConverterOutput.coerce(result)


def _prepare_content(key: str, content: RequestContent) -> RequestContent:
    if key == ItemKind.PARENT_URL.value and isinstance(content, Mapping):
        url = content.get("url") or content.get("parenturl")
        if not isinstance(url, str) or not url.strip():
            raise InvalidInputShapeError(
                "parent-url descriptor must contain a 'url' string."
            )
        return url.strip()
    if isinstance(content, (bytearray, memoryview)):
        return bytes(content)
    return content

