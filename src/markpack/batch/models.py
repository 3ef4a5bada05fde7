"""Value types flowing through the batch conversion pipeline."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import PurePath
from typing import Any, Mapping, Optional, Union

from .errors import ValidationError

RequestContent = Union[bytes, str, Mapping[str, Any]]


class ItemKind(Enum):
    """What a request points at."""

    FILE = "file"
    URL = "url"
    PARENT_URL = "parent-url"
    VIDEO_LINK = "video-link"

    @classmethod
    def from_value(cls, value: "ItemKind | str") -> "ItemKind":
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValidationError(
                f"Item kind must be a string, got {value!r}."
            )
        normalized = value.strip().lower()
        normalized = _KIND_ALIASES.get(normalized, normalized)
        for member in cls:
            if member.value == normalized:
                return member
        expected = ", ".join(member.value for member in cls)
        raise ValidationError(
            f"Unknown item kind '{value}'. Expected one of: {expected}."
        )


_KIND_ALIASES = {
    "parenturl": "parent-url",
    "parent_url": "parent-url",
    "youtube": "video-link",
    "video": "video-link",
    "videolink": "video-link",
}


class Category(Enum):
    """Archive folder a result is placed in."""

    DOCUMENTS = "documents"
    DATA = "data"
    MULTIMEDIA = "multimedia"
    WEB = "web"
    ERRORS = "errors"
    OTHER = "other"


_OPTION_ALIASES = {
    "includeImages": "include_images",
    "includeMeta": "include_meta",
    "convertLinks": "convert_links",
    "crawlDepth": "crawl_depth",
    "maxPages": "max_pages",
}


@dataclass(frozen=True)
class ConversionOptions:
    """Per-item knobs handed through to converters."""

    include_images: bool = True
    include_meta: bool = True
    convert_links: bool = True
    crawl_depth: int = 1
    max_pages: int = 10

    def __post_init__(self) -> None:
        for item in fields(self):
            value = getattr(self, item.name)
            if item.type == "bool" and not isinstance(value, bool):
                raise ValidationError(
                    f"Option '{item.name}' must be a boolean."
                )
            if item.type == "int" and (
                isinstance(value, bool) or not isinstance(value, int)
            ):
                raise ValidationError(
                    f"Option '{item.name}' must be an integer."
                )
        if self.crawl_depth < 0:
            raise ValidationError("Option 'crawl_depth' must be >= 0.")
        if self.max_pages < 1:
            raise ValidationError("Option 'max_pages' must be >= 1.")

    @classmethod
    def from_mapping(
        cls,
        raw: Optional[Mapping[str, Any]],
        *,
        defaults: Optional["ConversionOptions"] = None,
    ) -> "ConversionOptions":
        """Overlay ``raw`` (camelCase or snake_case keys) on ``defaults``."""

        base = defaults or cls()
        if not raw:
            return base
        if not isinstance(raw, Mapping):
            raise ValidationError("Options must be a mapping.")
        known = {item.name for item in fields(cls)}
        updates: dict[str, Any] = {}
        for key, value in raw.items():
            name = _OPTION_ALIASES.get(key, key)
            if name not in known:
                raise ValidationError(f"Unknown option '{key}'.")
            updates[name] = value
        return replace(base, **updates)


@dataclass(frozen=True)
class ConversionRequest:
    """One item to convert, fixed at the pipeline entry."""

    kind: ItemKind
    content: RequestContent
    name: str
    options: ConversionOptions = field(default_factory=ConversionOptions)
    credential: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", ItemKind.from_value(self.kind))

    @property
    def extension(self) -> str:
        return PurePath(self.name).suffix.lstrip(".").lower()


@dataclass(frozen=True)
class ImageAsset:
    """A binary asset referenced from converted Markdown."""

    name: str
    data: str
    mime_type: str = "application/octet-stream"
    path: Optional[str] = None
    url: Optional[str] = None

    @classmethod
    def from_value(
        cls, value: "ImageAsset | Mapping[str, Any]"
    ) -> "ImageAsset":
        if isinstance(value, cls):
            return value
        if not isinstance(value, Mapping):
            raise ValidationError(f"Unsupported image payload: {value!r}")
        return cls(
            name=str(value.get("name") or ""),
            data=str(value.get("data") or ""),
            mime_type=str(
                value.get("mimeType")
                or value.get("mime_type")
                or value.get("type")
                or "application/octet-stream"
            ),
            path=value.get("path") or None,
            url=value.get("url") or None,
        )

    @property
    def references(self) -> tuple[str, ...]:
        """Strings that point at this asset inside the Markdown."""

        seen: list[str] = []
        for candidate in (self.url, self.path):
            if candidate and candidate not in seen:
                seen.append(candidate)
        return tuple(seen)

    def decode(self) -> bytes:
        # MIME-style payloads wrap every 76 characters.
        compact = "".join(self.data.split())
        try:
            return base64.b64decode(compact, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError(
                f"Image '{self.name}' is not valid base64"
            ) from exc


@dataclass(frozen=True)
class PageResult:
    """An additional page produced by a site crawl."""

    name: str
    content: str

    @classmethod
    def from_value(
        cls, value: "PageResult | Mapping[str, Any]"
    ) -> "PageResult":
        if isinstance(value, cls):
            return value
        if not isinstance(value, Mapping):
            raise ValidationError(f"Unsupported page payload: {value!r}")
        return cls(
            name=str(value.get("name") or ""),
            content=str(value.get("content") or ""),
        )


@dataclass(frozen=True)
class ConverterOutput:
    """Normalized return value of a converter."""

    content: str
    images: tuple[ImageAsset, ...] = ()
    pages: tuple[PageResult, ...] = ()
    title: Optional[str] = None

    @classmethod
    def coerce(cls, value: Any) -> "ConverterOutput":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls(content=value)
        if isinstance(value, Mapping):
            content = value.get("content")
            if content is not None and not isinstance(content, str):
                raise ValidationError(
                    "Converter content must be Markdown text."
                )
            return cls(
                content=content or "",
                images=tuple(
                    ImageAsset.from_value(item)
                    for item in value.get("images") or ()
                ),
                pages=tuple(
                    PageResult.from_value(item)
                    for item in value.get("pages") or value.get("files") or ()
                ),
                title=value.get("title") or value.get("name") or None,
            )
        raise ValidationError(
            "Converter returned unsupported value of type "
            f"{type(value).__name__}."
        )


@dataclass(frozen=True)
class ConversionResult:
    """Outcome of converting one request. Built once, never mutated."""

    success: bool
    kind: ItemKind
    category: Category
    name: str
    content: Optional[str] = None
    error: Optional[str] = None
    images: tuple[ImageAsset, ...] = ()
    source_url: Optional[str] = None
    pages: tuple[PageResult, ...] = ()

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("ConversionResult.name must not be empty")
        if self.success:
            if self.content is None or self.error is not None:
                raise ValueError(
                    "Successful results carry content and no error"
                )
        else:
            if self.content is not None or self.images or self.pages:
                raise ValueError("Failed results carry no content or assets")
            if not self.error:
                raise ValueError("Failed results must describe the error")

    @classmethod
    def succeeded(
        cls,
        *,
        kind: ItemKind,
        category: Category,
        name: str,
        output: ConverterOutput,
        source_url: Optional[str] = None,
    ) -> "ConversionResult":
        return cls(
            success=True,
            kind=kind,
            category=category,
            name=name,
            content=output.content,
            images=output.images,
            pages=output.pages,
            source_url=source_url,
        )

    @classmethod
    def failed(
        cls,
        *,
        kind: ItemKind,
        category: Category,
        name: str,
        error: str,
        source_url: Optional[str] = None,
    ) -> "ConversionResult":
        return cls(
            success=False,
            kind=kind,
            category=category,
            name=name,
            error=error or "Unknown error",
            source_url=source_url,
        )


__all__ = [
    "Category",
    "ConversionOptions",
    "ConversionRequest",
    "ConversionResult",
    "ConverterOutput",
    "ImageAsset",
    "ItemKind",
    "PageResult",
    "RequestContent",
]
