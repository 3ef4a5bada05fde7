"""Batch entry point: validate descriptors, convert, and build the archive."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Sequence, Union

from .archive import build_archive
from .config import BatchConfig
from .errors import BatchCancelledError, BatchValidationError, ValidationError
from .models import (
    ConversionOptions,
    ConversionRequest,
    ConversionResult,
    ItemKind,
    RequestContent,
)
from .orchestrator import ProgressCallback, convert_many
from .registry import ConverterRegistry

__all__ = [
    "BatchArchive",
    "BatchItem",
    "archive_filename",
    "build_requests",
    "convert_batch",
]

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchItem:
    """Caller-facing descriptor for one item of a batch.

    Exactly one of ``content`` (inline bytes, text or a parent-url mapping) or
    ``upload`` (a key into the uploaded payloads) must be set.
    """

    kind: Union[ItemKind, str]
    name: str
    content: Optional[RequestContent] = None
    upload: Optional[str] = None
    options: Optional[Mapping[str, Any]] = None


@dataclass(frozen=True)
class BatchArchive:
    """ZIP payload produced for a batch plus the per-item results."""

    buffer: bytes
    filename: str
    results: tuple[ConversionResult, ...]

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for result in self.results if not result.success)

    def save_to(self, directory: Path) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        target = directory / self.filename
        target.write_bytes(self.buffer)
        return target


def convert_batch(
    items: Sequence[Union[BatchItem, Mapping[str, Any]]],
    *,
    registry: ConverterRegistry,
    uploads: Optional[Mapping[str, bytes]] = None,
    credential: Optional[str] = None,
    config: Optional[BatchConfig] = None,
    progress: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
    logger: Optional[logging.Logger] = None,
    now: Optional[Callable[[], datetime]] = None,
) -> BatchArchive:
    """Convert ``items`` and package every result into one ZIP archive.

    Descriptor problems raise :class:`BatchValidationError` before any
    conversion starts. Per-item failures never raise; they are written to the
    archive's ``errors/`` folder. When ``cancel_event`` is set by the time
    conversion returns, :class:`BatchCancelledError` is raised instead of
    building an archive.
    """

    log = logger or _logger
    settings = config or BatchConfig()
    clock = now or _utc_now
    cancel = cancel_event if cancel_event is not None else threading.Event()

    requests = build_requests(
        items,
        uploads=uploads,
        credential=credential,
        defaults=settings.options,
    )
    log.info(
        "Accepted batch",
        extra={
            "item_count": len(requests),
            "kinds": sorted({request.kind.value for request in requests}),
        },
    )

    results = convert_many(
        requests,
        registry=registry,
        max_workers=settings.max_workers,
        timeout=settings.item_timeout,
        progress=progress,
        cancel_event=cancel,
        logger=log,
    )

    if cancel.is_set():
        log.warning("Batch cancelled", extra={"item_count": len(requests)})
        raise BatchCancelledError("Batch conversion was cancelled")

    buffer = build_archive(results, now=clock, logger=log)
    archive = BatchArchive(
        buffer=buffer,
        filename=archive_filename(clock()),
        results=tuple(results),
    )
    log.info(
        "Batch archive ready",
        extra={
            "archive": archive.filename,
            "success_count": archive.success_count,
            "failure_count": archive.failure_count,
        },
    )
    return archive


def build_requests(
    items: Sequence[Union[BatchItem, Mapping[str, Any]]],
    *,
    uploads: Optional[Mapping[str, bytes]] = None,
    credential: Optional[str] = None,
    defaults: Optional[ConversionOptions] = None,
) -> list[ConversionRequest]:
    """Turn raw descriptors into requests, rejecting the batch on any defect."""

    if isinstance(items, (str, bytes)) or not isinstance(items, Sequence):
        raise BatchValidationError("Items must be a list of descriptors.")
    if not items:
        raise BatchValidationError("No items provided for conversion.")

    payloads = uploads or {}
    requests: list[ConversionRequest] = []
    for index, raw in enumerate(items):
        item = _coerce_item(raw, index)
        try:
            kind = ItemKind.from_value(item.kind)
            options = ConversionOptions.from_mapping(
                item.options, defaults=defaults
            )
        except ValidationError as exc:
            raise BatchValidationError(f"Item {index}: {exc}") from exc
        requests.append(
            ConversionRequest(
                kind=kind,
                content=_resolve_content(item, index, payloads),
                name=item.name,
                options=options,
                credential=credential,
            )
        )
    return requests


def archive_filename(moment: datetime) -> str:
    """Return ``conversion_<UTC ISO timestamp>.zip`` safe for file systems."""

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    stamp = (
        moment.astimezone(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )
    return f"conversion_{stamp.replace(':', '-').replace('.', '-')}.zip"


def _coerce_item(
    raw: Union[BatchItem, Mapping[str, Any]], index: int
) -> BatchItem:
    if isinstance(raw, BatchItem):
        item = raw
    elif isinstance(raw, Mapping):
        kind = raw.get("kind", raw.get("type"))
        item = BatchItem(
            kind=kind,  # type: ignore[arg-type]
            name=raw.get("name"),  # type: ignore[arg-type]
            content=raw.get("content"),
            upload=raw.get("upload"),
            options=raw.get("options"),
        )
    else:
        raise BatchValidationError(
            f"Item {index} must be a mapping, got {type(raw).__name__}."
        )

    if item.kind is None or (
        isinstance(item.kind, str) and not item.kind.strip()
    ):
        raise BatchValidationError(f"Item {index} is missing its kind.")
    if not isinstance(item.name, str) or not item.name.strip():
        raise BatchValidationError(f"Item {index} is missing its name.")
    if item.options is not None and not isinstance(item.options, Mapping):
        raise BatchValidationError(f"Item {index}: options must be a mapping.")
    return item


def _resolve_content(
    item: BatchItem, index: int, uploads: Mapping[str, bytes]
) -> RequestContent:
    if item.upload is not None:
        if item.content is not None:
            raise BatchValidationError(
                f"Item {index} sets both content and upload."
            )
        try:
            return uploads[item.upload]
        except KeyError:
            raise BatchValidationError(
                f"Item {index} references unknown upload '{item.upload}'."
            ) from None
    if item.content is None:
        raise BatchValidationError(f"Item {index} is missing its content.")
    if isinstance(item.content, str) and not item.content.strip():
        raise BatchValidationError(f"Item {index} has empty content.")
    return item.content


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
