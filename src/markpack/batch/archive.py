"""Assemble conversion results into a single ZIP archive.

Layout::

    documents/ data/ multimedia/ other/   {name}.md + optional assets/
    web/{hostname}/                       index.md, page files, assets/
    errors/                               {name}_error.md (always present)
    summary.md                            when at least one item succeeded
"""

from __future__ import annotations

import io
import logging
import re
import zipfile
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Callable, Iterable, Mapping, Optional, Protocol, Sequence

from .errors import ArchiveAssemblyError
from .models import Category, ConversionResult, ImageAsset, ItemKind
from .naming import hostname_of, sanitize_filename, split_name
from .output import format_timestamp, render_error

__all__ = [
    "ArchiveTree",
    "PlacementStrategy",
    "SingleFilePlacement",
    "SitePlacement",
    "build_archive",
    "render_summary",
    "select_placement",
]

ASSETS_DIR = "assets"
SUMMARY_FILE = "summary.md"

_logger = logging.getLogger(__name__)


class ArchiveTree:
    """Ordered in-memory folder tree, serialized once into a ZIP buffer."""

    def __init__(self) -> None:
        self._folders: list[str] = []
        self._files: dict[str, bytes] = {}

    def folder(self, path: str) -> str:
        """Register ``path`` (and its parents) as a folder and return it."""

        parts = PurePosixPath(path).parts
        for depth in range(1, len(parts) + 1):
            candidate = "/".join(parts[:depth])
            if candidate not in self._folders:
                self._folders.append(candidate)
        return "/".join(parts)

    def exists(self, path: str) -> bool:
        return path in self._files or path in self._folders

    def unique_path(self, folder: str, filename: str) -> str:
        """Return ``folder/filename``, suffixed ``-01``, ``-02`` if taken."""

        candidate = f"{folder}/{filename}" if folder else filename
        if not self.exists(candidate):
            return candidate
        stem, suffix = split_name(filename)
        counter = 1
        while True:
            versioned = f"{stem}-{counter:02d}{suffix}"
            candidate = f"{folder}/{versioned}" if folder else versioned
            if not self.exists(candidate):
                return candidate
            counter += 1

    def write(self, path: str, data: bytes | str) -> None:
        parent = str(PurePosixPath(path).parent)
        if parent not in ("", "."):
            self.folder(parent)
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._files[path] = data

    @property
    def files(self) -> Mapping[str, bytes]:
        return dict(self._files)

    @property
    def folders(self) -> tuple[str, ...]:
        return tuple(self._folders)

    def to_zip(self) -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(
            buffer, "w", compression=zipfile.ZIP_DEFLATED
        ) as archive:
            for folder in self._folders:
                archive.mkdir(folder)
            for path, data in self._files.items():
                archive.writestr(path, data)
        return buffer.getvalue()


class PlacementStrategy(Protocol):
    """Writes one successful result into the tree under ``folder``."""

    def place(
        self, result: ConversionResult, tree: ArchiveTree, folder: str
    ) -> None:
        """Write ``result`` below ``folder``."""


class SingleFilePlacement:
    """``{folder}/{name}.md`` with a sibling ``assets/`` folder."""

    def place(
        self, result: ConversionResult, tree: ArchiveTree, folder: str
    ) -> None:
        replacements = _write_assets(
            result.images, tree, f"{folder}/{ASSETS_DIR}"
        )
        path = tree.unique_path(folder, f"{_document_stem(result)}.md")
        tree.write(
            path, _rewrite_references(result.content or "", replacements)
        )


class SitePlacement:
    """``{folder}/{hostname}/index.md`` plus crawl pages and ``assets/``."""

    def place(
        self, result: ConversionResult, tree: ArchiveTree, folder: str
    ) -> None:
        host = sanitize_filename(
            hostname_of(result.source_url or "") or result.name
        )
        site = tree.folder(f"{folder}/{host}")
        replacements = _write_assets(
            result.images, tree, f"{site}/{ASSETS_DIR}"
        )
        tree.write(
            tree.unique_path(site, "index.md"),
            _rewrite_references(result.content or "", replacements),
        )
        for page in result.pages:
            page_name = sanitize_filename(
                PurePosixPath(page.name).name or page.name
            )
            tree.write(
                tree.unique_path(site, f"{page_name}.md"),
                _rewrite_references(page.content, replacements),
            )


_SINGLE_FILE = SingleFilePlacement()
_SITE = SitePlacement()


def select_placement(result: ConversionResult) -> PlacementStrategy:
    if result.category is Category.WEB and result.source_url:
        return _SITE
    return _SINGLE_FILE


def build_archive(
    results: Sequence[ConversionResult],
    *,
    now: Optional[Callable[[], datetime]] = None,
    logger: Optional[logging.Logger] = None,
) -> bytes:
    """Lay ``results`` out as folders and return the ZIP bytes.

    Per-item problems never abort the build: failures land in ``errors/`` and
    unreadable assets are skipped. Only serialization faults are raised, as
    :class:`ArchiveAssemblyError`.
    """

    log = logger or _logger
    clock = now or _utc_now
    tree = ArchiveTree()
    errors_folder = tree.folder(Category.ERRORS.value)

    for result in results:
        if not result.success:
            path = tree.unique_path(errors_folder, f"{result.name}_error.md")
            tree.write(
                path,
                render_error(
                    name=result.name,
                    kind=result.kind.value,
                    error=result.error or "Unknown error",
                    failed_at=clock(),
                    source_url=result.source_url,
                ),
            )
            log.info(
                "Archived failure", extra={"item": result.name, "path": path}
            )
            continue

        folder = tree.folder(result.category.value)
        select_placement(result).place(result, tree, folder)
        log.info(
            "Archived result",
            extra={
                "item": result.name,
                "category": result.category.value,
                "image_count": len(result.images),
                "page_count": len(result.pages),
            },
        )

    if any(result.success for result in results):
        tree.write(SUMMARY_FILE, render_summary(results, generated_at=clock()))

    try:
        payload = tree.to_zip()
    except (OSError, ValueError, zipfile.LargeZipFile) as exc:
        raise ArchiveAssemblyError(
            f"Failed to serialize archive: {exc}"
        ) from exc

    log.info(
        "Built archive",
        extra={
            "file_count": len(tree.files),
            "folder_count": len(tree.folders),
            "size_bytes": len(payload),
        },
    )
    return payload


def render_summary(
    results: Sequence[ConversionResult], *, generated_at: datetime
) -> str:
    successful = [result for result in results if result.success]
    failed = [result for result in results if not result.success]

    lines = [
        "# Conversion Summary",
        "",
        f"Generated: {format_timestamp(generated_at)}",
        "",
        "## Statistics",
        f"- Total Items: {len(results)}",
        f"- Successful: {len(successful)}",
        f"- Failed: {len(failed)}",
        "",
        "## Successful Conversions",
    ]
    for result in successful:
        line = f"- **{result.name}** ({result.kind.value})"
        if result.images:
            line += f" - {len(result.images)} image(s)"
        lines.append(line)
    if failed:
        lines.extend(["", "## Failed Conversions"])
        lines.extend(
            f"- **{result.name}**: {result.error}" for result in failed
        )
    return "\n".join(lines) + "\n"


def _document_stem(result: ConversionResult) -> str:
    if result.kind is ItemKind.FILE:
        stem, _ = split_name(result.name)
        return sanitize_filename(stem)
    return result.name


def _write_assets(
    images: Iterable[ImageAsset], tree: ArchiveTree, assets_folder: str
) -> list[tuple[str, str]]:
    """Write decoded images and return ``(reference, relative_path)`` pairs."""

    replacements: list[tuple[str, str]] = []
    for image in images:
        try:
            payload = image.decode()
        except ValueError:
            _logger.warning(
                "Skipping unreadable image", extra={"image": image.name}
            )
            continue
        filename = sanitize_filename(
            PurePosixPath(image.name).name or image.name, fallback="image"
        )
        path = tree.unique_path(assets_folder, filename)
        tree.write(path, payload)
        relative = f"{ASSETS_DIR}/{PurePosixPath(path).name}"
        replacements.extend(
            (reference, relative) for reference in image.references
        )
    return replacements


def _rewrite_references(
    content: str, replacements: Sequence[tuple[str, str]]
) -> str:
    """Swap references for asset paths in a single regex pass."""

    targets: dict[str, str] = {}
    for reference, relative in replacements:
        targets.setdefault(reference, relative)
    if not targets:
        return content
    # Longest first so a reference never shadows one that contains it.
    ordered = sorted(targets, key=len, reverse=True)
    pattern = re.compile("|".join(re.escape(item) for item in ordered))
    return pattern.sub(lambda match: targets[match.group(0)], content)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
