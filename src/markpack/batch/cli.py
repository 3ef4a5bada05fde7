"""CLI entry point for batch conversion into a Markdown archive."""

from __future__ import annotations

import argparse
import importlib
import re
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence
from urllib.parse import urlsplit

from markpack.core import config_templates
from markpack.core import workspace as workspace_mod
from markpack.core.ai import resolve_api_key
from markpack.core.config_templates import ConfigTemplateError
from markpack.core.logging import configure_logger
from markpack.core.workspace import WorkspaceError

from .config import (
    CONFIG_FILENAME,
    BatchConfig,
    ConfigOverrides,
    load_config,
)
from .converters import build_default_registry
from .errors import ArchiveAssemblyError, BatchConfigError, BatchValidationError
from .models import ItemKind
from .pipeline import BatchArchive, BatchItem, convert_batch
from .registry import ConverterRegistry
from .service import TranscriptionService

_URL_PREFIXES = ("http://", "https://")
_SLUG_INVALID = re.compile(r"[^A-Za-z0-9]+")
EXIT_INTERRUPTED = 130


class DependencyError(RuntimeError):
    """Raised when an optional conversion dependency is unavailable."""


@dataclass(frozen=True)
class CollectedInputs:
    """Descriptors and uploaded payloads gathered from the command line."""

    items: tuple[BatchItem, ...]
    uploads: dict[str, bytes]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="markpack convert",
        description=(
            "Convert files, web pages, whole sites and video links into "
            "Markdown and package the results as one ZIP archive."
        ),
        epilog=(
            "Run `markpack convert config init` to scaffold the default "
            "batch.toml template."
        ),
    )
    parser.add_argument(
        "inputs",
        nargs="*",
        help=(
            "Files, directories or http(s) URLs to convert. Directories are "
            "expanded to the files they contain."
        ),
    )
    parser.add_argument(
        "--parent-url",
        action="append",
        default=[],
        metavar="URL",
        help="Crawl a whole site starting at URL (repeatable).",
    )
    parser.add_argument(
        "--video-link",
        action="append",
        default=[],
        metavar="URL",
        help="Convert a video platform link (repeatable).",
    )
    parser.add_argument(
        "--output",
        type=Path,
        help=(
            "Archive destination: a .zip file path or a directory "
            "(defaults to the workspace archives directory)."
        ),
    )
    parser.add_argument(
        "--workers",
        type=int,
        help="Number of items converted concurrently.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Per-item time limit in seconds (0 disables the limit).",
    )
    parser.add_argument(
        "--api-key",
        help=(
            "OpenAI API key for audio/video transcription (defaults to "
            "OPENAI_API_KEY or .env)."
        ),
    )
    parser.add_argument(
        "--config",
        type=Path,
        help=(
            "Path to a TOML config file (defaults to the workspace config "
            "directory)."
        ),
    )
    parser.add_argument(
        "--workspace",
        type=Path,
        help=(
            "Override the workspace root used to resolve default output and "
            "config paths."
        ),
    )
    parser.add_argument(
        "--log-level",
        help="Set the logging level for the run (defaults to INFO).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Mirror log output to stderr and report progress.",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args_list = list(argv) if argv is not None else list(sys.argv[1:])

    if args_list[:1] == ["config"]:
        return _handle_config(args_list[1:])

    parser = _build_parser()
    args = parser.parse_args(args_list)

    if not (args.inputs or args.parent_url or args.video_link):
        parser.error(
            "Provide at least one input, --parent-url or --video-link."
        )

    output_file, output_dir = _split_output(args.output)
    overrides = ConfigOverrides(
        output_dir=output_dir,
        max_workers=args.workers,
        item_timeout=args.timeout,
        log_level=args.log_level,
    )

    try:
        load_result = load_config(
            config_path=args.config,
            overrides=overrides,
            workspace_path=args.workspace,
        )
    except BatchConfigError as exc:
        parser.error(str(exc))

    try:
        collected = collect_inputs(
            args.inputs,
            parent_urls=args.parent_url,
            video_links=args.video_link,
        )
    except (FileNotFoundError, IsADirectoryError, PermissionError) as exc:
        parser.error(str(exc))

    config = load_result.config
    logger, log_path = configure_logger(
        "markpack.batch",
        log_dir=load_result.layout.path_for("logs"),
        level=config.log_level,
        verbose=args.verbose,
    )
    logger.debug("convert CLI invoked")

    service = TranscriptionService.from_settings(config.transcription)
    try:
        try:
            registry = _build_registry(service)
        except DependencyError as exc:
            sys.stderr.write(str(exc) + "\n")
            return 1

        cancel_event = threading.Event()
        try:
            archive = convert_batch(
                collected.items,
                registry=registry,
                uploads=collected.uploads,
                credential=resolve_api_key(args.api_key),
                config=config,
                progress=_progress_printer() if args.verbose else None,
                cancel_event=cancel_event,
                logger=logger,
            )
        except KeyboardInterrupt:
            cancel_event.set()
            sys.stderr.write("Conversion interrupted; no archive written.\n")
            return EXIT_INTERRUPTED
        except BatchValidationError as exc:
            sys.stderr.write(str(exc) + "\n")
            return 2
        except ArchiveAssemblyError as exc:
            sys.stderr.write(str(exc) + "\n")
            return 1
    finally:
        service.close()

    target = _write_archive(archive, output_file, config)
    logger.info("Wrote archive", extra={"path": str(target)})
    _print_summary(archive, target, log_path)
    return 1 if archive.failure_count else 0


def collect_inputs(
    inputs: Sequence[str],
    *,
    parent_urls: Sequence[str] = (),
    video_links: Sequence[str] = (),
) -> CollectedInputs:
    """Turn CLI arguments into batch descriptors plus upload payloads."""

    items: list[BatchItem] = []
    uploads: dict[str, bytes] = {}

    for raw in inputs:
        if raw.lower().startswith(_URL_PREFIXES):
            items.append(
                BatchItem(kind=ItemKind.URL, name=_link_name(raw), content=raw)
            )
            continue
        for path in _expand_path(Path(raw).expanduser()):
            key = str(path)
            if key in uploads:
                continue
            uploads[key] = path.read_bytes()
            items.append(
                BatchItem(kind=ItemKind.FILE, name=path.name, upload=key)
            )

    items.extend(
        BatchItem(kind=ItemKind.PARENT_URL, name=_link_name(url), content=url)
        for url in parent_urls
    )
    items.extend(
        BatchItem(kind=ItemKind.VIDEO_LINK, name=_link_name(url), content=url)
        for url in video_links
    )
    return CollectedInputs(items=tuple(items), uploads=uploads)


def _link_name(url: str) -> str:
    """Readable item name for a URL: host plus a slug of path and query."""

    parts = urlsplit(url.strip())
    tail = _SLUG_INVALID.sub("-", f"{parts.path} {parts.query}").strip("-")
    host = parts.hostname or ""
    if host and tail:
        return f"{host}-{tail}"
    return host or tail or url


def _expand_path(path: Path) -> list[Path]:
    if path.is_file():
        return [path.resolve()]
    if path.is_dir():
        return sorted(
            candidate.resolve()
            for candidate in path.rglob("*")
            if candidate.is_file()
            and not any(
                part.startswith(".")
                for part in candidate.relative_to(path).parts
            )
        )
    raise FileNotFoundError(f"Input not found: {path}")


def _build_registry(service: TranscriptionService) -> ConverterRegistry:
    """Return the default registry backed by a real MarkItDown engine."""

    markitdown_module = _import_module("markitdown", "MarkItDown")
    engine = getattr(markitdown_module, "MarkItDown")()
    return build_default_registry(engine, service)


def _import_module(module: str, required_attribute: str | None = None):
    try:
        imported = importlib.import_module(module)
    except ImportError as exc:
        message = _missing_dependency_message(module.split(".", 1)[0])
        raise DependencyError(message) from exc

    if required_attribute is not None and not hasattr(
        imported, required_attribute
    ):
        raise DependencyError(
            (
                f"Dependency '{module}' is installed but missing the "
                f"'{required_attribute}' attribute. Upgrade or reinstall the "
                "package."
            )
        )

    return imported


def _missing_dependency_message(package: str) -> str:
    return (
        f"Dependency '{package}' is required for document conversion. "
        'Install it with `pip install "markitdown[all]"`.'
    )


def _split_output(
    output: Optional[Path],
) -> tuple[Optional[Path], Optional[Path]]:
    """Return ``(archive_file, output_dir)`` for the ``--output`` value."""

    if output is None:
        return None, None
    if output.suffix.lower() == ".zip":
        return output.expanduser(), None
    return None, output.expanduser()


def _write_archive(
    archive: BatchArchive, output_file: Optional[Path], config: BatchConfig
) -> Path:
    if output_file is not None:
        output_file.parent.mkdir(parents=True, exist_ok=True)
        output_file.write_bytes(archive.buffer)
        return output_file
    return archive.save_to(config.output_dir or Path.cwd())


def _progress_printer(
    write: Optional[Callable[[str], object]] = None,
) -> Callable[[int], None]:
    def _report(percent: int) -> None:
        (write or sys.stderr.write)(f"progress: {percent}%\n")

    return _report


def _print_summary(archive: BatchArchive, target: Path, log_path: Path) -> None:
    lines = [
        "markpack summary:",
        "  converted: {0}".format(archive.success_count),
        "  failed:    {0}".format(archive.failure_count),
        "  archive:   {0}".format(target),
        "  log file:  {0}".format(log_path),
    ]
    lines.extend(
        "  ! {0}: {1}".format(result.name, result.error)
        for result in archive.results
        if not result.success
    )
    sys.stdout.write("\n".join(str(line) for line in lines) + "\n")


def _handle_config(argv: Sequence[str]) -> int:
    parser = _build_config_parser()
    args = parser.parse_args(argv)

    return _handle_config_init(args)


def _build_config_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="markpack convert config",
        description="Manage configuration files for batch conversion.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser(
        "init",
        help="Write the default batch.toml template.",
    )
    init_parser.add_argument(
        "--path",
        type=Path,
        help=(
            "Destination for the config TOML (defaults to the workspace "
            "config directory)."
        ),
    )
    init_parser.add_argument(
        "--workspace",
        type=Path,
        help=(
            "Workspace root override used when resolving the default config "
            "path."
        ),
    )
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the destination if a config already exists.",
    )
    return parser


def _handle_config_init(args: argparse.Namespace) -> int:
    try:
        target = _resolve_config_target(args)
    except WorkspaceError as exc:
        sys.stderr.write(str(exc) + "\n")
        return 1

    template = config_templates.get_template("batch")
    try:
        written = template.write(target, overwrite=args.force)
    except ConfigTemplateError as exc:
        sys.stderr.write(str(exc) + "\n")
        return 1

    sys.stdout.write(f"Wrote batch config to {written}\n")
    return 0


def _resolve_config_target(args: argparse.Namespace) -> Path:
    if args.path is not None:
        candidate = args.path.expanduser()
        if not candidate.is_absolute():
            candidate = (Path.cwd() / candidate).resolve()
        return candidate

    layout = workspace_mod.ensure_workspace(path=args.workspace)
    return layout.path_for("config") / CONFIG_FILENAME


if __name__ == "__main__":  # pragma: no cover - module CLI guard
    raise SystemExit(main())
