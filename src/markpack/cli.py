"""``markpack`` entry point.

``markpack convert ...`` runs the batch converter; ``list``, ``help`` and
``version`` describe the installation.
"""

from __future__ import annotations

import sys
from importlib import metadata
from typing import Callable, Mapping, Optional, Sequence, TextIO

CommandHandler = Callable[[Sequence[str]], int]

USAGE = "Usage: markpack <command> [args...]"


def _run_convert(argv: Sequence[str]) -> int:
    # Deferred so `markpack version` never pays for the converter imports.
    from .batch import cli as batch_cli

    try:
        return batch_cli.main(list(argv))
    except SystemExit as exc:
        return _exit_code(exc)


COMMANDS: Mapping[str, tuple[str, CommandHandler]] = {
    "convert": (
        "Convert files, pages, sites and video links into a ZIP.",
        _run_convert,
    ),
}


def command_table() -> str:
    width = max(len(name) for name in COMMANDS)
    rows = [
        f"  {name.ljust(width)}  {summary}"
        for name, (summary, _handler) in COMMANDS.items()
    ]
    return "\n".join(["Available commands:", *rows])


def _emit(text: str, stream: Optional[TextIO] = None) -> None:
    (stream or sys.stdout).write(text + "\n")


def _exit_code(exc: SystemExit) -> int:
    if exc.code is None or isinstance(exc.code, int):
        return exc.code or 0
    _emit(str(exc.code), sys.stderr)
    return 1


def _unknown(name: str) -> int:
    _emit(f"Unknown command '{name}'.", sys.stderr)
    _emit(command_table(), sys.stderr)
    return 2


def _version() -> str:
    try:
        return metadata.version("markpack")
    except metadata.PackageNotFoundError:
        return "unknown"


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        _emit(f"{USAGE}\n\n{command_table()}")
        return 2

    head, *tail = args
    if head in ("-h", "--help") or (head == "help" and not tail):
        _emit(f"{USAGE}\n\n{command_table()}")
        return 0
    if head in ("-V", "--version", "version"):
        _emit(_version())
        return 0
    if head == "list":
        _emit(command_table())
        return 0
    if head == "help":
        # `markpack help convert` shows the command's own argparse help.
        if tail[0] not in COMMANDS:
            return _unknown(tail[0])
        head, tail = tail[0], ["--help"]

    if head not in COMMANDS:
        return _unknown(head)
    _summary, handler = COMMANDS[head]
    return handler(tail)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
