"""TOML configuration helpers shared by markpack commands."""

from __future__ import annotations

import copy
import tomllib
from pathlib import Path
from typing import Any, Mapping, MutableMapping

__all__ = [
    "TomlConfigError",
    "load_toml",
    "merge_defaults",
    "write_toml_template",
]


class TomlConfigError(RuntimeError):
    """Raised when a TOML file cannot be read, parsed or merged."""


def load_toml(path: Path) -> Mapping[str, Any]:
    """Parse the TOML document at ``path``.

    IO and syntax problems are reported as :class:`TomlConfigError` so each
    command can wrap them in its own configuration error type.
    """

    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except FileNotFoundError as exc:
        raise TomlConfigError(f"Config file not found: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise TomlConfigError(f"Failed to parse config TOML: {exc}") from exc


def merge_defaults(
    defaults: Mapping[str, Any],
    override: Mapping[str, Any],
) -> MutableMapping[str, Any]:
    """Return ``defaults`` overlaid with ``override``.

    Only keys already present in ``defaults`` are accepted and tables must
    stay tables, so typos in a user config fail loudly instead of being
    ignored. ``defaults`` itself is left untouched.
    """

    merged = copy.deepcopy(dict(defaults))
    _overlay(merged, override, prefix="")
    return merged


def _overlay(
    target: MutableMapping[str, Any],
    override: Mapping[str, Any],
    *,
    prefix: str,
) -> None:
    for key, value in override.items():
        dotted = f"{prefix}{key}"
        if key not in target:
            raise TomlConfigError(f"Unknown configuration key '{dotted}'.")
        current = target[key]
        if isinstance(current, MutableMapping):
            if not isinstance(value, Mapping):
                raise TomlConfigError(
                    f"Expected table for '{dotted}', found "
                    f"{type(value).__name__}."
                )
            _overlay(current, value, prefix=f"{dotted}.")
        else:
            target[key] = value


def write_toml_template(
    path: Path,
    *,
    template: str,
    overwrite: bool = False,
    mode: int = 0o600,
) -> Path:
    """Write ``template`` to ``path``; existing files need ``overwrite``."""

    if path.exists() and not overwrite:
        raise TomlConfigError(f"Config already exists: {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(template, encoding="utf-8")
    try:
        path.chmod(mode)
    except PermissionError:  # pragma: no cover - depends on filesystem
        pass
    return path
