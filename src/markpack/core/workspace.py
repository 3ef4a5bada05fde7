"""Workspace directory layout for markpack runs."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

WORKSPACE_ENV = "MARKPACK_DATA_HOME"
DEFAULT_WORKSPACE = Path.home() / ".markpack-data"

# Logical name -> directory under the workspace home.
_SUBDIRS = {
    "config": "config",
    "logs": "logs",
    "archives": "archives",
}


class WorkspaceError(RuntimeError):
    """Raised when the workspace layout cannot be prepared."""


@dataclass(frozen=True)
class WorkspaceLayout:
    """Resolved workspace home and its managed subdirectories."""

    home: Path
    directories: Mapping[str, Path]
    created: Mapping[str, bool]

    def path_for(self, key: str) -> Path:
        try:
            return self.directories[key]
        except KeyError as exc:
            raise WorkspaceError(
                f"Unknown workspace directory '{key}'."
            ) from exc


def ensure_workspace(
    *,
    env: Mapping[str, str] | None = None,
    path: Path | None = None,
    create: bool = True,
) -> WorkspaceLayout:
    """Resolve (and by default create) the workspace directories.

    An explicit ``path`` or ``MARKPACK_DATA_HOME`` is used as-is; the default
    home falls back to the system temp directory when it is not writable.
    """

    env_map = os.environ if env is None else env
    home, explicit = _resolve_home(env_map, path)

    candidates = [home]
    if create and not explicit:
        candidates.append(Path(tempfile.gettempdir()) / "markpack-data")

    failure: PermissionError | None = None
    for candidate in candidates:
        try:
            return _layout_for(candidate, create=create)
        except PermissionError as exc:
            failure = exc
    raise WorkspaceError(f"Unable to prepare workspace at {home}") from failure


def _resolve_home(
    env: Mapping[str, str], override: Path | None
) -> tuple[Path, bool]:
    if override is not None:
        return override.expanduser().absolute(), True
    custom = (env.get(WORKSPACE_ENV) or "").strip()
    if custom:
        return Path(custom).expanduser().absolute(), True
    return DEFAULT_WORKSPACE, False


def _layout_for(home: Path, *, create: bool) -> WorkspaceLayout:
    if home.exists() and not home.is_dir():
        raise WorkspaceError(
            f"Configured workspace exists and is not a directory: {home}"
        )

    created = {"home": _make_dir(home) if create else False}
    directories: dict[str, Path] = {}
    for key, relative in _SUBDIRS.items():
        directory = home / relative
        if directory.exists() and not directory.is_dir():
            raise WorkspaceError(
                f"Expected workspace directory for '{key}' but found a file: "
                f"{directory}"
            )
        created[key] = _make_dir(directory) if create else False
        directories[key] = directory

    return WorkspaceLayout(
        home=home,
        directories=MappingProxyType(directories),
        created=MappingProxyType(created),
    )


def _make_dir(path: Path) -> bool:
    existed = path.is_dir()
    path.mkdir(parents=True, exist_ok=True)
    try:
        path.chmod(0o700)
    except (PermissionError, NotImplementedError):  # pragma: no cover
        pass
    return not existed
