"""Input trees for CLI runs and readers for the archives they produce."""

from __future__ import annotations

import io
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Union

# A file body, or a nested mapping for a sub-directory.
Tree = Mapping[str, Union[str, bytes, "Tree"]]


def _put(path: Path, content: Union[str, bytes]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content, encoding="utf-8")
    return path


def archive_entries(source: Union[Path, bytes]) -> Dict[str, bytes]:
    """Map every ZIP member name to its bytes; directories map to b""."""

    payload = source.read_bytes() if isinstance(source, Path) else source
    with zipfile.ZipFile(io.BytesIO(payload)) as bundle:
        return {name: bundle.read(name) for name in bundle.namelist()}


@dataclass
class WorkspaceBuilder:
    """Lays out input files under a tmp directory."""

    root: Path

    def create(self, tree: Tree, base: Path | None = None) -> Path:
        base = base or self.root
        for name, value in tree.items():
            if isinstance(value, Mapping):
                (base / name).mkdir(parents=True, exist_ok=True)
                self.create(value, base / name)
            else:
                _put(base / name, value)
        return base

    def write(
        self, relative: Union[str, Path], content: Union[str, bytes]
    ) -> Path:
        return _put(self.root / relative, content)
