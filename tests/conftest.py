from __future__ import annotations

import sys
from pathlib import Path

import pytest

TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from fixtures import (  # noqa: E402
    FakeClientFactory,
    FakeMarkItDown,
    FakeSession,
    WorkspaceBuilder,
)

# Ensure src/ is importable when tests spawn subprocesses
ROOT = TESTS_DIR.parent
for extra in (ROOT, ROOT / "src"):
    path_str = str(extra)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)


@pytest.fixture
def workspace(tmp_path: Path) -> WorkspaceBuilder:
    """Provide a helper bound to pytest's per-test tmp directory."""

    return WorkspaceBuilder(tmp_path)


@pytest.fixture
def engine() -> FakeMarkItDown:
    return FakeMarkItDown()


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def openai_factory() -> FakeClientFactory:
    """Client factory handing out fake OpenAI clients for inspection."""

    return FakeClientFactory()


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in (
        "OPENAI_API_KEY",
        "MARKPACK_CONFIG",
        "MARKPACK_OUTPUT_DIR",
        "MARKPACK_MAX_WORKERS",
        "MARKPACK_ITEM_TIMEOUT",
        "MARKPACK_LOG_LEVEL",
        "MARKPACK_TRANSCRIPTION_MODEL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("MARKPACK_DATA_HOME", str(tmp_path / "markpack-home"))
