"""Shared testing fixtures and fakes for the markpack test suite."""

from .http import FakeResponse, FakeSession  # noqa: F401
from .markitdown import FakeMarkItDown, FakeResult  # noqa: F401
from .openai import (  # noqa: F401
    FakeClientFactory,
    FakeOpenAIClient,
    ProviderError,
)
from .workspace import WorkspaceBuilder, archive_entries  # noqa: F401

__all__ = [
    "FakeClientFactory",
    "FakeMarkItDown",
    "FakeOpenAIClient",
    "FakeResponse",
    "FakeResult",
    "FakeSession",
    "ProviderError",
    "WorkspaceBuilder",
    "archive_entries",
]
