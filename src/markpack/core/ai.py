"""OpenAI client helpers."""

from __future__ import annotations

import os
from typing import Any

from dotenv import load_dotenv
from openai import OpenAI

__all__ = ["load_client", "resolve_api_key"]

API_KEY_ENV = "OPENAI_API_KEY"


def resolve_api_key(explicit: str | None = None) -> str | None:
    """Return ``explicit`` or the key found in the environment / ``.env``."""

    if explicit and explicit.strip():
        return explicit.strip()
    load_dotenv()
    value = os.getenv(API_KEY_ENV, "").strip()
    return value or None


def load_client(
    api_key: str | None = None, *, timeout: float | None = None
) -> Any:
    """Create an OpenAI client for ``api_key`` (or the environment key)."""

    key = resolve_api_key(api_key)
    if not key:
        raise RuntimeError(
            f"{API_KEY_ENV} not found in environment. Set it or add to .env"
        )
    kwargs: dict[str, Any] = {"api_key": key}
    if timeout is not None:
        kwargs["timeout"] = timeout
    return OpenAI(**kwargs)
